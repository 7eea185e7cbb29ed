"""Entry point for `python -m stepdiff_cli` and the `stepdiff` console script."""

from __future__ import annotations

from stepdiff_cli.app import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
