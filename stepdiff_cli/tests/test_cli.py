"""Tests for stepdiff_cli/app.py -- the stepdiff CLI application.

Uses typer.testing.CliRunner to invoke each command against step files
written into ``tmp_path``.  Inputs ending in ``.drv`` are read directly,
so no test needs nix; resolution failures are simulated by patching
``stepdiff_cli.app.resolve_input``.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from step_engine.exceptions import ResolutionError

from stepdiff_cli.app import app

runner = CliRunner()

# ---------------------------------------------------------------------------
# diff
# ---------------------------------------------------------------------------


class TestDiffCommand:
    def test_identical_steps(self, step_files) -> None:
        hello = step_files.step("hello")
        result = runner.invoke(app, ["diff", hello, hello])
        assert result.exit_code == 0, result.output
        assert "The steps are identical." in result.output

    def test_builder_change(self, step_files) -> None:
        old = step_files.step("hello", "a")
        new = step_files.step("hello", "b", builder="/bin/bash")
        result = runner.invoke(app, ["diff", old, new])
        assert result.exit_code == 0, result.output
        lines = [line.rstrip() for line in result.output.splitlines()]
        assert lines[:4] == ["~ hello", "  Builder:", "    - /bin/sh", "    + /bin/bash"]

    def test_exit_code_flag_when_different(self, step_files) -> None:
        old = step_files.step("hello", "a")
        new = step_files.step("hello", "b", builder="/bin/bash")
        result = runner.invoke(app, ["diff", "--exit-code", old, new])
        assert result.exit_code == 1

    def test_exit_code_flag_when_identical(self, step_files) -> None:
        hello = step_files.step("hello")
        result = runner.invoke(app, ["diff", "--exit-code", hello, hello])
        assert result.exit_code == 0

    def test_changed_input_is_reported(self, step_files) -> None:
        dep_a = step_files.step("zlib", "a", env={"version": "1.3"})
        dep_b = step_files.step("zlib", "b", env={"version": "1.3.1"})
        old = step_files.step("hello", "a", inputs={dep_a: ["out"]})
        new = step_files.step("hello", "b", inputs={dep_b: ["out"]})

        result = runner.invoke(app, ["diff", old, new])

        assert result.exit_code == 0, result.output
        assert "Changed inputs:" in result.output
        assert "~ zlib" in result.output
        assert "~ version" in result.output

    def test_nested_change_two_levels_down(self, step_files) -> None:
        leaf_a = step_files.step("leaf", "a")
        leaf_b = step_files.step("leaf", "b", env={"name": "leaf", "EXTRA": "yes"})
        mid_a = step_files.step("mid", "a", inputs={leaf_a: ["out"]})
        mid_b = step_files.step("mid", "b", inputs={leaf_b: ["out"]})
        old = step_files.step("root", "a", inputs={mid_a: ["out"]})
        new = step_files.step("root", "b", inputs={mid_b: ["out"]}, builder="/bin/bash")

        result = runner.invoke(app, ["diff", old, new])

        assert result.exit_code == 0, result.output
        lines = [line.rstrip() for line in result.output.splitlines()]
        assert lines[:10] == [
            "~ root",
            "  Builder:",
            "    - /bin/sh",
            "    + /bin/bash",
            "  Changed inputs:",
            "    ~ mid",
            "      Changed inputs:",
            "        ~ leaf",
            "          Environment:",
            "            + EXTRA=yes",
        ]

    def test_source_contents_compared(self, step_files) -> None:
        src_a = step_files.source("builder.sh", "set -e\necho one\n", "a")
        src_b = step_files.source("builder.sh", "set -e\necho two\n", "b")
        old = step_files.step("hello", "a", sources=[src_a])
        new = step_files.step("hello", "b", sources=[src_b])

        result = runner.invoke(app, ["diff", old, new])

        assert result.exit_code == 0, result.output
        assert "Sources:" in result.output
        assert "- echo one" in result.output
        assert "+ echo two" in result.output

    def test_no_sources_skips_contents(self, step_files) -> None:
        src_a = step_files.source("builder.sh", "echo one\n", "a")
        src_b = step_files.source("builder.sh", "echo two\n", "b")
        old = step_files.step("hello", "a", sources=[src_a])
        new = step_files.step("hello", "b", sources=[src_b])

        result = runner.invoke(app, ["diff", "--no-sources", old, new])

        assert result.exit_code == 0, result.output
        assert "The steps are identical." in result.output

    def test_word_granularity(self, step_files) -> None:
        old = step_files.step("hello", "a", env={"CFLAGS": "-O2 -g -Wall"})
        new = step_files.step("hello", "b", env={"CFLAGS": "-O3 -g -Wall"})
        result = runner.invoke(app, ["diff", "--granularity", "word", "-C", "10", old, new])
        assert result.exit_code == 0, result.output
        assert "[--O2-]{+-O3+} -g -Wall" in result.output

    def test_context_zero(self, step_files) -> None:
        src_a = step_files.source("builder.sh", "one\ntwo\nthree\n", "a")
        src_b = step_files.source("builder.sh", "one\nTWO\nthree\n", "b")
        old = step_files.step("hello", "a", sources=[src_a])
        new = step_files.step("hello", "b", sources=[src_b])

        result = runner.invoke(app, ["diff", "-C", "0", old, new])

        assert result.exit_code == 0, result.output
        assert "three" not in result.output
        assert "1 unchanged units skipped" in result.output

    def test_negative_context_rejected(self, step_files) -> None:
        hello = step_files.step("hello")
        result = runner.invoke(app, ["diff", "-C", "-1", hello, hello])
        assert result.exit_code == 2

    def test_json_output(self, step_files) -> None:
        old = step_files.step("hello", "a")
        new = step_files.step("hello", "b", builder="/bin/bash")
        result = runner.invoke(app, ["diff", "--json", old, new])
        assert result.exit_code == 0, result.output
        assert '"status": "CHANGED"' in result.output
        assert '"builder_diff"' in result.output
        assert '"platform_diff"' not in result.output

    def test_missing_step_file(self, step_files, tmp_path: Path) -> None:
        hello = step_files.step("hello")
        missing = str(tmp_path / "0000-missing.drv")
        result = runner.invoke(app, ["diff", hello, missing])
        assert result.exit_code == 3
        assert "Error" in result.output

    def test_malformed_step_file(self, step_files, tmp_path: Path) -> None:
        hello = step_files.step("hello")
        broken = tmp_path / "1111-broken.drv"
        broken.write_text('Derive([("out"', encoding="utf-8")
        result = runner.invoke(app, ["diff", hello, str(broken)])
        assert result.exit_code == 3

    def test_resolution_failure(self, step_files) -> None:
        hello = step_files.step("hello")
        error = ResolutionError("./default.nix", "nix-instantiate failed with exit code 1")
        with patch("stepdiff_cli.app.resolve_input", side_effect=error):
            result = runner.invoke(app, ["diff", "./default.nix", hello])
        assert result.exit_code == 2
        assert "nix-instantiate failed" in result.output

    def test_granularity_from_environment(self, step_files, monkeypatch) -> None:
        monkeypatch.setenv("STEPDIFF_GRANULARITY", "character")
        old = step_files.step("hello", "a", env={"V": "abc"})
        new = step_files.step("hello", "b", env={"V": "abd"})
        result = runner.invoke(app, ["diff", old, new])
        assert result.exit_code == 0, result.output
        assert "ab[-c-]{+d+}" in result.output


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


class TestShowCommand:
    def test_summary(self, step_files) -> None:
        dep = step_files.step("zlib")
        hello = step_files.step("hello", inputs={dep: ["out", "dev"]})
        result = runner.invoke(app, ["show", hello])
        assert result.exit_code == 0, result.output
        assert "hello" in result.output
        assert "zlib" in result.output
        assert "x86_64-linux" in result.output

    def test_json(self, step_files) -> None:
        hello = step_files.step("hello")
        result = runner.invoke(app, ["show", "--json", hello])
        assert result.exit_code == 0, result.output
        assert '"platform": "x86_64-linux"' in result.output
        assert '"builder": "/bin/sh"' in result.output

    def test_canonical(self, step_files) -> None:
        hello = step_files.step("hello")
        result = runner.invoke(app, ["show", "--canonical", hello])
        assert result.exit_code == 0, result.output
        assert result.output == Path(hello).read_text(encoding="utf-8")

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["show", str(tmp_path / "0000-missing.drv")])
        assert result.exit_code == 3

    def test_malformed_file(self, tmp_path: Path) -> None:
        broken = tmp_path / "1111-broken.drv"
        broken.write_text("Derive(", encoding="utf-8")
        result = runner.invoke(app, ["show", str(broken)])
        assert result.exit_code == 3
        assert "Failed to parse" in result.output


# ---------------------------------------------------------------------------
# Global options
# ---------------------------------------------------------------------------


class TestGlobalOptions:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("stepdiff ")

    def test_profile_prints_table(self, step_files) -> None:
        old = step_files.step("hello", "a")
        new = step_files.step("hello", "b", builder="/bin/bash")
        result = runner.invoke(app, ["--profile", "diff", old, new])
        assert result.exit_code == 0, result.output
        assert "Profile" in result.output
        assert "diff.steps" in result.output
        assert "store.load" in result.output

    def test_invalid_configuration(self, step_files, monkeypatch) -> None:
        monkeypatch.setenv("STEPDIFF_CONTEXT_LINES", "-1")
        hello = step_files.step("hello")
        result = runner.invoke(app, ["diff", hello, hello])
        assert result.exit_code == 3
        assert "Invalid configuration" in result.output

    def test_verbose_logging_goes_to_output(self, step_files) -> None:
        hello = step_files.step("hello")
        result = runner.invoke(app, ["-v", "diff", hello, hello])
        assert result.exit_code == 0, result.output
        assert "Comparing" in result.output

    def test_json_logging(self, step_files) -> None:
        hello = step_files.step("hello")
        result = runner.invoke(app, ["-v", "--log-json", "diff", hello, hello])
        assert result.exit_code == 0, result.output
        assert '"level": "INFO"' in result.output
        assert '"old_id"' in result.output
