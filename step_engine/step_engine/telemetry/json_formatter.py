"""Single-line JSON log formatter.

Enabled with ``--log-json`` or ``STEPDIFF_STRUCTURED_LOGGING=true`` so that
log aggregators can index diagnostics without regex parsing.

Output schema per line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "DEBUG",
        "logger": "step_engine.store.step_store",
        "message": "Loaded step /nix/store/...-hello.drv",
        "step_id": "/nix/store/...-hello.drv",   // present when passed via extra=
        "exc_info": "Traceback ..."              // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# ``extra=`` keys copied into the payload when present on a record.
_EXTRA_FIELDS: tuple[str, ...] = ("step_id", "old_id", "new_id", "source")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field_name in _EXTRA_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                payload[field_name] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
