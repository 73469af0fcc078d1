"""Structured logging via *structlog*.

Service entry points that benefit from key/value context (report
executions, webhook deliveries, due-schedule sweeps) use
``get_logger(schedule_id=..., execution_id=...)``; everything else keeps
using ``logging.getLogger(__name__)``.
"""

from __future__ import annotations

from typing import Any

import structlog

# Keep the logger global so every import shares the same base instance.
log = structlog.get_logger("seohub")

# Attach default processor chain only if structlog has not been
# configured by the application already.
if not structlog.is_configured():
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )


def get_logger(**bindings: Any):  # noqa: D401 – factory helper
    """Return a bound logger carrying *bindings* on every event."""

    return log.bind(**bindings)


__all__ = ["log", "get_logger"]
