"""
Security and operational audit events.

``audit_log`` is fire-and-forget: it never raises into the caller.
"""

import logging
from typing import Any, Dict, Optional

audit_logger = logging.getLogger("audit")

_LEVEL_ALIASES = {
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "CRITICAL": logging.CRITICAL,
}


def format_context(context: Optional[Dict[str, Any]]) -> str:
    """Render a context dict as sorted ``key=value`` pairs."""
    if not context:
        return ""
    return " ".join(f"{key}={context[key]!r}" for key in sorted(context))


def audit_log(level: Any, message: str, context: Optional[Dict[str, Any]] = None) -> None:
    """
    Emit an audit event.

    Args:
        level: Level name ("WARN", "ERROR", ...) or logging level int
        message: Event description
        context: Structured context appended as key=value pairs
    """
    try:
        if isinstance(level, str):
            levelno = _LEVEL_ALIASES.get(level.upper(), logging.INFO)
        else:
            levelno = int(level)
        rendered = format_context(context)
        audit_logger.log(
            levelno,
            f"{message} [{rendered}]" if rendered else message,
            extra={"audit_context": dict(context or {})},
        )
    except Exception:  # never propagate into the caller
        pass
