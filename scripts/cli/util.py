"""CLI utilities: formatting, JSON arguments, logging mute/restore."""

import json
import logging
from datetime import datetime

from approval_kernel.exceptions import InvalidApprovalPayloadError


def fmt_ts(value: datetime | None) -> str:
    """Format a timestamp for display (UTC, seconds precision)."""
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def clip(value, width: int) -> str:
    text = "" if value is None else str(value)
    return text if len(text) <= width else text[: width - 1] + "~"


def parse_json_arg(raw: str | None, field: str):
    """Decode a JSON command-line argument; None stays None."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidApprovalPayloadError(field, f"invalid JSON: {exc.msg}") from None


def enable_quiet_logging():
    """Mute console handlers so CLI output stays clean. Returns list to pass to restore_logging."""
    ak_logger = logging.getLogger("approval_kernel")
    muted = []
    for h in ak_logger.handlers:
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler):
            muted.append((h, h.level))
            h.setLevel(logging.CRITICAL + 1)
    return muted


def restore_logging(muted):
    """Restore muted handlers after a quiet-logging section."""
    for h, orig_level in muted:
        h.setLevel(orig_level)
