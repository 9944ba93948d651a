"""Append-only log of failed CLI targets.

One tab-separated line per failure::

    2025-01-02T15:04:05+08:00<TAB>level=ERROR<TAB>trace-id=<id>|unknown<TAB>target=<file or uid><TAB>message=<error>
"""

import logging
from datetime import datetime
from typing import Optional

from doc2x.core.exceptions import normalize_trace_id
from doc2x.utils.io_utils import ensure_parent

logger = logging.getLogger(__name__)


def format_failure(trace_id: Optional[str], target: str, error: BaseException) -> str:
    timestamp = datetime.now().astimezone().isoformat(timespec="seconds")
    return (
        f"{timestamp}\tlevel=ERROR\ttrace-id={normalize_trace_id(trace_id)}"
        f"\ttarget={target}\tmessage={error}\n"
    )


def log_failure(
    path: Optional[str], trace_id: Optional[str], target: str, error: BaseException
) -> None:
    """Append a failure line to ``path``. An empty path disables the log."""
    if not path:
        return

    ensure_parent(path)
    with open(path, "a", encoding="utf-8") as f:
        f.write(format_failure(trace_id, target, error))


def record_failure(
    path: Optional[str],
    target: str,
    error: BaseException,
    trace_id: Optional[str] = None,
) -> None:
    """Log a failed target, preferring the trace id carried by the error."""
    trace = getattr(error, "trace_id", None) or trace_id
    logger.error(
        f"Failed: {error}",
        extra={"file": target, "trace_id": normalize_trace_id(trace)},
    )
    try:
        log_failure(path, trace, target, error)
    except OSError as log_err:
        logger.error(f"Also failed to write fail log {path}: {log_err}", extra={"path": path})
