"""Resilience utilities for long running Doc2X calls.

This module provides the patterns used to wait on remote tasks:
- Cancellation: explicit tokens carrying a cancel signal and a deadline
- Polling: bounded-time status polling that tolerates transient failures
"""

from doc2x.resilience.cancellation import CancelToken
from doc2x.resilience.polling import (
    Poller,
    PollRequest,
    is_transient_error,
    wait_with_polling,
    with_processing_timeout,
)

__all__ = [
    "CancelToken",
    "Poller",
    "PollRequest",
    "is_transient_error",
    "wait_with_polling",
    "with_processing_timeout",
]
