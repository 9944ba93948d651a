"""Polling of long running Doc2X tasks.

Turns the "submit, then repeatedly check status" workflow into a single
awaitable call with a bounded wait time, tolerance for transient status-fetch
failures and cooperative cancellation.

Example:
    >>> request = PollRequest(uid, operation="parsing", interval=2.0, timeout=300)
    >>> status = await Poller().wait(request, client.get_status, evaluate_parse_status)
"""

import asyncio
import logging
import socket
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterator, Optional, TypeVar

import httpx

from doc2x.core.config import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    PROCESSING_TIMEOUT_SECONDS,
    TRANSIENT_FETCH_RETRY_BUDGET,
)
from doc2x.core.exceptions import CancellationError, WaitCancelledError
from doc2x.resilience.cancellation import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

# fetch(identifier, token) -> domain response
Fetcher = Callable[[str, CancelToken], Awaitable[T]]
# evaluate(response) -> True when done, False while pending; raises on terminal failure
Evaluator = Callable[[T], bool]

_CANCELLATION_ERRORS = (CancellationError, WaitCancelledError, asyncio.CancelledError)
_TRANSIENT_ERRORS = (
    httpx.TimeoutException,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    TimeoutError,
    ConnectionResetError,
    ConnectionAbortedError,
)


def _error_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def is_transient_error(exc: Optional[BaseException]) -> bool:
    """Report whether a status-fetch failure is worth retrying.

    Cancellation and deadline errors are never transient. Timeouts, dropped
    connections and temporary DNS failures are. Everything else (refused
    connections, unknown hosts, authentication, non-success status or code,
    malformed responses) is permanent. Implicit exception context is not
    followed when it was suppressed with ``raise ... from None``.

    Args:
        exc: Exception raised by a fetch call

    Returns:
        True if the failure is expected to clear up on retry
    """
    if exc is None:
        return False

    chain = list(_error_chain(exc))

    if any(isinstance(err, _CANCELLATION_ERRORS) for err in chain):
        return False

    for err in chain:
        if isinstance(err, _TRANSIENT_ERRORS):
            return True
        if isinstance(err, socket.gaierror) and err.errno == socket.EAI_AGAIN:
            return True
        if getattr(err, "retryable", False) is True or getattr(err, "temporary", False) is True:
            return True

    return False


@dataclass(frozen=True)
class PollRequest:
    """Parameters of a single wait.

    Attributes:
        identifier: Task uid handed to the fetcher
        operation: Label used in log lines and cancellation errors
        interval: Seconds between status fetches (non-positive -> default)
        timeout: Total wait applied when the caller's token has no deadline
    """

    identifier: str
    operation: str
    interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout: Optional[float] = PROCESSING_TIMEOUT_SECONDS

    @property
    def effective_interval(self) -> float:
        if self.interval <= 0:
            return DEFAULT_POLL_INTERVAL_SECONDS
        return self.interval


@contextmanager
def with_processing_timeout(
    token: CancelToken, timeout: Optional[float]
) -> Iterator[CancelToken]:
    """Bound ``token`` by ``timeout`` unless it already carries a deadline.

    A caller-supplied deadline is never shortened or extended. The derived
    token is released when the block exits.
    """
    if token.has_deadline:
        yield token
        return

    if timeout is None or timeout <= 0:
        timeout = PROCESSING_TIMEOUT_SECONDS

    scoped = token.with_timeout(timeout)
    try:
        yield scoped
    finally:
        scoped.release()


class Poller(Generic[T]):
    """Bounded-retry, bounded-time polling loop around a fetch/evaluate pair.

    Args:
        retry_budget: Transient fetch failures tolerated between two successes
        classifier: Decides whether a fetch failure is transient
    """

    def __init__(
        self,
        retry_budget: int = TRANSIENT_FETCH_RETRY_BUDGET,
        classifier: Callable[[BaseException], bool] = is_transient_error,
    ):
        if retry_budget < 0:
            raise ValueError("retry_budget must not be negative")
        self.retry_budget = retry_budget
        self.classifier = classifier

    async def wait(
        self,
        request: PollRequest,
        fetch: Fetcher,
        evaluate: Evaluator,
        token: Optional[CancelToken] = None,
    ) -> T:
        """Poll until ``evaluate`` reports completion or raises.

        Args:
            request: Identifier, interval and timeout of the wait
            fetch: Status fetcher called with (identifier, token)
            evaluate: Terminal-state predicate for fetched responses
            token: Caller's cancellation token

        Returns:
            The fetched response that ``evaluate`` accepted

        Raises:
            WaitCancelledError: If the token is cancelled or expires between fetches
            Exception: Whatever ``fetch`` raised when the failure is permanent or
                the retry budget is exhausted, or whatever ``evaluate`` raised
        """
        interval = request.effective_interval

        with with_processing_timeout(token or CancelToken(), request.timeout) as scoped:
            retries_left = self.retry_budget
            attempt = 0

            while True:
                attempt += 1
                try:
                    result = await fetch(request.identifier, scoped)
                except CancellationError as e:
                    logger.warning(
                        f"Waiting for {request.operation} cancelled during fetch: {e}",
                        extra={"uid": request.identifier, "operation": request.operation},
                    )
                    raise WaitCancelledError(
                        request.operation, e, request.identifier
                    ) from e
                except Exception as e:
                    if retries_left > 0 and self.classifier(e):
                        retries_left -= 1
                        logger.warning(
                            f"Fetching {request.operation} status failed "
                            f"(attempt {attempt}): {type(e).__name__}: {e}. "
                            f"Retrying in {interval:.2f}s, {retries_left} retries left",
                            extra={
                                "uid": request.identifier,
                                "operation": request.operation,
                                "attempt": attempt,
                                "retries_left": retries_left,
                            },
                        )
                        await self._next_tick(scoped, interval, request)
                        continue
                    raise

                retries_left = self.retry_budget

                if evaluate(result):
                    logger.debug(
                        f"{request.operation} ready after {attempt} checks",
                        extra={
                            "uid": request.identifier,
                            "operation": request.operation,
                            "attempt": attempt,
                        },
                    )
                    return result

                await self._next_tick(scoped, interval, request)

    @staticmethod
    async def _next_tick(token: CancelToken, interval: float, request: PollRequest) -> None:
        try:
            await token.sleep(interval)
        except CancellationError as e:
            logger.warning(
                f"Waiting for {request.operation} cancelled: {e}",
                extra={"uid": request.identifier, "operation": request.operation},
            )
            raise WaitCancelledError(request.operation, e, request.identifier) from e


async def wait_with_polling(
    identifier: str,
    *,
    operation: str,
    fetch: Fetcher,
    evaluate: Evaluator,
    interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    timeout: Optional[float] = PROCESSING_TIMEOUT_SECONDS,
    token: Optional[CancelToken] = None,
    retry_budget: int = TRANSIENT_FETCH_RETRY_BUDGET,
) -> T:
    """Functional shortcut for ``Poller(retry_budget).wait(...)``."""
    request = PollRequest(
        identifier=identifier,
        operation=operation,
        interval=interval,
        timeout=timeout,
    )
    return await Poller(retry_budget).wait(request, fetch, evaluate, token)
