"""Cooperative cancellation for long running client calls.

A CancelToken couples a cancellation signal with an optional deadline and is
passed explicitly down to every request, so concurrent polls never share
state. Child tokens derived with ``with_timeout`` observe the parent's
cancellation and can only tighten its deadline.

Example:
    >>> token = CancelToken().with_timeout(60)
    >>> status = await client.wait_for_parsing(uid, token=token)
"""

import asyncio
import inspect
import time
from typing import Awaitable, Optional, TypeVar

from doc2x.core.exceptions import (
    CancellationError,
    DeadlineExceededError,
    OperationCancelledError,
)

T = TypeVar("T")


class CancelToken:
    """Cancellation signal with an optional monotonic-clock deadline.

    Args:
        deadline: Absolute ``time.monotonic()`` value after which the token expires
        parent: Token whose cancellation and deadline this token inherits
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        *,
        parent: Optional["CancelToken"] = None,
    ):
        self._own_deadline = deadline
        self._parent = parent
        self._children: set["CancelToken"] = set()
        self._event = asyncio.Event()
        self._cause: Optional[CancellationError] = None

        if parent is not None:
            parent._children.add(self)
            parent_cause = parent.error()
            if parent_cause is not None:
                self._set_cause(parent_cause)

    @property
    def deadline(self) -> Optional[float]:
        """Effective deadline: the earliest of this token's and its parents'."""
        parent_deadline = self._parent.deadline if self._parent is not None else None
        candidates = [d for d in (self._own_deadline, parent_deadline) if d is not None]
        return min(candidates) if candidates else None

    @property
    def has_deadline(self) -> bool:
        return self.deadline is not None

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, or None when there is no deadline."""
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def with_timeout(self, timeout: float) -> "CancelToken":
        """Derive a child token that expires ``timeout`` seconds from now."""
        return CancelToken(time.monotonic() + timeout, parent=self)

    def cancel(self, cause: Optional[CancellationError] = None) -> None:
        """Cancel this token and every token derived from it."""
        if self._cause is not None:
            return
        self._set_cause(cause or OperationCancelledError())

    def release(self) -> None:
        """Detach a derived token from its parent and cancel it."""
        if self._parent is not None:
            self._parent._children.discard(self)
        self.cancel()

    def error(self) -> Optional[CancellationError]:
        """Return the cancellation cause, or None while the token is live."""
        if self._cause is None:
            deadline = self.deadline
            if deadline is not None and time.monotonic() >= deadline:
                self._set_cause(DeadlineExceededError())
        return self._cause

    def done(self) -> bool:
        return self.error() is not None

    def raise_if_done(self) -> None:
        cause = self.error()
        if cause is not None:
            raise cause

    async def sleep(self, seconds: float) -> None:
        """Suspend for ``seconds`` unless the token is cancelled or expires first.

        Raises:
            CancellationError: If the token is cancelled or expires before the
                interval elapses
        """
        self.raise_if_done()

        timeout = max(0.0, seconds)
        remaining = self.remaining()
        until_deadline = remaining is not None and remaining <= timeout
        if until_deadline:
            timeout = remaining

        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            # the loop clock may fire a hair before the deadline
            if until_deadline and self._cause is None:
                self._set_cause(DeadlineExceededError())

        self.raise_if_done()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` while honouring this token.

        The awaitable is cancelled as soon as the token is cancelled or its
        deadline passes.

        Raises:
            CancellationError: If the token fires before the awaitable completes
        """
        cause = self.error()
        if cause is not None:
            _discard(awaitable)
            raise cause

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if self.error() is None:
            self._set_cause(DeadlineExceededError())
        raise self._cause

    def _set_cause(self, cause: CancellationError) -> None:
        self._cause = cause
        self._event.set()
        for child in list(self._children):
            if child._cause is None:
                child._set_cause(cause)
        self._children.clear()


def _discard(awaitable: Awaitable) -> None:
    """Release an awaitable that will never be awaited."""
    if inspect.iscoroutine(awaitable):
        awaitable.close()
    elif asyncio.isfuture(awaitable):
        awaitable.cancel()
