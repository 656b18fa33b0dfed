"""Debounced, last-request-wins analysis request controller."""

import asyncio
from typing import Any, Awaitable, Callable, Generic, TypeVar

from proofmark.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
P = TypeVar("P")


class DebounceTimer(Generic[P]):
    """
    Single pending timer on the running event loop.

    ``schedule`` replaces any pending payload and restarts the countdown;
    ``flush`` fires the pending payload now; ``cancel`` drops it.
    """

    def __init__(self, delay: float, callback: Callable[[P], None]):
        self.delay = delay
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._payload: P | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def payload(self) -> P | None:
        return self._payload

    def schedule(self, payload: P) -> None:
        self.cancel()
        self._payload = payload
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._payload = None

    def flush(self) -> P | None:
        """Cancel the countdown and return the pending payload (if any)."""
        if self._handle is None:
            return None
        payload = self._payload
        self.cancel()
        return payload

    def _fire(self) -> None:
        payload = self._payload
        self._handle = None
        self._payload = None
        if payload is not None:
            self._callback(payload)


class DebouncedRequestController(Generic[T]):
    """
    Coalesce rapid edits into one analysis request.

    Every dispatched request gets a monotonically increasing id. When a
    request finishes, its result reaches ``on_result`` only if its id is still
    the current one; superseded requests are left to finish on their own and
    their results are ignored.
    """

    def __init__(
        self,
        handler: Callable[[str], Awaitable[T]],
        on_result: Callable[[int, T], Any] | None = None,
        on_error: Callable[[int, Exception], Any] | None = None,
        delay: float = 0.3,
        min_length: int = 3,
    ):
        self._handler = handler
        self._on_result = on_result
        self._on_error = on_error
        self.min_length = min_length
        self._timer: DebounceTimer[str] = DebounceTimer(delay, self._dispatch)
        self._request_id = 0
        self._last_text: str | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def current_request_id(self) -> int:
        return self._request_id

    @property
    def last_text(self) -> str | None:
        return self._last_text

    @property
    def is_active(self) -> bool:
        """Whether a request is waiting on the debounce timer."""
        return self._timer.pending

    def trigger(self, text: str) -> None:
        """Schedule analysis of ``text`` after the debounce delay."""
        self._timer.cancel()

        if len(text) < self.min_length:
            logger.debug(f"Text too short ({len(text)} < {self.min_length}), skipping")
            return

        if text == self._last_text:
            logger.debug("Text unchanged since last request, skipping")
            return

        self._timer.schedule(text)

    def cancel(self) -> None:
        """Drop the pending request and invalidate any in-flight one."""
        self._timer.cancel()
        self._request_id += 1

    async def flush(self) -> T | None:
        """Run the pending request immediately and return its (current) result."""
        text = self._timer.flush()
        if text is None:
            return None
        return await self._execute(text)

    def reset(self) -> None:
        """Cancel pending work and forget the last dispatched text."""
        self._timer.cancel()
        self._last_text = None

    async def run_now(self, text: str) -> T | None:
        """Bypass the debounce delay (used by retry and check-now actions)."""
        self._timer.cancel()
        return await self._execute(text)

    async def aclose(self) -> None:
        self._timer.cancel()
        self._request_id += 1
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _dispatch(self, text: str) -> None:
        task = asyncio.get_running_loop().create_task(self._execute(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, text: str) -> T | None:
        self._request_id += 1
        request_id = self._request_id
        self._last_text = text
        logger.debug(f"Dispatching analysis request {request_id} ({len(text)} chars)")

        try:
            result = await self._handler(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if request_id != self._request_id:
                logger.debug(f"Discarding error from superseded request {request_id}")
                return None
            logger.warning(f"Analysis request {request_id} failed: {e}")
            if self._on_error is None:
                raise
            self._on_error(request_id, e)
            return None

        if request_id != self._request_id:
            logger.debug(
                f"Discarding stale response {request_id} (current is {self._request_id})"
            )
            return None

        if self._on_result is not None:
            self._on_result(request_id, result)
        return result
