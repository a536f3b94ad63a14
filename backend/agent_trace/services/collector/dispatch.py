from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable
from concurrent.futures import Future, wait
from threading import Lock, Thread
from typing import Any

FailureSink = Callable[[BaseException], None]


class DispatcherClosedError(RuntimeError):
    """Raised by ``submit`` once the dispatcher has been closed."""


class AcceptedEventDispatcher:
    """Fire-and-forget runner for accepted-event work.

    Jobs run on a private event loop owned by a daemon thread, so submitting
    never blocks the caller and works from sync code and from inside another
    event loop alike. Exceptions raised by a job go to ``on_failure``; nothing
    is retried.
    """

    def __init__(self, *, on_failure: FailureSink, name: str = "agent-trace-dispatch") -> None:
        self._on_failure = on_failure
        self._loop = asyncio.new_event_loop()
        self._thread = Thread(target=self._run_loop, name=name, daemon=True)
        self._lock = Lock()
        self._pending: set[Future[None]] = set()
        self._closed = False
        self._thread.start()

    def submit(self, job: Callable[[], Any]) -> Future[None]:
        with self._lock:
            if self._closed:
                raise DispatcherClosedError("dispatcher is closed")
            future = asyncio.run_coroutine_threadsafe(self._guard(job), self._loop)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no job is pending, including jobs submitted by jobs."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                snapshot = set(self._pending)
            if not snapshot:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait(snapshot, timeout=remaining)

    def close(self, timeout: float | None = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.wait_idle(timeout)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)

    async def _guard(self, job: Callable[[], Any]) -> None:
        try:
            result = job()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            self._on_failure(exc)

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()
        self._loop.close()

