"""Concurrency-Bounded Queue: FIFO admission into a fixed-size window.

Requests wait in a FIFO until fewer than ``max_concurrent`` orchestrations
are in flight. Completion of any admitted request (success or failure)
frees its slot and immediately admits the next waiting request; there is no
polling loop. Admission is FIFO, completion order is unconstrained.

The queue does not retry: a failed request resolves its future with that
failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from llm_taskgen.core.metrics import QUEUE_IN_FLIGHT
from llm_taskgen.gateway.types import CompletionRequest

logger = logging.getLogger(__name__)

Executor = Callable[[CompletionRequest], Awaitable[Any]]


class RequestQueue:
    """FIFO queue with a bounded number of in-flight requests.

    Usage:
        queue = RequestQueue(executor=gateway.orchestrate, max_concurrent=5)

        future = queue.enqueue(request)
        response = await future

        # Or in one step:
        response = await queue.submit(request)
    """

    def __init__(self, executor: Executor, max_concurrent: int = 5):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._executor = executor
        self.max_concurrent = max_concurrent
        self._pending: deque[tuple[CompletionRequest, asyncio.Future]] = deque()
        self._tasks: set[asyncio.Task] = set()
        self._in_flight = 0
        self.peak_in_flight = 0
        self.completed = 0
        self.failed = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def pending(self) -> int:
        return len(self._pending)

    def enqueue(self, request: CompletionRequest) -> asyncio.Future:
        """Append a request and return the future that resolves with its outcome.

        Must be called from within a running event loop.
        """
        future = asyncio.get_running_loop().create_future()
        self._pending.append((request, future))
        logger.debug(
            "Enqueued request %s (pending=%d, in_flight=%d)",
            request.request_id,
            len(self._pending),
            self._in_flight,
            extra={"request_id": request.request_id},
        )
        self._dispatch()
        return future

    async def submit(self, request: CompletionRequest) -> Any:
        return await self.enqueue(request)

    def _dispatch(self) -> None:
        """Admit waiting requests while there is a free slot."""
        while self._pending and self._in_flight < self.max_concurrent:
            request, future = self._pending.popleft()
            if future.cancelled():
                continue
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            QUEUE_IN_FLIGHT.inc()
            logger.debug(
                "Admitted request %s (in_flight=%d/%d)",
                request.request_id,
                self._in_flight,
                self.max_concurrent,
                extra={"request_id": request.request_id},
            )
            task = asyncio.create_task(self._run(request, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, request: CompletionRequest, future: asyncio.Future) -> None:
        try:
            result = await self._executor(request)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            self.failed += 1
            if not future.done():
                future.set_exception(e)
        else:
            self.completed += 1
            if not future.done():
                future.set_result(result)
        finally:
            self._in_flight -= 1
            QUEUE_IN_FLIGHT.dec()
            self._dispatch()

    def get_stats(self) -> dict:
        """Get queue statistics."""
        return {
            "pending": len(self._pending),
            "in_flight": self._in_flight,
            "max_concurrent": self.max_concurrent,
            "peak_in_flight": self.peak_in_flight,
            "completed": self.completed,
            "failed": self.failed,
        }
