"""Tests for the concurrency-bounded FIFO request queue."""

from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from llm_taskgen.gateway.queue_manager import RequestQueue
from llm_taskgen.gateway.types import CompletionRequest


class TestRequestQueue:
    @pytest.mark.asyncio
    async def test_burst_never_exceeds_bound(self):
        max_concurrent, extra = 3, 5
        active = 0
        seen_max = 0

        async def executor(request: CompletionRequest) -> str:
            nonlocal active, seen_max
            active += 1
            seen_max = max(seen_max, active)
            await asyncio.sleep(0.01)
            active -= 1
            return request.prompt.upper()

        queue = RequestQueue(executor, max_concurrent=max_concurrent)
        futures = [queue.enqueue(CompletionRequest(prompt=f"p{i}")) for i in range(max_concurrent + extra)]

        # Only the first window is admitted synchronously
        assert queue.in_flight == max_concurrent
        assert queue.pending == extra

        results = await asyncio.gather(*futures)

        assert results == [f"P{i}" for i in range(max_concurrent + extra)]
        assert seen_max == max_concurrent
        assert queue.peak_in_flight == max_concurrent
        assert queue.in_flight == 0
        assert queue.get_stats()["completed"] == max_concurrent + extra

    @pytest.mark.asyncio
    async def test_admission_is_fifo(self):
        admitted: list[str] = []

        async def executor(request: CompletionRequest) -> None:
            admitted.append(request.prompt)
            await asyncio.sleep(0)

        queue = RequestQueue(executor, max_concurrent=1)
        await asyncio.gather(*(queue.enqueue(CompletionRequest(prompt=p)) for p in "abcde"))
        assert admitted == list("abcde")

    @pytest.mark.asyncio
    async def test_completion_order_is_unconstrained(self):
        completed: list[str] = []

        async def executor(request: CompletionRequest) -> None:
            await asyncio.sleep(0.05 if request.prompt == "slow" else 0)
            completed.append(request.prompt)

        queue = RequestQueue(executor, max_concurrent=2)
        await asyncio.gather(queue.submit(CompletionRequest(prompt="slow")), queue.submit(CompletionRequest(prompt="fast")))
        assert completed == ["fast", "slow"]

    @pytest.mark.asyncio
    async def test_failure_resolves_future_and_frees_slot(self):
        async def executor(request: CompletionRequest) -> str:
            if request.prompt == "bad":
                raise RuntimeError("boom")
            return "ok"

        queue = RequestQueue(executor, max_concurrent=1)
        bad = queue.enqueue(CompletionRequest(prompt="bad"))
        good = queue.enqueue(CompletionRequest(prompt="good"))

        with pytest.raises(RuntimeError, match="boom"):
            await bad
        assert await good == "ok"

        stats = queue.get_stats()
        assert stats["failed"] == 1
        assert stats["completed"] == 1
        assert stats["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_failed_request_is_not_retried(self):
        calls = 0

        async def executor(request: CompletionRequest) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        queue = RequestQueue(executor, max_concurrent=2)
        with pytest.raises(RuntimeError):
            await queue.submit(CompletionRequest(prompt="x"))
        assert calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiting_request_is_skipped(self):
        release = asyncio.Event()
        admitted: list[str] = []

        async def executor(request: CompletionRequest) -> str:
            admitted.append(request.prompt)
            await release.wait()
            return request.prompt

        queue = RequestQueue(executor, max_concurrent=1)
        first = queue.enqueue(CompletionRequest(prompt="first"))
        second = queue.enqueue(CompletionRequest(prompt="second"))
        third = queue.enqueue(CompletionRequest(prompt="third"))
        second.cancel()
        release.set()

        assert await first == "first"
        assert await third == "third"
        assert admitted == ["first", "third"]

    @pytest.mark.asyncio
    async def test_cancelled_running_request_cancels_caller_and_frees_slot(self):
        started = asyncio.Event()

        async def executor(request: CompletionRequest) -> str:
            if request.prompt == "stuck":
                started.set()
                await asyncio.Event().wait()
            return request.prompt

        queue = RequestQueue(executor, max_concurrent=1)
        stuck = queue.enqueue(CompletionRequest(prompt="stuck"))
        waiting = queue.enqueue(CompletionRequest(prompt="next"))
        await started.wait()

        for task in list(queue._tasks):
            task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await stuck
        assert await waiting == "next"
        assert queue.in_flight == 0

    @pytest.mark.asyncio
    async def test_in_flight_gauge_sums_over_queues(self):
        release = asyncio.Event()

        async def executor(request: CompletionRequest) -> str:
            await release.wait()
            return request.prompt

        def gauge() -> float:
            return REGISTRY.get_sample_value("llm_queue_in_flight")

        baseline = gauge()
        first = RequestQueue(executor, max_concurrent=2)
        second = RequestQueue(executor, max_concurrent=2)
        futures = [
            first.enqueue(CompletionRequest(prompt="a")),
            first.enqueue(CompletionRequest(prompt="b")),
            second.enqueue(CompletionRequest(prompt="c")),
        ]
        assert gauge() == baseline + 3

        release.set()
        assert await asyncio.gather(*futures) == ["a", "b", "c"]
        assert gauge() == baseline

    def test_bound_must_be_positive(self):
        with pytest.raises(ValueError):
            RequestQueue(lambda request: None, max_concurrent=0)
