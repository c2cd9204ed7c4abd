"""Bounded worker pool for running blocking jobs against a deadline.

Jobs are placed on a shared queue before any worker starts. Each worker is an
asyncio task that pulls the next job and runs the blocking handler on a
dedicated thread pool, so requests proceed in parallel while cancellation is
coordinated on the event loop. Workers publish a batch of results per job
on a shared result queue, which is closed with a sentinel once every worker
has exited.
"""

import asyncio
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
from typing import Generic, TypeVar

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "WorkerPool",
    "PoolResult",
]

_JobT = TypeVar("_JobT")
_ResultT = TypeVar("_ResultT")


@dataclass
class PoolResult(Generic[_JobT, _ResultT]):
    """The outcome of running jobs on a WorkerPool."""

    total: int = 0
    """The number of jobs submitted."""

    results: list[_ResultT] = field(default_factory=list)
    """All results published before the pool finished, in arrival order."""

    completed: int = 0
    """The number of jobs that ran successfully."""

    errors: list[tuple[_JobT, Exception]] = field(default_factory=list)
    """Jobs that raised an exception or exceeded the request timeout."""

    timed_out: bool = False
    """True if the deadline expired before all jobs finished."""

    @property
    def failed(self) -> int:
        """The number of jobs that failed."""
        return len(self.errors)

    @property
    def pending(self) -> int:
        """The number of jobs that never finished."""
        return self.total - self.completed - self.failed


class WorkerPool(Generic[_JobT, _ResultT]):
    """Runs a blocking handler for every job with a fixed number of workers.

    The handler is called with the job and the timeout in seconds it should
    apply to its request. That timeout is the request timeout, reduced so it
    never extends past the overall deadline, and starts once a thread picks up
    the job. A job that raises is recorded as failed and its results are
    dropped; the remaining jobs keep running.
    """

    def __init__(
        self,
        handler: Callable[[_JobT, float], Sequence[_ResultT]],
        num_workers: int,
        request_timeout: float,
        name: str = "worker",
    ) -> None:
        """Initialize WorkerPool."""
        if num_workers < 1:
            raise ValueError(f"Invalid number of workers: {num_workers}")
        self._handler = handler
        self._num_workers = num_workers
        self._request_timeout = request_timeout
        self._name = name

    @property
    def num_workers(self) -> int:
        """The number of workers started by `run`."""
        return self._num_workers

    async def run(
        self, jobs: Sequence[_JobT], deadline: float
    ) -> PoolResult[_JobT, _ResultT]:
        """Run every job and return the results gathered before the deadline.

        The deadline is an absolute time on the running event loop clock.
        """
        result: PoolResult[_JobT, _ResultT] = PoolResult(total=len(jobs))
        if not jobs:
            return result

        job_queue: asyncio.Queue[_JobT] = asyncio.Queue()
        for job in jobs:
            job_queue.put_nowait(job)
        batches: asyncio.Queue[list[_ResultT] | None] = asyncio.Queue()

        executor = ThreadPoolExecutor(
            max_workers=self._num_workers, thread_name_prefix=self._name
        )
        workers = [
            asyncio.create_task(
                self._worker(job_queue, batches, executor, deadline, result),
                name=f"{self._name}-{i}",
            )
            for i in range(self._num_workers)
        ]
        closer = asyncio.create_task(self._close_when_done(workers, batches))
        _LOGGER.debug("Started %d workers for %d jobs", len(workers), len(jobs))

        try:
            async with asyncio.timeout_at(deadline):
                while (batch := await batches.get()) is not None:
                    result.results.extend(batch)
        except TimeoutError:
            _LOGGER.debug("Deadline exceeded waiting for results")
        finally:
            for task in workers:
                task.cancel()
            closer.cancel()
            await asyncio.gather(*workers, closer, return_exceptions=True)
            # Threads still running a request are bounded by their own
            # timeout and are not waited on.
            executor.shutdown(wait=False, cancel_futures=True)

        # Batches published before the deadline that were not yet received
        while not batches.empty():
            if (batch := batches.get_nowait()) is not None:
                result.results.extend(batch)

        result.timed_out = result.pending > 0
        if result.timed_out:
            _LOGGER.debug(
                "Deadline exceeded with %d of %d jobs unfinished",
                result.pending,
                result.total,
            )
        return result

    async def _worker(
        self,
        jobs: asyncio.Queue[_JobT],
        batches: asyncio.Queue[list[_ResultT] | None],
        executor: ThreadPoolExecutor,
        deadline: float,
        result: PoolResult[_JobT, _ResultT],
    ) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                job = jobs.get_nowait()
            except asyncio.QueueEmpty:
                return
            if deadline <= loop.time():
                return
            started: asyncio.Future[float] = loop.create_future()
            future = loop.run_in_executor(
                executor, self._call, loop, started, job, deadline
            )
            try:
                # The request timeout runs from when a thread picks up the job
                timeout = await started
                if timeout <= 0:
                    return
                async with asyncio.timeout(timeout):
                    batch = await future
            except TimeoutError as err:
                if timeout < self._request_timeout:
                    # Cut short by the overall deadline, so the job is unfinished
                    return
                _LOGGER.debug("Job %s timed out after %0.2fs", job, timeout)
                result.errors.append((job, err))
                continue
            except Exception as err:  # pylint: disable=broad-except
                _LOGGER.debug("Job %s failed: %s", job, err or type(err).__name__)
                result.errors.append((job, err))
                continue
            result.completed += 1
            if batch:
                batches.put_nowait(list(batch))

    def _call(
        self,
        loop: asyncio.AbstractEventLoop,
        started: asyncio.Future[float],
        job: _JobT,
        deadline: float,
    ) -> Sequence[_ResultT]:
        """Run the handler on an executor thread with the time left for it."""
        timeout = min(self._request_timeout, deadline - loop.time())
        loop.call_soon_threadsafe(_resolve, started, timeout)
        if timeout <= 0:
            return ()
        return self._handler(job, timeout)

    async def _close_when_done(
        self,
        workers: list[asyncio.Task[None]],
        batches: asyncio.Queue[list[_ResultT] | None],
    ) -> None:
        await asyncio.gather(*workers, return_exceptions=True)
        batches.put_nowait(None)


def _resolve(future: asyncio.Future[float], value: float) -> None:
    if not future.done():
        future.set_result(value)
