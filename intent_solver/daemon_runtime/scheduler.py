from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from intent_solver.common import log_event

TickCallback = Callable[[], Awaitable[object]]


async def wait_with_stop(stop_event: asyncio.Event, timeout_seconds: float) -> None:
    if timeout_seconds <= 0:
        return

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        pass


def next_tick_after(next_tick: float, now: float, interval_seconds: float) -> float:
    """Advance a fixed-rate schedule by one interval, skipping cycles that were missed."""
    next_tick += interval_seconds
    if next_tick <= now:
        missed_cycles = int((now - next_tick) / interval_seconds) + 1
        next_tick += missed_cycles * interval_seconds
    return next_tick


class Scheduler(Protocol):
    def every(self, name: str, interval_seconds: float, callback: TickCallback) -> None:
        ...

    async def run(self) -> None:
        ...


@dataclass(slots=True, frozen=True)
class _Job:
    name: str
    interval_seconds: float
    callback: TickCallback


class AsyncioScheduler:
    """Runs each registered callback on its own fixed-rate loop until the stop event is set.

    The first tick fires immediately. An exception escaping a callback stops
    every loop and is re-raised from :meth:`run`.
    """

    def __init__(self, *, logger: logging.Logger, stop_event: asyncio.Event) -> None:
        self._logger = logger
        self._stop_event = stop_event
        self._jobs: list[_Job] = []

    def every(self, name: str, interval_seconds: float, callback: TickCallback) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"Interval for {name} must be positive")
        self._jobs.append(_Job(name=name, interval_seconds=interval_seconds, callback=callback))

    async def run(self) -> None:
        if not self._jobs:
            return

        tasks = [
            asyncio.create_task(self._run_job(job), name=f"scheduler:{job.name}")
            for job in self._jobs
        ]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            self._stop_event.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            self._stop_event.set()
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            error = None if task.cancelled() else task.exception()
            if error is not None:
                raise error

    async def _run_job(self, job: _Job) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while not self._stop_event.is_set():
            try:
                await job.callback()
            except asyncio.CancelledError:
                raise
            except Exception as error:
                log_event(
                    self._logger,
                    level="exception",
                    event="scheduler_loop_failed",
                    message="Scheduled loop failed; stopping all loops",
                    loop_name=job.name,
                    error=str(error),
                )
                self._stop_event.set()
                raise

            now = loop.time()
            next_tick = next_tick_after(next_tick, now, job.interval_seconds)
            await wait_with_stop(self._stop_event, max(0.0, next_tick - now))
