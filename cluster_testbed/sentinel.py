"""Task count sentinel.

Compares the number of live concurrent units (threads plus asyncio tasks)
after the suite with a baseline taken before it. Network teardown finishes on
its own schedule shortly after ``close()`` returns, so the final count is
polled for a bounded grace window instead of being sampled once.

A count equal to the baseline is taken as "no leak". This cannot tell
exited tasks apart from leaked ones that happen to be replaced by the same
number of unrelated new ones.
"""

from __future__ import annotations

import asyncio
import sys
import threading
import time
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TextIO

import structlog

logger = structlog.get_logger()

GRACE_WINDOW = 1.0  # seconds
POLL_INTERVAL = 0.01  # seconds

TaskCounter = Callable[[], int]


def count_live_tasks() -> int:
    """Live threads plus pending tasks of the running event loop, if any."""
    count = threading.active_count()
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return count
    return count + len(asyncio.all_tasks(loop))


@dataclass(frozen=True)
class LeakSample:
    task_count: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def take_sample(counter: TaskCounter = count_live_tasks) -> LeakSample:
    return LeakSample(task_count=counter())


@dataclass(frozen=True)
class LeakReport:
    """Outcome of one leak check."""

    baseline: int
    final: LeakSample
    samples_taken: int

    @property
    def final_count(self) -> int:
        return self.final.task_count

    @property
    def leaked(self) -> bool:
        return self.final.task_count != self.baseline


def detect_leak(
    baseline: int,
    *,
    counter: TaskCounter = count_live_tasks,
    grace: float = GRACE_WINDOW,
    interval: float = POLL_INTERVAL,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    stream: TextIO | None = None,
) -> LeakReport:
    """Wait up to ``grace`` seconds for the task count to return to ``baseline``.

    Polls ``counter`` at least once, yielding between polls and sleeping
    ``interval`` between samples, and stops at the first sample equal to the
    baseline. On a leak, the stacks of every live thread and task are written
    to ``stream`` (stdout by default).
    """
    start = clock()
    samples = 0
    final = baseline
    while True:
        sleep(0)
        final = counter()
        samples += 1
        if final == baseline:
            break
        if clock() - start > grace:
            break
        sleep(interval)

    report = LeakReport(
        baseline=baseline,
        final=LeakSample(task_count=final),
        samples_taken=samples,
    )

    if report.leaked:
        logger.error(
            "testbed.leak.detected",
            before=baseline,
            after=final,
            samples=samples,
        )
        dump_live_stacks(stream or sys.stdout)
    else:
        logger.info("testbed.leak.none", before=baseline, after=final)

    return report


def dump_live_stacks(stream: TextIO) -> None:
    """Write the stack of every live thread and asyncio task to ``stream``."""
    frames = sys._current_frames()
    for thread in threading.enumerate():
        stream.write(f"thread {thread.name} (ident={thread.ident}, daemon={thread.daemon}):\n")
        frame = frames.get(thread.ident) if thread.ident is not None else None
        if frame is not None:
            stream.write("".join(traceback.format_stack(frame)))
        stream.write("\n")

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    for task in asyncio.all_tasks(loop):
        stream.write(f"task {task.get_name()}:\n")
        task.print_stack(file=stream)
        stream.write("\n")
