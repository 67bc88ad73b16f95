"""Background scheduler - runs interval and daily tasks on the event loop."""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from hippo.core.logging import get_logger

logger = get_logger("core.scheduler")


class TaskPriority(Enum):
    LOW = 1
    NORMAL = 2
    HIGH = 3


@dataclass
class ScheduledTask:
    """A task scheduled for background execution."""

    id: str
    name: str
    callback: Callable
    interval: timedelta | None = None  # None + at_hour None = one-shot
    at_hour: int | None = None  # daily at this local hour
    priority: TaskPriority = TaskPriority.NORMAL
    next_run: datetime = field(default_factory=datetime.now)
    last_run: datetime | None = None
    enabled: bool = True
    running: bool = False

    @property
    def recurring(self) -> bool:
        return self.interval is not None or self.at_hour is not None


def next_daily_run(now: datetime, hour: int) -> datetime:
    """Next occurrence of `hour`:00 strictly after now."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


class Scheduler:
    """Owns the background loop that fires scheduled callbacks."""

    def __init__(self, poll_seconds: float = 1.0):
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._poll_seconds = poll_seconds

    @property
    def running(self) -> bool:
        return self._running

    def schedule_task(
        self,
        task_id: str,
        name: str,
        callback: Callable,
        interval: timedelta | None = None,
        priority: TaskPriority = TaskPriority.NORMAL,
        delay: timedelta | None = None,
    ) -> ScheduledTask:
        """Schedule an interval (or one-shot) task."""
        next_run = datetime.now()
        if delay:
            next_run += delay

        task = ScheduledTask(
            id=task_id,
            name=name,
            callback=callback,
            interval=interval,
            priority=priority,
            next_run=next_run,
        )
        self._tasks[task_id] = task
        logger.info(f"Scheduled task: {name} (interval: {interval})")
        return task

    def schedule_daily(
        self,
        task_id: str,
        name: str,
        callback: Callable,
        hour: int,
        priority: TaskPriority = TaskPriority.NORMAL,
    ) -> ScheduledTask:
        """Schedule a task to run once a day at the given local hour."""
        task = ScheduledTask(
            id=task_id,
            name=name,
            callback=callback,
            at_hour=hour,
            priority=priority,
            next_run=next_daily_run(datetime.now(), hour),
        )
        self._tasks[task_id] = task
        logger.info(f"Scheduled daily task: {name} (next run {task.next_run:%Y-%m-%d %H:%M})")
        return task

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a scheduled task."""
        if task_id in self._tasks:
            del self._tasks[task_id]
            return True
        return False

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the loop and cancel whatever it is running."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        logger.info("Scheduler stopped")

    async def run_pending(self, now: datetime | None = None) -> int:
        """Run every due task once. Returns the number of tasks run."""
        now = now or datetime.now()
        pending = [
            t for t in self._tasks.values()
            if t.enabled and not t.running and t.next_run <= now
        ]

        # Higher priority first
        pending.sort(key=lambda t: t.priority.value, reverse=True)

        for task in pending:
            task.running = True
            try:
                result = task.callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Task {task.name} failed: {e}")
            finally:
                task.running = False
                task.last_run = datetime.now()

                if task.at_hour is not None:
                    task.next_run = next_daily_run(task.last_run, task.at_hour)
                elif task.interval:
                    task.next_run = task.last_run + task.interval
                else:
                    self._tasks.pop(task.id, None)

        return len(pending)

    async def _scheduler_loop(self) -> None:
        while self._running:
            await self.run_pending()
            await asyncio.sleep(self._poll_seconds)
