from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List


@dataclass
class PeriodicTask:
    """A recurring action with a fixed interval (seconds)."""

    name: str
    interval: float
    action: Callable[[float], object]
    next_due: float


class Scheduler:
    """
    Cooperative single-threaded scheduler.

    Callers drive time explicitly through ``run_pending(now)``. Each due task
    runs once per call and completes before it is rescheduled, so a task never
    overlaps its own previous run, and missed intervals are not replayed.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, PeriodicTask] = {}

    def every(self, name: str, interval: float, action: Callable[[float], object], now: float) -> PeriodicTask:
        """Schedule ``action`` to run every ``interval`` seconds, first at ``now + interval``."""
        if interval <= 0:
            raise ValueError(f"Task interval must be positive, got {interval}.")
        task = PeriodicTask(name=name, interval=interval, action=action, next_due=now + interval)
        self._tasks[name] = task
        return task

    def cancel(self, name: str) -> bool:
        return self._tasks.pop(name, None) is not None

    def cancel_all(self) -> None:
        self._tasks.clear()

    def run_pending(self, now: float) -> List[str]:
        """Run every task due at ``now``; returns the names of tasks that ran."""
        ran: List[str] = []
        for task in sorted(self._tasks.values(), key=lambda t: t.next_due):
            if task.name not in self._tasks or task.next_due > now:
                continue
            task.action(now)
            task.next_due = now + task.interval
            ran.append(task.name)
        return ran

    def seconds_until_next(self, now: float) -> float | None:
        if not self._tasks:
            return None
        return max(min(task.next_due for task in self._tasks.values()) - now, 0.0)

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)
