from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from gdpr.core.events import EventSeverity, emit
from gdpr.core.trace import run_traced, task_trace_id


TaskHandler = Callable[[Dict[str, Any]], None]


class SchedulerBridge(Protocol):
    """
    "Run this once after a delay" / "run this every N seconds".

    At most one pending timer exists per task id. Firing is at-least-once,
    so handlers must be idempotent.
    """

    def register(self, task_id: str, handler: TaskHandler) -> None: ...
    def schedule_once(self, task_id: str, delay_seconds: float, payload: Optional[Dict[str, Any]] = None) -> float: ...
    def schedule_recurring(self, task_id: str, interval_seconds: float, payload: Optional[Dict[str, Any]] = None) -> float: ...
    def cancel(self, task_id: str) -> bool: ...
    def next_scheduled(self, task_id: str) -> Optional[float]: ...


@dataclass
class ScheduledTask:
    task_id: str
    run_at: float
    interval_seconds: Optional[float] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def recurring(self) -> bool:
        return self.interval_seconds is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"task_id": self.task_id, "run_at": self.run_at, "interval_seconds": self.interval_seconds, "payload": dict(self.payload)}


class VirtualClock:
    def __init__(self, start: Optional[float] = None):
        self._t = float(time.time() if start is None else start)

    def time(self) -> float:
        return self._t

    def advance(self, seconds: float) -> None:
        self._t += float(seconds)


class _SchedulerBase:
    def __init__(self, *, clock: Callable[[], float], logger=None, event_bus: Any = None):
        self._clock = clock
        self.logger = logger
        self.event_bus = event_bus
        self._lock = threading.Lock()
        self._handlers: Dict[str, TaskHandler] = {}
        self._tasks: Dict[str, ScheduledTask] = {}
        self.fired_total = 0
        self.failed_total = 0

    # ---- registry ----
    def register(self, task_id: str, handler: TaskHandler) -> None:
        if not callable(handler):
            raise ValueError("handler must be callable")
        with self._lock:
            self._handlers[_task_key(task_id)] = handler

    def registered(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers.keys())

    # ---- timers ----
    def schedule_once(self, task_id: str, delay_seconds: float, payload: Optional[Dict[str, Any]] = None) -> float:
        if float(delay_seconds) < 0:
            raise ValueError("delay_seconds must be >= 0")
        task = ScheduledTask(task_id=_task_key(task_id), run_at=self._clock() + float(delay_seconds), payload=dict(payload or {}))
        return self._put(task)

    def schedule_recurring(self, task_id: str, interval_seconds: float, payload: Optional[Dict[str, Any]] = None) -> float:
        if float(interval_seconds) <= 0:
            raise ValueError("interval_seconds must be > 0")
        iv = float(interval_seconds)
        task = ScheduledTask(task_id=_task_key(task_id), run_at=self._clock() + iv, interval_seconds=iv, payload=dict(payload or {}))
        return self._put(task)

    def cancel(self, task_id: str) -> bool:
        with self._lock:
            removed = self._tasks.pop(_task_key(task_id), None) is not None
            self._changed_locked()
        return removed

    def next_scheduled(self, task_id: str) -> Optional[float]:
        with self._lock:
            t = self._tasks.get(_task_key(task_id))
            return t.run_at if t else None

    def pending(self) -> List[Dict[str, Any]]:
        with self._lock:
            tasks = sorted(self._tasks.values(), key=lambda t: t.run_at)
        return [t.to_dict() for t in tasks]

    # ---- firing ----
    def run_due(self, now: Optional[float] = None) -> int:
        """
        Fire every task whose deadline has passed. Returns the number fired.
        """
        ts = self._clock() if now is None else float(now)
        fired = 0
        for task in self._take_due(ts):
            self._fire(task)
            fired += 1
        return fired

    def _put(self, task: ScheduledTask) -> float:
        with self._lock:
            if task.task_id in self._tasks and self.logger:
                self.logger.info(f"Replacing pending task {task.task_id}")
            self._tasks[task.task_id] = task
            self._changed_locked()
        return task.run_at

    def _take_due(self, now: float) -> List[ScheduledTask]:
        with self._lock:
            due = sorted((t for t in self._tasks.values() if t.run_at <= now), key=lambda t: t.run_at)
            for t in due:
                if t.recurring:
                    nxt = t.run_at + float(t.interval_seconds or 0)
                    while nxt <= now:
                        nxt += float(t.interval_seconds or 0)
                    self._tasks[t.task_id] = ScheduledTask(task_id=t.task_id, run_at=nxt, interval_seconds=t.interval_seconds, payload=dict(t.payload))
                else:
                    self._tasks.pop(t.task_id, None)
            if due:
                self._changed_locked()
        return due

    def _fire(self, task: ScheduledTask) -> None:
        with self._lock:
            handler = self._handlers.get(task.task_id)
        if handler is None:
            if self.logger:
                self.logger.warning(f"No handler registered for scheduled task {task.task_id}; dropped.")
            return
        trace_id = task_trace_id(task.task_id, task.payload)
        try:
            run_traced(trace_id, handler, dict(task.payload))
            self.fired_total += 1
        except Exception as e:  # noqa: BLE001
            self.failed_total += 1
            if self.logger:
                self.logger.error(f"Scheduled task {task.task_id} failed: {e}")
            emit(
                self.event_bus,
                trace_id=trace_id,
                event_type="scheduler.task_failed",
                payload={"task_id": task.task_id, "error": str(e)[:200]},
                severity=EventSeverity.ERROR,
            )

    def _changed_locked(self) -> None:
        return


def _task_key(task_id: str) -> str:
    k = str(task_id or "").strip()
    if not k:
        raise ValueError("task_id required")
    return k


class ManualScheduler(_SchedulerBase):
    """
    Deadline list driven from outside: call run_due() on every host cron tick,
    or advance() a virtual clock in tests.
    """

    def __init__(self, *, clock: Any = None, logger=None, event_bus: Any = None):
        self.clock = clock if clock is not None else VirtualClock()
        super().__init__(clock=self.clock.time, logger=logger, event_bus=event_bus)

    def advance(self, seconds: float) -> int:
        advance = getattr(self.clock, "advance", None)
        if advance is None:
            raise TypeError("clock does not support advance()")
        advance(float(seconds))
        return self.run_due()


class ThreadScheduler(_SchedulerBase):
    """
    Background deadline queue: a single daemon thread sleeps until the next
    deadline (or until the schedule changes) and fires due tasks in order.
    """

    def __init__(self, *, logger=None, event_bus: Any = None, max_wait_seconds: float = 60.0):
        super().__init__(clock=time.time, logger=logger, event_bus=event_bus)
        self.max_wait_seconds = max(0.05, float(max_wait_seconds))
        self._cv = threading.Condition(self._lock)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="gdpr-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        with self._lock:
            self._cv.notify_all()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=max(0.1, float(timeout)))
        self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _changed_locked(self) -> None:
        self._cv.notify_all()

    def _wait_seconds_locked(self) -> float:
        if not self._tasks:
            return self.max_wait_seconds
        nearest = min(t.run_at for t in self._tasks.values())
        return max(0.0, min(self.max_wait_seconds, nearest - self._clock()))

    def _loop(self) -> None:
        while not self._stop.is_set():
            with self._lock:
                wait = self._wait_seconds_locked()
                if wait > 0:
                    self._cv.wait(timeout=wait)
            if self._stop.is_set():
                break
            self.run_due()
