"""
Coordinating loop that fires timer entries against virtual time.

One loop per controller. Each pass, under the controller lock, it reads
controller virtual time once, fires whatever is due (ascending id order),
evaluates breakpoints, and otherwise sleeps on the controller's condition
until the nearest deadline converted to wall-clock seconds. Every mutating
controller or entry operation notifies the condition, so a sleep is always
cut short by a speed change, pause, resume, stop, restore or registration.

The loop can also be driven synchronously with run_pending() when the
controller is created with autostart=False.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Iterable

from temporal.core.clock import VirtualClock
from temporal.core.errors import InvalidState, SchedulerInvariantError
from temporal.core.timer import Action, TimerEntry
from temporal.debug.breakpoints import BreakpointEvaluator, BreakpointHit, describe

logger = logging.getLogger(__name__)


@dataclass
class FireResult:
    """Outcome of one fire batch."""
    virtual_time: timedelta
    fired: list[str] = field(default_factory=list)
    actions: list[tuple[str, Action]] = field(default_factory=list)
    breakpoint: BreakpointHit | None = None


class Scheduler:
    """Owns deadline computation and dispatch for a controller's entries."""

    def __init__(
        self,
        clock: VirtualClock,
        lock: threading.Condition,
        evaluator: BreakpointEvaluator,
        entries: Callable[[], Iterable[TimerEntry]],
        name: str = "temporal-scheduler",
    ) -> None:
        self._clock = clock
        self._lock = lock
        self._evaluator = evaluator
        self._entries = entries
        self._name = name
        self._thread: threading.Thread | None = None
        self._stopping = False
        self._failure: BaseException | None = None
        self._last_hit: BreakpointHit | None = None
        self._breakpoint_callbacks: list[Callable[[BreakpointHit], None]] = []

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    @property
    def last_hit(self) -> BreakpointHit | None:
        return self._last_hit

    def raise_if_failed(self) -> None:
        if self._failure is not None:
            raise InvalidState(f"Scheduler loop aborted: {self._failure}") from self._failure

    def on_breakpoint(self, callback: Callable[[BreakpointHit], None]) -> None:
        """Register a listener called (outside the lock) on every breakpoint hit."""
        self._breakpoint_callbacks.append(callback)

    # -- loop control --

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping = False
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 2.0) -> None:
        with self._lock:
            self._stopping = True
            self._lock.notify_all()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        logger.debug(f"{self._name} started")
        try:
            while True:
                with self._lock:
                    if self._stopping:
                        break
                    result, wait = self._pass()
                    if result is None:
                        self._lock.wait(wait)
                        continue
                self.dispatch(result)
        except Exception as e:
            self._failure = e
            logger.critical(f"{self._name} aborted: {e}")
            raise
        logger.debug(f"{self._name} stopped")

    def run_pending(self) -> list[str]:
        """Run one pass synchronously. Returns the ids that fired."""
        with self._lock:
            self.raise_if_failed()
            result, _ = self._pass()
        if result is None:
            return []
        self.dispatch(result)
        return result.fired

    def next_wakeup(self) -> float | None:
        """Wall seconds until the next deadline; 0.0 if something is already due."""
        with self._lock:
            if self._clock.is_paused:
                return None
            now = self._clock.now()
            due, time_reached = self._due_at(now)
            if due or time_reached:
                return 0.0
            return self._wait_from(now)

    # -- deadline computation (lock held) --

    def _due_at(self, now: timedelta) -> tuple[list[TimerEntry], bool]:
        """Entries due at now, and whether an armed time breakpoint is reached."""
        seconds = now.total_seconds()
        due = [e for e in self._entries() if e.is_due_at(seconds)]
        time_reached = any(instant <= now for instant in self._evaluator.armed_deadlines())
        return due, time_reached

    def _pass(self) -> tuple[FireResult | None, float | None]:
        """Fire what is due, or return the wall wait to the next deadline."""
        if self._clock.is_paused:
            return None, None
        now = self._clock.now()
        due, time_reached = self._due_at(now)
        if due or time_reached:
            return self.fire(due, now), None
        return None, self._wait_from(now)

    def _wait_from(self, now: timedelta) -> float | None:
        """Wall seconds from now until the nearest deadline, None if there is none.

        Nothing may be due at now; a non-positive wait means a deadline was missed.
        """
        if self._clock.rate == 0.0:
            return None
        seconds = now.total_seconds()
        best: float | None = None
        for entry in self._entries():
            delay = entry.delay_at(seconds)
            if delay is not None and (best is None or delay < best):
                best = delay
        for instant in self._evaluator.armed_deadlines():
            delay = (instant - now).total_seconds()
            if best is None or delay < best:
                best = delay
        if best is None:
            return None
        wait = self._clock.wall_delay(timedelta(seconds=best))
        if wait is None or best <= 0 or wait < 0:
            raise SchedulerInvariantError(
                f"negative wait {wait} computed at virtual time {now}"
            )
        return wait

    def fire(self, entries: Iterable[TimerEntry], now: timedelta) -> FireResult:
        """Fire entries in id order at controller time now, then evaluate breakpoints.

        Lock held.
        """
        result = FireResult(virtual_time=now)
        seconds = now.total_seconds()
        tick_counts: dict[str, int] = {}
        for entry in sorted(entries, key=lambda e: e.entry_id):
            action = entry.fire(seconds)
            result.fired.append(entry.entry_id)
            tick_counts[entry.entry_id] = entry.tick_count
            if action is not None:
                result.actions.append((entry.entry_id, action))
        condition = self._evaluator.evaluate(result.fired, now, tick_counts)
        if condition is not None:
            self._clock.pause()
            hit = BreakpointHit(condition, now, tuple(result.fired))
            self._last_hit = hit
            result.breakpoint = hit
            logger.info(
                f"Breakpoint {describe(condition)} hit at "
                f"{now.total_seconds():.6f}s; controller paused"
            )
        self._lock.notify_all()
        return result

    # -- dispatch (lock released) --

    def dispatch(self, result: FireResult) -> None:
        """Run breakpoint listeners and one-shot actions outside the lock."""
        if result.breakpoint is not None:
            for cb in self._breakpoint_callbacks:
                try:
                    cb(result.breakpoint)
                except Exception:
                    logger.exception("Breakpoint listener failed")
        for entry_id, action in result.actions:
            try:
                action()
            except Exception:
                logger.exception(f"Action for timer {entry_id} failed")
