"""Disparador de notificaciones: revisa las reglas una vez por minuto."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, tzinfo
from typing import Protocol

from dosis_tool.ledger import FiredLedger
from dosis_tool.model import FireEvent, ReminderRule
from dosis_tool.recurrence import occurrences_today

logger = logging.getLogger(__name__)

TICK_SECONDS = 60.0
LEDGER_RETENTION_DAYS = 2


class Clock(Protocol):
    """Source of the current local time."""

    def now(self) -> datetime: ...


class Notifier(Protocol):
    """Presents a fire event to the user (OS notification, console, ...)."""

    def notify(self, event: FireEvent) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Host timer facility; asyncio event loops satisfy it."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class SystemClock:
    """Wall clock in a fixed zone (None = naive local time)."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz

    def now(self) -> datetime:
        return datetime.now(tz=self._tz)


class NotificationTrigger:
    """Fires each (day, rule) occurrence at most once when its minute comes.

    The loop is cooperative: every tick runs to completion before the next
    one is armed on the scheduler. A tick that happens while another is
    still evaluating is skipped.
    """

    def __init__(
        self,
        rules: Callable[[], Iterable[ReminderRule]],
        clock: Clock,
        notifier: Notifier | None = None,
        *,
        tick_seconds: float = TICK_SECONDS,
        retention_days: int = LEDGER_RETENTION_DAYS,
    ) -> None:
        """Create the trigger.

        Args:
            rules: Returns the current rule set; read once per tick.
            clock: Current time source.
            notifier: Optional presenter called before subscribers.
            tick_seconds: Interval between ticks.
            retention_days: Ledger entries older than this are purged.
        """
        self._rules = rules
        self._clock = clock
        self._notifier = notifier
        self._tick_seconds = tick_seconds
        self._retention_days = retention_days
        self._ledger = FiredLedger()
        self._subscribers: list[Callable[[FireEvent], None]] = []
        self._snapshot: tuple[ReminderRule, ...] = ()
        self._scheduler: Scheduler | None = None
        self._handle: TimerHandle | None = None
        self._anchor: datetime | None = None
        self._running = False
        self._in_tick = False

    @property
    def ledger(self) -> FiredLedger:
        return self._ledger

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, callback: Callable[[FireEvent], None]) -> Callable[[], None]:
        """Register a fire-event callback; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def start(self, scheduler: Scheduler) -> None:
        """Tick once now, then every tick_seconds on the scheduler.

        Ticks stay on the grid start + k * tick_seconds of the clock, so late
        callbacks do not push later ticks back.
        """
        if self._running:
            return
        self._running = True
        self._scheduler = scheduler
        self._anchor = self._clock.now()
        logger.info("Reminder trigger started (every %ss)", self._tick_seconds)
        self._run_tick()
        self._arm()

    def stop(self) -> None:
        """Stop ticking; safe to call more than once."""
        was_running = self._running
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._scheduler = None
        self._anchor = None
        if was_running:
            logger.info("Reminder trigger stopped")

    def tick(self) -> list[FireEvent]:
        """Evaluate all rules against now and fire the due, unfired ones.

        Returns:
            Events fired by this tick.
        """
        if self._in_tick:
            logger.debug("Tick skipped: previous tick still running")
            return []
        self._in_tick = True
        try:
            now = self._clock.now()
            rules = self._take_snapshot()
            fired = [self._fire(event) for event in self._due_events(rules, now)]
            purged = self._ledger.purge(now.date(), self._retention_days)
            if purged:
                logger.debug("Purged %d stale ledger entries", purged)
            return fired
        finally:
            self._in_tick = False

    def _take_snapshot(self) -> tuple[ReminderRule, ...]:
        try:
            self._snapshot = tuple(self._rules())
        except Exception:
            logger.warning(
                "Could not read reminder rules; using last snapshot (%d rules)",
                len(self._snapshot),
                exc_info=True,
            )
        return self._snapshot

    def _due_events(
        self, rules: tuple[ReminderRule, ...], now: datetime
    ) -> list[FireEvent]:
        current_minute = now.strftime("%H:%M")
        today = now.date()
        out: list[FireEvent] = []
        for occ in occurrences_today(rules, now):
            if occ.due_at.strftime("%H:%M") != current_minute:
                continue
            if self._ledger.has_fired(today, occ.reminder_rule_id):
                continue
            self._ledger.mark_fired(today, occ.reminder_rule_id)
            out.append(
                FireEvent(
                    reminder_rule_id=occ.reminder_rule_id,
                    medication_id=occ.medication_id,
                    due_at=occ.due_at,
                )
            )
        return out

    def _fire(self, event: FireEvent) -> FireEvent:
        logger.info(
            "Reminder due: rule=%s medication=%s at %s",
            event.reminder_rule_id,
            event.medication_id,
            event.due_at.isoformat(),
        )
        if self._notifier is not None:
            try:
                self._notifier.notify(event)
            except Exception:
                logger.exception("Notifier failed for rule %s", event.reminder_rule_id)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Fire subscriber failed for rule %s", event.reminder_rule_id
                )
        return event

    def _arm(self) -> None:
        if not self._running or self._scheduler is None:
            return
        try:
            delay = self._next_delay()
        except Exception:
            logger.exception(
                "Could not read clock; next tick in %ss", self._tick_seconds
            )
            delay = self._tick_seconds
        self._handle = self._scheduler.call_later(delay, self._on_timer)

    def _next_delay(self) -> float:
        """Seconds until the next grid point strictly after now."""
        now = self._clock.now()
        if self._anchor is None:
            self._anchor = now
        elapsed = (now - self._anchor).total_seconds()
        step = int(elapsed // self._tick_seconds) + 1
        target = self._anchor + timedelta(seconds=step * self._tick_seconds)
        return (target - now).total_seconds()

    def _on_timer(self) -> None:
        self._handle = None
        if not self._running:
            return
        self._run_tick()
        self._arm()

    def _run_tick(self) -> None:
        try:
            self.tick()
        except Exception:
            logger.exception("Reminder tick failed")
