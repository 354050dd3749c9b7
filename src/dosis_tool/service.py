"""Fachada que une almacenamiento, conciliacion y disparador."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

import pandas as pd

from dosis_tool.adherence import daily_adherence_summary, reconcile
from dosis_tool.model import (
    FireEvent,
    Medication,
    Occurrence,
    ReminderRule,
    ResponseLog,
)
from dosis_tool.recurrence import expand, occurrences_to_frame
from dosis_tool.storage import AppConfig, SQLiteStore, StoreError
from dosis_tool.trigger import (
    Clock,
    NotificationTrigger,
    Notifier,
    Scheduler,
    SystemClock,
)

logger = logging.getLogger(__name__)


class ReminderService:
    """In-memory snapshot of rules and logs plus the notification loop.

    Store calls run in a worker thread; everything else runs on the event
    loop thread.
    """

    def __init__(
        self,
        store: SQLiteStore,
        config: AppConfig | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._store = store
        self._config = config or AppConfig()
        self._clock = clock or SystemClock(self._config.tzinfo)
        self._medications: tuple[Medication, ...] = ()
        self._rules: tuple[ReminderRule, ...] = ()
        self._logs: tuple[ResponseLog, ...] = ()
        self._trigger = NotificationTrigger(
            lambda: self._rules,
            self._clock,
            notifier,
            tick_seconds=self._config.tick_seconds,
            retention_days=self._config.ledger_retention_days,
        )

    @property
    def medications(self) -> tuple[Medication, ...]:
        return self._medications

    @property
    def medication_names(self) -> dict[str, str]:
        return {med.id: med.name for med in self._medications}

    @property
    def rules(self) -> tuple[ReminderRule, ...]:
        return self._rules

    @property
    def logs(self) -> tuple[ResponseLog, ...]:
        return self._logs

    @property
    def trigger(self) -> NotificationTrigger:
        return self._trigger

    async def refresh_medications(self) -> tuple[Medication, ...]:
        """Reload medications; on failure keep the previous set and raise."""
        try:
            meds = await asyncio.to_thread(self._store.list_medications)
        except StoreError:
            logger.warning(
                "Could not load medications, keeping %d cached", len(self._medications)
            )
            raise
        self._medications = tuple(meds)
        return self._medications

    async def refresh_rules(self) -> tuple[ReminderRule, ...]:
        """Reload rules; on failure keep the previous set and raise StoreError."""
        try:
            rules = await asyncio.to_thread(self._store.list_reminder_rules)
        except StoreError:
            logger.warning(
                "Could not load reminder rules, keeping %d cached", len(self._rules)
            )
            raise
        self._rules = tuple(rules)
        return self._rules

    async def refresh_logs(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> tuple[ResponseLog, ...]:
        """Reload response logs; on failure keep the previous set and raise."""
        try:
            logs = await asyncio.to_thread(self._store.list_response_logs, start, end)
        except StoreError:
            logger.warning(
                "Could not load response logs, keeping %d cached", len(self._logs)
            )
            raise
        self._logs = tuple(logs)
        return self._logs

    async def refresh(self) -> None:
        await self.refresh_medications()
        await self.refresh_rules()
        await self.refresh_logs()

    def get_occurrences(
        self, window_start: date | None = None, window_days: int | None = None
    ) -> list[Occurrence]:
        """Occurrences of the loaded rules, annotated with status."""
        now = self._clock.now()
        start = window_start or now.date()
        days = self._config.window_days if window_days is None else window_days
        occurrences = expand(self._rules, start, days, now.tzinfo)
        return reconcile(occurrences, self._logs)

    def agenda_frame(
        self,
        window_start: date | None = None,
        window_days: int | None = None,
        medication_names: dict[str, str] | None = None,
    ) -> pd.DataFrame:
        return occurrences_to_frame(
            self.get_occurrences(window_start, window_days), medication_names
        )

    def adherence_summary(
        self, window_start: date | None = None, window_days: int | None = None
    ) -> pd.DataFrame:
        return daily_adherence_summary(self.agenda_frame(window_start, window_days))

    async def log_response(
        self,
        reminder_rule_id: str,
        medication_id: str,
        taken: bool,
        scheduled_time: datetime | None = None,
    ) -> ResponseLog:
        """Persist an answer and put it first in the cached logs (newest first)."""
        when = scheduled_time or self._clock.now()
        log = await asyncio.to_thread(
            self._store.create_response_log,
            reminder_rule_id,
            medication_id,
            when,
            taken,
        )
        self._logs = (log, *self._logs)
        return log

    async def answer(self, event: FireEvent, taken: bool) -> ResponseLog:
        return await self.log_response(
            event.reminder_rule_id, event.medication_id, taken, event.due_at
        )

    async def correct_response(self, log_id: str, taken: bool) -> ResponseLog:
        """Rewrite taken/logged_at of an existing log."""
        log = await asyncio.to_thread(self._store.update_response_log, log_id, taken)
        self._logs = (log, *(item for item in self._logs if item.id != log_id))
        return log

    def subscribe(self, callback: Callable[[FireEvent], None]) -> Callable[[], None]:
        return self._trigger.subscribe(callback)

    def start(self, scheduler: Scheduler | None = None) -> None:
        """Start the tick loop; defaults to the running asyncio loop."""
        self._trigger.start(scheduler or asyncio.get_running_loop())

    def stop(self) -> None:
        self._trigger.stop()

    async def run_forever(
        self, refresh_every: timedelta = timedelta(minutes=5)
    ) -> None:
        """Start ticking and reload rules and medications until cancelled."""
        self.start()
        try:
            while True:
                await asyncio.sleep(refresh_every.total_seconds())
                try:
                    await self.refresh_rules()
                    await self.refresh_medications()
                except StoreError:
                    continue  # logged in refresh_rules
        finally:
            self.stop()
