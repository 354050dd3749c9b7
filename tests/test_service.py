from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

from dosis_tool.model import FireEvent, ReminderRule, Status
from dosis_tool.service import ReminderService
from dosis_tool.storage import AppConfig, SQLiteStore, StoreError


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current


class _Handle:
    def cancel(self) -> None:
        return None


class _Scheduler:
    def __init__(self) -> None:
        self.callbacks: list[Callable[[], None]] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _Handle:
        self.callbacks.append(callback)
        return _Handle()


def _setup(tmp_path: Path) -> tuple[SQLiteStore, ReminderRule, _Clock, ReminderService]:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    med = store.add_medication("Levotiroxina")
    rule = store.add_reminder_rule(med.id, "08:00", ["Mon", "Wed"])
    clock = _Clock(datetime(2024, 1, 1, 7, 0))
    service = ReminderService(store, AppConfig(window_days=7), clock)
    asyncio.run(service.refresh())
    return store, rule, clock, service


def test_get_occurrences_uses_loaded_rules_and_default_window(tmp_path: Path) -> None:
    _, rule, _, service = _setup(tmp_path)
    occurrences = service.get_occurrences()
    assert [o.due_at for o in occurrences] == [
        datetime(2024, 1, 1, 8, 0),
        datetime(2024, 1, 3, 8, 0),
    ]
    assert all(o.reminder_rule_id == rule.id for o in occurrences)
    assert all(o.status is Status.PENDING for o in occurrences)


def test_answer_marks_occurrence_taken(tmp_path: Path) -> None:
    store, rule, _, service = _setup(tmp_path)
    event = FireEvent(rule.id, rule.medication_id, datetime(2024, 1, 1, 8, 0))

    log = asyncio.run(service.answer(event, True))

    assert log.scheduled_time == event.due_at
    statuses = [o.status for o in service.get_occurrences(date(2024, 1, 1), 7)]
    assert statuses == [Status.TAKEN, Status.PENDING]
    assert [entry.id for entry in store.list_response_logs()] == [log.id]


def test_correction_flips_status(tmp_path: Path) -> None:
    _, rule, _, service = _setup(tmp_path)
    log = asyncio.run(
        service.log_response(rule.id, rule.medication_id, False, datetime(2024, 1, 3, 8, 2))
    )
    assert service.get_occurrences()[1].status is Status.MISSED

    asyncio.run(service.correct_response(log.id, True))

    assert service.get_occurrences()[1].status is Status.TAKEN
    assert len(service.logs) == 1


def test_log_response_defaults_to_now(tmp_path: Path) -> None:
    _, rule, clock, service = _setup(tmp_path)
    clock.current = datetime(2024, 1, 1, 8, 1)
    log = asyncio.run(service.log_response(rule.id, rule.medication_id, True))
    assert log.scheduled_time == clock.current


def test_refresh_failure_keeps_previous_snapshot(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store, rule, clock, service = _setup(tmp_path)

    def offline() -> list[ReminderRule]:
        raise StoreError("database is locked")

    monkeypatch.setattr(store, "list_reminder_rules", offline)
    with pytest.raises(StoreError):
        asyncio.run(service.refresh_rules())
    assert [r.id for r in service.rules] == [rule.id]

    clock.current = datetime(2024, 1, 1, 8, 0, 30)
    fired = service.trigger.tick()
    assert [e.reminder_rule_id for e in fired] == [rule.id]


def test_start_subscribe_and_stop(tmp_path: Path) -> None:
    _, rule, clock, service = _setup(tmp_path)
    scheduler = _Scheduler()
    received: list[FireEvent] = []
    service.subscribe(received.append)
    clock.current = datetime(2024, 1, 1, 8, 0)

    service.start(scheduler)
    service.stop()
    service.stop()

    assert [e.reminder_rule_id for e in received] == [rule.id]
    assert not service.trigger.running


def test_start_defaults_to_running_event_loop(tmp_path: Path) -> None:
    _, _, _, service = _setup(tmp_path)

    async def run() -> bool:
        service.start()
        running = service.trigger.running
        service.stop()
        return running

    assert asyncio.run(run()) is True


def test_adherence_summary(tmp_path: Path) -> None:
    _, rule, _, service = _setup(tmp_path)
    asyncio.run(
        service.log_response(rule.id, rule.medication_id, True, datetime(2024, 1, 1, 8, 0))
    )
    summary = service.adherence_summary(date(2024, 1, 1), 7)
    assert list(summary["taken"]) == [1, 0]
    assert list(summary["pending"]) == [0, 1]
    assert summary.loc[0, "adherence_pct"] == 100.0


def test_latest_answer_still_wins_after_reload(tmp_path: Path) -> None:
    store, rule, clock, service = _setup(tmp_path)
    event = FireEvent(rule.id, rule.medication_id, datetime(2024, 1, 1, 8, 0))
    asyncio.run(service.answer(event, True))
    asyncio.run(service.answer(event, False))
    assert service.get_occurrences()[0].status is Status.MISSED

    reloaded = ReminderService(store, AppConfig(window_days=7), clock)
    asyncio.run(reloaded.refresh())

    assert reloaded.get_occurrences()[0].status is Status.MISSED
    assert [log.taken for log in reloaded.logs] == [False, True]


def test_refresh_loads_medication_names(tmp_path: Path) -> None:
    store, rule, _, service = _setup(tmp_path)
    assert service.medication_names == {rule.medication_id: "Levotiroxina"}

    later = store.add_medication("Aspirina")
    asyncio.run(service.refresh_medications())

    assert service.medication_names[later.id] == "Aspirina"


def test_run_forever_picks_up_new_medications(tmp_path: Path) -> None:
    store, _, _, service = _setup(tmp_path)
    later = store.add_medication("Aspirina")

    async def run() -> dict[str, str]:
        task = asyncio.create_task(service.run_forever(timedelta(seconds=0.01)))
        try:
            for _ in range(200):
                if later.id in service.medication_names:
                    break
                await asyncio.sleep(0.01)
            return service.medication_names
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    assert asyncio.run(run())[later.id] == "Aspirina"
    assert not service.trigger.running
