"""Expansión de reglas semanales en ocurrencias fechadas."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta, tzinfo

import pandas as pd
from dateutil.rrule import WEEKLY, rrule

from dosis_tool.model import WEEKDAYS, Occurrence, ReminderRule


def _as_day(value: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def expand_rule(
    rule: ReminderRule,
    window_start: date,
    window_days: int,
    tz: tzinfo | None = None,
) -> list[Occurrence]:
    """Expand one rule over [window_start, window_start + window_days).

    Malformed rules (empty or unknown days, bad time) yield nothing.
    """
    at = rule.parsed_time
    weekdays = sorted(WEEKDAYS.index(d) for d in rule.days_of_week if d in WEEKDAYS)
    if window_days <= 0 or at is None or not weekdays:
        return []

    first = _as_day(window_start)
    last = first + timedelta(days=window_days - 1)
    dates = rrule(
        WEEKLY,
        dtstart=datetime.combine(first, at, tzinfo=tz),
        until=datetime.combine(last, at, tzinfo=tz),
        byweekday=weekdays,
    )
    return [
        Occurrence(
            reminder_rule_id=rule.id,
            medication_id=rule.medication_id,
            due_at=due_at,
        )
        for due_at in dates
    ]


def expand(
    rules: Iterable[ReminderRule],
    window_start: date,
    window_days: int,
    tz: tzinfo | None = None,
) -> list[Occurrence]:
    """Expand every rule over the window.

    Args:
        rules: Reminder rules; the sequence is not modified.
        window_start: First calendar day of the window (inclusive).
        window_days: Number of consecutive days, typically 30.
        tz: Zone attached to due_at; None keeps naive local times.

    Returns:
        Occurrences grouped by rule, chronological within each rule.
    """
    out: list[Occurrence] = []
    for rule in rules:
        out.extend(expand_rule(rule, window_start, window_days, tz))
    return out


def occurrences_today(
    rules: Iterable[ReminderRule], now: datetime
) -> list[Occurrence]:
    """Occurrences of the rules on now's calendar day."""
    return expand(rules, now.date(), 1, now.tzinfo)


def occurrences_to_frame(
    occurrences: Sequence[Occurrence],
    medication_names: dict[str, str] | None = None,
) -> pd.DataFrame:
    """Convert occurrences to a DataFrame ordered by due time."""
    names = medication_names or {}
    columns = ["date", "datetime", "reminder_rule_id", "medication", "status"]
    rows = [
        {
            "date": o.day,
            "datetime": o.due_at,
            "reminder_rule_id": o.reminder_rule_id,
            "medication": names.get(o.medication_id, o.medication_id),
            "status": o.status.value if o.status is not None else None,
        }
        for o in occurrences
    ]
    df = pd.DataFrame(rows, columns=columns)
    if df.empty:
        return df
    return df.sort_values(["datetime", "medication"]).reset_index(drop=True)
