"""Conciliación de ocurrencias contra respuestas registradas."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import date, datetime, tzinfo

import pandas as pd

from dosis_tool.model import Occurrence, ResponseLog, Status


def _calendar_day(ts: datetime, tz: tzinfo | None) -> date:
    """Calendar day of ts as seen in tz (None = device local time)."""
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(tz).date()


def latest_logs(
    logs: Iterable[ResponseLog], tz: tzinfo | None = None
) -> dict[tuple[date, str], ResponseLog]:
    """Index logs by (calendar day, rule id), keeping the latest logged_at.

    Callers pass logs newest first; on equal logged_at the first one seen
    wins.
    """
    out: dict[tuple[date, str], ResponseLog] = {}
    for log in logs:
        key = (_calendar_day(log.scheduled_time, tz), log.reminder_rule_id)
        current = out.get(key)
        if current is None or log.logged_at > current.logged_at:
            out[key] = log
    return out


def _status_from(log: ResponseLog | None) -> Status:
    if log is None:
        return Status.PENDING
    return Status.TAKEN if log.taken else Status.MISSED


def status_of(
    reminder_rule_id: str,
    day: date,
    logs: Iterable[ResponseLog],
    tz: tzinfo | None = None,
) -> Status:
    """Status of one rule on one calendar day."""
    if isinstance(day, datetime):
        day = _calendar_day(day, tz)
    return _status_from(latest_logs(logs, tz).get((day, reminder_rule_id)))


def reconcile(
    occurrences: Sequence[Occurrence], logs: Iterable[ResponseLog]
) -> list[Occurrence]:
    """Annotate occurrences with their status.

    A log matches an occurrence on rule id and calendar day (not exact
    timestamp). Status is recomputed from logs every time, so reapplying
    on annotated occurrences gives the same result.
    """
    if not occurrences:
        return []
    tz = occurrences[0].due_at.tzinfo
    index = latest_logs(logs, tz)
    return [
        replace(occ, status=_status_from(index.get(occ.match_key)))
        for occ in occurrences
    ]


def daily_adherence_summary(agenda: pd.DataFrame) -> pd.DataFrame:
    """Aggregate an agenda frame by day (taken/missed/pending/adherence %).

    Adherence is taken / (taken + missed); NaN when nothing was answered.
    """
    columns = ["date", "scheduled", "taken", "missed", "pending", "adherence_pct"]
    resolved = agenda.dropna(subset=["status"]) if not agenda.empty else agenda
    if resolved.empty:
        return pd.DataFrame(columns=columns)
    counts = pd.crosstab(resolved["date"], resolved["status"])
    for status in Status:
        if status.value not in counts.columns:
            counts[status.value] = 0
    out = counts[[s.value for s in Status]].reset_index()
    out.columns.name = None
    out["scheduled"] = out["pending"] + out["taken"] + out["missed"]
    answered = out["taken"] + out["missed"]
    out["adherence_pct"] = [
        round(t * 100 / a, 1) if a > 0 else None
        for t, a in zip(out["taken"], answered)
    ]
    return out[columns].sort_values("date").reset_index(drop=True)
