"""Modelos tipados para recordatorios, respuestas y ocurrencias."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum

WEEKDAYS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
DOSAGE_FORMS: tuple[str, ...] = (
    "capsules",
    "tablets",
    "oral liquid",
    "inhalers",
    "injections",
    "nasal spray",
    "cream",
    "ear drops",
    "eye drops",
    "lozenges",
)


class Status(str, Enum):
    """Tri-state adherence status of one occurrence."""

    PENDING = "pending"
    TAKEN = "taken"
    MISSED = "missed"


def weekday_name(day: date) -> str:
    """Devuelve 'Mon'..'Sun' para una fecha."""
    return WEEKDAYS[day.weekday()]


def parse_time_of_day(raw: str) -> time | None:
    """Parse 'HH:MM' into a time; None when malformed."""
    parts = raw.strip().split(":") if isinstance(raw, str) else []
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return time(hour, minute)


@dataclass(frozen=True)
class Medication:
    """A tracked medication."""

    id: str
    name: str
    dosage_form: str = "tablets"


@dataclass(frozen=True)
class Note:
    """Nota libre asociada a un medicamento."""

    id: str
    medication_id: str
    content: str
    created_at: datetime


@dataclass(frozen=True)
class ReminderRule:
    """Weekly recurrence: fires at time_of_day on each day in days_of_week."""

    id: str
    medication_id: str
    time_of_day: str
    days_of_week: frozenset[str]

    @property
    def parsed_time(self) -> time | None:
        return parse_time_of_day(self.time_of_day)

    def fires_on(self, day: date) -> bool:
        return weekday_name(day) in self.days_of_week


@dataclass(frozen=True)
class ResponseLog:
    """The user's answer to one occurrence."""

    id: str
    reminder_rule_id: str
    medication_id: str
    scheduled_time: datetime
    taken: bool
    logged_at: datetime


@dataclass(frozen=True, eq=False)
class Occurrence:
    """One dated instance of a reminder rule.

    Equality and hashing use only the match key (calendar day of due_at and
    rule id), so regenerated or annotated copies compare equal.
    """

    reminder_rule_id: str
    medication_id: str
    due_at: datetime
    status: Status | None = field(default=None)

    @property
    def day(self) -> date:
        return self.due_at.date()

    @property
    def match_key(self) -> tuple[date, str]:
        return (self.day, self.reminder_rule_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Occurrence):
            return NotImplemented
        return self.match_key == other.match_key

    def __hash__(self) -> int:
        return hash(self.match_key)


@dataclass(frozen=True)
class FireEvent:
    """Emitted once per (day, rule) when a reminder becomes due."""

    reminder_rule_id: str
    medication_id: str
    due_at: datetime
