from __future__ import annotations

from datetime import date, datetime, timedelta

from dateutil import tz

from dosis_tool.model import WEEKDAYS, ReminderRule, Status
from dosis_tool.recurrence import (
    expand,
    expand_rule,
    occurrences_to_frame,
    occurrences_today,
)

MONDAY = date(2024, 1, 1)


def _rule(rule_id: str, at: str, days: set[str], med: str = "med-1") -> ReminderRule:
    return ReminderRule(
        id=rule_id, medication_id=med, time_of_day=at, days_of_week=frozenset(days)
    )


def test_monday_rule_over_eight_days_gives_two_occurrences() -> None:
    rule = _rule("r1", "09:00", {"Mon"})
    out = expand([rule], MONDAY, 8)
    assert [o.due_at for o in out] == [
        datetime(2024, 1, 1, 9, 0),
        datetime(2024, 1, 8, 9, 0),
    ]
    assert out[1].due_at - out[0].due_at == timedelta(days=7)
    assert all(o.status is None for o in out)


def test_count_matches_weekday_membership() -> None:
    rules = [
        _rule("a", "08:15", {"Mon", "Wed", "Fri"}),
        _rule("b", "21:00", {"Sat", "Sun"}),
        _rule("c", "12:00", set(WEEKDAYS)),
    ]
    start = date(2024, 2, 20)
    n = 30
    expected = sum(
        1
        for r in rules
        for i in range(n)
        if WEEKDAYS[(start + timedelta(days=i)).weekday()] in r.days_of_week
    )
    assert len(expand(rules, start, n)) == expected


def test_window_is_start_inclusive_and_end_exclusive() -> None:
    rule = _rule("r1", "23:59", set(WEEKDAYS))
    out = expand([rule], MONDAY, 3)
    assert [o.day for o in out] == [
        date(2024, 1, 1),
        date(2024, 1, 2),
        date(2024, 1, 3),
    ]


def test_occurrences_chronological_per_rule() -> None:
    rules = [_rule("a", "07:00", {"Tue", "Thu"}), _rule("b", "22:30", {"Sun", "Mon"})]
    out = expand(rules, MONDAY, 30)
    for rule_id in ("a", "b"):
        times = [o.due_at for o in out if o.reminder_rule_id == rule_id]
        assert times == sorted(times)


def test_malformed_rules_yield_nothing() -> None:
    assert expand([_rule("r1", "09:00", set())], MONDAY, 30) == []
    assert expand([_rule("r2", "25:00", {"Mon"})], MONDAY, 30) == []
    assert expand([_rule("r3", "nine", {"Mon"})], MONDAY, 30) == []
    assert expand([_rule("r4", "09:00", {"Funday"})], MONDAY, 30) == []


def test_zero_window_yields_nothing() -> None:
    assert expand([_rule("r1", "09:00", set(WEEKDAYS))], MONDAY, 0) == []


def test_expand_is_deterministic_and_does_not_mutate_input() -> None:
    rules = [_rule("a", "09:00", {"Mon", "Fri"}), _rule("b", "18:00", {"Wed"})]
    snapshot = list(rules)
    first = expand(rules, MONDAY, 30)
    second = expand(rules, MONDAY, 30)
    assert [o.match_key for o in first] == [o.match_key for o in second]
    assert first == second
    assert rules == snapshot


def test_datetime_window_start_uses_its_calendar_day() -> None:
    rule = _rule("r1", "06:00", {"Mon"})
    out = expand_rule(rule, datetime(2024, 1, 1, 22, 0), 1)
    assert [o.due_at for o in out] == [datetime(2024, 1, 1, 6, 0)]


def test_zone_is_attached_as_wall_time() -> None:
    zone = tz.gettz("America/Argentina/Buenos_Aires")
    rule = _rule("r1", "09:00", {"Mon"})
    (occ,) = expand([rule], MONDAY, 1, zone)
    assert occ.due_at.tzinfo is zone
    assert (occ.due_at.hour, occ.due_at.minute) == (9, 0)


def test_occurrences_today_restricts_to_now() -> None:
    rules = [_rule("a", "09:00", {"Mon"}), _rule("b", "10:00", {"Tue"})]
    out = occurrences_today(rules, datetime(2024, 1, 2, 3, 0))
    assert [o.reminder_rule_id for o in out] == ["b"]


def test_occurrences_to_frame_sorted_with_names() -> None:
    occ = expand(
        [_rule("a", "20:00", {"Mon"}, "m1"), _rule("b", "08:00", {"Mon"}, "m2")],
        MONDAY,
        1,
    )
    df = occurrences_to_frame(occ, {"m1": "Ibuprofeno", "m2": "Enalapril"})
    assert list(df["medication"]) == ["Enalapril", "Ibuprofeno"]
    assert list(df["status"]) == [None, None]


def test_occurrences_to_frame_empty_keeps_columns() -> None:
    df = occurrences_to_frame([])
    assert df.empty
    assert list(df.columns) == [
        "date",
        "datetime",
        "reminder_rule_id",
        "medication",
        "status",
    ]


def test_status_enum_values() -> None:
    assert [s.value for s in Status] == ["pending", "taken", "missed"]
