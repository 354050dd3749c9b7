"""Registro de disparos ya emitidos, por (día, regla)."""

from __future__ import annotations

from datetime import date, timedelta


class FiredLedger:
    """Which (day, rule id) pairs already fired.

    Absence means the pair is still armed; presence is terminal until the
    entry is purged.
    """

    def __init__(self) -> None:
        self._fired: dict[tuple[date, str], bool] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._fired

    def __len__(self) -> int:
        return len(self._fired)

    def has_fired(self, day: date, reminder_rule_id: str) -> bool:
        return self._fired.get((day, reminder_rule_id), False)

    def mark_fired(self, day: date, reminder_rule_id: str) -> None:
        self._fired[(day, reminder_rule_id)] = True

    def purge(self, today: date, retention_days: int = 2) -> int:
        """Drop entries strictly older than retention_days before today.

        Returns:
            Number of removed entries.
        """
        cutoff = today - timedelta(days=retention_days)
        stale = [key for key in self._fired if key[0] < cutoff]
        for key in stale:
            del self._fired[key]
        return len(stale)

    def entries(self) -> list[tuple[date, str]]:
        return sorted(self._fired)
