"""Presentacion de recordatorios en consola."""

from __future__ import annotations

import sys
from collections.abc import Callable, Mapping
from typing import TextIO

from dosis_tool.model import FireEvent

NameSource = Mapping[str, str] | Callable[[], Mapping[str, str]]


def format_reminder(event: FireEvent, medication_name: str | None = None) -> str:
    """Texto del aviso, p. ej. 'Time to take your Ibuprofen at 09:00'."""
    name = medication_name or event.medication_id
    return f"Medication reminder: time to take your {name} at {event.due_at:%H:%M}"


class ConsoleNotifier:
    """Writes one line per fire event to a text stream.

    medication_names may be a callable so names added after startup are
    picked up on the next event.
    """

    def __init__(
        self,
        medication_names: NameSource | None = None,
        stream: TextIO | None = None,
    ) -> None:
        self._names = medication_names if medication_names is not None else {}
        self._stream = stream

    def _current_names(self) -> Mapping[str, str]:
        if callable(self._names):
            return self._names()
        return self._names

    def notify(self, event: FireEvent) -> None:
        out = self._stream or sys.stdout
        name = self._current_names().get(event.medication_id)
        out.write(format_reminder(event, name) + "\n")
        out.flush()
