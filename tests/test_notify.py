from __future__ import annotations

import io
from datetime import datetime

from dosis_tool.model import FireEvent
from dosis_tool.notify import ConsoleNotifier, format_reminder

EVENT = FireEvent("r1", "m1", datetime(2024, 1, 1, 9, 5))


def test_format_reminder_uses_name_or_id() -> None:
    assert format_reminder(EVENT, "Enalapril").endswith("take your Enalapril at 09:05")
    assert "take your m1 at 09:05" in format_reminder(EVENT)


def test_console_notifier_writes_one_line() -> None:
    stream = io.StringIO()
    ConsoleNotifier({"m1": "Enalapril"}, stream).notify(EVENT)
    assert stream.getvalue().count("\n") == 1
    assert "Enalapril" in stream.getvalue()


def test_console_notifier_reads_names_from_callable() -> None:
    names: dict[str, str] = {}
    stream = io.StringIO()
    notifier = ConsoleNotifier(lambda: names, stream)

    notifier.notify(EVENT)
    names["m1"] = "Enalapril"
    notifier.notify(EVENT)

    first, second = stream.getvalue().splitlines()
    assert "take your m1" in first
    assert "take your Enalapril" in second
