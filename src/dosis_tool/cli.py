"""CLI para registrar medicamentos, ver la agenda y recibir recordatorios."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
from collections.abc import Callable, Sequence
from datetime import date, datetime
from pathlib import Path

from dosis_tool.excel_writer import ExcelLayout, write_adherence_xlsx
from dosis_tool.model import DOSAGE_FORMS, WEEKDAYS, ReminderRule
from dosis_tool.notify import ConsoleNotifier
from dosis_tool.service import ReminderService
from dosis_tool.storage import SQLiteStore

DEFAULT_DB = Path.home() / ".dosis_tool" / "dosis.sqlite3"

logger = logging.getLogger(__name__)


def _add_window_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--start",
        type=date.fromisoformat,
        default=None,
        help="Primer día de la ventana, YYYY-MM-DD (default: hoy).",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Cantidad de días de la ventana (default: configuración, 30).",
    )


def _add_answer_args(parser: argparse.ArgumentParser) -> None:
    answer = parser.add_mutually_exclusive_group(required=True)
    answer.add_argument("--taken", dest="taken", action="store_true")
    answer.add_argument("--missed", dest="taken", action="store_false")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed argparse namespace.
    """
    parser = argparse.ArgumentParser(
        description="Recordatorios de medicación y registro de tomas."
    )
    parser.add_argument(
        "--db",
        default=str(DEFAULT_DB),
        help="Base SQLite (default: ~/.dosis_tool/dosis.sqlite3).",
    )
    parser.add_argument("--verbose", action="store_true", help="Log DEBUG.")
    sub = parser.add_subparsers(dest="command", required=True)

    med = sub.add_parser("add-med", help="Agregar un medicamento.")
    med.add_argument("name")
    med.add_argument(
        "--form",
        default="tablets",
        choices=DOSAGE_FORMS,
        help="Forma farmacéutica.",
    )

    edit_med = sub.add_parser("edit-med", help="Cambiar nombre o forma.")
    edit_med.add_argument("medication_id")
    edit_med.add_argument("--name", default=None)
    edit_med.add_argument("--form", default=None, choices=DOSAGE_FORMS)

    delete_med = sub.add_parser(
        "delete-med", help="Borrar un medicamento con sus recordatorios y notas."
    )
    delete_med.add_argument("medication_id")

    sub.add_parser("list", help="Listar medicamentos y recordatorios.")

    rule = sub.add_parser("add-rule", help="Agregar un recordatorio semanal.")
    rule.add_argument("medication_id")
    rule.add_argument("--time", required=True, help="Hora HH:MM (24h).")
    rule.add_argument(
        "--days",
        required=True,
        help="Días separados por coma, p. ej. Mon,Wed,Fri.",
    )

    edit_rule = sub.add_parser("edit-rule", help="Reemplazar hora o días.")
    edit_rule.add_argument("rule_id")
    edit_rule.add_argument("--time", default=None, help="Hora HH:MM (24h).")
    edit_rule.add_argument("--days", default=None, help="Días separados por coma.")

    delete_rule = sub.add_parser("delete-rule", help="Borrar un recordatorio.")
    delete_rule.add_argument("rule_id")

    note = sub.add_parser("add-note", help="Agregar una nota a un medicamento.")
    note.add_argument("medication_id")
    note.add_argument("content")

    notes = sub.add_parser("notes", help="Listar notas.")
    notes.add_argument("--medication", default=None, help="Filtrar por medicamento.")

    edit_note = sub.add_parser("edit-note", help="Reescribir una nota.")
    edit_note.add_argument("note_id")
    edit_note.add_argument("content")

    delete_note = sub.add_parser("delete-note", help="Borrar una nota.")
    delete_note.add_argument("note_id")

    agenda = sub.add_parser("agenda", help="Mostrar ocurrencias y su estado.")
    _add_window_args(agenda)
    agenda.add_argument("--summary", action="store_true", help="Resumen por día.")

    log = sub.add_parser("log", help="Registrar si se tomó una dosis.")
    log.add_argument("rule_id")
    log.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Día de la ocurrencia (default: ahora).",
    )
    _add_answer_args(log)

    correct = sub.add_parser("correct", help="Corregir una respuesta registrada.")
    correct.add_argument("log_id")
    _add_answer_args(correct)

    export = sub.add_parser("export", help="Exportar agenda y adherencia a Excel.")
    _add_window_args(export)
    export.add_argument("--out-dir", default=None, help="Directorio de salida.")

    config = sub.add_parser("config", help="Ver o cambiar la configuración.")
    config.add_argument("--timezone", default=None)
    config.add_argument("--window-days", type=int, default=None)
    config.add_argument("--tick-seconds", type=int, default=None)
    config.add_argument("--export-dir", default=None)

    sub.add_parser("watch", help="Revisar recordatorios cada minuto.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI.

    Returns:
        Exit code (0 on success).
    """
    ns = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if ns.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    store = SQLiteStore(Path(ns.db).expanduser())
    handler = _COMMANDS[ns.command]
    return handler(ns, store)


def _cmd_add_med(ns: argparse.Namespace, store: SQLiteStore) -> int:
    med = store.add_medication(ns.name, ns.form)
    print(f"OK: medication {med.id} ({med.name})")
    return 0


def _cmd_add_rule(ns: argparse.Namespace, store: SQLiteStore) -> int:
    rule = store.add_reminder_rule(ns.medication_id, ns.time, _split_days(ns.days))
    print(f"OK: reminder {rule.id} at {rule.time_of_day} on {_days_label(rule)}")
    return 0


def _cmd_edit_med(ns: argparse.Namespace, store: SQLiteStore) -> int:
    med = store.update_medication(ns.medication_id, ns.name, ns.form)
    print(f"OK: medication {med.id} ({med.name}, {med.dosage_form})")
    return 0


def _cmd_delete_med(ns: argparse.Namespace, store: SQLiteStore) -> int:
    return _report_delete("medication", ns.medication_id, store.delete_medication)


def _cmd_list(ns: argparse.Namespace, store: SQLiteStore) -> int:
    rules = store.list_reminder_rules()
    meds = store.list_medications()
    if not meds:
        print("Sin medicamentos.")
    for med in meds:
        print(f"{med.id}  {med.name} ({med.dosage_form})")
        for rule in rules:
            if rule.medication_id == med.id:
                print(f"  {rule.id}  {rule.time_of_day} {_days_label(rule)}")
    return 0


def _cmd_edit_rule(ns: argparse.Namespace, store: SQLiteStore) -> int:
    current = store.get_reminder_rule(ns.rule_id)
    days = current.days_of_week if ns.days is None else _split_days(ns.days)
    rule = store.replace_reminder_rule(
        dataclasses.replace(
            current,
            time_of_day=ns.time or current.time_of_day,
            days_of_week=frozenset(days),
        )
    )
    print(f"OK: reminder {rule.id} at {rule.time_of_day} on {_days_label(rule)}")
    return 0


def _cmd_delete_rule(ns: argparse.Namespace, store: SQLiteStore) -> int:
    return _report_delete("reminder", ns.rule_id, store.delete_reminder_rule)


def _cmd_add_note(ns: argparse.Namespace, store: SQLiteStore) -> int:
    note = store.add_note(ns.medication_id, ns.content)
    print(f"OK: note {note.id}")
    return 0


def _cmd_notes(ns: argparse.Namespace, store: SQLiteStore) -> int:
    notes = store.list_notes(ns.medication)
    if not notes:
        print("Sin notas.")
    names = {m.id: m.name for m in store.list_medications()}
    zone = store.load_config().tzinfo
    for note in notes:
        stamp = note.created_at.astimezone(zone)
        name = names.get(note.medication_id, note.medication_id)
        print(f"{note.id}  {stamp:%Y-%m-%d %H:%M}  {name}: {note.content}")
    return 0


def _cmd_edit_note(ns: argparse.Namespace, store: SQLiteStore) -> int:
    note = store.update_note(ns.note_id, ns.content)
    print(f"OK: note {note.id}")
    return 0


def _cmd_delete_note(ns: argparse.Namespace, store: SQLiteStore) -> int:
    return _report_delete("note", ns.note_id, store.delete_note)


def _cmd_agenda(ns: argparse.Namespace, store: SQLiteStore) -> int:
    service = _load_service(store)
    names = service.medication_names
    if ns.summary:
        frame = service.adherence_summary(ns.start, ns.days)
    else:
        frame = service.agenda_frame(ns.start, ns.days, names)
        if not frame.empty:
            frame["datetime"] = [
                ts.strftime("%Y-%m-%d %H:%M") for ts in frame["datetime"]
            ]
            frame = frame.drop(columns=["date"])
    if frame.empty:
        print("Sin ocurrencias en la ventana.")
    else:
        print(frame.to_string(index=False))
    return 0


def _cmd_log(ns: argparse.Namespace, store: SQLiteStore) -> int:
    service = _load_service(store)
    rule = next((r for r in service.rules if r.id == ns.rule_id), None)
    if rule is None:
        raise ValueError(f"Unknown reminder rule {ns.rule_id}")
    scheduled = None
    if ns.date is not None and rule.parsed_time is not None:
        zone = store.load_config().tzinfo
        scheduled = datetime.combine(ns.date, rule.parsed_time, tzinfo=zone)
    log = asyncio.run(
        service.log_response(rule.id, rule.medication_id, ns.taken, scheduled)
    )
    print(f"OK: log {log.id} ({'taken' if log.taken else 'missed'})")
    return 0


def _cmd_correct(ns: argparse.Namespace, store: SQLiteStore) -> int:
    service = ReminderService(store, store.load_config())
    log = asyncio.run(service.correct_response(ns.log_id, ns.taken))
    print(f"OK: log {log.id} ({'taken' if log.taken else 'missed'})")
    return 0


def _cmd_export(ns: argparse.Namespace, store: SQLiteStore) -> int:
    config = store.load_config()
    service = _load_service(store)
    names = service.medication_names
    agenda = service.agenda_frame(ns.start, ns.days, names)
    summary = service.adherence_summary(ns.start, ns.days)

    out_dir = Path(ns.out_dir or config.export_dir or Path.cwd() / "salidas")
    ts = datetime.now(tz=config.tzinfo).strftime("%Y-%m-%d_%H-%M-%S")
    out_path = out_dir.expanduser() / f"adherencia_{ts}.xlsx"
    write_adherence_xlsx(agenda, summary, out_path, ExcelLayout())

    print(f"OK: occurrences: {len(agenda)}")
    print(f"OK: Output: {out_path}")
    return 0


def _cmd_config(ns: argparse.Namespace, store: SQLiteStore) -> int:
    config = store.load_config()
    changes = {
        "timezone": ns.timezone,
        "window_days": ns.window_days,
        "tick_seconds": ns.tick_seconds,
        "export_dir": ns.export_dir,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    if changes:
        config = dataclasses.replace(config, **changes)
        store.save_config(config)
    for key, value in dataclasses.asdict(config).items():
        print(f"{key}: {value}")
    return 0


def _cmd_watch(ns: argparse.Namespace, store: SQLiteStore) -> int:
    service = ReminderService(store, store.load_config())
    notifier = ConsoleNotifier(lambda: service.medication_names)
    service.subscribe(notifier.notify)
    try:
        asyncio.run(_watch(service))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


async def _watch(service: ReminderService) -> None:
    await service.refresh()
    logger.info("Watching %d reminder rules", len(service.rules))
    await service.run_forever()


def _load_service(store: SQLiteStore) -> ReminderService:
    service = ReminderService(store, store.load_config())
    asyncio.run(service.refresh())
    return service


def _split_days(raw: str) -> list[str]:
    return [d for d in raw.split(",") if d.strip()]


def _days_label(rule: ReminderRule) -> str:
    return ",".join(d for d in WEEKDAYS if d in rule.days_of_week)


def _report_delete(kind: str, item_id: str, delete: Callable[[str], bool]) -> int:
    if delete(item_id):
        print(f"OK: deleted {kind} {item_id}")
        return 0
    print(f"No encontrado: {kind} {item_id}")
    return 1


_COMMANDS = {
    "add-med": _cmd_add_med,
    "edit-med": _cmd_edit_med,
    "delete-med": _cmd_delete_med,
    "list": _cmd_list,
    "add-rule": _cmd_add_rule,
    "edit-rule": _cmd_edit_rule,
    "delete-rule": _cmd_delete_rule,
    "add-note": _cmd_add_note,
    "notes": _cmd_notes,
    "edit-note": _cmd_edit_note,
    "delete-note": _cmd_delete_note,
    "agenda": _cmd_agenda,
    "log": _cmd_log,
    "correct": _cmd_correct,
    "export": _cmd_export,
    "config": _cmd_config,
    "watch": _cmd_watch,
}
