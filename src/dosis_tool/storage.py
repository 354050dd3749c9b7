"""Persistencia SQLite para configuracion, medicamentos, reglas y respuestas."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from dateutil import tz

from dosis_tool.model import (
    DOSAGE_FORMS,
    WEEKDAYS,
    Medication,
    Note,
    ReminderRule,
    ResponseLog,
    parse_time_of_day,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS medications (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    dosage_form TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reminder_rules (
    id TEXT PRIMARY KEY,
    medication_id TEXT NOT NULL,
    time TEXT NOT NULL,
    days TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(medication_id) REFERENCES medications(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS response_logs (
    id TEXT PRIMARY KEY,
    reminder_rule_id TEXT NOT NULL,
    medication_id TEXT NOT NULL,
    scheduled_time TEXT NOT NULL,
    taken INTEGER NOT NULL,
    logged_at TEXT NOT NULL,
    FOREIGN KEY(reminder_rule_id) REFERENCES reminder_rules(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_reminder_rules_medication_id
ON reminder_rules(medication_id);

CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    medication_id TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(medication_id) REFERENCES medications(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_response_logs_scheduled_time
ON response_logs(scheduled_time);

CREATE INDEX IF NOT EXISTS idx_notes_medication_id
ON notes(medication_id);
"""


class StoreError(Exception):
    """Storage could not be read or written."""


@dataclass(frozen=True)
class AppConfig:
    """Configuracion persistida de la app."""

    timezone: str = ""
    window_days: int = 30
    tick_seconds: int = 60
    ledger_retention_days: int = 2
    export_dir: str = ""

    def __post_init__(self) -> None:
        if self.tick_seconds < 1:
            raise ValueError(f"tick_seconds must be >= 1, got {self.tick_seconds}")
        if self.window_days < 0:
            raise ValueError(f"window_days must be >= 0, got {self.window_days}")
        if self.ledger_retention_days < 0:
            raise ValueError(
                f"ledger_retention_days must be >= 0, got {self.ledger_retention_days}"
            )

    @property
    def tzinfo(self) -> Any:
        """Zona configurada; la local del equipo si esta vacia o es invalida."""
        if self.timezone:
            zone = tz.gettz(self.timezone)
            if zone is not None:
                return zone
            logger.warning("Unknown timezone %r, using local zone", self.timezone)
        return tz.tzlocal()


class SQLiteStore:
    """Repositorio SQLite para la app."""

    def __init__(self, db_path: Path) -> None:
        """Create store and ensure schema exists."""
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success and maps sqlite errors to StoreError."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open {self._db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._session() as conn:
            conn.executescript(SCHEMA_SQL)
            self._migrate(conn)

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Apply lightweight schema migrations."""
        cols = {
            row["name"] for row in conn.execute("PRAGMA table_info(medications)")
        }
        if "updated_at" not in cols:
            conn.execute("ALTER TABLE medications ADD COLUMN updated_at TEXT")
            conn.execute("UPDATE medications SET updated_at = created_at")

    def load_config(self) -> AppConfig:
        """Devuelve configuracion guardada o defaults."""
        defaults = AppConfig()
        with self._session() as conn:
            rows = conn.execute("SELECT key, value FROM app_config").fetchall()
        values = {row["key"]: row["value"] for row in rows}
        return AppConfig(
            timezone=values.get("timezone", defaults.timezone),
            window_days=_parse_int(values.get("window_days"), defaults.window_days),
            tick_seconds=_parse_int(
                values.get("tick_seconds"), defaults.tick_seconds, minimum=1
            ),
            ledger_retention_days=_parse_int(
                values.get("ledger_retention_days"), defaults.ledger_retention_days
            ),
            export_dir=values.get("export_dir", defaults.export_dir),
        )

    def save_config(self, config: AppConfig) -> None:
        """Guarda la configuracion en tabla key/value."""
        payload = {
            "timezone": config.timezone,
            "window_days": str(config.window_days),
            "tick_seconds": str(config.tick_seconds),
            "ledger_retention_days": str(config.ledger_retention_days),
            "export_dir": config.export_dir,
        }
        with self._session() as conn:
            conn.executemany(
                """
                INSERT INTO app_config(key, value) VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                payload.items(),
            )

    def add_medication(self, name: str, dosage_form: str = "tablets") -> Medication:
        """Crea un medicamento."""
        med = Medication(
            id=str(uuid.uuid4()),
            name=_normalize_name(name),
            dosage_form=_normalize_dosage_form(dosage_form),
        )
        now = _now_db()
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO medications(id, name, dosage_form, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (med.id, med.name, med.dosage_form, now, now),
            )
        return med

    def get_medication(self, medication_id: str) -> Medication:
        with self._session() as conn:
            row = conn.execute(
                "SELECT id, name, dosage_form FROM medications WHERE id = ?",
                (medication_id,),
            ).fetchone()
        if row is None:
            raise KeyError(medication_id)
        return Medication(row["id"], row["name"], row["dosage_form"])

    def list_medications(self) -> list[Medication]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT id, name, dosage_form FROM medications ORDER BY name"
            ).fetchall()
        return [Medication(row["id"], row["name"], row["dosage_form"]) for row in rows]

    def update_medication(
        self,
        medication_id: str,
        name: str | None = None,
        dosage_form: str | None = None,
    ) -> Medication:
        """Actualiza nombre y/o forma; solo los campos indicados."""
        updates: dict[str, str] = {}
        if name is not None:
            updates["name"] = _normalize_name(name)
        if dosage_form is not None:
            updates["dosage_form"] = _normalize_dosage_form(dosage_form)
        if not updates:
            raise ValueError("No fields to update")
        updates["updated_at"] = _now_db()
        assignments = ", ".join(f"{column} = ?" for column in updates)
        with self._session() as conn:
            cur = conn.execute(
                f"UPDATE medications SET {assignments} WHERE id = ?",
                (*updates.values(), medication_id),
            )
            if cur.rowcount == 0:
                raise KeyError(medication_id)
        return self.get_medication(medication_id)

    def delete_medication(self, medication_id: str) -> bool:
        """Borra el medicamento junto con sus reglas, respuestas y notas."""
        with self._session() as conn:
            cur = conn.execute("DELETE FROM medications WHERE id = ?", (medication_id,))
            deleted = cur.rowcount > 0
        return deleted

    def add_reminder_rule(
        self, medication_id: str, time_of_day: str, days: Iterable[str]
    ) -> ReminderRule:
        """Crea una regla semanal validando hora y dias."""
        rule = ReminderRule(
            id=str(uuid.uuid4()),
            medication_id=medication_id,
            time_of_day=_normalize_time(time_of_day),
            days_of_week=_normalize_days(days),
        )
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO reminder_rules(id, medication_id, time, days, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    rule.id,
                    rule.medication_id,
                    rule.time_of_day,
                    _days_to_db(rule.days_of_week),
                    _now_db(),
                ),
            )
        return rule

    def get_reminder_rule(self, rule_id: str) -> ReminderRule:
        for rule in self.list_reminder_rules():
            if rule.id == rule_id:
                return rule
        raise KeyError(rule_id)

    def replace_reminder_rule(self, rule: ReminderRule) -> ReminderRule:
        """Reemplaza la regla completa con el mismo id."""
        updated = ReminderRule(
            id=rule.id,
            medication_id=rule.medication_id,
            time_of_day=_normalize_time(rule.time_of_day),
            days_of_week=_normalize_days(rule.days_of_week),
        )
        with self._session() as conn:
            cur = conn.execute(
                """
                UPDATE reminder_rules SET medication_id = ?, time = ?, days = ?
                WHERE id = ?
                """,
                (
                    updated.medication_id,
                    updated.time_of_day,
                    _days_to_db(updated.days_of_week),
                    updated.id,
                ),
            )
            if cur.rowcount == 0:
                raise KeyError(rule.id)
        return updated

    def delete_reminder_rule(self, rule_id: str) -> bool:
        with self._session() as conn:
            cur = conn.execute("DELETE FROM reminder_rules WHERE id = ?", (rule_id,))
            deleted = cur.rowcount > 0
        return deleted

    def list_reminder_rules(self) -> list[ReminderRule]:
        """Carga reglas; las filas corruptas se omiten."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT id, medication_id, time, days
                FROM reminder_rules
                ORDER BY created_at
                """
            ).fetchall()
        out: list[ReminderRule] = []
        for row in rows:
            days = _parse_days(row["days"])
            if days is None:
                logger.warning(
                    "Skipping reminder rule %s: bad days %r", row["id"], row["days"]
                )
                continue
            out.append(
                ReminderRule(
                    id=row["id"],
                    medication_id=row["medication_id"],
                    time_of_day=row["time"],
                    days_of_week=days,
                )
            )
        return out

    def create_response_log(
        self,
        reminder_rule_id: str,
        medication_id: str,
        scheduled_time: datetime,
        taken: bool,
        logged_at: datetime | None = None,
    ) -> ResponseLog:
        """Registra la respuesta del usuario a una ocurrencia."""
        log = ResponseLog(
            id=str(uuid.uuid4()),
            reminder_rule_id=reminder_rule_id,
            medication_id=medication_id,
            scheduled_time=scheduled_time,
            taken=taken,
            logged_at=logged_at or datetime.now(tz=tz.UTC),
        )
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO response_logs(
                    id, reminder_rule_id, medication_id,
                    scheduled_time, taken, logged_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    log.id,
                    log.reminder_rule_id,
                    log.medication_id,
                    _to_db(log.scheduled_time),
                    int(log.taken),
                    _to_db(log.logged_at),
                ),
            )
        return self.get_response_log(log.id)

    def get_response_log(self, log_id: str) -> ResponseLog:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM response_logs WHERE id = ?", (log_id,)
            ).fetchone()
        if row is None:
            raise KeyError(log_id)
        return _row_to_log(row)

    def update_response_log(
        self, log_id: str, taken: bool, logged_at: datetime | None = None
    ) -> ResponseLog:
        """Corrige una respuesta: reescribe taken y logged_at del mismo id."""
        stamp = logged_at or datetime.now(tz=tz.UTC)
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE response_logs SET taken = ?, logged_at = ? WHERE id = ?",
                (int(taken), _to_db(stamp), log_id),
            )
            if cur.rowcount == 0:
                raise KeyError(log_id)
        return self.get_response_log(log_id)

    def list_response_logs(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        reminder_rule_id: str | None = None,
    ) -> list[ResponseLog]:
        """Respuestas, mas recientes primero, opcionalmente filtradas."""
        sql = "SELECT * FROM response_logs WHERE 1=1"
        params: list[object] = []
        if reminder_rule_id:
            sql += " AND reminder_rule_id = ?"
            params.append(reminder_rule_id)
        if start is not None:
            sql += " AND scheduled_time >= ?"
            params.append(_to_db(start))
        if end is not None:
            sql += " AND scheduled_time <= ?"
            params.append(_to_db(end))
        sql += " ORDER BY scheduled_time DESC, logged_at DESC, rowid DESC"
        with self._session() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [_row_to_log(row) for row in rows]

    def add_note(self, medication_id: str, content: str) -> Note:
        """Agrega una nota libre a un medicamento."""
        note = Note(
            id=str(uuid.uuid4()),
            medication_id=medication_id,
            content=_normalize_content(content),
            created_at=datetime.now(tz=tz.UTC),
        )
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO notes(id, medication_id, content, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (note.id, note.medication_id, note.content, _to_db(note.created_at)),
            )
        return self.get_note(note.id)

    def get_note(self, note_id: str) -> Note:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM notes WHERE id = ?", (note_id,)
            ).fetchone()
        if row is None:
            raise KeyError(note_id)
        return _row_to_note(row)

    def list_notes(self, medication_id: str | None = None) -> list[Note]:
        """Notas, mas recientes primero."""
        sql = "SELECT * FROM notes"
        params: tuple[str, ...] = ()
        if medication_id:
            sql += " WHERE medication_id = ?"
            params = (medication_id,)
        sql += " ORDER BY created_at DESC, rowid DESC"
        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_note(row) for row in rows]

    def update_note(self, note_id: str, content: str) -> Note:
        """Reescribe el texto; created_at pasa a ser el momento de la edicion."""
        text = _normalize_content(content)
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE notes SET content = ?, created_at = ? WHERE id = ?",
                (text, _now_db(), note_id),
            )
            if cur.rowcount == 0:
                raise KeyError(note_id)
        return self.get_note(note_id)

    def delete_note(self, note_id: str) -> bool:
        with self._session() as conn:
            cur = conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
            deleted = cur.rowcount > 0
        return deleted


def _normalize_name(raw: str) -> str:
    name = raw.strip()
    if not name:
        raise ValueError("Medication name cannot be empty")
    return name


def _normalize_dosage_form(raw: str) -> str:
    form = " ".join(raw.strip().lower().split())
    if form not in DOSAGE_FORMS:
        expected = ", ".join(DOSAGE_FORMS)
        raise ValueError(f"Unknown dosage form {raw!r}, expected one of {expected}")
    return form


def _normalize_content(raw: str) -> str:
    content = raw.strip()
    if not content:
        raise ValueError("Note content cannot be empty")
    return content


def _parse_int(raw: str | None, default: int, minimum: int = 0) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _normalize_time(raw: str) -> str:
    parsed = parse_time_of_day(raw)
    if parsed is None:
        raise ValueError(f"Invalid time of day {raw!r}, expected HH:MM")
    return parsed.strftime("%H:%M")


def _normalize_days(days: Iterable[str]) -> frozenset[str]:
    out = set()
    for day in days:
        name = day.strip().capitalize()[:3]
        if name not in WEEKDAYS:
            expected = ", ".join(WEEKDAYS)
            raise ValueError(f"Unknown day {day!r}, expected one of {expected}")
        out.add(name)
    if not out:
        raise ValueError("A reminder needs at least one day")
    return frozenset(out)


def _days_to_db(days: frozenset[str]) -> str:
    return json.dumps([d for d in WEEKDAYS if d in days])


def _parse_days(raw: str) -> frozenset[str] | None:
    """JSON list or comma separated names; None when unreadable."""
    try:
        parsed: Any = json.loads(raw)
    except json.JSONDecodeError:
        parsed = [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(parsed, str):
        parsed = [parsed]
    if not isinstance(parsed, list):
        return None
    return frozenset(str(item) for item in parsed)


def _to_db(ts: datetime) -> str:
    """Aware timestamps are stored in UTC so text ordering matches time."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(tz.UTC)
    return ts.isoformat(timespec="microseconds")


def _now_db() -> str:
    return _to_db(datetime.now(tz=tz.UTC))


def _row_to_log(row: sqlite3.Row) -> ResponseLog:
    return ResponseLog(
        id=row["id"],
        reminder_rule_id=row["reminder_rule_id"],
        medication_id=row["medication_id"],
        scheduled_time=datetime.fromisoformat(row["scheduled_time"]),
        taken=bool(row["taken"]),
        logged_at=datetime.fromisoformat(row["logged_at"]),
    )


def _row_to_note(row: sqlite3.Row) -> Note:
    return Note(
        id=row["id"],
        medication_id=row["medication_id"],
        content=row["content"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
