"""Generación de Excel formateado con la agenda de tomas y su resumen."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from dosis_tool.model import WEEKDAYS, Status

_STATUS_LABEL: dict[str, str] = {
    Status.PENDING.value: "Pendiente",
    Status.TAKEN.value: "Tomada",
    Status.MISSED.value: "Omitida",
}

_STATUS_FILL: dict[str, str] = {
    "Tomada": "C6EFCE",
    "Omitida": "FFC7CE",
}

_AGENDA_HEADERS: dict[str, str] = {
    "weekday": "Día",
    "datetime": "Fecha / Hora",
    "medication": "Medicamento",
    "status": "Estado",
}

_SUMMARY_HEADERS: dict[str, str] = {
    "date": "Fecha",
    "scheduled": "Programadas",
    "taken": "Tomadas",
    "missed": "Omitidas",
    "pending": "Pendientes",
    "adherence_pct": "Adherencia (%)",
}


@dataclass(frozen=True)
class ExcelLayout:
    """Sheet names for the adherence workbook."""

    agenda_sheet: str = "Agenda"
    summary_sheet: str = "Resumen diario"


def _weekday_label(value: object) -> str:
    """Fecha -> 'Mon'..'Sun'; vacío si no hay fecha."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    try:
        return WEEKDAYS[pd.Timestamp(value).weekday()]
    except (ValueError, TypeError):
        return ""


def _prepare_agenda(agenda: pd.DataFrame) -> pd.DataFrame:
    """Weekday first, naive datetimes, translated status, no ids."""
    out = agenda.copy()
    out["weekday"] = out["date"].map(_weekday_label) if "date" in out else ""
    if "datetime" in out.columns:
        out["datetime"] = [
            ts.replace(tzinfo=None) if hasattr(ts, "tzinfo") else ts
            for ts in out["datetime"]
        ]
    if "status" in out.columns:
        out["status"] = out["status"].map(lambda s: _STATUS_LABEL.get(s, s))
    cols = [c for c in _AGENDA_HEADERS if c in out.columns]
    return out[cols].rename(columns=_AGENDA_HEADERS)


def write_adherence_xlsx(
    agenda: pd.DataFrame,
    summary: pd.DataFrame,
    out_path: Path,
    layout: ExcelLayout,
) -> None:
    """Write the agenda and daily summary to a formatted workbook.

    Args:
        agenda: Frame from occurrences_to_frame (annotated).
        summary: Frame from daily_adherence_summary.
        out_path: Output path for the XLSX file.
        layout: Sheet names.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)

    agenda_df = _prepare_agenda(agenda)
    summary_df = summary.rename(columns=_SUMMARY_HEADERS)

    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        agenda_df.to_excel(writer, index=False, sheet_name=layout.agenda_sheet)
        summary_df.to_excel(writer, index=False, sheet_name=layout.summary_sheet)
        agenda_ws = writer.book[layout.agenda_sheet]
        _format_sheet(agenda_ws)
        _highlight_status(agenda_ws)
        _format_sheet(writer.book[layout.summary_sheet])


def _style_header_row(ws: Any) -> None:
    """Aplica fuente negrita, alineación y borde a la fila de cabecera."""
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    header_font = Font(bold=True)
    center = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for cell in ws[1]:
        cell.font = header_font
        cell.alignment = center
        cell.border = border


def _style_body_rows(ws: Any) -> None:
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    center = Alignment(horizontal="center", vertical="center")
    for row in ws.iter_rows(min_row=2):
        for cell in row:
            cell.alignment = center
            cell.border = border


def _get_header_col_index(ws: Any) -> dict[str, int]:
    """Devuelve mapa nombre de cabecera -> índice de columna (1-based)."""
    headers = [str(cell.value) for cell in ws[1]]
    return {name: idx + 1 for idx, name in enumerate(headers)}


def _apply_column_widths(ws: Any, col_index: dict[str, int]) -> None:
    widths = [
        ("Día", 6),
        ("Fecha / Hora", 18),
        ("Medicamento", 24),
        ("Estado", 12),
        ("Fecha", 12),
        ("Adherencia (%)", 14),
    ]
    for header, width in widths:
        idx = col_index.get(header)
        if idx is not None:
            letter = ws.cell(row=1, column=idx).column_letter
            ws.column_dimensions[letter].width = width


def _apply_number_formats(ws: Any, col_index: dict[str, int]) -> None:
    fmt_map: dict[str, str] = {
        "Fecha / Hora": "dd/mm/yyyy hh:mm",
        "Fecha": "dd/mm/yyyy",
        "Adherencia (%)": "0.0",
    }
    for row in ws.iter_rows(min_row=2):
        for header, fmt in fmt_map.items():
            idx = col_index.get(header)
            if idx is not None:
                row[idx - 1].number_format = fmt


def _highlight_status(ws: Any) -> None:
    """Colorea la celda de estado (verde tomada, rojo omitida)."""
    idx = _get_header_col_index(ws).get("Estado")
    if idx is None:
        return
    for row in ws.iter_rows(min_row=2):
        color = _STATUS_FILL.get(str(row[idx - 1].value))
        if color:
            row[idx - 1].fill = PatternFill(
                start_color=color, end_color=color, fill_type="solid"
            )


def _format_sheet(ws: Any) -> None:
    """Apply borders, widths and number formats to a worksheet.

    Args:
        ws: openpyxl worksheet.
    """
    _style_header_row(ws)
    _style_body_rows(ws)
    col_index = _get_header_col_index(ws)
    _apply_column_widths(ws, col_index)
    _apply_number_formats(ws, col_index)
