from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException, status
from openpyxl import Workbook
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

from .config import settings
from .ledger import Trip
from .reports import LOCAL_TZ, export_flat_csv, export_periodic_report, flat_rows, periodic_rows

logger = logging.getLogger(__name__)

EXPORT_KINDS = ("trips", "report")
EXPORT_FORMATS = ("csv", "xlsx", "pdf")

MEDIA_TYPES: Dict[str, str] = {
    "csv": "text/csv; charset=utf-8",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}

_FILE_STEMS = {"trips": "Fahrtenbuch", "report": "Fahrtenbuch_Bericht"}
_TITLES = {"trips": "Fahrtenbuch", "report": "Fahrtenbuch Bericht"}

RowBuilder = Callable[..., Tuple[List[str], List[List[Any]]]]
_ROW_BUILDERS: Dict[str, RowBuilder] = {"trips": flat_rows, "report": periodic_rows}


def export_filename(kind: str, export_format: str, today: dt.date) -> str:
    return f"{_FILE_STEMS[kind]}_{today.isoformat()}.{export_format}"


def render_csv(kind: str, trips: Sequence[Trip], locale: Optional[str] = None) -> str:
    if kind == "trips":
        return export_flat_csv(trips, locale)
    return export_periodic_report(trips, locale)


def _write_csv(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8", newline="")


def _write_xlsx(path: Path, title: str, header: List[str], rows: List[List[Any]]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = title[:31]
    ws.append(header)
    for row in rows:
        ws.append(row)
    wb.save(path)


def _write_pdf(path: Path, title: str, header: List[str], rows: List[List[Any]]) -> None:
    pdf = canvas.Canvas(str(path), pagesize=A4)
    width, height = A4
    y = height - 2 * cm
    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(2 * cm, y, title)
    y -= 1.2 * cm
    pdf.setFont("Helvetica-Bold", 9)
    pdf.drawString(2 * cm, y, " | ".join(header))
    y -= 0.7 * cm
    pdf.setFont("Helvetica", 9)
    for row in rows:
        line = " | ".join("" if value is None else str(value) for value in row)
        pdf.drawString(2 * cm, y, line[:140])
        y -= 0.6 * cm
        if y < 2 * cm:
            pdf.showPage()
            y = height - 2 * cm
            pdf.setFont("Helvetica", 9)
    pdf.save()


def export_trips(
    trips: Sequence[Trip],
    kind: str,
    export_format: str,
    now: dt.datetime,
    locale: Optional[str] = None,
    export_dir: Optional[Path] = None,
) -> Path:
    """Write an export file into ``export_dir`` and return its path."""
    if kind not in EXPORT_KINDS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported export type")
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported export format")
    if not trips:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Nothing to export")

    today = now.astimezone(LOCAL_TZ).date()
    directory = export_dir or settings.export_dir
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(kind, export_format, today)

    if export_format == "csv":
        _write_csv(path, render_csv(kind, trips, locale))
    else:
        header, rows = _ROW_BUILDERS[kind](trips, locale)
        if export_format == "xlsx":
            _write_xlsx(path, _TITLES[kind], header, rows)
        else:
            _write_pdf(path, f"{_TITLES[kind]} {today.isoformat()}", header, rows)

    logger.info("Wrote %s export with %d trips to %s", kind, len(trips), path)
    return path
