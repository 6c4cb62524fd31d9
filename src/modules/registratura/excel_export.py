"""Export the general register to Excel (XLSX)."""

from datetime import datetime
from io import BytesIO
from typing import Any, Iterable

from openpyxl import Workbook
from openpyxl.styles import Font

from src.modules.registratura.models import RegisteredDocument

HEADERS = [
    "Nr. inregistrare",
    "An",
    "Data",
    "Tip",
    "Subiect",
    "De la",
    "Catre",
    "Status",
    "Rezolutie",
    "Registru",
]

COLUMN_WIDTHS = [16, 8, 12, 12, 50, 30, 30, 14, 14, 30]


def _cell_value(v: Any) -> Any:
    """Excel cannot store tz-aware datetimes."""
    if isinstance(v, datetime) and v.tzinfo is not None:
        return v.replace(tzinfo=None)
    return v


def _document_row(doc: RegisteredDocument) -> list[Any]:
    return [
        doc.registration_number,
        doc.year,
        doc.registration_date,
        doc.document_type,
        doc.subject,
        doc.sender,
        doc.recipient,
        doc.status,
        doc.resolution_status,
        doc.register_configuration.name if doc.register_configuration else None,
    ]


def export_general_register(documents: Iterable[RegisteredDocument], title: str | None = None) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Registrul general"

    ws.cell(1, 1, title or "Registrul general")
    ws.cell(1, 1).font = Font(bold=True, size=12)

    header_row = 3
    for col, header in enumerate(HEADERS, start=1):
        ws.cell(header_row, col, header).font = Font(bold=True)
    for col, width in enumerate(COLUMN_WIDTHS, start=1):
        ws.column_dimensions[ws.cell(header_row, col).column_letter].width = width

    row = header_row + 1
    for doc in documents:
        for col, value in enumerate(_document_row(doc), start=1):
            ws.cell(row, col, _cell_value(value))
        row += 1

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
