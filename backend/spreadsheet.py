import io
import zipfile
import logging
from typing import List

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from errors import ValidationError

logger = logging.getLogger(__name__)

TEMPLATE_FILENAME = "template_anggaran.xlsx"
TEMPLATE_SHEET = "Template Anggaran"
TEMPLATE_COLUMNS = [
    ("Kode GL", 12),
    ("Deskripsi", 40),
    ("Nilai RKAP", 15),
    ("Release (%)", 12),
    ("Q1", 15),
    ("Q2", 15),
    ("Q3", 15),
    ("Q4", 15),
]
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def build_budget_template(gl_accounts) -> bytes:
    """Satu sheet, satu baris per GL account aktif, RKAP 0 dan release 100%."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET

    ws.append([name for name, _ in TEMPLATE_COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for idx, (_, width) in enumerate(TEMPLATE_COLUMNS, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width

    for gl in gl_accounts:
        ws.append([gl.code, gl.description, 0, 100, 0, 0, 0, 0])

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def read_budget_rows(content: bytes) -> List[dict]:
    """Baris sheet pertama sebagai dict {header: nilai}; baris kosong dilewati."""
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), data_only=True, read_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        logger.error(f"File import bukan Excel yang valid: {e}")
        raise ValidationError("File bukan Excel (.xlsx) yang valid")

    ws = wb.worksheets[0]
    rows = ws.iter_rows(values_only=True)
    header = next(rows, None)
    if not header:
        return []
    header = [str(h).strip() if h is not None else "" for h in header]

    data = []
    for values in rows:
        if values is None or all(v is None or v == "" for v in values):
            continue
        data.append({key: value for key, value in zip(header, values) if key})
    wb.close()
    return data
