from __future__ import annotations

import json
import logging
from datetime import date, datetime
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
from fastapi import HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter


logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"xlsx", "xls"}
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ACCOUNT_COLUMNS: Dict[str, List[str]] = {
	"first_name": ["first_name", "firstname", "first", "given_name"],
	"middle_name": ["middle_name", "middlename", "middle", "middle_initial"],
	"last_name": ["last_name", "lastname", "last", "surname", "family_name"],
	"suffix": ["suffix", "name_suffix"],
	"email": ["email", "email_address", "e-mail"],
	"phone_number": ["phone_number", "phone", "contact", "contact_number", "mobile", "mobile_number"],
	"grade": ["grade", "grade_level", "grade_handled"],
	"section": ["section", "sec"],
	"subjects": ["subjects", "subject", "subjects_handled"],
}
ACCOUNT_REQUIRED = ["first_name", "last_name", "email"]

STUDENT_COLUMNS: Dict[str, List[str]] = {
	"lrn": ["lrn", "learner_reference_number", "student_lrn", "lrn_no"],
	"first_name": ["first_name", "firstname", "first", "given_name"],
	"middle_name": ["middle_name", "middlename", "middle", "middle_initial"],
	"last_name": ["last_name", "lastname", "last", "surname", "family_name"],
	"grade": ["grade", "grade_level", "class"],
	"section": ["section", "sec"],
	"gender": ["gender", "sex"],
	"guardian_name": ["guardian_name", "guardian", "parent", "parent_name"],
	"guardian_contact": ["guardian_contact", "guardian_phone", "parent_contact", "parent_phone"],
	"english_level": ["english_level", "english", "english_phonemic_level"],
	"filipino_level": ["filipino_level", "filipino", "filipino_phonemic_level"],
	"math_level": ["math_level", "math", "math_proficiency"],
}
STUDENT_REQUIRED = ["lrn", "first_name", "last_name", "grade"]


class SpreadsheetError(ValueError):
	pass


def allowed_file(filename: Optional[str]) -> bool:
	return bool(filename) and "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def _normalize_header(value: Any) -> str:
	return str(value).strip().lower().replace(" ", "_")


def read_records(
	content: bytes,
	column_mappings: Dict[str, List[str]],
	required: Sequence[str],
) -> List[Dict[str, Optional[str]]]:
	"""Read the first sheet of an Excel file into dicts keyed by canonical column.

	Header names are matched loosely (case, surrounding spaces, spaces vs
	underscores, common aliases). Blank rows are dropped; blank cells become
	None. Raises SpreadsheetError when the file cannot be parsed or a required
	column is missing.
	"""
	try:
		df = pd.read_excel(BytesIO(content), dtype=str)
	except Exception as e:
		raise SpreadsheetError(f"Unable to read spreadsheet: {e}") from e

	df.columns = [_normalize_header(c) for c in df.columns]
	mapped: Dict[str, str] = {}
	for canonical, aliases in column_mappings.items():
		for alias in aliases:
			if alias in df.columns:
				mapped[canonical] = alias
				break

	missing = [col for col in required if col not in mapped]
	if missing:
		raise SpreadsheetError(f"Missing columns: {', '.join(missing)}")

	df = df.dropna(how="all")
	records: List[Dict[str, Optional[str]]] = []
	for row in df.to_dict("records"):
		record: Dict[str, Optional[str]] = {}
		for canonical in column_mappings:
			source = mapped.get(canonical)
			value = row.get(source) if source else None
			if value is None or (isinstance(value, float) and pd.isna(value)):
				record[canonical] = None
			else:
				text = str(value).strip()
				record[canonical] = text or None
		records.append(record)
	logger.info("Parsed %d spreadsheet rows (%s)", len(records), ", ".join(sorted(mapped)))
	return records


def _cell_value(value: Any) -> Any:
	if value is None:
		return ""
	if isinstance(value, (str, int, float, bool)):
		return value
	if isinstance(value, (datetime, date)):
		return value.isoformat()
	if isinstance(value, (dict, list, tuple)):
		return json.dumps(value, default=str)
	return str(value)


def build_workbook(
	rows: Sequence[Dict[str, Any]],
	columns: Sequence[Tuple[str, str]],
	sheet_name: str = "Sheet1",
) -> bytes:
	"""Render rows as a single-sheet workbook with a styled header row.

	``columns`` is a list of (header, key) pairs; each row is looked up by key.
	"""
	wb = Workbook()
	ws = wb.active
	ws.title = sheet_name[:31]

	header_font = Font(bold=True, color="FFFFFF")
	header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
	border = Border(
		left=Side(style="thin"),
		right=Side(style="thin"),
		top=Side(style="thin"),
		bottom=Side(style="thin"),
	)

	for col, (header, _) in enumerate(columns, 1):
		cell = ws.cell(row=1, column=col, value=header)
		cell.font = header_font
		cell.fill = header_fill
		cell.border = border
		cell.alignment = Alignment(horizontal="center", vertical="center")

	for r, row in enumerate(rows, 2):
		for col, (_, key) in enumerate(columns, 1):
			ws.cell(row=r, column=col, value=_cell_value(row.get(key))).border = border

	for col, (header, key) in enumerate(columns, 1):
		longest = max([len(str(header))] + [len(str(_cell_value(row.get(key)))) for row in rows])
		ws.column_dimensions[get_column_letter(col)].width = min(50, longest + 2)

	ws.freeze_panes = "A2"
	buf = BytesIO()
	wb.save(buf)
	return buf.getvalue()


def xlsx_response(content: bytes, filename: str) -> StreamingResponse:
	return StreamingResponse(
		BytesIO(content),
		media_type=XLSX_MEDIA_TYPE,
		headers={"Content-Disposition": f'attachment; filename="{filename}"'},
	)


async def read_upload(file: UploadFile, max_bytes: int) -> bytes:
	if not allowed_file(file.filename):
		raise HTTPException(status_code=400, detail="Only .xlsx and .xls files are accepted")
	content = await file.read()
	if not content:
		raise HTTPException(status_code=400, detail="Uploaded file is empty")
	if len(content) > max_bytes:
		raise HTTPException(status_code=413, detail="Uploaded file is too large")
	return content
