from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..db import get_db
from ..excel import (
	STUDENT_COLUMNS,
	STUDENT_REQUIRED,
	SpreadsheetError,
	build_workbook,
	read_records,
	read_upload,
	xlsx_response,
)
from ..models import PhonemicLevel, Role, Student, StudentSubjectLevel, Subject, User
from ..settings import settings
from ..validation import (
	DuplicateError,
	ValidationError,
	sanitize_grade,
	sanitize_lrn,
	sanitize_name_part,
	sanitize_optional,
	sanitize_phone_number,
)
from .archive import archive_student
from .auth import require_roles

router = APIRouter(prefix="/api/master_teacher/coordinator/students", tags=["students"])
teacher_router = APIRouter(prefix="/api/teacher/students", tags=["students"])

logger = logging.getLogger(__name__)

staff = require_roles(*Role.ALL)
managers = require_roles(Role.SUPER_ADMIN, Role.MASTER_TEACHER, Role.COORDINATOR)

# Spreadsheet level columns and the subject each one belongs to
LEVEL_COLUMNS = {"english_level": "English", "filipino_level": "Filipino", "math_level": "Math"}


class StudentIn(BaseModel):
	lrn: str
	first_name: str
	middle_name: Optional[str] = None
	last_name: str
	grade: Any
	section: Optional[str] = None
	gender: Optional[str] = None
	guardian_name: Optional[str] = None
	guardian_contact: Optional[str] = None
	# subject name -> phonemic level name
	levels: Dict[str, str] = {}


class StudentUpdate(BaseModel):
	lrn: Optional[str] = None
	first_name: Optional[str] = None
	middle_name: Optional[str] = None
	last_name: Optional[str] = None
	grade: Optional[Any] = None
	section: Optional[str] = None
	gender: Optional[str] = None
	guardian_name: Optional[str] = None
	guardian_contact: Optional[str] = None
	levels: Optional[Dict[str, str]] = None


class StudentOut(BaseModel):
	student_id: int
	lrn: str
	name: str
	first_name: str
	middle_name: Optional[str] = None
	last_name: str
	grade: int
	section: Optional[str] = None
	gender: Optional[str] = None
	guardian_name: Optional[str] = None
	guardian_contact: Optional[str] = None
	levels: Dict[str, str] = {}


class PromoteRequest(BaseModel):
	subject: str


class ArchiveReason(BaseModel):
	reason: Optional[str] = None


def student_out(student: Student) -> StudentOut:
	return StudentOut(
		student_id=student.student_id,
		lrn=student.lrn,
		name=student.full_name,
		first_name=student.first_name,
		middle_name=student.middle_name,
		last_name=student.last_name,
		grade=student.grade,
		section=student.section,
		gender=student.gender,
		guardian_name=student.guardian_name,
		guardian_contact=student.guardian_contact,
		levels={lvl.subject.subject_name: lvl.phonemic_level.level_name for lvl in student.levels},
	)


def find_subject(db: Session, name: Optional[str]) -> Optional[Subject]:
	if not name or not name.strip():
		return None
	return db.query(Subject).filter(func.lower(Subject.subject_name) == name.strip().lower()).first()


def find_level(db: Session, subject: Subject, level_name: str) -> Optional[PhonemicLevel]:
	return (
		db.query(PhonemicLevel)
		.filter(PhonemicLevel.subject_id == subject.subject_id)
		.filter(func.lower(PhonemicLevel.level_name) == level_name.strip().lower())
		.first()
	)


def _clean_student_fields(data: Dict[str, Any]) -> Dict[str, Any]:
	contact = sanitize_optional(data.get("guardian_contact"))
	gender = sanitize_optional(data.get("gender"))
	return {
		"lrn": sanitize_lrn(data.get("lrn")),
		"first_name": sanitize_name_part(data.get("first_name"), "First name"),
		"middle_name": sanitize_optional(data.get("middle_name")),
		"last_name": sanitize_name_part(data.get("last_name"), "Last name"),
		"grade": sanitize_grade(data.get("grade")),
		"section": sanitize_optional(data.get("section")),
		"gender": gender.capitalize() if gender else None,
		"guardian_name": sanitize_optional(data.get("guardian_name")),
		"guardian_contact": sanitize_phone_number(contact) if contact else None,
	}


def resolve_levels(db: Session, levels: Dict[str, str]) -> List[PhonemicLevel]:
	resolved: List[PhonemicLevel] = []
	for subject_name, level_name in levels.items():
		if not level_name or not str(level_name).strip():
			continue
		subject = find_subject(db, subject_name)
		if subject is None:
			raise ValidationError(f"Unknown subject: {subject_name}.")
		level = find_level(db, subject, str(level_name))
		if level is None:
			raise ValidationError(f"Unknown {subject.subject_name} level: {level_name}.")
		resolved.append(level)
	return resolved


def apply_levels(student: Student, levels: List[PhonemicLevel]) -> None:
	current = {lvl.subject_id: lvl for lvl in student.levels}
	for level in levels:
		row = current.get(level.subject_id)
		if row is None:
			student.levels.append(StudentSubjectLevel(subject_id=level.subject_id, phonemic_id=level.phonemic_id))
		elif row.phonemic_id != level.phonemic_id:
			row.phonemic_id = level.phonemic_id
			row.assessed_at = datetime.utcnow()


def create_student(db: Session, data: Dict[str, Any], levels: Dict[str, str]) -> Student:
	"""Insert a student and its phonemic levels. The caller commits."""
	fields = _clean_student_fields(data)
	if db.query(Student).filter(Student.lrn == fields["lrn"]).first() is not None:
		raise DuplicateError("LRN already exists.")
	resolved = resolve_levels(db, levels)
	student = Student(**fields)
	apply_levels(student, resolved)
	db.add(student)
	db.flush()
	return student


def _get_student(db: Session, student_id: int) -> Student:
	student = db.get(Student, student_id)
	if student is None:
		raise HTTPException(status_code=404, detail="Student not found")
	return student


def _students_query(db: Session, grade: Optional[int], subject: Optional[str], search: Optional[str]):
	q = db.query(Student)
	if grade is not None:
		q = q.filter(Student.grade == grade)
	if subject:
		subj = find_subject(db, subject)
		if subj is None:
			raise HTTPException(status_code=400, detail=f"Unknown subject: {subject}")
		q = q.join(StudentSubjectLevel).filter(StudentSubjectLevel.subject_id == subj.subject_id)
	if search and search.strip():
		like = f"%{search.strip().lower()}%"
		q = q.filter(or_(
			func.lower(Student.first_name).like(like),
			func.lower(Student.last_name).like(like),
			Student.lrn.like(like),
		))
	return q.order_by(Student.grade, Student.last_name, Student.first_name)


@router.get("")
def list_students(
	grade: Optional[int] = Query(default=None),
	subject: Optional[str] = Query(default=None),
	search: Optional[str] = Query(default=None),
	db: Session = Depends(get_db),
	_: User = Depends(staff),
):
	students = _students_query(db, grade, subject, search).all()
	return {"students": [student_out(s) for s in students], "total": len(students)}


@router.post("", response_model=StudentOut, status_code=201)
def create_student_endpoint(req: StudentIn, db: Session = Depends(get_db), _: User = Depends(managers)):
	try:
		student = create_student(db, req.model_dump(exclude={"levels"}), req.levels)
	except DuplicateError as e:
		raise HTTPException(status_code=409, detail=str(e))
	except ValidationError as e:
		raise HTTPException(status_code=400, detail=str(e))
	db.commit()
	db.refresh(student)
	return student_out(student)


@router.get("/export")
def export_students(
	grade: Optional[int] = Query(default=None),
	subject: Optional[str] = Query(default=None),
	db: Session = Depends(get_db),
	_: User = Depends(staff),
):
	rows = []
	for s in _students_query(db, grade, subject, None).all():
		row = student_out(s).model_dump()
		for column, subject_name in LEVEL_COLUMNS.items():
			row[column] = row["levels"].get(subject_name)
		rows.append(row)
	columns = [
		("LRN", "lrn"),
		("First Name", "first_name"),
		("Middle Name", "middle_name"),
		("Last Name", "last_name"),
		("Grade", "grade"),
		("Section", "section"),
		("Gender", "gender"),
		("Guardian Name", "guardian_name"),
		("Guardian Contact", "guardian_contact"),
		("English Level", "english_level"),
		("Filipino Level", "filipino_level"),
		("Math Level", "math_level"),
	]
	content = build_workbook(rows, columns, sheet_name="Students")
	stamp = datetime.utcnow().strftime("%Y%m%d")
	return xlsx_response(content, f"students_{stamp}.xlsx")


@router.post("/upload")
async def upload_students(file: UploadFile = File(...), db: Session = Depends(get_db), user: User = Depends(managers)):
	content = await read_upload(file, settings.max_upload_bytes)
	try:
		records = read_records(content, STUDENT_COLUMNS, STUDENT_REQUIRED)
	except SpreadsheetError as e:
		raise HTTPException(status_code=400, detail=str(e))
	if not records:
		raise HTTPException(status_code=400, detail="The spreadsheet has no data rows")

	inserted: List[Dict[str, Any]] = []
	failures: List[Dict[str, Any]] = []
	seen_lrns: set[str] = set()
	for idx, record in enumerate(records):
		row_number = idx + 2
		lrn = record.get("lrn")
		try:
			lrn = sanitize_lrn(lrn)
			if lrn in seen_lrns:
				raise DuplicateError("Duplicate LRN in upload.")
			levels = {LEVEL_COLUMNS[k]: record[k] for k in LEVEL_COLUMNS if record.get(k)}
			student = create_student(db, record, levels)
		except ValidationError as e:
			failures.append({"row": row_number, "lrn": lrn, "error": str(e)})
			continue
		seen_lrns.add(student.lrn)
		inserted.append({"row": row_number, "student_id": student.student_id, "lrn": student.lrn, "name": student.full_name})
	db.commit()
	logger.info("Student upload by %s: %d inserted, %d failed", user.username, len(inserted), len(failures))
	return JSONResponse(status_code=200 if inserted else 400, content={"inserted": inserted, "failures": failures})


@router.get("/{student_id}", response_model=StudentOut)
def get_student(student_id: int, db: Session = Depends(get_db), _: User = Depends(staff)):
	return student_out(_get_student(db, student_id))


@router.put("/{student_id}", response_model=StudentOut)
def update_student(student_id: int, req: StudentUpdate, db: Session = Depends(get_db), _: User = Depends(managers)):
	student = _get_student(db, student_id)
	changes = req.model_dump(exclude_unset=True, exclude={"levels"})
	merged = {
		"lrn": student.lrn,
		"first_name": student.first_name,
		"middle_name": student.middle_name,
		"last_name": student.last_name,
		"grade": student.grade,
		"section": student.section,
		"gender": student.gender,
		"guardian_name": student.guardian_name,
		"guardian_contact": student.guardian_contact,
	}
	merged.update(changes)
	try:
		fields = _clean_student_fields(merged)
		levels = resolve_levels(db, req.levels or {})
	except ValidationError as e:
		raise HTTPException(status_code=400, detail=str(e))
	clash = db.query(Student).filter(Student.lrn == fields["lrn"], Student.student_id != student.student_id).first()
	if clash is not None:
		raise HTTPException(status_code=409, detail="LRN already exists.")
	for key, value in fields.items():
		setattr(student, key, value)
	apply_levels(student, levels)
	db.commit()
	db.refresh(student)
	return student_out(student)


@router.delete("/{student_id}")
def delete_student(
	student_id: int,
	req: Optional[ArchiveReason] = None,
	db: Session = Depends(get_db),
	user: User = Depends(managers),
):
	student = _get_student(db, student_id)
	row = archive_student(db, student, user, req.reason if req else None)
	db.commit()
	logger.info("Student %s archived by %s", student_id, user.username)
	return {"student_id": student_id, "archive_id": row.archive_id}


@teacher_router.post("/{student_id}/promote-phonemic")
def promote_phonemic(student_id: int, req: PromoteRequest, db: Session = Depends(get_db), _: User = Depends(staff)):
	"""Move a student to the next phonemic level of a subject.

	409 when the student is already at the highest level, 404 when the
	student has no level recorded for the subject yet.
	"""
	student = _get_student(db, student_id)
	subject = find_subject(db, req.subject)
	if subject is None:
		raise HTTPException(status_code=404, detail=f"Unknown subject: {req.subject}")
	record = next((lvl for lvl in student.levels if lvl.subject_id == subject.subject_id), None)
	if record is None:
		raise HTTPException(status_code=404, detail="Student has no phonemic level for this subject")
	current = record.phonemic_level
	nxt = (
		db.query(PhonemicLevel)
		.filter(PhonemicLevel.subject_id == subject.subject_id, PhonemicLevel.level_order > current.level_order)
		.order_by(PhonemicLevel.level_order)
		.first()
	)
	if nxt is None:
		raise HTTPException(status_code=409, detail="Student is already at the highest level")
	record.phonemic_id = nxt.phonemic_id
	record.assessed_at = datetime.utcnow()
	db.commit()
	return {
		"student_id": student.student_id,
		"subject": subject.subject_name,
		"previous_level": current.level_name,
		"level": nxt.level_name,
	}
