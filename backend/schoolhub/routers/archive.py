from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import MetaData, Table, select
from sqlalchemy.orm import Session

from ..db import engine, get_db, table_columns
from ..excel import build_workbook, xlsx_response
from ..models import (
	ArchivedStudent,
	ArchivedUser,
	Role,
	Student,
	StudentTeacherAssignment,
	User,
)
from ..validation import (
	generate_temporary_password,
	normalize_role,
	split_name_parts,
)
from .accounts import email_taken, unique_username
from .auth import hash_password, require_roles, revoke_user_sessions

router = APIRouter(prefix="/api/super_admin/archive", tags=["archive"])

logger = logging.getLogger(__name__)

admin_only = require_roles(Role.SUPER_ADMIN)

ARCHIVE_USER_COLUMNS = [
	"archive_id", "user_id", "role", "name", "username", "email", "phone_number",
	"grade", "section", "subjects", "reason", "archived_by", "timestamp",
]
ARCHIVE_STUDENT_COLUMNS = [
	"archive_id", "student_id", "lrn", "first_name", "middle_name", "last_name", "grade",
	"section", "gender", "guardian_name", "guardian_contact", "reason", "archived_by", "timestamp",
]


class ArchiveUsersRequest(BaseModel):
	user_ids: List[int]
	reason: Optional[str] = None


class ArchiveStudentsRequest(BaseModel):
	student_ids: List[int]
	reason: Optional[str] = None


class ArchiveIdsRequest(BaseModel):
	archive_ids: List[int]


def archive_user(db: Session, user: User, actor: User, reason: Optional[str]) -> ArchivedUser:
	"""Move a user row into archive_users. The caller commits."""
	row = ArchivedUser(
		user_id=user.user_id,
		role=normalize_role(user.role),
		name=user.full_name,
		username=user.username,
		email=user.email,
		phone_number=user.phone_number,
		grade=user.grade,
		section=user.section,
		subjects=user.subjects,
		reason=(reason or "").strip() or None,
		archived_by=actor.user_id,
	)
	db.add(row)
	revoke_user_sessions(db, user.user_id)
	db.query(StudentTeacherAssignment).filter(StudentTeacherAssignment.teacher_id == user.user_id).delete(synchronize_session=False)
	db.delete(user)
	return row


def archive_student(db: Session, student: Student, actor: User, reason: Optional[str]) -> ArchivedStudent:
	"""Move a student row into archive_students. The caller commits."""
	row = ArchivedStudent(
		student_id=student.student_id,
		lrn=student.lrn,
		first_name=student.first_name,
		middle_name=student.middle_name,
		last_name=student.last_name,
		grade=student.grade,
		section=student.section,
		gender=student.gender,
		guardian_name=student.guardian_name,
		guardian_contact=student.guardian_contact,
		reason=(reason or "").strip() or None,
		archived_by=actor.user_id,
	)
	db.add(row)
	db.query(StudentTeacherAssignment).filter(StudentTeacherAssignment.student_id == student.student_id).delete(synchronize_session=False)
	db.delete(student)
	return row


def read_archive_table(db: Session, table_name: str, expected: List[str], role: Optional[str] = None) -> Dict[str, Any]:
	"""Read an archive table using whatever columns it actually has.

	Databases migrated from older releases may lack the table or some of
	its columns. Those are reported under ``metadata`` and the missing
	values come back as None instead of failing the request.
	"""
	present = table_columns(table_name)
	if not present:
		return {
			"records": [],
			"total": 0,
			"metadata": {"missingTable": table_name, "columns": [], "missingColumns": expected},
		}
	table = Table(table_name, MetaData(), autoload_with=engine)
	selected = [c for c in expected if c in present]
	stmt = select(*[table.c[c] for c in selected])
	if "timestamp" in present:
		stmt = stmt.order_by(table.c["timestamp"].desc())
	if "archive_id" in present:
		stmt = stmt.order_by(table.c["archive_id"].desc())
	records = []
	for row in db.execute(stmt).mappings():
		record = {c: row.get(c) for c in expected}
		if "role" in record:
			record["role"] = normalize_role(record["role"]) or None
		records.append(record)
	if role and "role" in present:
		records = [r for r in records if r["role"] == role]
	return {
		"records": records,
		"total": len(records),
		"metadata": {
			"missingTable": None,
			"columns": selected,
			"missingColumns": [c for c in expected if c not in present],
		},
	}


def load_archive_entries(db: Session, table_name: str, expected: List[str], archive_ids: List[int]) -> Tuple[Optional[Table], Dict[int, Dict[str, Any]]]:
	"""Fetch archive rows by id, reading only the columns the table has.

	Returns the reflected table (None when it or its ``archive_id`` column
	is missing) and the rows keyed by archive id, with absent columns as None.
	"""
	present = table_columns(table_name)
	if "archive_id" not in present or not archive_ids:
		return None, {}
	table = Table(table_name, MetaData(), autoload_with=engine)
	stmt = select(*[table.c[c] for c in expected if c in present]).where(table.c["archive_id"].in_(archive_ids))
	entries = {row["archive_id"]: {c: row.get(c) for c in expected} for row in db.execute(stmt).mappings()}
	return table, entries


def _delete_archive_entry(db: Session, table: Table, archive_id: int) -> None:
	db.execute(table.delete().where(table.c["archive_id"] == archive_id))


@router.post("")
def archive_users(req: ArchiveUsersRequest, db: Session = Depends(get_db), admin: User = Depends(admin_only)):
	if not req.user_ids:
		raise HTTPException(status_code=400, detail="No accounts selected")
	archived: List[Dict[str, Any]] = []
	failures: List[Dict[str, Any]] = []
	for user_id in req.user_ids:
		if user_id == admin.user_id:
			failures.append({"user_id": user_id, "error": "You cannot archive your own account."})
			continue
		user = db.get(User, user_id)
		if user is None:
			failures.append({"user_id": user_id, "error": "Account not found."})
			continue
		row = archive_user(db, user, admin, req.reason)
		db.flush()
		archived.append({"user_id": user_id, "archive_id": row.archive_id})
	db.commit()
	if archived:
		logger.info("Archived %d account(s) by %s", len(archived), admin.username)
	return {"archived": archived, "failures": failures}


@router.get("")
def list_archived_users(
	role: Optional[str] = Query(default=None),
	db: Session = Depends(get_db),
	_: User = Depends(admin_only),
):
	return read_archive_table(db, ArchivedUser.__tablename__, ARCHIVE_USER_COLUMNS, normalize_role(role) or None)


@router.post("/restore")
def restore_users(req: ArchiveIdsRequest, db: Session = Depends(get_db), admin: User = Depends(admin_only)):
	"""Recreate user accounts from archive rows.

	The original user id is reused when it is free. Each restored account
	gets a new temporary password; rows that collide with an existing account
	are reported under ``errors`` and left in the archive.
	"""
	if not req.archive_ids:
		raise HTTPException(status_code=400, detail="No archive entries selected")
	restored: List[Dict[str, Any]] = []
	errors: List[Dict[str, Any]] = []
	table, entries = load_archive_entries(db, ArchivedUser.__tablename__, ARCHIVE_USER_COLUMNS, req.archive_ids)
	for archive_id in req.archive_ids:
		entry = entries.get(archive_id)
		if entry is None:
			errors.append({"archive_id": archive_id, "error": "Archive entry not found."})
			continue
		role = normalize_role(entry["role"])
		if role not in Role.ALL:
			errors.append({"archive_id": archive_id, "error": f"Unknown role: {entry['role']!r}."})
			continue
		if entry["user_id"] is not None and db.get(User, entry["user_id"]) is not None:
			errors.append({"archive_id": archive_id, "error": "User id is already in use."})
			continue
		email = (entry["email"] or "").strip().lower() or f"restored_user_{entry['user_id'] or archive_id}@restored.local"
		if email_taken(db, email):
			errors.append({"archive_id": archive_id, "error": "Email is already in use."})
			continue
		parts = split_name_parts(entry["name"])
		password = generate_temporary_password()
		user = User(
			username=unique_username(db, email, entry["username"]),
			email=email,
			password_hash=hash_password(password),
			first_name=parts["first_name"] or "Restored",
			middle_name=parts["middle_name"],
			last_name=parts["last_name"] or "User",
			role=role,
			phone_number=entry["phone_number"],
			grade=entry["grade"],
			section=entry["section"],
			subjects=entry["subjects"],
		)
		if entry["user_id"] is not None:
			user.user_id = entry["user_id"]
		db.add(user)
		_delete_archive_entry(db, table, archive_id)
		db.flush()
		restored.append({
			"archive_id": archive_id,
			"user_id": user.user_id,
			"username": user.username,
			"email": user.email,
			"temporary_password": password,
		})
	db.commit()
	if restored:
		logger.info("Restored %d account(s) by %s", len(restored), admin.username)
	return {"restored": restored, "errors": errors}


@router.post("/delete")
def delete_archived_users(req: ArchiveIdsRequest, db: Session = Depends(get_db), _: User = Depends(admin_only)):
	if not req.archive_ids:
		raise HTTPException(status_code=400, detail="No archive entries selected")
	table, entries = load_archive_entries(db, ArchivedUser.__tablename__, ["archive_id"], req.archive_ids)
	for archive_id in entries:
		_delete_archive_entry(db, table, archive_id)
	db.commit()
	return {"deleted": len(entries), "missing": [a for a in req.archive_ids if a not in entries]}


@router.get("/export")
def export_archived_users(db: Session = Depends(get_db), _: User = Depends(admin_only)):
	data = read_archive_table(db, ArchivedUser.__tablename__, ARCHIVE_USER_COLUMNS)
	columns = [(c.replace("_", " ").title(), c) for c in ARCHIVE_USER_COLUMNS]
	content = build_workbook(data["records"], columns, sheet_name="Archived Accounts")
	stamp = datetime.utcnow().strftime("%Y%m%d")
	return xlsx_response(content, f"archived_accounts_{stamp}.xlsx")


@router.get("/students")
def list_archived_students(db: Session = Depends(get_db), _: User = Depends(admin_only)):
	return read_archive_table(db, ArchivedStudent.__tablename__, ARCHIVE_STUDENT_COLUMNS)


@router.post("/students")
def archive_students(req: ArchiveStudentsRequest, db: Session = Depends(get_db), admin: User = Depends(admin_only)):
	if not req.student_ids:
		raise HTTPException(status_code=400, detail="No students selected")
	archived: List[Dict[str, Any]] = []
	failures: List[Dict[str, Any]] = []
	for student_id in req.student_ids:
		student = db.get(Student, student_id)
		if student is None:
			failures.append({"student_id": student_id, "error": "Student not found."})
			continue
		row = archive_student(db, student, admin, req.reason)
		db.flush()
		archived.append({"student_id": student_id, "archive_id": row.archive_id})
	db.commit()
	return {"archived": archived, "failures": failures}


@router.post("/students/restore")
def restore_students(req: ArchiveIdsRequest, db: Session = Depends(get_db), _: User = Depends(admin_only)):
	if not req.archive_ids:
		raise HTTPException(status_code=400, detail="No archive entries selected")
	restored: List[Dict[str, Any]] = []
	errors: List[Dict[str, Any]] = []
	table, entries = load_archive_entries(db, ArchivedStudent.__tablename__, ARCHIVE_STUDENT_COLUMNS, req.archive_ids)
	for archive_id in req.archive_ids:
		entry = entries.get(archive_id)
		if entry is None:
			errors.append({"archive_id": archive_id, "error": "Archive entry not found."})
			continue
		if not entry["lrn"] or entry["grade"] is None:
			errors.append({"archive_id": archive_id, "error": "Archive entry has no LRN or grade."})
			continue
		if db.query(Student).filter(Student.lrn == entry["lrn"]).first() is not None:
			errors.append({"archive_id": archive_id, "error": "LRN is already in use."})
			continue
		if entry["student_id"] is not None and db.get(Student, entry["student_id"]) is not None:
			errors.append({"archive_id": archive_id, "error": "Student id is already in use."})
			continue
		student = Student(
			lrn=entry["lrn"],
			first_name=entry["first_name"] or "Restored",
			middle_name=entry["middle_name"],
			last_name=entry["last_name"] or "Student",
			grade=entry["grade"],
			section=entry["section"],
			gender=entry["gender"],
			guardian_name=entry["guardian_name"],
			guardian_contact=entry["guardian_contact"],
		)
		if entry["student_id"] is not None:
			student.student_id = entry["student_id"]
		db.add(student)
		_delete_archive_entry(db, table, archive_id)
		db.flush()
		restored.append({"archive_id": archive_id, "student_id": student.student_id, "lrn": student.lrn})
	db.commit()
	return {"restored": restored, "errors": errors}
