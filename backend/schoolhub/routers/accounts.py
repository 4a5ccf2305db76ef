from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import re

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db, table_exists
from ..excel import (
	ACCOUNT_COLUMNS,
	ACCOUNT_REQUIRED,
	SpreadsheetError,
	build_workbook,
	read_records,
	read_upload,
	xlsx_response,
)
from ..models import ArchivedStudent, ArchivedUser, Assessment, Role, Student, User
from ..settings import settings
from ..validation import (
	ROLE_ALIASES,
	DuplicateError,
	ValidationError,
	generate_temporary_password,
	normalize_role,
	require_role,
	sanitize_email,
	sanitize_grade,
	sanitize_name_part,
	sanitize_optional,
	sanitize_phone_number,
	sanitize_subjects,
)
from .auth import hash_password, require_roles

router = APIRouter(prefix="/api/super_admin", tags=["super_admin"])

logger = logging.getLogger(__name__)

admin_only = require_roles(Role.SUPER_ADMIN)


class AccountCreate(BaseModel):
	role: str
	first_name: str
	middle_name: Optional[str] = None
	last_name: str
	suffix: Optional[str] = None
	email: str
	phone_number: Optional[str] = None
	grade: Optional[Any] = None
	section: Optional[str] = None
	subjects: Optional[Any] = None
	username: Optional[str] = None


class AccountUpdate(BaseModel):
	role: Optional[str] = None
	first_name: Optional[str] = None
	middle_name: Optional[str] = None
	last_name: Optional[str] = None
	suffix: Optional[str] = None
	email: Optional[str] = None
	phone_number: Optional[str] = None
	grade: Optional[Any] = None
	section: Optional[str] = None
	subjects: Optional[Any] = None


class AccountOut(BaseModel):
	user_id: int
	username: str
	email: str
	role: str
	role_label: str
	name: str
	first_name: str
	middle_name: Optional[str] = None
	last_name: str
	suffix: Optional[str] = None
	phone_number: Optional[str] = None
	grade: Optional[str] = None
	section: Optional[str] = None
	subjects: List[str] = []
	created_at: datetime


class AccountCreated(BaseModel):
	account: AccountOut
	temporary_password: str


def account_out(user: User) -> AccountOut:
	role = normalize_role(user.role)
	return AccountOut(
		user_id=user.user_id,
		username=user.username,
		email=user.email,
		role=role,
		role_label=Role.LABELS.get(role, role),
		name=user.full_name,
		first_name=user.first_name,
		middle_name=user.middle_name,
		last_name=user.last_name,
		suffix=user.suffix,
		phone_number=user.phone_number,
		grade=user.grade,
		section=user.section,
		subjects=sanitize_subjects(user.subjects),
		created_at=user.created_at,
	)


def email_taken(db: Session, email: str, exclude_user_id: Optional[int] = None) -> bool:
	q = db.query(User).filter(func.lower(User.email) == email.lower())
	if exclude_user_id is not None:
		q = q.filter(User.user_id != exclude_user_id)
	return q.first() is not None


def unique_username(db: Session, email: str, preferred: Optional[str] = None) -> str:
	base = (preferred or "").strip() or re.sub(r"[^a-z0-9._]", "", email.split("@", 1)[0].lower()) or "user"
	candidate = base
	n = 1
	while db.query(User).filter(User.username == candidate).first() is not None:
		n += 1
		candidate = f"{base}{n}"
	return candidate


def _clean_account_fields(data: Dict[str, Any], role: str) -> Dict[str, Any]:
	"""Validate profile fields shared by create, update and upload.

	Phone numbers are required for staff accounts and optional for super admins.
	"""
	fields: Dict[str, Any] = {
		"first_name": sanitize_name_part(data.get("first_name"), "First name"),
		"middle_name": sanitize_optional(data.get("middle_name")),
		"last_name": sanitize_name_part(data.get("last_name"), "Last name"),
		"suffix": sanitize_optional(data.get("suffix")),
		"email": sanitize_email(data.get("email")),
		"section": sanitize_optional(data.get("section")),
	}
	phone = data.get("phone_number")
	if role in Role.STAFF or sanitize_optional(phone):
		fields["phone_number"] = sanitize_phone_number(phone)
	else:
		fields["phone_number"] = None
	grade = data.get("grade")
	fields["grade"] = str(sanitize_grade(grade)) if sanitize_optional(grade) is not None else None
	subjects = sanitize_subjects(data.get("subjects"))
	fields["subjects"] = ", ".join(subjects) if subjects else None
	return fields


def create_account(db: Session, data: Dict[str, Any], role: str) -> tuple[User, str]:
	"""Insert a user with a temporary password. The caller commits."""
	fields = _clean_account_fields(data, role)
	if email_taken(db, fields["email"]):
		raise DuplicateError("Email already exists.")
	password = generate_temporary_password()
	user = User(
		username=unique_username(db, fields["email"], data.get("username")),
		password_hash=hash_password(password),
		role=role,
		**fields,
	)
	db.add(user)
	db.flush()
	return user, password


def _role_filter(role: Optional[str]) -> Optional[str]:
	if not role:
		return None
	try:
		return require_role(role)
	except ValidationError as e:
		raise HTTPException(status_code=400, detail=str(e))


def _accounts_query(db: Session, role: Optional[str]):
	q = db.query(User)
	if role:
		# Legacy rows may still carry an alias such as "it_admin"
		q = q.filter(User.role.in_(_role_variants(role)))
	return q.order_by(User.last_name, User.first_name)


def _role_variants(role: str) -> List[str]:
	return [role] + [alias for alias, canonical in ROLE_ALIASES.items() if canonical == role]


@router.get("/accounts")
def list_accounts(
	role: Optional[str] = Query(default=None),
	db: Session = Depends(get_db),
	_: User = Depends(admin_only),
):
	users = _accounts_query(db, _role_filter(role)).all()
	return {"accounts": [account_out(u) for u in users], "total": len(users)}


@router.post("/accounts", response_model=AccountCreated, status_code=201)
def create_account_endpoint(req: AccountCreate, db: Session = Depends(get_db), admin: User = Depends(admin_only)):
	try:
		role = require_role(req.role)
		user, password = create_account(db, req.model_dump(), role)
	except DuplicateError as e:
		raise HTTPException(status_code=409, detail=str(e))
	except ValidationError as e:
		raise HTTPException(status_code=400, detail=str(e))
	db.commit()
	db.refresh(user)
	logger.info("Account %s (%s) created by %s", user.username, role, admin.username)
	return AccountCreated(account=account_out(user), temporary_password=password)


@router.get("/accounts/export")
def export_accounts(
	role: Optional[str] = Query(default=None),
	db: Session = Depends(get_db),
	_: User = Depends(admin_only),
):
	role = _role_filter(role)
	rows = [account_out(u).model_dump() for u in _accounts_query(db, role).all()]
	columns = [
		("User ID", "user_id"),
		("Username", "username"),
		("First Name", "first_name"),
		("Middle Name", "middle_name"),
		("Last Name", "last_name"),
		("Suffix", "suffix"),
		("Email", "email"),
		("Phone Number", "phone_number"),
		("Role", "role_label"),
		("Grade", "grade"),
		("Section", "section"),
		("Subjects", "subjects"),
		("Created At", "created_at"),
	]
	for row in rows:
		row["subjects"] = ", ".join(row["subjects"])
	content = build_workbook(rows, columns, sheet_name="Accounts")
	stamp = datetime.utcnow().strftime("%Y%m%d")
	return xlsx_response(content, f"{role or 'all'}_accounts_{stamp}.xlsx")


@router.post("/accounts/upload")
async def upload_accounts(
	role: str = Query(...),
	file: UploadFile = File(...),
	db: Session = Depends(get_db),
	admin: User = Depends(admin_only),
):
	"""Import accounts from the first sheet of an Excel file.

	Every row is validated on its own; bad rows are reported under
	``failures`` with their spreadsheet row number and do not stop the rest.
	Responds 200 when at least one account was created, otherwise 400.
	"""
	role = _role_filter(role)
	content = await read_upload(file, settings.max_upload_bytes)
	try:
		records = read_records(content, ACCOUNT_COLUMNS, ACCOUNT_REQUIRED)
	except SpreadsheetError as e:
		raise HTTPException(status_code=400, detail=str(e))
	if not records:
		raise HTTPException(status_code=400, detail="The spreadsheet has no data rows")

	inserted: List[Dict[str, Any]] = []
	failures: List[Dict[str, Any]] = []
	seen_emails: set[str] = set()
	for idx, record in enumerate(records):
		# Header is row 1
		row_number = idx + 2
		email = (record.get("email") or "").strip().lower()
		if email and email in seen_emails:
			failures.append({"row": row_number, "email": email, "error": "Duplicate email in upload."})
			continue
		try:
			user, password = create_account(db, record, role)
		except ValidationError as e:
			failures.append({"row": row_number, "email": email or None, "error": str(e)})
			continue
		seen_emails.add(user.email)
		inserted.append({
			"row": row_number,
			"user_id": user.user_id,
			"username": user.username,
			"email": user.email,
			"name": user.full_name,
			"temporary_password": password,
		})
	db.commit()
	logger.info("Account upload by %s: %d inserted, %d failed", admin.username, len(inserted), len(failures))
	body = {"role": role, "inserted": inserted, "failures": failures}
	return JSONResponse(status_code=200 if inserted else 400, content=body)


@router.put("/accounts/{user_id}", response_model=AccountOut)
def update_account(user_id: int, req: AccountUpdate, db: Session = Depends(get_db), _: User = Depends(admin_only)):
	user = db.get(User, user_id)
	if not user:
		raise HTTPException(status_code=404, detail="Account not found")
	changes = req.model_dump(exclude_unset=True)
	try:
		role = require_role(changes["role"]) if changes.get("role") else normalize_role(user.role)
		merged = {
			"first_name": user.first_name,
			"middle_name": user.middle_name,
			"last_name": user.last_name,
			"suffix": user.suffix,
			"email": user.email,
			"phone_number": user.phone_number,
			"grade": user.grade,
			"section": user.section,
			"subjects": user.subjects,
		}
		merged.update({k: v for k, v in changes.items() if k != "role"})
		fields = _clean_account_fields(merged, role)
	except ValidationError as e:
		raise HTTPException(status_code=400, detail=str(e))
	if email_taken(db, fields["email"], exclude_user_id=user.user_id):
		raise HTTPException(status_code=409, detail="Email already exists.")
	for key, value in fields.items():
		setattr(user, key, value)
	user.role = role
	db.commit()
	db.refresh(user)
	return account_out(user)


def _archive_count(db: Session, model) -> int:
	# Older databases may not have the archive tables yet
	if not table_exists(model.__tablename__):
		return 0
	return db.query(func.count()).select_from(model.__table__).scalar() or 0


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), _: User = Depends(admin_only)):
	accounts = {role: 0 for role in Role.ALL}
	for role, count in db.query(User.role, func.count(User.user_id)).group_by(User.role).all():
		key = normalize_role(role)
		accounts[key] = accounts.get(key, 0) + count
	students_per_grade = {
		str(grade): count
		for grade, count in db.query(Student.grade, func.count(Student.student_id)).group_by(Student.grade).order_by(Student.grade).all()
	}
	return {
		"accounts": accounts,
		"total_accounts": sum(accounts.values()),
		"students_per_grade": students_per_grade,
		"total_students": sum(students_per_grade.values()),
		"archived_users": _archive_count(db, ArchivedUser),
		"archived_students": _archive_count(db, ArchivedStudent),
		"published_assessments": db.query(func.count(Assessment.assessment_id)).filter(Assessment.is_published.is_(True)).scalar() or 0,
	}
