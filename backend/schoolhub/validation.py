from __future__ import annotations

import re
import secrets
import string
from typing import Any, Dict, List, Optional

from .models import Role


class ValidationError(ValueError):
	"""Raised for user input that cannot be accepted; routers map it to 400."""


class DuplicateError(ValidationError):
	"""The record collides with an existing one (email, LRN, id); mapped to 409."""


EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ROLE_ALIASES: Dict[str, str] = {
	"admin": Role.SUPER_ADMIN,
	"it_admin": Role.SUPER_ADMIN,
	"itadmin": Role.SUPER_ADMIN,
	"superadmin": Role.SUPER_ADMIN,
	"masterteacher": Role.MASTER_TEACHER,
	"mt_coordinator": Role.COORDINATOR,
	"master_teacher_coordinator": Role.COORDINATOR,
	"masterteacher_coordinator": Role.COORDINATOR,
	"remedial": Role.REMEDIAL_TEACHER,
	"master_remedial": Role.REMEDIAL_TEACHER,
	"remedialteacher": Role.REMEDIAL_TEACHER,
	"regular_teacher": Role.TEACHER,
}


def sanitize_name_part(value: Any, field: str) -> str:
	if not isinstance(value, str):
		raise ValidationError(f"{field} is required.")
	trimmed = value.strip()
	if len(trimmed) < 2:
		raise ValidationError(f"{field} must be at least 2 characters.")
	return trimmed


def sanitize_optional(value: Any) -> Optional[str]:
	if value is None:
		return None
	trimmed = str(value).strip()
	return trimmed or None


def sanitize_email(value: Any) -> str:
	if not isinstance(value, str):
		raise ValidationError("Email is required.")
	normalized = value.strip().lower()
	if not EMAIL_REGEX.match(normalized):
		raise ValidationError("Invalid email format.")
	return normalized


def sanitize_phone_number(value: Any) -> str:
	if value is None:
		raise ValidationError("Phone number is required.")
	digits = re.sub(r"\D", "", str(value))
	if len(digits) < 10 or len(digits) > 11:
		raise ValidationError("Phone number must contain 10 to 11 digits.")
	return digits


def sanitize_grade(value: Any) -> int:
	"""Accept 3, "3", "Grade 3" or 3.0 and return the grade number."""
	if isinstance(value, bool):
		raise ValidationError("Grade is required.")
	if isinstance(value, (int, float)):
		numeric = int(value)
	elif isinstance(value, str) and value.strip():
		match = re.search(r"\d+", value)
		if not match:
			raise ValidationError("Grade must contain a number.")
		numeric = int(match.group(0))
	else:
		raise ValidationError("Grade is required.")
	if numeric <= 0:
		raise ValidationError("Grade must be a positive number.")
	return numeric


def sanitize_subjects(value: Any) -> List[str]:
	if isinstance(value, (list, tuple)):
		items = [str(v).strip() for v in value]
	elif isinstance(value, str):
		items = [part.strip() for part in re.split(r"[,/]", value)]
	else:
		return []
	return [item for item in items if item]


def normalize_role(value: Optional[str]) -> str:
	if not value:
		return ""
	normalized = re.sub(r"[\s/\-]+", "_", value.strip().lower())
	return ROLE_ALIASES.get(normalized, normalized)


def require_role(value: Optional[str]) -> str:
	role = normalize_role(value)
	if role not in Role.ALL:
		raise ValidationError(f"Unknown role: {value!r}.")
	return role


def split_name_parts(name: Optional[str]) -> Dict[str, Optional[str]]:
	"""Split a display name into first / middle / last.

	One word is a first name only; with three or more words everything
	between the first and the last word is the middle name.
	"""
	parts = [p for p in (name or "").split() if p]
	if not parts:
		return {"first_name": None, "middle_name": None, "last_name": None}
	if len(parts) == 1:
		return {"first_name": parts[0], "middle_name": None, "last_name": None}
	if len(parts) == 2:
		return {"first_name": parts[0], "middle_name": None, "last_name": parts[1]}
	return {"first_name": parts[0], "middle_name": " ".join(parts[1:-1]), "last_name": parts[-1]}


def build_full_name(first_name: str, middle_name: Optional[str], last_name: str, suffix: Optional[str] = None) -> str:
	parts = [first_name, middle_name, last_name, suffix]
	return " ".join(p.strip() for p in parts if p and p.strip())


def generate_temporary_password(length: int = 10) -> str:
	alphabet = string.ascii_letters + string.digits
	return "".join(secrets.choice(alphabet) for _ in range(length))


def sanitize_lrn(value: Any) -> str:
	"""Learner Reference Numbers are 12 digits; spaces and dashes are dropped."""
	if value is None:
		raise ValidationError("LRN is required.")
	digits = re.sub(r"[\s\-]", "", str(value))
	if digits.endswith(".0"):
		# Spreadsheet cells sometimes come back as floats
		digits = digits[:-2]
	if not digits.isdigit() or len(digits) != 12:
		raise ValidationError("LRN must be a 12-digit number.")
	return digits
