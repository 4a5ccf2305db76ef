from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..settings import settings
from ..db import get_db
from ..models import AuthSession, Role, User
from ..validation import (
	ValidationError,
	normalize_role,
	sanitize_email,
	sanitize_name_part,
	sanitize_optional,
	sanitize_phone_number,
)

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"
	role: str


class Me(BaseModel):
	user_id: int
	username: str
	email: str
	role: str
	role_label: str
	name: str


class Profile(BaseModel):
	user_id: int
	username: str
	role: str
	first_name: str
	middle_name: Optional[str] = None
	last_name: str
	suffix: Optional[str] = None
	email: str
	phone_number: Optional[str] = None


class ProfileUpdate(BaseModel):
	first_name: Optional[str] = None
	middle_name: Optional[str] = None
	last_name: Optional[str] = None
	suffix: Optional[str] = None
	email: Optional[str] = None
	phone_number: Optional[str] = None


class PasswordChange(BaseModel):
	current_password: str
	new_password: str


def _truncate(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_truncate(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	try:
		return pwd_context.verify(_truncate(plain_password), hashed_password)
	except ValueError:
		# Unrecognised hash format in a legacy row
		return False


def authenticate_user(db: Session, login: str, password: str) -> Optional[User]:
	login = (login or "").strip()
	if not login or not password:
		return None
	row = (
		db.query(User)
		.filter(or_(User.username == login, func.lower(User.email) == login.lower()))
		.first()
	)
	if row and verify_password(password, row.password_hash):
		return row
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=1)
	return datetime.now(timezone.utc) + delta


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def issue_session_token(db: Session, user: User) -> str:
	session_id = uuid.uuid4().hex
	token = create_access_token({"sub": str(user.user_id), "jti": session_id, "role": user.role})
	db.add(AuthSession(session_id=session_id, user_id=user.user_id))
	db.commit()
	return token


def revoke_user_sessions(db: Session, user_id: int) -> int:
	"""Delete every session of a user. The caller commits."""
	return db.query(AuthSession).filter(AuthSession.user_id == user_id).delete(synchronize_session=False)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		logger.info("Failed login for %s", form_data.username)
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	access_token = issue_session_token(db, user)
	return Token(access_token=access_token, role=normalize_role(user.role))


def _decode(token: str) -> tuple[int, str]:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		sub: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if sub is None or jti is None:
			raise credentials_exception
		return int(sub), jti
	except (JWTError, ValueError):
		raise credentials_exception


def get_current_session(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> AuthSession:
	user_id, jti = _decode(token)
	row = db.get(AuthSession, jti)
	if not row or row.user_id != user_id:
		raise HTTPException(status_code=401, detail="Could not validate credentials")
	row.last_activity_at = datetime.utcnow()
	db.commit()
	return row


def get_current_user(session: AuthSession = Depends(get_current_session), db: Session = Depends(get_db)) -> User:
	user = db.get(User, session.user_id)
	if user is None:
		raise HTTPException(status_code=401, detail="Could not validate credentials")
	return user


def require_roles(*roles: str) -> Callable[..., User]:
	allowed = {normalize_role(r) for r in roles}

	def dependency(user: User = Depends(get_current_user)) -> User:
		if normalize_role(user.role) not in allowed:
			raise HTTPException(status_code=403, detail="You do not have access to this resource")
		return user

	return dependency


@router.get("/me", response_model=Me)
async def me(user: User = Depends(get_current_user)):
	role = normalize_role(user.role)
	return Me(
		user_id=user.user_id,
		username=user.username,
		email=user.email,
		role=role,
		role_label=Role.LABELS.get(role, role),
		name=user.full_name,
	)


@router.post("/logout")
async def logout(session: AuthSession = Depends(get_current_session), db: Session = Depends(get_db)):
	db.delete(session)
	db.commit()
	return {"ok": True}


def _profile(user: User) -> Profile:
	return Profile(
		user_id=user.user_id,
		username=user.username,
		role=normalize_role(user.role),
		first_name=user.first_name,
		middle_name=user.middle_name,
		last_name=user.last_name,
		suffix=user.suffix,
		email=user.email,
		phone_number=user.phone_number,
	)


@router.get("/profile", response_model=Profile)
async def get_profile(user: User = Depends(get_current_user)):
	return _profile(user)


@router.put("/profile", response_model=Profile)
def update_profile(req: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	"""Update the signed-in user's own name and contact details.

	Only the fields sent are changed. Role, grade and subjects stay with the
	super admin's account screens.
	"""
	changes = req.model_dump(exclude_unset=True)
	try:
		if "first_name" in changes:
			user.first_name = sanitize_name_part(req.first_name, "First name")
		if "last_name" in changes:
			user.last_name = sanitize_name_part(req.last_name, "Last name")
		if "middle_name" in changes:
			user.middle_name = sanitize_optional(req.middle_name)
		if "suffix" in changes:
			user.suffix = sanitize_optional(req.suffix)
		if "phone_number" in changes:
			if normalize_role(user.role) in Role.STAFF or sanitize_optional(req.phone_number):
				user.phone_number = sanitize_phone_number(req.phone_number)
			else:
				user.phone_number = None
		if "email" in changes:
			email = sanitize_email(req.email)
			taken = (
				db.query(User.user_id)
				.filter(func.lower(User.email) == email, User.user_id != user.user_id)
				.first()
			)
			if taken:
				db.rollback()
				raise HTTPException(status_code=409, detail="Email already exists.")
			user.email = email
	except ValidationError as e:
		db.rollback()
		raise HTTPException(status_code=400, detail=str(e))
	db.commit()
	db.refresh(user)
	return _profile(user)


@router.post("/password")
def change_password(
	req: PasswordChange,
	session: AuthSession = Depends(get_current_session),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	"""Replace the signed-in user's password and sign out their other sessions."""
	if not verify_password(req.current_password, user.password_hash):
		raise HTTPException(status_code=400, detail="Current password is incorrect")
	if len(req.new_password) < 8:
		raise HTTPException(status_code=400, detail="New password must be at least 8 characters")
	if req.new_password == req.current_password:
		raise HTTPException(status_code=400, detail="New password must differ from the current one")
	user.password_hash = hash_password(req.new_password)
	revoked = (
		db.query(AuthSession)
		.filter(AuthSession.user_id == user.user_id, AuthSession.session_id != session.session_id)
		.delete(synchronize_session=False)
	)
	db.commit()
	logger.info("Password changed for %s; %d other session(s) revoked", user.username, revoked)
	return {"ok": True, "revoked_sessions": revoked}
