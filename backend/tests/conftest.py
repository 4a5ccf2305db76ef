import itertools
import os
import tempfile

# Settings are read at import time, so the environment must be in place first
_TMP_DIR = tempfile.mkdtemp(prefix="schoolhub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["APP_BASE_URL"] = "http://testserver"
os.environ["SEED_SUPER_ADMIN_USERNAME"] = ""
os.environ["SEED_SUPER_ADMIN_PASSWORD"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["SPEECH_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from schoolhub.db import Base, SessionLocal, engine
from schoolhub.main import app
from schoolhub.models import PhonemicLevel, Role, Student, StudentSubjectLevel, Subject, User
from schoolhub.routers.auth import hash_password
from schoolhub.seed import seed_reference_data

PASSWORD = "Secret123!"


@pytest.fixture(autouse=True)
def reset_db():
	Base.metadata.drop_all(bind=engine)
	Base.metadata.create_all(bind=engine)
	db = SessionLocal()
	try:
		seed_reference_data(db)
	finally:
		db.close()
	yield


@pytest.fixture
def db():
	session = SessionLocal()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def client():
	with TestClient(app) as c:
		yield c


def login(client, username, password=PASSWORD):
	r = client.post("/auth/token", data={"username": username, "password": password})
	assert r.status_code == 200, r.text
	return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def make_user(db):
	counter = itertools.count(1)

	def _make(role=Role.TEACHER, **fields):
		n = next(counter)
		user = User(
			username=fields.pop("username", f"{role}{n}"),
			email=fields.pop("email", f"{role}{n}@school.local"),
			password_hash=hash_password(PASSWORD),
			first_name=fields.pop("first_name", "Test"),
			last_name=fields.pop("last_name", f"User{n}"),
			role=role,
			**fields,
		)
		db.add(user)
		db.commit()
		db.refresh(user)
		return user

	return _make


@pytest.fixture
def make_student(db):
	def _make(lrn, grade=3, levels=None, **fields):
		student = Student(
			lrn=lrn,
			first_name=fields.pop("first_name", "Juan"),
			last_name=fields.pop("last_name", f"Student{lrn[-3:]}"),
			grade=grade,
			**fields,
		)
		for subject_name, level_name in (levels or {}).items():
			subject = db.query(Subject).filter(Subject.subject_name == subject_name).one()
			level = (
				db.query(PhonemicLevel)
				.filter(PhonemicLevel.subject_id == subject.subject_id, PhonemicLevel.level_name == level_name)
				.one()
			)
			student.levels.append(StudentSubjectLevel(subject_id=subject.subject_id, phonemic_id=level.phonemic_id))
		db.add(student)
		db.commit()
		db.refresh(student)
		return student

	return _make


@pytest.fixture
def admin(make_user):
	return make_user(Role.SUPER_ADMIN, username="admin", email="admin@school.local", first_name="Ada", last_name="Admin")


@pytest.fixture
def admin_headers(client, admin):
	return login(client, admin.username)


@pytest.fixture
def coordinator(make_user):
	return make_user(Role.COORDINATOR, username="coord", email="coord@school.local", grade="3", phone_number="09171234567")


@pytest.fixture
def coordinator_headers(client, coordinator):
	return login(client, coordinator.username)


@pytest.fixture
def teacher(make_user):
	return make_user(Role.TEACHER, username="teach", email="teach@school.local", grade="3", phone_number="09181234567")


@pytest.fixture
def teacher_headers(client, teacher):
	return login(client, teacher.username)
