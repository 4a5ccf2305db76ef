from __future__ import annotations
from typing import Set
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./schoolhub.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


def table_exists(table_name: str) -> bool:
	return inspect(engine).has_table(table_name)


def table_columns(table_name: str) -> Set[str]:
	"""Column names of ``table_name`` as currently present in the database.

	Returns an empty set when the table is missing, so callers can treat a
	legacy schema without the table like one without the columns.
	"""
	inspector = inspect(engine)
	if not inspector.has_table(table_name):
		return set()
	return {c["name"] for c in inspector.get_columns(table_name)}


# Best-effort additive migrations for databases created by older releases
_LEGACY_COLUMNS = {
	"users": {
		"middle_name": "VARCHAR(80)",
		"suffix": "VARCHAR(20)",
		"phone_number": "VARCHAR(20)",
		"section": "VARCHAR(40)",
		"subjects": "VARCHAR(200)",
		"updated_at": "DATETIME",
	},
	"students": {
		"guardian_name": "VARCHAR(160)",
		"guardian_contact": "VARCHAR(20)",
		"updated_at": "DATETIME",
	},
	"assessment_questions": {
		"section_key": "VARCHAR(100)",
		"section_title": "VARCHAR(255)",
		"section_description": "TEXT",
	},
}


def ensure_schema() -> list[str]:
	applied: list[str] = []
	for table, columns in _LEGACY_COLUMNS.items():
		existing = table_columns(table)
		if not existing:
			continue
		with engine.begin() as conn:
			for name, ddl in columns.items():
				if name not in existing:
					conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
					applied.append(f"{table}.{name}")
	return applied
