import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from .cleanup import purge_expired_sessions
from .db import Base, SessionLocal, engine, ensure_schema
from .logging_config import configure_logging
from .routers import accounts, archive, assessments, assignments, auth, health, remedial, students
from .seed import seed_reference_data, seed_super_admin
from .settings import settings

logger = logging.getLogger(__name__)

app = FastAPI(title="SchoolHub Remedial API")
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(accounts.router)
app.include_router(archive.router)
app.include_router(students.router)
app.include_router(students.teacher_router)
app.include_router(assignments.router)
app.include_router(remedial.router)
app.include_router(assessments.router)

_cleanup_task: Optional[asyncio.Task] = None


@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"speech_enabled": settings.speech_enabled,
	}


def _purge_sessions() -> None:
	db = SessionLocal()
	try:
		removed = purge_expired_sessions(db)
		if removed:
			logger.info("Purged %d expired session(s)", removed)
	except SQLAlchemyError:
		logger.exception("Session cleanup failed")
	finally:
		db.close()


async def _cleanup_watcher():
	# Startup already ran one purge; repeat daily
	while True:
		await asyncio.sleep(24 * 60 * 60)
		_purge_sessions()


@app.on_event("startup")
async def startup_event():
	global _cleanup_task
	configure_logging()
	Base.metadata.create_all(bind=engine)
	applied = ensure_schema()
	if applied:
		logger.info("Applied schema updates: %s", ", ".join(applied))
	db = SessionLocal()
	try:
		seed_reference_data(db)
		seed_super_admin(db)
	finally:
		db.close()
	_purge_sessions()
	_cleanup_task = asyncio.create_task(_cleanup_watcher())


@app.on_event("shutdown")
async def shutdown_event():
	if _cleanup_task is not None:
		_cleanup_task.cancel()
