from __future__ import annotations

import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from .models import PhonemicLevel, Role, Subject, User
from .routers.auth import hash_password
from .settings import settings


logger = logging.getLogger(__name__)

READING_LEVELS = ["Non-Reader", "Syllable", "Word", "Phrase", "Sentence", "Paragraph"]
MATH_LEVELS = ["Not Proficient", "Low Proficient", "Nearly Proficient", "Proficient", "Highly Proficient"]

SUBJECT_LEVELS: Dict[str, List[str]] = {
	"English": READING_LEVELS,
	"Filipino": READING_LEVELS,
	"Math": MATH_LEVELS,
}


def seed_reference_data(db: Session) -> int:
	"""Insert subjects and their ordered phonemic levels; returns rows added."""
	added = 0
	for subject_name, levels in SUBJECT_LEVELS.items():
		subject = db.query(Subject).filter(Subject.subject_name == subject_name).first()
		if subject is None:
			subject = Subject(subject_name=subject_name)
			db.add(subject)
			db.flush()
			added += 1
		existing = {lvl.level_name for lvl in subject.levels}
		for order, level_name in enumerate(levels, 1):
			if level_name in existing:
				continue
			db.add(PhonemicLevel(subject_id=subject.subject_id, level_name=level_name, level_order=order))
			added += 1
	db.commit()
	if added:
		logger.info("Seeded %d subject/phonemic level rows", added)
	return added


def seed_super_admin(db: Session) -> User | None:
	username = settings.seed_super_admin_username
	password = settings.seed_super_admin_password
	if not username or not password:
		return None
	user = db.query(User).filter(User.username == username).first()
	if user is not None:
		return user
	user = User(
		username=username,
		email=settings.seed_super_admin_email.strip().lower(),
		password_hash=hash_password(password),
		first_name="Super",
		last_name="Admin",
		role=Role.SUPER_ADMIN,
	)
	db.add(user)
	db.commit()
	logger.info("Seeded super admin account %s", username)
	return user
