from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession
from .settings import settings


def purge_expired_sessions(db: Session, now: Optional[datetime] = None) -> int:
	# A session outlives its token by at most one token lifetime of inactivity
	threshold = (now or datetime.utcnow()) - timedelta(minutes=settings.access_token_expire_minutes)
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	db.commit()
	return res.rowcount or 0
