from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession, Journey
from .settings import settings

logger = logging.getLogger(__name__)


def purge_stale_rows(db: Session, days: Optional[int] = None) -> int:
	threshold = datetime.utcnow() - timedelta(days=days if days is not None else settings.retention_days)
	removed = 0

	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	removed += res.rowcount or 0

	# Journeys nobody shared and nobody added a section to
	stale = db.query(Journey).filter(Journey.updated_at < threshold, Journey.is_public.is_(False)).all()
	for journey in stale:
		if not journey.sections:
			db.delete(journey)
			removed += 1

	db.commit()
	if removed:
		logger.info("Cleanup removed %d stale rows", removed)
	return removed
