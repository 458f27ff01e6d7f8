from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..fallback import AIFallbackService, get_ai_service
from .. import repository

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db), service: AIFallbackService = Depends(get_ai_service)):
	ai = service.health()
	return {
		"status": "ok",
		"database": "ok" if repository.is_available(db) else "unavailable",
		"ai": {"overall_status": ai["overall_status"], "health_score": ai["health_score"]},
	}
