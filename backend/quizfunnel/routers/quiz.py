from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from ..content_registry import content_registry
from ..db import get_db
from ..documents import LegacyUserStore, get_document_store
from ..quiz import QUIZ_STEPS, QuizData, is_complete, next_step, quiz_fields
from .. import repository
from .auth import User, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/quiz", tags=["quiz"])

QUIZ_SECTION = "quiz"
JOURNEY_TITLE = "My Learning Journey"


class LegacySaveRequest(BaseModel):
	name: Optional[str] = None
	quiz_data: Optional[Dict[str, Any]] = None
	generated_content: Optional[Dict[str, Any]] = None
	is_partial: bool = False


class QuizDataRequest(BaseModel):
	quiz_data: Optional[Dict[str, Any]] = None
	generated_content: Optional[Dict[str, Any]] = None
	first_name: Optional[str] = None
	last_name: Optional[str] = None


class NextStepRequest(BaseModel):
	quiz_data: Dict[str, Any] = {}


def _parse_quiz(raw: Dict[str, Any]) -> QuizData:
	try:
		return QuizData.model_validate(raw)
	except ValidationError as err:
		fields = sorted({".".join(str(p) for p in e["loc"]) for e in err.errors()})
		raise HTTPException(status_code=400, detail=f"invalid quiz data: {', '.join(fields)}")


# ---- legacy document store ----

@router.post("/save")
def save_legacy(
	req: LegacySaveRequest,
	user: User = Depends(get_current_user),
	store: LegacyUserStore = Depends(get_document_store),
):
	if req.quiz_data is None and req.generated_content is None:
		raise HTTPException(status_code=400, detail="quiz_data or generated_content is required")
	doc = store.save_quiz(
		user.email,
		name=req.name or user.name,
		quiz_data=req.quiz_data,
		generated_content=req.generated_content,
		is_partial=req.is_partial,
	)
	return {"success": True, "user": doc}


@router.get("/save")
def load_legacy(user: User = Depends(get_current_user), store: LegacyUserStore = Depends(get_document_store)):
	doc = store.get_quiz(user.email)
	if doc is None:
		raise HTTPException(status_code=404, detail="No saved quiz for this user")
	return {"success": True, **doc}


# ---- relational store ----

@router.post("/data")
def save_quiz_data(req: QuizDataRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if req.quiz_data is None:
		raise HTTPException(status_code=400, detail="quiz_data is required")
	quiz = _parse_quiz(req.quiz_data)
	profile = repository.create_or_update_user(
		db, user.email,
		first_name=req.first_name,
		last_name=req.last_name,
		metadata={"user_type": quiz.user_type} if quiz.user_type else None,
	)
	repository.save_section_data(db, profile.id, QUIZ_SECTION, quiz.model_dump(mode="json"))
	for section_type, value in quiz_fields(quiz).items():
		repository.save_section_data(db, profile.id, section_type, {"value": value})
	if req.generated_content:
		repository.save_generated_content(db, profile.id, QUIZ_SECTION, "", req.generated_content, {"source": "quiz"})

	journey = None
	complete = is_complete(quiz)
	if complete:
		journeys = repository.get_user_journeys(db, profile.id)
		journey = journeys[0] if journeys else repository.create_journey(db, profile.id, JOURNEY_TITLE)
	# section content built from the previous answers is stale now
	content_registry.forget(user.email)
	logger.info("Saved quiz data for %s (complete=%s)", user.email, complete)
	return {
		"success": True,
		"user": repository.user_to_dict(profile),
		"next_step": next_step(quiz),
		"is_complete": complete,
		"journey": repository.journey_to_dict(journey) if journey else None,
	}


@router.get("/data")
def get_quiz_data(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	bundle = repository.get_user_data_by_email(db, user.email)
	if bundle is None:
		raise HTTPException(status_code=404, detail="No quiz data for this user")
	sections = bundle["sections"]
	return {
		"success": True,
		"user": repository.user_to_dict(bundle["user"]),
		"quiz_data": sections.get(QUIZ_SECTION),
		"sections": sections,
		"generated_content": [repository.content_to_dict(c) for c in bundle["generated_content"]],
		"journeys": [repository.journey_to_dict(j) for j in bundle["journeys"]],
	}


@router.post("/next-step")
def quiz_next_step(req: NextStepRequest):
	quiz = _parse_quiz(req.quiz_data)
	step = next_step(quiz)
	return {"next_step": step, "is_complete": step == "complete", "steps": QUIZ_STEPS}
