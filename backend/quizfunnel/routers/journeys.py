from __future__ import annotations
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..documents import LegacyUserStore, QuizNotComplete, get_document_store
from ..models import UserProfile
from ..sections import SECTION_SCHEMAS
from ..settings import settings
from .. import repository
from .auth import User, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["journeys"])


class JourneyCreate(BaseModel):
	title: Optional[str] = None
	sections: List[str] = Field(default_factory=list)


class JourneySection(BaseModel):
	section_id: Optional[str] = None


class ShareRequest(BaseModel):
	journey_id: Optional[str] = None


class LegacyShareRequest(BaseModel):
	viewed_sections: List[str] = Field(default_factory=list)


def _base_url(request: Request) -> str:
	return (settings.public_base_url or request.headers.get("origin") or str(request.base_url)).rstrip("/")


def _profile(db: Session, user: User) -> UserProfile:
	profile = repository.get_user_by_email(db, user.email)
	if profile is None:
		raise HTTPException(status_code=404, detail="User not found")
	return profile


@router.get("/journeys")
def list_journeys(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	profile = repository.get_user_by_email(db, user.email)
	journeys = repository.get_user_journeys(db, profile.id) if profile else []
	return {"journeys": [repository.journey_to_dict(j) for j in journeys]}


@router.post("/journeys", status_code=201)
def create_journey(req: JourneyCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	title = (req.title or "").strip()
	if not title:
		raise HTTPException(status_code=400, detail="title is required")
	profile = repository.create_or_update_user(db, user.email)
	journey = repository.create_journey(db, profile.id, title, req.sections)
	return repository.journey_to_dict(journey)


@router.post("/journeys/{journey_id}/sections")
def add_journey_section(
	journey_id: str,
	req: JourneySection,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if not req.section_id:
		raise HTTPException(status_code=400, detail="section_id is required")
	profile = _profile(db, user)
	journey = repository.get_journey(db, journey_id, user_id=profile.id)
	if journey is None:
		raise HTTPException(status_code=404, detail="Journey not found")
	journey = repository.add_section_to_journey(db, journey, req.section_id)
	return repository.journey_to_dict(journey)


@router.post("/journey/share")
def share_journey(req: ShareRequest, request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.journey_id:
		raise HTTPException(status_code=400, detail="journey_id is required")
	profile = _profile(db, user)
	journey = repository.get_journey(db, req.journey_id, user_id=profile.id)
	if journey is None:
		raise HTTPException(status_code=404, detail="Journey not found")
	journey = repository.share_journey(db, journey)
	return {
		"success": True,
		"share_id": journey.share_id,
		"share_url": f"{_base_url(request)}/journey/{journey.share_id}",
	}


@router.get("/share/journey/{share_id}")
def public_journey(share_id: str, db: Session = Depends(get_db)):
	journey = repository.get_public_journey(db, share_id)
	if journey is None:
		raise HTTPException(status_code=404, detail="Shared journey not found")
	owner = db.get(UserProfile, journey.user_id)
	if owner is None:
		raise HTTPException(status_code=404, detail="Journey owner not found")

	# Latest generated content per viewed section
	latest = {}
	for row in repository.get_generated_content(db, owner.id):
		latest[row.section_type] = row
	sections = []
	for section_id in journey.sections or []:
		row = latest.get(section_id)
		if row is None:
			continue
		schema = SECTION_SCHEMAS.get(section_id)
		sections.append(
			{
				"id": row.id,
				"type": section_id,
				"title": schema.name if schema else section_id,
				"content": row.response,
				"created_at": row.created_at.isoformat() if row.created_at else None,
			}
		)
	quiz = repository.get_section_data(db, owner.id, "quiz")
	return {
		"success": True,
		"data": {
			"journey_id": journey.id,
			"title": journey.title,
			"owner_name": owner.display_name or "Anonymous",
			"created_at": journey.created_at.isoformat() if journey.created_at else None,
			"view_count": journey.view_count,
			"sections": sections,
			"quiz_data": quiz.data if quiz else None,
		},
	}


# ---- legacy document store share links ----

@router.post("/share/journey")
def legacy_share(
	req: LegacyShareRequest,
	request: Request,
	user: User = Depends(get_current_user),
	store: LegacyUserStore = Depends(get_document_store),
):
	try:
		journey = store.share_journey(user.email, req.viewed_sections)
	except QuizNotComplete as err:
		raise HTTPException(status_code=400, detail=str(err))
	return {
		"success": True,
		"share_id": journey["share_id"],
		"share_url": f"{_base_url(request)}/shared/{journey['share_id']}",
		"viewed_sections": journey["viewed_sections"],
	}


@router.get("/share/journey")
def legacy_share_status(
	request: Request,
	user: User = Depends(get_current_user),
	store: LegacyUserStore = Depends(get_document_store),
):
	journey = store.get_share_status(user.email)
	if not journey or not journey.get("share_id"):
		return {"shared": False}
	return {
		"shared": True,
		"share_id": journey["share_id"],
		"share_url": f"{_base_url(request)}/shared/{journey['share_id']}",
		"view_count": journey.get("view_count", 0),
		"viewed_sections": journey.get("viewed_sections") or [],
	}


@router.get("/share/{share_id}")
def legacy_shared_journey(share_id: str, store: LegacyUserStore = Depends(get_document_store)):
	try:
		shared = store.get_shared_journey(share_id)
	except QuizNotComplete as err:
		raise HTTPException(status_code=400, detail=str(err))
	if shared is None:
		raise HTTPException(status_code=404, detail="Shared journey not found")
	return {"success": True, "data": shared}
