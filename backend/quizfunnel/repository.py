"""Relational persistence: profiles, section answers, generated content and journeys."""
from __future__ import annotations
import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from .models import UserProfile, SectionData, GeneratedContent, Journey

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
	return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> Optional[UserProfile]:
	return db.query(UserProfile).filter(UserProfile.email == _normalize_email(email)).first()


def create_or_update_user(
	db: Session,
	email: str,
	*,
	first_name: Optional[str] = None,
	last_name: Optional[str] = None,
	metadata: Optional[Dict[str, Any]] = None,
) -> UserProfile:
	email = _normalize_email(email)
	if not email:
		raise ValueError("email is required")
	user = get_user_by_email(db, email)
	if user is None:
		user = UserProfile(email=email, first_name=first_name, last_name=last_name, profile_metadata=metadata or {})
		db.add(user)
		logger.info("Creating user profile for %s", email)
	else:
		if first_name is not None:
			user.first_name = first_name
		if last_name is not None:
			user.last_name = last_name
		if metadata:
			merged = dict(user.profile_metadata or {})
			merged.update(metadata)
			user.profile_metadata = merged
	db.commit()
	db.refresh(user)
	return user


# ---- section answers ----

def save_section_data(db: Session, user_id: str, section_type: str, data: Dict[str, Any]) -> SectionData:
	row = (
		db.query(SectionData)
		.filter(SectionData.user_id == user_id, SectionData.section_type == section_type)
		.first()
	)
	if row is None:
		row = SectionData(user_id=user_id, section_type=section_type, data=data)
		db.add(row)
	else:
		row.data = data
		row.updated_at = datetime.utcnow()
		flag_modified(row, "data")
	db.commit()
	db.refresh(row)
	return row


def get_section_data(db: Session, user_id: str, section_type: str) -> Optional[SectionData]:
	return (
		db.query(SectionData)
		.filter(SectionData.user_id == user_id, SectionData.section_type == section_type)
		.first()
	)


def get_all_section_data(db: Session, user_id: str) -> List[SectionData]:
	return db.query(SectionData).filter(SectionData.user_id == user_id).order_by(SectionData.created_at.asc()).all()


# ---- generated content ----

def save_generated_content(
	db: Session,
	user_id: str,
	section_type: str,
	prompt: str,
	response: Any,
	metadata: Optional[Dict[str, Any]] = None,
) -> GeneratedContent:
	row = GeneratedContent(
		user_id=user_id,
		section_type=section_type,
		prompt=prompt or "",
		response=response,
		content_metadata=metadata or {},
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


def get_generated_content(db: Session, user_id: str, section_type: Optional[str] = None) -> List[GeneratedContent]:
	query = db.query(GeneratedContent).filter(GeneratedContent.user_id == user_id)
	if section_type:
		query = query.filter(GeneratedContent.section_type == section_type)
	return query.order_by(GeneratedContent.created_at.asc()).all()


# ---- journeys ----

def create_journey(db: Session, user_id: str, title: str, sections: Optional[List[str]] = None) -> Journey:
	journey = Journey(user_id=user_id, title=title, sections=list(sections or []))
	db.add(journey)
	db.commit()
	db.refresh(journey)
	return journey


def get_journey(db: Session, journey_id: str, user_id: Optional[str] = None) -> Optional[Journey]:
	query = db.query(Journey).filter(Journey.id == journey_id)
	if user_id is not None:
		query = query.filter(Journey.user_id == user_id)
	return query.first()


def get_user_journeys(db: Session, user_id: str) -> List[Journey]:
	return db.query(Journey).filter(Journey.user_id == user_id).order_by(Journey.created_at.desc()).all()


def update_journey(db: Session, journey: Journey, *, title: Optional[str] = None, sections: Optional[List[str]] = None) -> Journey:
	if title is not None:
		journey.title = title
	if sections is not None:
		journey.sections = list(sections)
		flag_modified(journey, "sections")
	journey.updated_at = datetime.utcnow()
	db.commit()
	db.refresh(journey)
	return journey


def add_section_to_journey(db: Session, journey: Journey, section_id: str) -> Journey:
	"""Append a viewed section, ignoring a repeat of the last one."""
	sections = list(journey.sections or [])
	if sections and sections[-1] == section_id:
		return journey
	sections.append(section_id)
	return update_journey(db, journey, sections=sections)


def share_journey(db: Session, journey: Journey) -> Journey:
	if not journey.share_id:
		journey.share_id = secrets.token_hex(16)
		logger.info("Journey %s shared as %s", journey.id, journey.share_id)
	journey.is_public = True
	journey.updated_at = datetime.utcnow()
	db.commit()
	db.refresh(journey)
	return journey


def get_public_journey(db: Session, share_id: str) -> Optional[Journey]:
	journey = db.query(Journey).filter(Journey.share_id == share_id, Journey.is_public.is_(True)).first()
	if journey is None:
		return None
	journey.view_count = (journey.view_count or 0) + 1
	db.commit()
	db.refresh(journey)
	return journey


def get_user_data_by_email(db: Session, email: str) -> Optional[Dict[str, Any]]:
	user = get_user_by_email(db, email)
	if user is None:
		return None
	return {
		"user": user,
		"sections": {row.section_type: row.data for row in get_all_section_data(db, user.id)},
		"generated_content": get_generated_content(db, user.id),
		"journeys": get_user_journeys(db, user.id),
	}


def is_available(db: Session) -> bool:
	try:
		db.execute(text("SELECT 1"))
		return True
	except SQLAlchemyError as err:
		logger.error("Relational store unavailable: %s", err)
		return False


# ---- serialization ----

def _iso(value: Optional[datetime]) -> Optional[str]:
	return value.isoformat() if value else None


def user_to_dict(user: UserProfile) -> Dict[str, Any]:
	return {
		"id": user.id,
		"email": user.email,
		"first_name": user.first_name,
		"last_name": user.last_name,
		"name": user.display_name,
		"metadata": user.profile_metadata or {},
		"created_at": _iso(user.created_at),
		"updated_at": _iso(user.updated_at),
	}


def section_to_dict(row: SectionData) -> Dict[str, Any]:
	return {
		"section_type": row.section_type,
		"data": row.data,
		"created_at": _iso(row.created_at),
		"updated_at": _iso(row.updated_at),
	}


def content_to_dict(row: GeneratedContent) -> Dict[str, Any]:
	return {
		"id": row.id,
		"section_type": row.section_type,
		"prompt": row.prompt,
		"response": row.response,
		"metadata": row.content_metadata or {},
		"created_at": _iso(row.created_at),
	}


def journey_to_dict(journey: Journey) -> Dict[str, Any]:
	return {
		"id": journey.id,
		"title": journey.title,
		"sections": list(journey.sections or []),
		"share_id": journey.share_id,
		"is_public": bool(journey.is_public),
		"view_count": journey.view_count or 0,
		"created_at": _iso(journey.created_at),
		"updated_at": _iso(journey.updated_at),
	}
