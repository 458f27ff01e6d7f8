from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..sections import SECTION_SCHEMAS
from .. import repository
from .auth import User, get_current_user

router = APIRouter(prefix="/api/sections", tags=["sections"])


class SectionPayload(BaseModel):
	data: Optional[Dict[str, Any]] = None


@router.get("")
def list_sections(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	profile = repository.get_user_by_email(db, user.email)
	saved = repository.get_all_section_data(db, profile.id) if profile else []
	return {
		"schemas": [
			{
				"id": s.id,
				"name": s.name,
				"description": s.description,
				"required_data": list(s.required_data),
				"optional_data": list(s.optional_data),
				"component_type": s.component_type,
				"is_interactive": s.is_interactive,
			}
			for s in SECTION_SCHEMAS.values()
		],
		"sections": [repository.section_to_dict(row) for row in saved],
	}


@router.get("/{section_type}")
def get_section(section_type: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	profile = repository.get_user_by_email(db, user.email)
	row = repository.get_section_data(db, profile.id, section_type) if profile else None
	if row is None:
		raise HTTPException(status_code=404, detail="Section not found")
	return repository.section_to_dict(row)


@router.put("/{section_type}")
def put_section(section_type: str, req: SectionPayload, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if req.data is None:
		raise HTTPException(status_code=400, detail="data is required")
	profile = repository.create_or_update_user(db, user.email)
	row = repository.save_section_data(db, profile.id, section_type, req.data)
	return repository.section_to_dict(row)
