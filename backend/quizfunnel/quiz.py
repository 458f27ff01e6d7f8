from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

UserType = Literal["parents", "schools", "entrepreneur", "government", "philanthropist", "developer", "student"]
ParentSubType = Literal["timeback-school", "homeschool", "tutoring"]
SchoolSubType = Literal["private", "public"]
Grade = Literal["K", "1st", "2nd", "3rd", "4th", "5th", "6th", "7th", "8th", "9th", "10th", "11th", "12th"]

# Linear wizard order; "complete" means every answer is in
QUIZ_STEPS = ["user_type", "sub_type", "school", "grade", "interests", "complete"]

# Individual answers also stored as their own sections
QUIZ_FIELD_SECTIONS = ("user_type", "parent_sub_type", "school_sub_type", "selected_schools", "kids_interests", "grade")


class School(BaseModel):
	id: str
	name: str
	city: str
	state: str
	level: str


class QuizData(BaseModel):
	user_type: Optional[UserType] = None
	parent_sub_type: Optional[ParentSubType] = None
	school_sub_type: Optional[SchoolSubType] = None
	grade: Optional[Grade] = None
	number_of_kids: int = Field(default=1, ge=1)
	selected_schools: List[School] = Field(default_factory=list)
	kids_interests: List[str] = Field(default_factory=list)
	completed_at: Optional[datetime] = None


def _needs_sub_type(data: QuizData) -> bool:
	return data.user_type in ("parents", "schools")


def next_step(data: QuizData) -> str:
	"""Return the first wizard step whose answer is still missing."""
	if data.user_type is None:
		return "user_type"
	if _needs_sub_type(data):
		sub_type = data.parent_sub_type if data.user_type == "parents" else data.school_sub_type
		if sub_type is None:
			return "sub_type"
	if data.user_type == "parents" and not data.selected_schools:
		return "school"
	if data.user_type in ("parents", "student") and data.grade is None:
		return "grade"
	if data.user_type in ("parents", "student") and not data.kids_interests:
		return "interests"
	return "complete"


def is_complete(data: QuizData) -> bool:
	return next_step(data) == "complete"


def quiz_fields(data: QuizData) -> Dict[str, Any]:
	"""Answers stored individually, skipping unanswered ones."""
	dumped = data.model_dump(mode="json")
	return {key: dumped[key] for key in QUIZ_FIELD_SECTIONS if dumped.get(key) not in (None, [], "")}


def school_list(value: Any) -> List[Dict[str, Any]]:
	"""Selected schools from free-form quiz JSON.

	Raises ValueError unless the value is a list of school objects.
	"""
	if value is None or value == "":
		return []
	if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
		raise ValueError("selected_schools must be a list of school objects")
	return value
