from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..fallback import EMERGENCY_PROVIDER, AIFallbackService, AllProvidersFailed, emergency_content, get_ai_service
from ..insights import CUSTOM_QUESTION_FALLBACK, parse_insight, parse_question_list
from ..prompts import (
	DEFAULT_FOLLOW_UP_QUESTIONS,
	build_custom_question_prompt,
	build_exploration_question_prompt,
	build_fallback_prompt,
	build_follow_up_questions_prompt,
	build_practice_question_prompt,
	clean_question,
	extract_json,
	filter_follow_up_questions,
	is_similar_question,
	pick_fallback_question,
)
from ..providers import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["questions"])


class ExplorationQuestionRequest(BaseModel):
	quiz_data: Dict[str, Any] = Field(default_factory=dict)
	interests: List[str] = Field(default_factory=list)
	grade_level: str = "elementary"
	existing_questions: List[str] = Field(default_factory=list)


class PracticeQuestionRequest(BaseModel):
	subject: Optional[str] = None
	interests: List[str] = Field(default_factory=list)
	grade_level: str = "6th"


class FollowUpQuestionsRequest(BaseModel):
	section_id: Optional[str] = None
	question: Optional[str] = None
	current_question: Optional[str] = None
	current_answer: Any = None
	interests: List[str] = Field(default_factory=list)
	grade_level: Optional[str] = None
	message_history: List[Dict[str, Any]] = Field(default_factory=list)
	clicked_questions: List[str] = Field(default_factory=list)
	quiz_data: Dict[str, Any] = Field(default_factory=dict)


class CustomQuestionRequest(BaseModel):
	question: Optional[str] = None
	current_user: Dict[str, Any] = Field(default_factory=dict)
	viewed_components_summary: str = ""


@router.post("/generate-question")
async def generate_question(req: ExplorationQuestionRequest, service: AIFallbackService = Depends(get_ai_service)):
	"""One exploration question for the parent, never repeating one already shown."""
	try:
		prompt = build_exploration_question_prompt(
			grade_level=req.grade_level,
			interests=req.interests,
			quiz_data=req.quiz_data,
			existing_questions=req.existing_questions,
		)
	except ValueError as err:
		raise HTTPException(status_code=400, detail=str(err))
	is_fallback = False
	try:
		result = await service.generate(ChatRequest(prompt=prompt, max_tokens=1000, temperature=0.8), endpoint="generate-question")
		question = clean_question(result.content)
	except AllProvidersFailed as err:
		logger.error("Exploration question failed: %s", err)
		question = ""
	if not question or is_similar_question(question, req.existing_questions):
		if question:
			logger.info("Generated question repeats an earlier one, using a stock question")
		question = pick_fallback_question(req.existing_questions)
		is_fallback = True
	return {
		"success": True,
		"question": question,
		"metadata": {
			"grade_level": req.grade_level,
			"interests": req.interests,
			"is_personalized": not is_fallback and bool(req.interests),
			"is_fallback": is_fallback,
		},
	}


@router.post("/generate-questions")
async def generate_questions(req: PracticeQuestionRequest, service: AIFallbackService = Depends(get_ai_service)):
	if not req.subject:
		raise HTTPException(status_code=400, detail="subject is required")
	context = {"interests": req.interests, "subject": req.subject, "grade_level": req.grade_level}
	prompt = build_practice_question_prompt(req.subject, interests=req.interests, grade_level=req.grade_level)
	try:
		result = await service.generate(ChatRequest(prompt=prompt, max_tokens=4000, json_mode=True), endpoint="generate-questions")
		data = extract_json(result.content)
		if not isinstance(data, dict) or not data.get("question"):
			raise ValueError("practice question JSON has no question")
		provider = result.provider
	except AllProvidersFailed as err:
		logger.error("Practice question failed: %s", err)
		data, provider = emergency_content("question_fallback", context), EMERGENCY_PROVIDER
	except ValueError as err:
		# retry once with the simpler fallback prompt
		logger.warning("Practice question was not usable (%s), retrying with fallback prompt", err)
		response = await service.execute_with_fallback(
			ChatRequest(prompt=build_fallback_prompt("question_fallback", **context), json_mode=True),
			endpoint="generate-questions",
			kind="question_fallback",
			context=context,
			parse=extract_json,
		)
		data, provider = response.data, response.provider
	return {
		"success": True,
		"data": data,
		"provider": provider,
		"metadata": {
			**context,
			"timestamp": datetime.now(timezone.utc).isoformat(),
			"fallback": provider == EMERGENCY_PROVIDER,
		},
	}


@router.post("/generate-follow-up-questions")
async def generate_follow_up_questions(req: FollowUpQuestionsRequest, service: AIFallbackService = Depends(get_ai_service)):
	try:
		system, prompt = build_follow_up_questions_prompt(
			section_id=req.section_id,
			question=req.question,
			current_question=req.current_question,
			current_answer=req.current_answer,
			interests=req.interests,
			grade_level=req.grade_level,
			message_history=req.message_history,
			clicked_questions=req.clicked_questions,
			quiz_data=req.quiz_data,
		)
	except ValueError as err:
		raise HTTPException(status_code=400, detail=str(err))
	try:
		result = await service.generate(
			ChatRequest(prompt=prompt, system_prompt=system, max_tokens=1000, temperature=0.2),
			endpoint="generate-follow-up-questions",
		)
		questions = parse_question_list(result.content)
	except (AllProvidersFailed, ValueError) as err:
		logger.warning("Follow-up questions fell back to defaults: %s", err)
		return {
			"success": True,
			"questions": filter_follow_up_questions(DEFAULT_FOLLOW_UP_QUESTIONS, req.clicked_questions),
			"fallback": True,
			"error": str(err),
		}
	return {
		"success": True,
		"questions": filter_follow_up_questions(questions, req.clicked_questions),
		"fallback": False,
		"provider": result.provider,
	}


@router.post("/custom-question")
async def custom_question(req: CustomQuestionRequest, service: AIFallbackService = Depends(get_ai_service)):
	question = (req.question or "").strip()
	if not question:
		raise HTTPException(status_code=400, detail="question is required")
	prompt = build_custom_question_prompt(
		question,
		current_user=req.current_user,
		viewed_summary=req.viewed_components_summary,
	)
	response = await service.execute_with_fallback(
		ChatRequest(prompt=prompt, json_mode=True, temperature=0.3),
		endpoint="custom-question",
		kind="custom_question",
		fallback_content=CUSTOM_QUESTION_FALLBACK,
		parse=parse_insight,
	)
	return response.as_dict()
