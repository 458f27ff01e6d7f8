from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..content_registry import ResponseCache, content_registry, data_fingerprint
from ..db import get_db
from ..fallback import EMERGENCY_PROVIDER, AIFallbackService, AllProvidersFailed, get_ai_service
from ..insights import fallback_afternoon_content, fallback_research_content, parse_afternoon, parse_research
from ..prompts import (
	COPYWRITING_KINDS,
	FALLBACK_KINDS,
	build_afternoon_prompt,
	build_copywriting_prompt,
	build_fallback_prompt,
	build_personalized_prompt,
	build_research_prompt,
	extract_json,
)
from ..providers import ChatRequest, ProviderError
from ..sections import SECTION_SCHEMAS, map_quiz_to_ai, missing_data, render_prompt, validate_output
from ..telemetry import usage_tracker
from .. import repository
from .auth import User, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])

PERSONAL_CONTENT_CACHE_SECONDS = 5 * 60

afternoon_cache = ResponseCache(ttl=PERSONAL_CONTENT_CACHE_SECONDS)
research_cache = ResponseCache(ttl=PERSONAL_CONTENT_CACHE_SECONDS)


class GenerateRequest(BaseModel):
	prompt: Optional[str] = None
	system_prompt: Optional[str] = None
	max_tokens: Optional[int] = Field(default=None, gt=0)
	temperature: Optional[float] = Field(default=None, ge=0, le=2)
	json_mode: bool = False
	stream: bool = False


class FallbackRequest(BaseModel):
	type: Optional[str] = None
	interests: List[str] = Field(default_factory=list)
	subject: str = "general"
	grade_level: str = "6th"
	context: Any = None


class CopywritingRequest(BaseModel):
	raw_text: Optional[str] = None
	type: str = "personalized_copy"
	context: Optional[str] = None
	grade_level: str = "high school"
	school_name: str = "your school"
	custom_prompt: Optional[str] = None


class PersonalizedRequest(BaseModel):
	question: Optional[str] = None
	quiz_data: Dict[str, Any] = Field(default_factory=dict)
	conversation_history: List[Dict[str, Any]] = Field(default_factory=list)
	interests: List[str] = Field(default_factory=list)
	grade_level: str = "high school"


class SectionRequest(BaseModel):
	section_id: Optional[str] = None
	data: Dict[str, Any] = Field(default_factory=dict)
	regenerate: bool = False


class AfternoonRequest(BaseModel):
	interests: List[str] = Field(default_factory=list)
	quiz_data: Dict[str, Any] = Field(default_factory=dict)


class ResearchRequest(BaseModel):
	interests: List[str] = Field(default_factory=list)
	learning_goals: List[str] = Field(default_factory=list)
	quiz_data: Dict[str, Any] = Field(default_factory=dict)


def _sse(payload: Dict[str, Any]) -> str:
	return f"data: {json.dumps(payload)}\n\n"


@router.post("/generate")
async def generate(req: GenerateRequest, service: AIFallbackService = Depends(get_ai_service)):
	prompt = (req.prompt or "").strip()
	if not prompt:
		raise HTTPException(status_code=400, detail="prompt is required")
	request = ChatRequest(
		prompt=prompt,
		system_prompt=req.system_prompt,
		max_tokens=req.max_tokens,
		temperature=req.temperature,
		json_mode=req.json_mode,
	)

	if req.stream:
		async def events():
			try:
				async for chunk in service.stream(request, endpoint="generate"):
					yield _sse({"content": chunk})
			except (AllProvidersFailed, ProviderError) as err:
				logger.error("Streaming generation failed: %s", err)
				yield _sse({"error": str(err)})
			yield "data: [DONE]\n\n"

		return StreamingResponse(events(), media_type="text/event-stream")

	try:
		result = await service.generate(request, endpoint="generate")
	except AllProvidersFailed as err:
		raise HTTPException(status_code=503, detail=str(err))
	return {
		"success": True,
		"content": result.content,
		"provider": result.provider,
		"model": result.model,
		"latency_ms": result.latency_ms,
		"providers_attempted": result.providers_attempted,
		"token_count": result.token_count,
	}


@router.post("/generate-fallback")
async def generate_fallback(req: FallbackRequest, service: AIFallbackService = Depends(get_ai_service)):
	if not req.type:
		raise HTTPException(status_code=400, detail="type is required")
	if req.type not in FALLBACK_KINDS:
		raise HTTPException(status_code=400, detail=f"type must be one of {list(FALLBACK_KINDS)}")
	prompt = build_fallback_prompt(
		req.type,
		interests=req.interests,
		subject=req.subject,
		grade_level=req.grade_level,
		context=req.context,
	)
	response = await service.execute_with_fallback(
		ChatRequest(prompt=prompt, json_mode=req.type != "chat_suggestions"),
		endpoint="generate-fallback",
		kind=req.type,
		context={"interests": req.interests, "subject": req.subject, "grade_level": req.grade_level},
		parse=extract_json,
	)
	return response.as_dict()


@router.post("/improve-copywriting")
async def improve_copywriting(req: CopywritingRequest, service: AIFallbackService = Depends(get_ai_service)):
	raw_text = (req.raw_text or "").strip()
	if not raw_text:
		raise HTTPException(status_code=400, detail="raw_text is required")
	if req.custom_prompt:
		prompt = req.custom_prompt.replace("{{raw_text}}", raw_text)
	else:
		kind = req.type if req.type in COPYWRITING_KINDS else "personalized_copy"
		prompt = build_copywriting_prompt(
			raw_text,
			kind=kind,
			context=req.context,
			grade_level=req.grade_level,
			school_name=req.school_name,
		)
	# The submitted copy is served unchanged when no provider answers
	response = await service.execute_with_fallback(
		ChatRequest(prompt=prompt, temperature=0.3, max_tokens=512),
		endpoint="improve-copywriting",
		kind=req.type,
		fallback_content=raw_text,
		parse=lambda text: text.strip().strip('"'),
	)
	return {
		"success": True,
		"improved_text": response.data,
		"original_text": raw_text,
		"provider": response.provider,
		"metadata": response.metadata,
	}


def _fallback_answer(question: str) -> Dict[str, Any]:
	return {
		"header": "Great question",
		"main_heading": question,
		"description": "We could not generate a personalized answer right now. Please try again in a few minutes.",
		"key_points": [],
		"follow_up_questions": [],
		"emergency": True,
	}


@router.post("/personalized")
async def personalized(
	req: PersonalizedRequest,
	service: AIFallbackService = Depends(get_ai_service),
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	question = (req.question or "").strip()
	if not question:
		raise HTTPException(status_code=400, detail="question is required")
	try:
		prompt = build_personalized_prompt(
			question,
			quiz_data=req.quiz_data,
			conversation_history=req.conversation_history,
			interests=req.interests or req.quiz_data.get("kids_interests") or [],
			grade_level=req.grade_level,
		)
	except ValueError as err:
		raise HTTPException(status_code=400, detail=str(err))
	response = await service.execute_with_fallback(
		ChatRequest(prompt=prompt, json_mode=True),
		endpoint="personalized",
		kind="personalized",
		fallback_content=_fallback_answer(question),
		parse=extract_json,
	)
	if user is not None and response.provider != EMERGENCY_PROVIDER:
		profile = repository.create_or_update_user(db, user.email)
		repository.save_generated_content(
			db, profile.id, "custom-question", prompt, response.data,
			{"provider": response.provider, "question": question},
		)
	return response.as_dict()


@router.post("/generate-section")
async def generate_section(
	req: SectionRequest,
	service: AIFallbackService = Depends(get_ai_service),
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	if not req.section_id:
		raise HTTPException(status_code=400, detail="section_id is required")
	schema = SECTION_SCHEMAS.get(req.section_id)
	if schema is None:
		raise HTTPException(status_code=404, detail=f"unknown section {req.section_id}")
	try:
		data = map_quiz_to_ai(req.data)
	except ValueError as err:
		raise HTTPException(status_code=400, detail=str(err))
	missing = missing_data(schema.id, data)
	if missing:
		raise HTTPException(status_code=400, detail={"message": "missing required data", "missing": missing})

	fingerprint = data_fingerprint(data)
	if user is not None and not req.regenerate:
		cached = content_registry.get(user.email, schema.id, fingerprint)
		if cached is not None:
			return {"success": True, "section_id": schema.id, "content": cached["content"], "cached": True}

	prompt = render_prompt(schema.id, data)
	try:
		result = await service.generate(ChatRequest(prompt=prompt, json_mode=True), endpoint="generate-section")
		content = extract_json(result.content)
	except AllProvidersFailed as err:
		raise HTTPException(status_code=503, detail=str(err))
	except ValueError as err:
		raise HTTPException(status_code=502, detail=str(err))
	valid = validate_output(schema.id, content)
	if not valid:
		logger.warning("Section %s output is missing expected keys", schema.id)

	if user is not None:
		profile = repository.create_or_update_user(db, user.email)
		repository.save_generated_content(
			db, profile.id, schema.id, prompt, content,
			{"provider": result.provider, "model": result.model, "latency_ms": result.latency_ms, "valid": valid},
		)
		content_registry.set(user.email, schema.id, content, fingerprint)
	return {
		"success": True,
		"section_id": schema.id,
		"content": content,
		"valid": valid,
		"provider": result.provider,
		"cached": False,
	}


def _cache_key(interests: List[str], quiz_data: Dict[str, Any], **extra: Any) -> str:
	return data_fingerprint({
		"interests": sorted(i.lower() for i in interests),
		"grade": quiz_data.get("grade"),
		"user_type": quiz_data.get("user_type"),
		"parent_sub_type": quiz_data.get("parent_sub_type"),
		**extra,
	})


@router.post("/generate-afternoon-content")
async def generate_afternoon_content(req: AfternoonRequest, service: AIFallbackService = Depends(get_ai_service)):
	if not req.interests:
		raise HTTPException(status_code=400, detail="interests are required")
	key = _cache_key(req.interests, req.quiz_data)
	cached = afternoon_cache.get(key)
	if cached is not None:
		return {**cached, "cached": True}
	response = await service.execute_with_fallback(
		ChatRequest(prompt=build_afternoon_prompt(req.interests, req.quiz_data), max_tokens=2000, temperature=0.7, json_mode=True),
		endpoint="generate-afternoon-content",
		kind="afternoon_content",
		fallback_content=fallback_afternoon_content(req.interests),
		parse=parse_afternoon,
	)
	body = {
		"success": True,
		"content": response.data,
		"interests": req.interests,
		"provider": response.provider,
		"fallback": response.provider == EMERGENCY_PROVIDER,
		"timestamp": response.metadata.get("timestamp"),
	}
	if not body["fallback"]:
		afternoon_cache.set(key, body)
	return {**body, "cached": False}


@router.post("/generate-research-explanations")
async def generate_research_explanations(req: ResearchRequest, service: AIFallbackService = Depends(get_ai_service)):
	try:
		prompt = build_research_prompt(req.interests, req.learning_goals, req.quiz_data)
	except ValueError as err:
		raise HTTPException(status_code=400, detail=str(err))
	key = _cache_key(req.interests, req.quiz_data, learning_goals=sorted(req.learning_goals))
	cached = research_cache.get(key)
	if cached is not None:
		return {**cached, "cached": True}
	response = await service.execute_with_fallback(
		ChatRequest(prompt=prompt, max_tokens=3000, temperature=0.5, json_mode=True),
		endpoint="generate-research-explanations",
		kind="research_explanations",
		fallback_content=fallback_research_content(req.interests),
		parse=parse_research,
	)
	body = {
		"success": True,
		"content": response.data,
		"provider": response.provider,
		"fallback": response.provider == EMERGENCY_PROVIDER,
		"timestamp": response.metadata.get("timestamp"),
	}
	if not body["fallback"]:
		research_cache.set(key, body)
	return {**body, "cached": False}


@router.get("/monitor")
def monitor(service: AIFallbackService = Depends(get_ai_service)):
	return {**service.health(), "usage": usage_tracker.summary()}


@router.post("/monitor/reset")
def reset_monitor(service: AIFallbackService = Depends(get_ai_service)):
	service.reset()
	return {"success": True, "health": service.health()}
