from __future__ import annotations
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..content_registry import ResponseCache, data_fingerprint
from ..fallback import AIFallbackService, AllProvidersFailed, get_ai_service
from ..insights import parse_insight
from ..prompts import build_follow_up_content_prompt, build_learn_more_system_prompt, build_tutor_prompt
from ..providers import ChatRequest, ProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["tutor"])

SCHEMA_CACHE_SECONDS = 2 * 60 * 60
HISTORY_TURNS = 8

schema_cache = ResponseCache(ttl=SCHEMA_CACHE_SECONDS)


class TutorRequest(BaseModel):
	question: Optional[str] = None
	interests: List[str] = Field(default_factory=list)
	subject: Optional[str] = None
	grade_level: Optional[str] = None
	context: Any = None
	message_history: List[Dict[str, Any]] = Field(default_factory=list)
	response_format: Optional[str] = None
	section_id: Optional[str] = None
	stream: bool = False


class LearnMoreRequest(BaseModel):
	messages: List[Dict[str, Any]] = Field(default_factory=list)
	section: Optional[str] = None
	quiz_data: Dict[str, Any] = Field(default_factory=dict)
	section_content: Optional[str] = None


class FollowUpContentRequest(BaseModel):
	question: Optional[str] = None
	section: Optional[str] = None
	user_data: Dict[str, Any] = Field(default_factory=dict)
	reference_content: Optional[str] = None
	previous_content: Optional[str] = None


def _sse(payload: Dict[str, Any]) -> str:
	return f"data: {json.dumps(payload)}\n\n"


def tutor_mode(req: TutorRequest) -> str:
	if req.response_format == "schema" or req.context == "schema-generation":
		return "schema"
	if req.context == "program-overview":
		return "assistant"
	return "tutor"


async def _first_then_rest(chunks: AsyncIterator[str]) -> AsyncIterator[str]:
	"""Pull the first chunk now so a dead provider chain is reported as 503."""
	try:
		first = await chunks.__anext__()
	except StopAsyncIteration:
		first = None
	except AllProvidersFailed as err:
		raise HTTPException(status_code=503, detail=str(err))

	async def rest():
		if first is not None:
			yield first
		try:
			async for chunk in chunks:
				yield chunk
		except (AllProvidersFailed, ProviderError) as err:
			logger.error("Stream ended early: %s", err)

	return rest()


@router.post("/chat-tutor")
async def chat_tutor(req: TutorRequest, service: AIFallbackService = Depends(get_ai_service)):
	question = (req.question or "").strip()
	if not question:
		raise HTTPException(status_code=400, detail="question is required")
	mode = tutor_mode(req)

	cache_key = None
	if mode == "schema":
		cache_key = data_fingerprint({
			"question": question.lower(),
			"interests": sorted(req.interests),
			"grade_level": req.grade_level,
			"section_id": req.section_id,
		})
		cached = schema_cache.get(cache_key)
		if cached is not None:
			return {"success": True, "response": cached, "response_format": "schema", "cached": True}

	system, prompt = build_tutor_prompt(
		mode,
		question,
		interests=req.interests,
		subject=req.subject,
		grade_level=req.grade_level,
		context=req.context,
	)
	request = ChatRequest(
		prompt=prompt,
		system_prompt=system,
		history=req.message_history[-HISTORY_TURNS:],
		temperature=0 if mode == "schema" else 0.2,
		json_mode=mode == "schema",
	)

	if req.stream and mode != "schema":
		async def events():
			try:
				async for chunk in service.stream(request, endpoint="chat-tutor"):
					yield _sse({"content": chunk})
			except (AllProvidersFailed, ProviderError) as err:
				logger.error("Tutor stream failed: %s", err)
				yield _sse({"error": str(err)})
			yield "data: [DONE]\n\n"

		return StreamingResponse(events(), media_type="text/event-stream")

	try:
		result = await service.generate(request, endpoint="chat-tutor")
	except AllProvidersFailed as err:
		raise HTTPException(status_code=503, detail=str(err))
	if mode != "schema":
		return {"success": True, "response": result.content.strip(), "mode": mode, "provider": result.provider}

	try:
		content = parse_insight(result.content)
	except ValueError as err:
		logger.warning("Tutor schema response was invalid: %s", err)
		raise HTTPException(status_code=502, detail={"message": "invalid schema response", "error": str(err)})
	schema_cache.set(cache_key, content)
	return {
		"success": True,
		"response": content,
		"response_format": "schema",
		"provider": result.provider,
		"cached": False,
	}


@router.post("/chat-learn-more")
async def chat_learn_more(req: LearnMoreRequest, service: AIFallbackService = Depends(get_ai_service)):
	if not req.messages:
		raise HTTPException(status_code=400, detail="messages are required")
	last = req.messages[-1]
	if last.get("role") != "user" or not str(last.get("content") or "").strip():
		raise HTTPException(status_code=400, detail="the last message must be from the user")
	try:
		system = build_learn_more_system_prompt(
			section=req.section,
			quiz_data=req.quiz_data,
			section_content=req.section_content,
		)
	except ValueError as err:
		raise HTTPException(status_code=400, detail=str(err))
	request = ChatRequest(
		prompt=str(last["content"]),
		system_prompt=system,
		history=req.messages[:-1][-HISTORY_TURNS:],
		max_tokens=2048,
		temperature=0.2,
	)
	body = await _first_then_rest(service.stream(request, endpoint="chat-learn-more"))
	return StreamingResponse(body, media_type="text/plain; charset=utf-8")


@router.post("/generate-follow-up-content")
async def generate_follow_up_content(req: FollowUpContentRequest, service: AIFallbackService = Depends(get_ai_service)):
	question = (req.question or "").strip()
	if not question:
		raise HTTPException(status_code=400, detail="question is required")
	system, prompt = build_follow_up_content_prompt(
		question,
		section=req.section,
		user_data=req.user_data,
		previous_content=req.previous_content,
		reference=req.reference_content,
	)
	request = ChatRequest(prompt=prompt, system_prompt=system, temperature=0.2)

	async def events():
		try:
			async for chunk in service.stream(request, endpoint="generate-follow-up-content"):
				yield _sse({"text": chunk})
		except (AllProvidersFailed, ProviderError) as err:
			logger.error("Follow-up content failed: %s", err)
			yield _sse({"error": "Failed to generate content"})
		yield "data: [DONE]\n\n"

	return StreamingResponse(events(), media_type="text/event-stream")
