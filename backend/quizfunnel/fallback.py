"""
Provider fallback for AI generation.

Requests go to each configured provider in order. A provider that fails
``failure_threshold`` times in a row is skipped (its circuit is open) until
``reset_after`` seconds have passed since its last failure.
"""
from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from .providers import ChatProvider, ChatRequest, ProviderError, build_providers
from .settings import settings
from .telemetry import log_prompt, log_response, usage_tracker

logger = logging.getLogger(__name__)

EMERGENCY_PROVIDER = "emergency-fallback"


class AllProvidersFailed(RuntimeError):
	def __init__(self, errors: Dict[str, str], skipped: Sequence[str] = ()) -> None:
		self.errors = dict(errors)
		self.skipped = list(skipped)
		if errors:
			detail = "; ".join(f"{name}: {msg}" for name, msg in errors.items())
		elif skipped:
			detail = "every provider circuit is open"
		else:
			detail = "no AI providers are configured"
		super().__init__(f"All AI providers failed ({detail})")

	@property
	def last_error(self) -> Optional[str]:
		if not self.errors:
			return None
		return list(self.errors.values())[-1]


@dataclass
class ProviderHealth:
	failures: int = 0
	last_failure: float = 0.0


@dataclass
class GenerationResult:
	content: str
	provider: str
	model: str
	latency_ms: int
	providers_attempted: List[str] = field(default_factory=list)
	token_count: Optional[int] = None


@dataclass
class FallbackResponse:
	success: bool
	data: Any
	provider: str
	retry_count: int
	metadata: Dict[str, Any] = field(default_factory=dict)
	error: Optional[str] = None

	def as_dict(self) -> Dict[str, Any]:
		out: Dict[str, Any] = {
			"success": self.success,
			"data": self.data,
			"provider": self.provider,
			"retry_count": self.retry_count,
			"metadata": self.metadata,
		}
		if self.error:
			out["error"] = self.error
		return out


def emergency_content(kind: Optional[str], context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
	"""Static content served when every provider is down."""
	context = context or {}
	interests = list(context.get("interests") or [])
	subject = context.get("subject") or "general"
	grade_level = context.get("grade_level") or "6th"
	primary_interest = interests[0] if interests else "your interests"

	if kind in (None, "", "question_fallback"):
		return {
			"question": f"Here's a {subject} question related to {primary_interest} for {grade_level} grade: How might concepts from {subject} apply to {primary_interest}?",
			"solution": "AI services are temporarily unavailable. Please try refreshing the page in a few minutes for a personalized learning experience.",
			"learning_objective": f"Core {subject} concepts and their practical applications",
			"interest_connection": f"This connects {subject} learning with {primary_interest} to make it more engaging",
			"next_steps": "Refresh the page to try again when AI services are restored",
			"follow_up_questions": [
				"Most interesting topic aspects?",
				"Real life applications?",
				"Next learning subject?",
			],
			"emergency": True,
		}
	return {
		"message": f"Content related to {subject} and {primary_interest} for {grade_level} grade",
		"note": "AI services are temporarily unavailable. Please try again in a few minutes.",
		"subject": subject,
		"interests": interests,
		"grade_level": grade_level,
		"emergency": True,
		"suggestions": [
			"Refresh the page to try again",
			"Check your internet connection",
			"Contact support if the issue persists",
		],
	}


class AIFallbackService:
	def __init__(
		self,
		providers: Sequence[ChatProvider],
		*,
		failure_threshold: int = 3,
		reset_after: float = 300.0,
		retry_delay: float = 1.0,
		attempts_per_provider: int = 1,
		backoff_factor: float = 2.0,
		clock: Callable[[], float] = time.time,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self.providers: List[ChatProvider] = list(providers)
		self.failure_threshold = failure_threshold
		self.reset_after = reset_after
		self.retry_delay = retry_delay
		self.attempts_per_provider = max(1, attempts_per_provider)
		self.backoff_factor = backoff_factor
		self._clock = clock
		self._sleep = sleep
		self._health: Dict[str, ProviderHealth] = {p.name: ProviderHealth() for p in self.providers}

	@property
	def provider_names(self) -> List[str]:
		return [p.name for p in self.providers]

	# ---- circuit breaker ----

	def is_available(self, name: str) -> bool:
		health = self._health.setdefault(name, ProviderHealth())
		if health.failures == 0:
			return True
		if self._clock() - health.last_failure > self.reset_after:
			if health.failures >= self.failure_threshold:
				logger.info("Circuit for %s closed after %.0fs", name, self.reset_after)
			health.failures = 0
			return True
		return health.failures < self.failure_threshold

	def record_failure(self, name: str) -> None:
		health = self._health.setdefault(name, ProviderHealth())
		health.failures += 1
		health.last_failure = self._clock()
		logger.warning("Provider %s failure count: %d", name, health.failures)
		if health.failures == self.failure_threshold:
			logger.error("Circuit for %s is now open", name)

	def record_success(self, name: str) -> None:
		health = self._health.setdefault(name, ProviderHealth())
		if health.failures:
			logger.info("Provider %s succeeded, resetting failure count", name)
		health.failures = 0

	def reset(self) -> None:
		logger.info("Resetting all provider failure counts")
		self._health = {name: ProviderHealth() for name in self.provider_names}

	# ---- generation ----

	async def _attempt(self, provider: ChatProvider, request: ChatRequest):
		last_error: Optional[ProviderError] = None
		for attempt in range(self.attempts_per_provider):
			if attempt:
				await self._sleep(self.retry_delay * (self.backoff_factor ** (attempt - 1)))
			try:
				return await provider.complete(request)
			except ProviderError as err:
				last_error = err
				logger.warning("Provider %s attempt %d/%d failed: %s", provider.name, attempt + 1, self.attempts_per_provider, err)
		assert last_error is not None
		raise last_error

	async def generate(self, request: ChatRequest, *, endpoint: Optional[str] = None) -> GenerationResult:
		"""Try each available provider in turn.

		Calls made with an ``endpoint`` are logged to the prompt log and
		counted by the usage tracker.
		"""
		start = time.monotonic()
		if endpoint:
			log_prompt(endpoint, request.prompt, system_prompt=request.system_prompt, history_turns=len(request.history))
		errors: Dict[str, str] = {}
		skipped: List[str] = []
		attempted: List[str] = []
		logger.info("Generating with providers %s (prompt length %d)", self.provider_names, len(request.prompt))
		for index, provider in enumerate(self.providers):
			if not self.is_available(provider.name):
				logger.info("Skipping %s - circuit breaker active", provider.name)
				skipped.append(provider.name)
				continue
			attempted.append(provider.name)
			try:
				reply = await self._attempt(provider, request)
			except ProviderError as err:
				errors[provider.name] = str(err)
				self.record_failure(provider.name)
				if index < len(self.providers) - 1 and self.retry_delay > 0:
					await self._sleep(self.retry_delay)
				continue
			self.record_success(provider.name)
			latency_ms = int((time.monotonic() - start) * 1000)
			logger.info("Generation succeeded with %s after %dms", provider.name, latency_ms)
			if endpoint:
				log_response(endpoint, reply.content, provider=reply.provider, latency_ms=latency_ms)
				usage_tracker.record(
					endpoint, provider=reply.provider, model=reply.model, latency_ms=latency_ms,
					token_count=reply.token_count, providers_attempted=attempted,
				)
			return GenerationResult(
				content=reply.content,
				provider=reply.provider,
				model=reply.model,
				latency_ms=latency_ms,
				providers_attempted=attempted,
				token_count=reply.token_count,
			)
		logger.error("All providers failed: %s", errors or "none available")
		failure = AllProvidersFailed(errors, skipped)
		if endpoint:
			usage_tracker.record(
				endpoint, latency_ms=int((time.monotonic() - start) * 1000), success=False,
				error=str(failure), providers_attempted=attempted,
			)
		raise failure

	async def execute_with_fallback(
		self,
		request: ChatRequest,
		*,
		endpoint: str,
		kind: Optional[str] = None,
		context: Optional[Dict[str, Any]] = None,
		fallback_content: Any = None,
		parse: Optional[Callable[[str], Any]] = None,
	) -> FallbackResponse:
		"""Generate, and fall back to emergency content instead of raising.

		``parse`` converts the raw completion (e.g. into JSON); a parse error
		counts as a failed generation.
		"""
		start = time.monotonic()
		logger.info("Fallback request for endpoint %s (kind=%s)", endpoint, kind)
		try:
			result = await self.generate(request, endpoint=endpoint)
			data = parse(result.content) if parse else result.content
		except (AllProvidersFailed, ValueError) as err:
			logger.error("Using emergency fallback for %s: %s", endpoint, err)
			last_error = err.last_error if isinstance(err, AllProvidersFailed) else str(err)
			return FallbackResponse(
				success=True,
				data=fallback_content if fallback_content is not None else emergency_content(kind, context),
				provider=EMERGENCY_PROVIDER,
				retry_count=len(self.providers),
				error=f"All AI providers failed: {last_error}",
				metadata={
					"duration_ms": int((time.monotonic() - start) * 1000),
					"timestamp": datetime.now(timezone.utc).isoformat(),
					"providers_attempted": self.provider_names,
					"emergency_fallback": True,
					"last_error": last_error,
				},
			)
		return FallbackResponse(
			success=True,
			data=data,
			provider=result.provider,
			retry_count=len(result.providers_attempted) - 1,
			metadata={
				"duration_ms": int((time.monotonic() - start) * 1000),
				"timestamp": datetime.now(timezone.utc).isoformat(),
				"providers_attempted": result.providers_attempted,
				"model": result.model,
			},
		)

	async def stream(self, request: ChatRequest, *, endpoint: Optional[str] = None) -> AsyncIterator[str]:
		"""Stream from the first available streaming provider.

		If it fails before producing output, the rest of the chain is used
		without streaming and the result is emitted as a single chunk.
		"""
		start = time.monotonic()
		if endpoint:
			log_prompt(endpoint, request.prompt, system_prompt=request.system_prompt, stream=True)
		for provider in self.providers:
			if not provider.supports_streaming or not self.is_available(provider.name):
				continue
			produced = False
			try:
				async for chunk in provider.stream(request):
					produced = True
					yield chunk
			except ProviderError as err:
				self.record_failure(provider.name)
				if produced:
					if endpoint:
						usage_tracker.record(
							endpoint, provider=provider.name, model=provider.model, success=False,
							latency_ms=int((time.monotonic() - start) * 1000), error=str(err), stream=True,
						)
					raise
				logger.warning("Streaming with %s failed, falling back: %s", provider.name, err)
				break
			else:
				self.record_success(provider.name)
				if endpoint:
					usage_tracker.record(
						endpoint, provider=provider.name, model=provider.model,
						latency_ms=int((time.monotonic() - start) * 1000), stream=True,
					)
				return
		result = await self.generate(request, endpoint=endpoint)
		yield result.content

	# ---- monitoring ----

	def provider_status(self) -> Dict[str, Dict[str, Any]]:
		status: Dict[str, Dict[str, Any]] = {}
		for name in self.provider_names:
			available = self.is_available(name)
			health = self._health[name]
			status[name] = {
				"failures": health.failures,
				"last_failure": health.last_failure,
				"available": available,
			}
		return status

	def metrics(self) -> Dict[str, Any]:
		status = self.provider_status()
		return {
			"provider_status": status,
			"total_failures": sum(s["failures"] for s in status.values()),
			"available_providers": [name for name, s in status.items() if s["available"]],
		}

	def health(self) -> Dict[str, Any]:
		metrics = self.metrics()
		total = len(self.providers)
		available = len(metrics["available_providers"])
		score = (available / total) * 100 if total else 0.0
		if score >= 80:
			overall = "healthy"
		elif score >= 50:
			overall = "degraded"
		else:
			overall = "critical"
		return {
			"overall_status": overall,
			"health_score": round(score),
			"metrics": {
				"total_providers": total,
				"available_providers": available,
				"total_failures": metrics["total_failures"],
				"available_provider_names": metrics["available_providers"],
			},
			"providers": [
				{
					"name": name,
					"available": s["available"],
					"failures": s["failures"],
					"last_failure": datetime.fromtimestamp(s["last_failure"], timezone.utc).isoformat() if s["last_failure"] > 0 else None,
					"status": "operational" if s["available"] else "circuit_breaker_open",
				}
				for name, s in metrics["provider_status"].items()
			],
		}

	async def aclose(self) -> None:
		for provider in self.providers:
			await provider.aclose()


_service: Optional[AIFallbackService] = None


def get_ai_service() -> AIFallbackService:
	global _service
	if _service is None:
		_service = AIFallbackService(
			build_providers(settings),
			failure_threshold=settings.ai_failure_threshold,
			reset_after=settings.ai_reset_after_seconds,
			retry_delay=settings.ai_retry_delay_seconds,
			attempts_per_provider=settings.ai_attempts_per_provider,
			backoff_factor=settings.ai_backoff_factor,
		)
	return _service


async def close_ai_service() -> None:
	global _service
	if _service is not None:
		await _service.aclose()
		_service = None
