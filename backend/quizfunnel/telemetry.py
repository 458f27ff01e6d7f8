"""
Prompt logging and LLM usage tracking.

Prompts and responses go to the ``quizfunnel.prompts`` logger at DEBUG
level; ``configure_prompt_log`` points it at a file. Every tracked call is
logged as an ``llm_api_call`` event and counted per endpoint.
"""
from __future__ import annotations
import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .settings import settings

logger = logging.getLogger(__name__)
prompt_logger = logging.getLogger("quizfunnel.prompts")
usage_logger = logging.getLogger("quizfunnel.llm_usage")

_TRIM_MARKER = "\n... [truncated] ...\n"


def trim_content(content: Any, limit: Optional[int] = None) -> str:
	"""Keep the head and tail of long content."""
	text = content if isinstance(content, str) else json.dumps(content, default=str)
	limit = limit or settings.ai_prompt_log_max_length
	if len(text) <= limit:
		return text
	half = limit // 2
	return text[:half] + _TRIM_MARKER + text[-half:]


def configure_prompt_log(path: Optional[str]) -> None:
	if not path:
		return
	handler = logging.FileHandler(path, encoding="utf-8")
	handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
	prompt_logger.addHandler(handler)
	prompt_logger.setLevel(logging.DEBUG)
	prompt_logger.propagate = False
	logger.info("Writing AI prompts to %s", path)


def log_prompt(service: str, prompt: str, *, system_prompt: Optional[str] = None, **metadata: Any) -> None:
	if not prompt_logger.isEnabledFor(logging.DEBUG):
		return
	parts = [f"=== {service.upper()} PROMPT ==="]
	if metadata:
		parts.append(f"metadata: {json.dumps(metadata, default=str)}")
	if system_prompt:
		parts.append(f"system: {trim_content(system_prompt)}")
	parts.append(trim_content(prompt))
	prompt_logger.debug("\n".join(parts))


def log_response(service: str, response: Any, **metadata: Any) -> None:
	if not prompt_logger.isEnabledFor(logging.DEBUG):
		return
	parts = [f"=== {service.upper()} RESPONSE ==="]
	if metadata:
		parts.append(f"metadata: {json.dumps(metadata, default=str)}")
	parts.append(trim_content(response))
	prompt_logger.debug("\n".join(parts))


class UsageTracker:
	"""Counts LLM calls per endpoint and keeps the most recent events."""

	def __init__(self, max_events: int = 200) -> None:
		self._events: deque = deque(maxlen=max_events)
		self._totals: Dict[str, Dict[str, Any]] = {}
		self._lock = threading.Lock()

	def record(
		self,
		endpoint: str,
		*,
		provider: Optional[str] = None,
		model: Optional[str] = None,
		latency_ms: int = 0,
		success: bool = True,
		error: Optional[str] = None,
		token_count: Optional[int] = None,
		**context: Any,
	) -> Dict[str, Any]:
		event = {
			"event": "llm_api_call",
			"endpoint": endpoint,
			"provider": provider,
			"model": model,
			"latency_ms": latency_ms,
			"success": success,
			"error": error,
			"token_count": token_count,
			"timestamp": datetime.now(timezone.utc).isoformat(),
		}
		if context:
			event["context"] = context
		with self._lock:
			self._events.append(event)
			totals = self._totals.setdefault(endpoint, {"calls": 0, "failures": 0, "latency_ms": 0, "providers": {}})
			totals["calls"] += 1
			totals["latency_ms"] += latency_ms
			if not success:
				totals["failures"] += 1
			if provider:
				totals["providers"][provider] = totals["providers"].get(provider, 0) + 1
		usage_logger.info("llm_api_call %s", json.dumps(event, default=str))
		return event

	def recent(self, limit: int = 20) -> list:
		with self._lock:
			return list(self._events)[-limit:]

	def summary(self) -> Dict[str, Any]:
		with self._lock:
			endpoints = {
				name: {
					"calls": t["calls"],
					"failures": t["failures"],
					"avg_latency_ms": round(t["latency_ms"] / t["calls"]) if t["calls"] else 0,
					"providers": dict(t["providers"]),
				}
				for name, t in self._totals.items()
			}
		return {
			"total_calls": sum(e["calls"] for e in endpoints.values()),
			"total_failures": sum(e["failures"] for e in endpoints.values()),
			"endpoints": endpoints,
		}

	def reset(self) -> None:
		with self._lock:
			self._events.clear()
			self._totals.clear()


usage_tracker = UsageTracker()
