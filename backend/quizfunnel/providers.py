from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from .settings import Settings, settings

logger = logging.getLogger(__name__)
logging.getLogger("botocore").setLevel(logging.WARNING)


class ProviderError(RuntimeError):
	"""A single provider failed to produce a completion."""

	def __init__(self, provider: str, message: str, *, status_code: Optional[int] = None) -> None:
		super().__init__(f"{provider}: {message}")
		self.provider = provider
		self.status_code = status_code


class ProviderNotConfigured(ProviderError):
	pass


@dataclass
class ChatRequest:
	prompt: str
	system_prompt: Optional[str] = None
	max_tokens: Optional[int] = None
	temperature: Optional[float] = None
	json_mode: bool = False
	# earlier turns, oldest first, as {"role": "user"|"assistant", "content": ...}
	history: List[Dict[str, Any]] = field(default_factory=list)

	def turns(self) -> List[Dict[str, str]]:
		turns = []
		for m in self.history:
			if m.get("role") not in ("user", "assistant") or not m.get("content"):
				continue
			content = m["content"] if isinstance(m["content"], str) else json.dumps(m["content"])
			turns.append({"role": m["role"], "content": content})
		turns.append({"role": "user", "content": self.prompt})
		return turns

	def messages(self) -> List[Dict[str, str]]:
		messages: List[Dict[str, str]] = []
		if self.system_prompt:
			messages.append({"role": "system", "content": self.system_prompt})
		messages.extend(self.turns())
		return messages


@dataclass
class ProviderReply:
	content: str
	provider: str
	model: str
	token_count: Optional[int] = None


class ChatProvider:
	name = "provider"
	supports_streaming = False
	model = ""

	async def complete(self, request: ChatRequest) -> ProviderReply:
		raise NotImplementedError

	def stream(self, request: ChatRequest) -> AsyncIterator[str]:
		raise ProviderError(self.name, "streaming is not supported")

	async def aclose(self) -> None:
		return None


class OpenAICompatibleClient(ChatProvider):
	"""Chat completions over the OpenAI wire format (used by Cerebras and OpenAI)."""

	supports_streaming = True
	max_tokens_param = "max_tokens"
	default_temperature = 0.7
	extra_params: Dict[str, Any] = {}

	def __init__(
		self,
		api_key: Optional[str],
		*,
		base_url: str,
		model: str,
		timeout: Optional[float] = None,
		max_tokens: Optional[int] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		if not api_key:
			raise ProviderNotConfigured(self.name, "API key is not configured")
		self.api_key = api_key
		self.base_url = base_url.rstrip("/")
		self.model = model
		self.max_tokens = max_tokens or settings.ai_default_max_tokens
		self._client = httpx.AsyncClient(timeout=timeout or settings.ai_timeout_seconds, transport=transport)

	@property
	def url(self) -> str:
		return f"{self.base_url}/chat/completions"

	def _headers(self) -> Dict[str, str]:
		return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

	def _payload(self, request: ChatRequest, *, stream: bool) -> Dict[str, Any]:
		temperature = request.temperature if request.temperature is not None else self.default_temperature
		payload: Dict[str, Any] = {
			"model": self.model,
			"messages": request.messages(),
			self.max_tokens_param: request.max_tokens or self.max_tokens,
			"temperature": temperature,
			"stream": stream,
			**self.extra_params,
		}
		if request.json_mode:
			payload["response_format"] = {"type": "json_object"}
		return payload

	async def complete(self, request: ChatRequest) -> ProviderReply:
		payload = self._payload(request, stream=False)
		try:
			r = await self._client.post(self.url, headers=self._headers(), json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			status = http_err.response.status_code
			raise ProviderError(self.name, f"HTTP {status}: {http_err.response.text[:200]}", status_code=status) from http_err
		except httpx.RequestError as net_err:
			raise ProviderError(self.name, f"request failed: {net_err}") from net_err
		try:
			data = r.json()
			content = data["choices"][0]["message"]["content"]
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise ProviderError(self.name, f"unexpected response: {r.text[:200]}") from err
		if not isinstance(content, str) or not content.strip():
			raise ProviderError(self.name, "empty completion")
		usage = data.get("usage") or {}
		return ProviderReply(content=content, provider=self.name, model=self.model, token_count=usage.get("total_tokens"))

	async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
		payload = self._payload(request, stream=True)
		try:
			async with self._client.stream("POST", self.url, headers=self._headers(), json=payload) as r:
				if r.status_code >= 400:
					body = (await r.aread()).decode("utf-8", errors="ignore")
					raise ProviderError(self.name, f"HTTP {r.status_code}: {body[:200]}", status_code=r.status_code)
				async for line in r.aiter_lines():
					if not line.startswith("data: "):
						continue
					data = line[6:].strip()
					if data == "[DONE]":
						break
					try:
						chunk = json.loads(data)
					except ValueError:
						# partial frame
						continue
					if not isinstance(chunk, dict):
						continue
					choices = chunk.get("choices")
					first = choices[0] if isinstance(choices, list) and choices else {}
					delta = first.get("delta") if isinstance(first, dict) else None
					delta = delta.get("content") if isinstance(delta, dict) else None
					if isinstance(delta, str) and delta:
						yield delta
		except httpx.RequestError as net_err:
			raise ProviderError(self.name, f"stream failed: {net_err}") from net_err

	async def aclose(self) -> None:
		await self._client.aclose()


class CerebrasClient(OpenAICompatibleClient):
	name = "cerebras"
	max_tokens_param = "max_completion_tokens"
	default_temperature = 0.2
	extra_params = {"top_p": 1}


class OpenAIClient(OpenAICompatibleClient):
	name = "openai"


class BedrockClaudeClient(ChatProvider):
	"""Claude through AWS Bedrock. boto3 is blocking, so calls run in a worker thread."""

	name = "bedrock"
	anthropic_version = "bedrock-2023-05-31"

	def __init__(self, *, model: Optional[str] = None, max_tokens: Optional[int] = None, client: Any = None, cfg: Optional[Settings] = None) -> None:
		cfg = cfg or settings
		self.model = model or cfg.bedrock_model_id
		self.max_tokens = max_tokens or cfg.ai_default_max_tokens
		if client is None:
			if not cfg.aws_access_key_id or not cfg.aws_secret_access_key:
				raise ProviderNotConfigured(self.name, "AWS credentials are not configured")
			client = boto3.client(
				"bedrock-runtime",
				region_name=cfg.aws_region,
				aws_access_key_id=cfg.aws_access_key_id,
				aws_secret_access_key=cfg.aws_secret_access_key,
			)
		self._client = client

	def _body(self, request: ChatRequest) -> Dict[str, Any]:
		body: Dict[str, Any] = {
			"anthropic_version": self.anthropic_version,
			"messages": request.turns(),
			"max_tokens": request.max_tokens or self.max_tokens,
			"temperature": request.temperature if request.temperature is not None else 0.7,
		}
		if request.system_prompt:
			body["system"] = request.system_prompt
		return body

	def _invoke(self, body: Dict[str, Any]) -> Dict[str, Any]:
		response = self._client.invoke_model(
			modelId=self.model,
			contentType="application/json",
			accept="application/json",
			body=json.dumps(body),
		)
		return json.loads(response["body"].read())

	async def complete(self, request: ChatRequest) -> ProviderReply:
		try:
			data = await asyncio.to_thread(self._invoke, self._body(request))
		except (BotoCoreError, ClientError) as err:
			raise ProviderError(self.name, f"invoke_model failed: {err}") from err
		except ValueError as err:
			raise ProviderError(self.name, "response body is not JSON") from err
		try:
			text = data["content"][0]["text"]
		except (KeyError, IndexError, TypeError) as err:
			raise ProviderError(self.name, "invalid Claude response format") from err
		if not isinstance(text, str) or not text.strip():
			raise ProviderError(self.name, "empty completion")
		usage = data.get("usage") or {}
		tokens = None
		if usage:
			tokens = int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))
		return ProviderReply(content=text, provider=self.name, model=self.model, token_count=tokens)


def build_provider(name: str, cfg: Optional[Settings] = None, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> ChatProvider:
	cfg = cfg or settings
	if name == "cerebras":
		return CerebrasClient(
			cfg.cerebras_api_key,
			base_url=cfg.cerebras_base_url,
			model=cfg.cerebras_model,
			timeout=cfg.ai_timeout_seconds,
			transport=transport,
		)
	if name == "openai":
		return OpenAIClient(
			cfg.openai_api_key,
			base_url=cfg.openai_base_url,
			model=cfg.openai_model,
			timeout=cfg.ai_timeout_seconds,
			transport=transport,
		)
	if name == "bedrock":
		return BedrockClaudeClient(cfg=cfg)
	raise ValueError(f"unknown provider: {name}")


def build_providers(cfg: Optional[Settings] = None, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> List[ChatProvider]:
	"""Build the configured providers in fallback order, skipping any without credentials."""
	cfg = cfg or settings
	providers: List[ChatProvider] = []
	for name in cfg.provider_order():
		try:
			providers.append(build_provider(name, cfg, transport=transport))
		except ProviderNotConfigured as err:
			logger.warning("Skipping provider %s: %s", name, err)
		except ValueError as err:
			logger.warning("Ignoring provider %s: %s", name, err)
	return providers
