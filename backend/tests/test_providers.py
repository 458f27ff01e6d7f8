import io
import json

import httpx
import pytest
from botocore.exceptions import ClientError

from quizfunnel.providers import (
	BedrockClaudeClient,
	CerebrasClient,
	ChatRequest,
	OpenAIClient,
	ProviderError,
	ProviderNotConfigured,
	build_providers,
)
from quizfunnel.settings import Settings


def _completion(content, total_tokens=42):
	return {"choices": [{"message": {"content": content}}], "usage": {"total_tokens": total_tokens}}


async def test_cerebras_request_shape_and_reply():
	seen = {}

	def handler(request):
		seen["url"] = str(request.url)
		seen["auth"] = request.headers["authorization"]
		seen["body"] = json.loads(request.content)
		return httpx.Response(200, json=_completion("hi there"))

	client = CerebrasClient("key-1", base_url="https://cerebras.test/v1/", model="llama", transport=httpx.MockTransport(handler))
	reply = await client.complete(ChatRequest(prompt="hello", system_prompt="be brief", max_tokens=100, json_mode=True))
	await client.aclose()

	assert reply.content == "hi there"
	assert reply.provider == "cerebras"
	assert reply.token_count == 42
	assert seen["url"] == "https://cerebras.test/v1/chat/completions"
	assert seen["auth"] == "Bearer key-1"
	body = seen["body"]
	assert body["max_completion_tokens"] == 100
	assert body["top_p"] == 1
	assert body["response_format"] == {"type": "json_object"}
	assert body["messages"][0] == {"role": "system", "content": "be brief"}


async def test_openai_uses_max_tokens():
	seen = {}

	def handler(request):
		seen["body"] = json.loads(request.content)
		return httpx.Response(200, json=_completion("ok"))

	client = OpenAIClient("key", base_url="https://openai.test/v1", model="gpt", max_tokens=256, transport=httpx.MockTransport(handler))
	await client.complete(ChatRequest(prompt="hello"))
	assert seen["body"]["max_tokens"] == 256
	assert "max_completion_tokens" not in seen["body"]


@pytest.mark.parametrize(
	"response",
	[
		httpx.Response(429, text="rate limited"),
		httpx.Response(200, json={"choices": []}),
		httpx.Response(200, json=_completion("   ")),
		httpx.Response(200, text="<html>"),
	],
)
async def test_bad_responses_raise_provider_error(response):
	client = OpenAIClient("key", base_url="https://openai.test/v1", model="gpt", transport=httpx.MockTransport(lambda r: response))
	with pytest.raises(ProviderError):
		await client.complete(ChatRequest(prompt="hello"))


async def test_http_status_is_kept():
	client = OpenAIClient("key", base_url="https://x.test", model="m", transport=httpx.MockTransport(lambda r: httpx.Response(503)))
	with pytest.raises(ProviderError) as info:
		await client.complete(ChatRequest(prompt="hello"))
	assert info.value.status_code == 503


async def test_network_error_becomes_provider_error():
	def handler(request):
		raise httpx.ConnectError("refused", request=request)

	client = OpenAIClient("key", base_url="https://x.test", model="m", transport=httpx.MockTransport(handler))
	with pytest.raises(ProviderError, match="request failed"):
		await client.complete(ChatRequest(prompt="hello"))


async def test_streaming_parses_server_sent_events():
	body = (
		'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n'
		'data: {"choices": [{"delta": {"content": "lo"}}]}\n\n'
		"data: [DONE]\n\n"
	)
	client = CerebrasClient("key", base_url="https://x.test", model="m", transport=httpx.MockTransport(lambda r: httpx.Response(200, text=body)))
	chunks = [c async for c in client.stream(ChatRequest(prompt="hello"))]
	assert chunks == ["Hel", "lo"]


def test_missing_key_is_not_configured():
	with pytest.raises(ProviderNotConfigured):
		OpenAIClient(None, base_url="https://x.test", model="m")


class FakeBedrock:
	def __init__(self, payload=None, error=None):
		self.payload = payload
		self.error = error
		self.calls = []

	def invoke_model(self, **kwargs):
		self.calls.append(kwargs)
		if self.error:
			raise self.error
		return {"body": io.BytesIO(json.dumps(self.payload).encode())}


async def test_bedrock_reply_and_body():
	fake = FakeBedrock({"content": [{"text": "claude says hi"}], "usage": {"input_tokens": 5, "output_tokens": 7}})
	client = BedrockClaudeClient(model="claude", max_tokens=300, client=fake)
	reply = await client.complete(ChatRequest(prompt="hello", system_prompt="sys"))
	assert reply.content == "claude says hi"
	assert reply.token_count == 12
	body = json.loads(fake.calls[0]["body"])
	assert body["anthropic_version"] == "bedrock-2023-05-31"
	assert body["system"] == "sys"
	assert body["max_tokens"] == 300
	assert fake.calls[0]["modelId"] == "claude"


async def test_bedrock_client_error_becomes_provider_error():
	error = ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "InvokeModel")
	client = BedrockClaudeClient(model="claude", client=FakeBedrock(error=error))
	with pytest.raises(ProviderError, match="invoke_model failed"):
		await client.complete(ChatRequest(prompt="hello"))


async def test_bedrock_bad_format():
	client = BedrockClaudeClient(model="claude", client=FakeBedrock({"content": []}))
	with pytest.raises(ProviderError, match="format"):
		await client.complete(ChatRequest(prompt="hello"))


def test_build_providers_skips_unconfigured_and_unknown():
	cfg = Settings(
		CEREBRAS_API_KEY=None,
		OPENAI_API_KEY="sk-test",
		AWS_ACCESS_KEY_ID=None,
		AWS_SECRET_ACCESS_KEY=None,
		AI_PROVIDER_ORDER="cerebras, bedrock, openai, mystery",
	)
	providers = build_providers(cfg)
	assert [p.name for p in providers] == ["openai"]


async def test_streaming_skips_frames_that_are_not_objects():
	body = (
		"data: 1\n\n"
		'data: ["x"]\n\n'
		'data: {"choices": "nope"}\n\n'
		'data: {"choices": [{"delta": null}]}\n\n'
		'data: {"choices": [{"delta": {"content": "ok"}}]}\n\n'
		"data: [DONE]\n\n"
	)
	client = OpenAIClient("key", base_url="https://x.test", model="m", transport=httpx.MockTransport(lambda r: httpx.Response(200, text=body)))
	chunks = [c async for c in client.stream(ChatRequest(prompt="hello"))]
	assert chunks == ["ok"]


def test_history_turns_come_before_the_prompt():
	request = ChatRequest(
		prompt="And for 5th grade?",
		system_prompt="sys",
		history=[
			{"role": "user", "content": "How long is the school day?"},
			{"role": "assistant", "content": {"description": "Two hours"}},
			{"role": "system", "content": "ignored"},
			{"role": "user", "content": ""},
		],
	)
	assert request.messages() == [
		{"role": "system", "content": "sys"},
		{"role": "user", "content": "How long is the school day?"},
		{"role": "assistant", "content": '{"description": "Two hours"}'},
		{"role": "user", "content": "And for 5th grade?"},
	]


async def test_bedrock_sends_history():
	fake = FakeBedrock({"content": [{"text": "sure"}]})
	client = BedrockClaudeClient(model="claude", client=fake)
	await client.complete(ChatRequest(prompt="second", history=[{"role": "user", "content": "first"}, {"role": "assistant", "content": "hi"}]))
	body = json.loads(fake.calls[0]["body"])
	assert [m["content"] for m in body["messages"]] == ["first", "hi", "second"]
