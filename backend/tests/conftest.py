import mongomock
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from quizfunnel import models  # noqa: F401  registers tables
from quizfunnel.content_registry import content_registry
from quizfunnel.db import Base, get_db
from quizfunnel.documents import LegacyUserStore, get_document_store
from quizfunnel.fallback import AIFallbackService, get_ai_service
from quizfunnel.main import app
from quizfunnel.providers import ChatProvider, ProviderError, ProviderReply
from quizfunnel.routers.ai import afternoon_cache, research_cache
from quizfunnel.routers.tutor import schema_cache
from quizfunnel.telemetry import usage_tracker


class FakeProvider(ChatProvider):
	"""Replays scripted outcomes; the last outcome repeats once the script runs out."""

	def __init__(self, name, outcomes=None, chunks=None):
		self.name = name
		self.model = f"{name}-model"
		self.outcomes = list(outcomes or [])
		self.chunks = chunks
		self.supports_streaming = chunks is not None
		self.calls = []

	def _next(self):
		if not self.outcomes:
			return ProviderError(self.name, "no scripted outcome")
		if len(self.outcomes) > 1:
			return self.outcomes.pop(0)
		return self.outcomes[0]

	async def complete(self, request):
		self.calls.append(request)
		outcome = self._next()
		if isinstance(outcome, Exception):
			raise outcome
		return ProviderReply(content=outcome, provider=self.name, model=self.model, token_count=10)

	async def stream(self, request):
		self.calls.append(request)
		for chunk in self.chunks:
			if isinstance(chunk, Exception):
				raise chunk
			yield chunk


@pytest.fixture(autouse=True)
def fresh_usage():
	usage_tracker.reset()
	yield
	usage_tracker.reset()


@pytest.fixture
def engine():
	eng = create_engine(
		"sqlite://",
		connect_args={"check_same_thread": False},
		poolclass=StaticPool,
	)
	Base.metadata.create_all(bind=eng)
	yield eng
	Base.metadata.drop_all(bind=eng)
	eng.dispose()


@pytest.fixture
def session_factory(engine):
	return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
	session = session_factory()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def store():
	return LegacyUserStore(mongomock.MongoClient()["quizfunnel"]["users"])


@pytest.fixture
def primary():
	return FakeProvider("cerebras", ['{"answer": "from primary"}'])


@pytest.fixture
def secondary():
	return FakeProvider("openai", ['{"answer": "from secondary"}'])


@pytest.fixture
def ai_service(primary, secondary):
	return AIFallbackService([primary, secondary], retry_delay=0)


@pytest.fixture
def client(session_factory, store, ai_service):
	def _get_db():
		session = session_factory()
		try:
			yield session
		finally:
			session.close()

	app.dependency_overrides[get_db] = _get_db
	app.dependency_overrides[get_document_store] = lambda: store
	app.dependency_overrides[get_ai_service] = lambda: ai_service
	yield TestClient(app)
	app.dependency_overrides.clear()
	content_registry.clear()
	for cache in (afternoon_cache, research_cache, schema_cache):
		cache.clear()


@pytest.fixture
def register(client):
	def _register(email="parent@example.com", password="s3cret-pass", name="Pat Parent"):
		r = client.post("/auth/register", json={"email": email, "password": password, "name": name})
		assert r.status_code == 201, r.text
		r = client.post("/auth/token", data={"username": email, "password": password})
		assert r.status_code == 200, r.text
		return {"Authorization": f"Bearer {r.json()['access_token']}"}

	return _register


@pytest.fixture
def auth_headers(register):
	return register()
