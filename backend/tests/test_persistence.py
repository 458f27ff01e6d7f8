from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from quizfunnel import repository
from quizfunnel.cleanup import purge_stale_rows
from quizfunnel.db import ensure_schema
from quizfunnel.documents import QuizNotComplete, SHARE_ID_LENGTH
from quizfunnel.models import AuthSession, Journey


def test_create_or_update_user_is_keyed_by_lowercase_email(db):
	user = repository.create_or_update_user(db, "Parent@Example.com", first_name="Pat", metadata={"source": "quiz"})
	again = repository.create_or_update_user(db, "parent@example.com", last_name="Lee", metadata={"plan": "free"})
	assert again.id == user.id
	assert again.display_name == "Pat Lee"
	assert again.profile_metadata == {"source": "quiz", "plan": "free"}
	assert repository.get_user_by_email(db, " PARENT@example.com ").id == user.id


def test_create_user_requires_email(db):
	with pytest.raises(ValueError):
		repository.create_or_update_user(db, "  ")


def test_section_data_upserts(db):
	user = repository.create_or_update_user(db, "a@example.com")
	first = repository.save_section_data(db, user.id, "grade", {"value": "3rd"})
	second = repository.save_section_data(db, user.id, "grade", {"value": "4th"})
	assert first.id == second.id
	assert repository.get_section_data(db, user.id, "grade").data == {"value": "4th"}
	repository.save_section_data(db, user.id, "quiz", {"user_type": "parents"})
	assert {row.section_type for row in repository.get_all_section_data(db, user.id)} == {"grade", "quiz"}


def test_generated_content_oldest_first_and_filtered(db):
	user = repository.create_or_update_user(db, "a@example.com")
	repository.save_generated_content(db, user.id, "closest-schools", "p1", {"n": 1})
	repository.save_generated_content(db, user.id, "ai-experience", "p2", {"n": 2}, {"provider": "openai"})
	repository.save_generated_content(db, user.id, "closest-schools", "p3", {"n": 3})
	everything = repository.get_generated_content(db, user.id)
	assert [row.response["n"] for row in everything] == [1, 2, 3]
	only = repository.get_generated_content(db, user.id, "closest-schools")
	assert [row.prompt for row in only] == ["p1", "p3"]
	assert everything[1].content_metadata == {"provider": "openai"}


def test_journey_sections_keep_order_and_skip_repeats(db):
	user = repository.create_or_update_user(db, "a@example.com")
	journey = repository.create_journey(db, user.id, "Mine")
	for section in ("closest-schools", "closest-schools", "ai-experience", "closest-schools"):
		journey = repository.add_section_to_journey(db, journey, section)
	assert journey.sections == ["closest-schools", "ai-experience", "closest-schools"]


def test_share_id_is_stable_and_private_journeys_are_hidden(db):
	user = repository.create_or_update_user(db, "a@example.com")
	journey = repository.create_journey(db, user.id, "Mine")
	assert journey.share_id is None
	assert repository.get_public_journey(db, "missing") is None

	shared = repository.share_journey(db, journey)
	share_id = shared.share_id
	assert len(share_id) == 32
	assert repository.share_journey(db, shared).share_id == share_id

	viewed = repository.get_public_journey(db, share_id)
	assert viewed.view_count == 1
	assert repository.get_public_journey(db, share_id).view_count == 2

	shared.is_public = False
	db.commit()
	assert repository.get_public_journey(db, share_id) is None


def test_journeys_are_scoped_to_owner(db):
	owner = repository.create_or_update_user(db, "a@example.com")
	other = repository.create_or_update_user(db, "b@example.com")
	journey = repository.create_journey(db, owner.id, "Mine")
	assert repository.get_journey(db, journey.id, user_id=other.id) is None
	assert repository.get_journey(db, journey.id, user_id=owner.id).id == journey.id


def test_user_data_bundle(db):
	assert repository.get_user_data_by_email(db, "nobody@example.com") is None
	user = repository.create_or_update_user(db, "a@example.com")
	repository.save_section_data(db, user.id, "quiz", {"grade": "K"})
	repository.create_journey(db, user.id, "Mine")
	bundle = repository.get_user_data_by_email(db, "a@example.com")
	assert bundle["sections"] == {"quiz": {"grade": "K"}}
	assert len(bundle["journeys"]) == 1
	assert repository.is_available(db)


# ---- legacy document store ----

def test_full_save_stamps_completion(store):
	doc = store.save_quiz("Parent@Example.com", name="Pat", quiz_data={"grade": "3rd"})
	assert doc["email"] == "parent@example.com"
	assert doc["quiz_data"]["grade"] == "3rd"
	assert doc["quiz_data"]["completed_at"] is not None


def test_partial_save_merges_and_keeps_completion(store):
	store.save_quiz("p@example.com", quiz_data={"grade": "3rd", "kids_interests": ["art"]})
	completed_at = store.get_quiz("p@example.com")["quiz_data"]["completed_at"]
	doc = store.save_quiz("p@example.com", quiz_data={"grade": "4th"}, is_partial=True)
	assert doc["quiz_data"]["grade"] == "4th"
	assert doc["quiz_data"]["kids_interests"] == ["art"]
	assert doc["quiz_data"]["completed_at"] == completed_at


def test_partial_save_on_new_user_is_not_complete(store):
	doc = store.save_quiz("new@example.com", quiz_data={"user_type": "parents"}, is_partial=True)
	assert "completed_at" not in doc["quiz_data"]
	with pytest.raises(QuizNotComplete):
		store.share_journey("new@example.com", ["closest-schools"])


def test_generated_content_is_stamped(store):
	doc = store.save_quiz("p@example.com", generated_content={"data_shock": "x"})
	assert doc["generated_content"]["generated_at"] is not None


def test_legacy_share_reuses_id_and_counts_views(store):
	store.save_quiz("p@example.com", name="Pat", quiz_data={"grade": "3rd"})
	first = store.share_journey("p@example.com", ["a"])
	created_at = store.get_share_status("p@example.com")["created_at"]
	second = store.share_journey("p@example.com", ["a", "b"])
	assert len(first["share_id"]) == SHARE_ID_LENGTH
	assert second["share_id"] == first["share_id"]
	assert store.get_share_status("p@example.com")["created_at"] == created_at
	assert second["viewed_sections"] == ["a", "b"]

	shared = store.get_shared_journey(first["share_id"])
	assert shared["name"] == "Pat"
	assert shared["view_count"] == 1
	assert store.get_shared_journey(first["share_id"])["view_count"] == 2
	assert store.get_shared_journey("nope") is None


def test_full_save_keeps_client_completed_at(store):
	doc = store.save_quiz("p@example.com", quiz_data={"grade": "3rd", "completed_at": "2024-05-01T10:00:00"})
	assert doc["quiz_data"]["completed_at"] == "2024-05-01T10:00:00"


def test_incomplete_shared_journey_is_not_counted(store):
	store.collection.insert_one(
		{
			"email": "p@example.com",
			"quiz_data": {"grade": "3rd"},
			"shareable_journey": {"share_id": "abcDEF1234", "view_count": 0, "viewed_sections": []},
		}
	)
	with pytest.raises(QuizNotComplete):
		store.get_shared_journey("abcDEF1234")
	assert store.get_share_status("p@example.com")["view_count"] == 0


def test_missing_documents_return_none(store):
	assert store.get_quiz("ghost@example.com") is None
	assert store.get_share_status("ghost@example.com") is None


# ---- cleanup and schema upkeep ----

def test_cleanup_purges_idle_sessions_and_empty_private_journeys(db):
	old = datetime.utcnow() - timedelta(days=30)
	user = repository.create_or_update_user(db, "a@example.com")
	db.add(AuthSession(session_id="old", email="a@example.com", last_activity_at=old))
	db.add(AuthSession(session_id="fresh", email="a@example.com"))
	db.add(Journey(user_id=user.id, title="empty", sections=[], updated_at=old))
	db.add(Journey(user_id=user.id, title="viewed", sections=["ai-experience"], updated_at=old))
	db.add(Journey(user_id=user.id, title="shared", sections=[], is_public=True, updated_at=old))
	db.commit()

	assert purge_stale_rows(db, days=7) == 2
	assert [s.session_id for s in db.query(AuthSession).all()] == ["fresh"]
	assert sorted(j.title for j in db.query(Journey).all()) == ["shared", "viewed"]


def test_ensure_schema_adds_late_columns():
	eng = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
	with eng.begin() as conn:
		conn.exec_driver_sql("CREATE TABLE journeys (id VARCHAR(36) PRIMARY KEY, title VARCHAR(256))")
	added = ensure_schema(eng)
	assert added == ["journeys.view_count", "journeys.is_public"]
	columns = {c["name"] for c in inspect(eng).get_columns("journeys")}
	assert {"view_count", "is_public"} <= columns
	assert ensure_schema(eng) == []
