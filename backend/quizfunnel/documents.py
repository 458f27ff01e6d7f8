"""
Legacy document store.

Quiz saves and share links from the first version of the funnel live in a
single MongoDB ``users`` collection, one document per lowercase email:

	{email, name, quiz_data, generated_content, shareable_journey}
"""
from __future__ import annotations
import logging
import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection

from .settings import settings

logger = logging.getLogger(__name__)

SHARE_ID_LENGTH = 10
_SHARE_ALPHABET = string.ascii_letters + string.digits


class QuizNotComplete(ValueError):
	pass


def new_share_id() -> str:
	return "".join(secrets.choice(_SHARE_ALPHABET) for _ in range(SHARE_ID_LENGTH))


def _strip_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
	if doc is None:
		return None
	doc = dict(doc)
	doc.pop("_id", None)
	return doc


class LegacyUserStore:
	def __init__(self, collection: Collection) -> None:
		self.collection = collection

	def get_user(self, email: str) -> Optional[Dict[str, Any]]:
		return _strip_id(self.collection.find_one({"email": email.strip().lower()}))

	def save_quiz(
		self,
		email: str,
		*,
		name: Optional[str] = None,
		quiz_data: Optional[Dict[str, Any]] = None,
		generated_content: Optional[Dict[str, Any]] = None,
		is_partial: bool = False,
	) -> Dict[str, Any]:
		"""Upsert the quiz answers for an email.

		A full save replaces the stored answers and stamps ``completed_at``
		unless the client sent one. A partial save merges into what is stored
		and keeps the existing ``completed_at``.
		"""
		email = email.strip().lower()
		now = datetime.utcnow()
		existing = self.collection.find_one({"email": email}) or {}
		update: Dict[str, Any] = {"email": email, "updated_at": now}
		if name:
			update["name"] = name
		if quiz_data is not None:
			if is_partial:
				stored = existing.get("quiz_data") or {}
				merged = dict(stored)
				merged.update(quiz_data)
				if stored.get("completed_at"):
					merged["completed_at"] = stored["completed_at"]
				update["quiz_data"] = merged
			else:
				update["quiz_data"] = {**quiz_data, "completed_at": quiz_data.get("completed_at") or now}
		if generated_content is not None:
			update["generated_content"] = {**generated_content, "generated_at": now}
		doc = self.collection.find_one_and_update(
			{"email": email},
			{"$set": update, "$setOnInsert": {"created_at": now}},
			upsert=True,
			return_document=ReturnDocument.AFTER,
		)
		logger.info("Saved legacy quiz for %s (partial=%s)", email, is_partial)
		return _strip_id(doc)

	def get_quiz(self, email: str) -> Optional[Dict[str, Any]]:
		doc = self.get_user(email)
		if doc is None:
			return None
		return {
			"email": doc["email"],
			"name": doc.get("name"),
			"quiz_data": doc.get("quiz_data"),
			"generated_content": doc.get("generated_content"),
		}

	def share_journey(self, email: str, viewed_sections: List[str]) -> Dict[str, Any]:
		"""Create or refresh the share link; the share id never changes once issued."""
		email = email.strip().lower()
		doc = self.collection.find_one({"email": email})
		if doc is None or not (doc.get("quiz_data") or {}).get("completed_at"):
			raise QuizNotComplete("Quiz must be completed before sharing")
		now = datetime.utcnow()
		journey = dict(doc.get("shareable_journey") or {})
		if not journey.get("share_id"):
			journey["share_id"] = new_share_id()
			journey["created_at"] = now
			journey["view_count"] = 0
		journey["viewed_sections"] = list(viewed_sections)
		journey["last_updated_at"] = now
		self.collection.update_one({"email": email}, {"$set": {"shareable_journey": journey}})
		return journey

	def get_share_status(self, email: str) -> Optional[Dict[str, Any]]:
		doc = self.get_user(email)
		if doc is None:
			return None
		return doc.get("shareable_journey")

	def get_shared_journey(self, share_id: str) -> Optional[Dict[str, Any]]:
		query = {"shareable_journey.share_id": share_id}
		doc = self.collection.find_one(query)
		if doc is None:
			return None
		if not (doc.get("quiz_data") or {}).get("completed_at"):
			raise QuizNotComplete("Shared journey is not available")
		# only views of an available journey are counted
		doc = self.collection.find_one_and_update(
			query,
			{"$inc": {"shareable_journey.view_count": 1}},
			return_document=ReturnDocument.AFTER,
		)
		if doc is None:
			return None
		quiz_data = doc.get("quiz_data") or {}
		journey = doc["shareable_journey"]
		return {
			"name": doc.get("name"),
			"quiz_data": quiz_data,
			"generated_content": doc.get("generated_content"),
			"viewed_sections": journey.get("viewed_sections") or [],
			"view_count": journey.get("view_count", 0),
			"created_at": journey.get("created_at"),
		}


_store: Optional[LegacyUserStore] = None


def get_document_store() -> LegacyUserStore:
	global _store
	if _store is None:
		client = MongoClient(settings.mongodb_uri, serverSelectionTimeoutMS=5000)
		_store = LegacyUserStore(client[settings.mongodb_database]["users"])
	return _store
