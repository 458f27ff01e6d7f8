from __future__ import annotations
import hashlib
import json
import threading
import time
from typing import Any, Dict, Optional, Tuple

# (owner, section_id) -> {"content": ..., "fingerprint": ..., "timestamp": ...}
_Key = Tuple[str, str]


def data_fingerprint(data: Dict[str, Any]) -> str:
	"""Stable hash of the inputs a section was generated from."""
	raw = json.dumps(data, sort_keys=True, default=str)
	return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ContentRegistry:
	"""Generated section content kept for the life of the process.

	An entry only counts as generated for the inputs it was built from; a
	lookup with a different fingerprint misses.
	"""

	def __init__(self) -> None:
		self._entries: Dict[_Key, Dict[str, Any]] = {}
		self._lock = threading.Lock()

	def set(self, owner: str, section_id: str, content: Any, fingerprint: Optional[str] = None) -> None:
		with self._lock:
			self._entries[(owner, section_id)] = {
				"content": content,
				"fingerprint": fingerprint,
				"timestamp": time.time(),
			}

	def get(self, owner: str, section_id: str, fingerprint: Optional[str] = None) -> Optional[Dict[str, Any]]:
		with self._lock:
			entry = self._entries.get((owner, section_id))
		if entry is None:
			return None
		if fingerprint is not None and entry["fingerprint"] != fingerprint:
			return None
		return entry

	def is_generated(self, owner: str, section_id: str, fingerprint: Optional[str] = None) -> bool:
		return self.get(owner, section_id, fingerprint) is not None

	def forget(self, owner: str) -> int:
		with self._lock:
			keys = [key for key in self._entries if key[0] == owner]
			for key in keys:
				del self._entries[key]
		return len(keys)

	def clear(self) -> None:
		with self._lock:
			self._entries.clear()


class ResponseCache:
	"""Small TTL cache for generated responses keyed by their inputs."""

	def __init__(self, ttl: float, clock=time.time) -> None:
		self.ttl = ttl
		self._clock = clock
		self._entries: Dict[str, Tuple[float, Any]] = {}
		self._lock = threading.Lock()

	def get(self, key: str) -> Optional[Any]:
		with self._lock:
			hit = self._entries.get(key)
			if hit is None:
				return None
			stored_at, value = hit
			if self._clock() - stored_at > self.ttl:
				del self._entries[key]
				return None
			return value

	def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
		# a per-entry ttl is stored as a shifted timestamp
		offset = (ttl - self.ttl) if ttl is not None else 0.0
		with self._lock:
			self._entries[key] = (self._clock() + offset, value)

	def clear(self) -> None:
		with self._lock:
			self._entries.clear()


content_registry = ContentRegistry()
