from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, Boolean, JSON, ForeignKey, UniqueConstraint
from .db import Base


def _uuid() -> str:
	return str(uuid.uuid4())


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is the lowercase email
	email = Column(String(256), primary_key=True, index=True)
	name = Column(String(256), nullable=True)
	password_hash = Column(String(256), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	email = Column(String(256), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserProfile(Base):
	__tablename__ = "user_profiles"
	id = Column(String(36), primary_key=True, default=_uuid)
	email = Column(String(256), unique=True, nullable=False, index=True)
	first_name = Column(String(128), nullable=True)
	last_name = Column(String(128), nullable=True)
	# "metadata" is reserved on declarative classes
	profile_metadata = Column("metadata", JSON, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	@property
	def display_name(self) -> str:
		return f"{self.first_name or ''} {self.last_name or ''}".strip()


class SectionData(Base):
	__tablename__ = "section_data"
	__table_args__ = (UniqueConstraint("user_id", "section_type", name="uq_section_data_user_section"),)
	id = Column(String(36), primary_key=True, default=_uuid)
	user_id = Column(String(36), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
	section_type = Column(String(128), nullable=False)
	data = Column(JSON, nullable=False, default=dict)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class GeneratedContent(Base):
	__tablename__ = "generated_content"
	id = Column(String(36), primary_key=True, default=_uuid)
	user_id = Column(String(36), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
	section_type = Column(String(128), nullable=False, index=True)
	prompt = Column(Text, nullable=False, default="")
	response = Column(JSON, nullable=True)
	content_metadata = Column("metadata", JSON, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Journey(Base):
	__tablename__ = "journeys"
	id = Column(String(36), primary_key=True, default=_uuid)
	user_id = Column(String(36), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
	title = Column(String(256), nullable=False)
	# Ordered list of viewed section ids
	sections = Column(JSON, nullable=False, default=list)
	share_id = Column(String(64), unique=True, nullable=True, index=True)
	is_public = Column(Boolean, default=False, nullable=False)
	view_count = Column(Integer, default=0, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
