from __future__ import annotations
import logging
from typing import Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url or "sqlite:///./quizfunnel.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Columns added after the first deployment; older databases get them on startup
_LATE_COLUMNS = {
	"journeys": {
		"view_count": "INTEGER DEFAULT 0 NOT NULL",
		"is_public": "BOOLEAN DEFAULT FALSE NOT NULL",
	},
	"user_profiles": {
		"metadata": "JSON",
	},
}


def ensure_schema(bind: Optional[Engine] = None) -> list[str]:
	"""Add missing late columns to existing tables. Returns the columns added."""
	bind = bind or engine
	inspector = inspect(bind)
	tables = set(inspector.get_table_names())
	added: list[str] = []
	for table, columns in _LATE_COLUMNS.items():
		if table not in tables:
			continue
		existing = {c["name"] for c in inspector.get_columns(table)}
		with bind.begin() as conn:
			for name, ddl in columns.items():
				if name not in existing:
					conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
					added.append(f"{table}.{name}")
	if added:
		logger.info("Added missing columns: %s", ", ".join(added))
	return added
