import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from sqlalchemy.exc import SQLAlchemyError

from .db import Base, engine, SessionLocal, ensure_schema
from .cleanup import purge_stale_rows
from .fallback import AIFallbackService, close_ai_service, get_ai_service
from .settings import settings
from .telemetry import configure_prompt_log
from .routers import health, auth, ai, questions, tutor, quiz, sections, journeys

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60


def _run_cleanup() -> None:
	db = SessionLocal()
	try:
		purge_stale_rows(db)
	except SQLAlchemyError:
		logger.exception("Cleanup failed")
		db.rollback()
	finally:
		db.close()


async def _cleanup_watcher():
	# Startup run happens in lifespan; this loop covers the daily runs
	while True:
		await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
		_run_cleanup()


@asynccontextmanager
async def lifespan(app: FastAPI):
	logger.info("Starting %s", settings.app_name)
	configure_prompt_log(settings.ai_prompt_log_file)
	Base.metadata.create_all(bind=engine)
	ensure_schema()
	_run_cleanup()
	watcher = asyncio.create_task(_cleanup_watcher())
	logger.info("AI providers: %s", get_ai_service().provider_names or "none configured")
	yield
	watcher.cancel()
	await close_ai_service()
	logger.info("Shutdown complete")


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(ai.router)
app.include_router(questions.router)
app.include_router(tutor.router)
app.include_router(quiz.router)
app.include_router(sections.router)
app.include_router(journeys.router)


@app.get("/info")
def info(service: AIFallbackService = Depends(get_ai_service)):
	return {
		"status": "ok",
		"app": settings.app_name,
		"providers": service.provider_names,
		"database": engine.url.get_backend_name(),
	}
