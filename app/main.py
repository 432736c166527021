import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from alembic.config import Config
from alembic import command
from app.core.config import settings
from app.core.logging import configure_logging
from app.api.routes import router as api_router
from app.db.session import engine

configure_logging()
log = logging.getLogger(__name__)


def wait_for_database(max_retries: int = 30, retry_delay: float = 1.0) -> None:
    """Block until the database accepts connections."""
    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            log.info("Database connection successful", extra={"job_id": "-", "stage": "-"})
            return
        except OperationalError as e:
            if attempt == max_retries:
                log.error("Database unreachable after %d attempts", max_retries, extra={"job_id": "-", "stage": "-"})
                raise
            log.warning("Database not ready (attempt %d/%d): %s", attempt, max_retries, e,
                        extra={"job_id": "-", "stage": "-"})
            time.sleep(retry_delay)


def run_migrations() -> None:
    log.info("Upgrading database schema to head", extra={"job_id": "-", "stage": "-"})
    command.upgrade(Config("alembic.ini"), "head")


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Starting %s (%s)", settings.app_name, settings.app_env, extra={"job_id": "-", "stage": "-"})
    if settings.auto_migrate:
        wait_for_database()
        run_migrations()
    yield
    log.info("Shutting down API server", extra={"job_id": "-", "stage": "-"})


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=lifespan
)
app.include_router(api_router, prefix="/v1")
