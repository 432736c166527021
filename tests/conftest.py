import os
import tempfile

# Settings are read at import time; point them at throwaway resources first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("WORKER_AUTH_TOKEN", "worker-secret")
os.environ.setdefault("ORCHESTRATOR_AUTH_TOKEN", "orchestrator-secret")
os.environ.setdefault("WORKSPACES_DIR", tempfile.mkdtemp(prefix="miniapp-ws-"))
os.environ.setdefault("AUTO_MIGRATE", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app.db.session import Base
from app.db import models  # noqa: F401


@pytest.fixture
def db_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
