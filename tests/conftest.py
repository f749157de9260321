import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Application modules read settings at import time (during collection), so the
# static test environment must be in place before any test module is imported.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("API_AUTH_ENABLED", "false")
os.environ.setdefault("LLM_ENABLED", "false")
os.environ.setdefault("CELERY_EAGER_MODE", "true")


@pytest.fixture(scope="session", autouse=True)
def setup_test_db_url(tmp_path_factory):
    test_db = Path("./test.db")
    if test_db.exists():
        test_db.unlink()
    os.environ["DATABASE_URL"] = "sqlite:///./test.db"
    os.environ["REDIS_URL"] = "redis://localhost:6379/0"
    os.environ["CELERY_BROKER_URL"] = "redis://localhost:6379/0"
    os.environ["CELERY_RESULT_BACKEND"] = "redis://localhost:6379/1"
    os.environ["ENV"] = "test"
    os.environ["API_AUTH_ENABLED"] = "false"
    os.environ["CELERY_EAGER_MODE"] = "true"
    os.environ["LLM_ENABLED"] = "false"
    os.environ["OPENAI_API_KEY"] = ""
    os.environ["ANTHROPIC_API_KEY"] = ""
    os.environ["BLOB_STORAGE_DIR"] = str(tmp_path_factory.mktemp("blobs"))
    os.environ["PIPELINE_JOB_CONCURRENCY"] = "1"

    from canarywatch.core.config import get_settings
    from canarywatch.db.session import reset_session_for_tests

    get_settings.cache_clear()
    reset_session_for_tests()

    yield

    reset_session_for_tests()
    if test_db.exists():
        test_db.unlink()


@pytest.fixture
def settings(setup_test_db_url):
    from canarywatch.core.config import get_settings

    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
def session_factory(tmp_path, setup_test_db_url):
    """A fresh file-backed SQLite database per test."""
    from canarywatch import models  # noqa: F401
    from canarywatch.db.base import Base
    from canarywatch.db.session import build_engine, build_session_factory

    engine = build_engine(f"sqlite:///{tmp_path / 'pipeline.db'}")
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(setup_test_db_url):
    from canarywatch.main import app

    with TestClient(app) as test_client:
        yield test_client
