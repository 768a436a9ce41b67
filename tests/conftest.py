"""
Test configuration and fixtures for the Referral Waitlist API.

Service tests run against a throwaway SQLite file (or TEST_DATABASE_URL when
set) whose tables are rebuilt from the model metadata for every test.
"""

import os
import tempfile
from typing import Generator

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from fastapi.testclient import TestClient

load_dotenv()

test_db_url = os.getenv("TEST_DATABASE_URL")
if test_db_url:
    if "postgresql://" in test_db_url and "asyncpg" not in test_db_url:
        test_db_url = test_db_url.replace("postgresql://", "postgresql+asyncpg://")
    os.environ["DATABASE_URL"] = test_db_url
else:
    test_db_path = os.path.join(tempfile.mkdtemp(), "waitlist_test.db")
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"

os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_TO_FILE"] = "false"


@pytest_asyncio.fixture
async def db_session():
    """Fresh schema and an open session; the engine is disposed afterwards."""
    from referral_waitlist.platform.db.base import Base, import_models
    from referral_waitlist.platform.db.session import SessionLocal, engine

    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as session:
        yield session

    await engine.dispose()


@pytest.fixture(scope="session")
def test_app():
    from referral_waitlist.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    with TestClient(test_app) as test_client:
        yield test_client
