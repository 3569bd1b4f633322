"""Shared fixtures: fake browsers, a session store on a temp dir, an audit database."""

import aiosqlite
import pytest
import pytest_asyncio

from fakes import FakeBrowserFactory
from hitl_browser.database.models import initialize_db
from hitl_browser.database.repository import AuditRepository
from hitl_browser.session_manager.store import SessionStore


@pytest.fixture
def browser_factory():
    return FakeBrowserFactory()


@pytest.fixture
def profiles_dir(tmp_path):
    path = tmp_path / "profiles"
    path.mkdir()
    return path


@pytest.fixture
def store(profiles_dir, browser_factory):
    return SessionStore(
        profiles_dir=profiles_dir,
        max_sessions=2,
        ttl_seconds=60,
        delete_profile=True,
        headless=True,
        browser_factory=browser_factory,
    )


@pytest_asyncio.fixture
async def audit_db(tmp_path):
    db = await aiosqlite.connect(str(tmp_path / "audit.db"))
    await initialize_db(db)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def audit(audit_db):
    return AuditRepository(audit_db)
