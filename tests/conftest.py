"""Shared pytest fixtures for guild-sync tests."""
import os
import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator, Callable, Generator, Optional
from unittest.mock import AsyncMock

# Keep the module-level engine off the real database file
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from guild_sync.core.config import Settings
from guild_sync.models import Base, GuildMember


NOW = datetime(2025, 3, 1, 12, 0, 0)


def make_settings(**overrides) -> Settings:
    """Settings for tests: no env file, no delays, short timeouts."""
    values = dict(
        ENVIRONMENT="test",
        GUILD_NAME="Test Guild",
        GUILD_REALM="tarren-mill",
        GUILD_REGION="eu",
        BLIZZARD_CLIENT_ID="client-id",
        BLIZZARD_CLIENT_SECRET="client-secret",
        BLIZZARD_MIN_INTERVAL=0.0,
        RAIDERIO_MIN_INTERVAL=0.0,
        DEFAULT_MIN_INTERVAL=0.0,
        DISCOVERY_MEMBER_DELAY=0.0,
        MEMBER_DELAY_SECONDS=0.0,
        MEMBER_TIMEOUT_SECONDS=5.0,
        HTTP_TIMEOUT_SECONDS=5.0,
        LOG_JSON=False,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture(scope="function")
def db_engine():
    """Isolated in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine) -> Callable[[], Session]:
    """Session factory handed to the orchestrator (one session per run)."""
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    session = session_factory()

    yield session

    session.close()


@pytest.fixture(scope="function")
async def async_client(db_session: Session) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for testing FastAPI endpoints."""
    from guild_sync.api.main import app
    from guild_sync.core.database import get_db

    # Override database dependency to use test session
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


def create_member(
    db: Session,
    name: str,
    realm: str = "tarren-mill",
    last_login_at: Optional[datetime] = None,
    **fields
) -> GuildMember:
    """Helper to insert a member row."""
    now = fields.pop("now", NOW)
    member = GuildMember(
        id=str(uuid.uuid4()),
        character_name=name,
        realm=realm,
        last_login_at=last_login_at,
        activity_status=fields.pop("activity_status", "unknown"),
        created_at=now,
        last_updated=now,
        **fields
    )
    db.add(member)
    db.commit()
    return member


@pytest.fixture
def active_members(db_session: Session):
    """Three members seen within the last week."""
    return [
        create_member(db_session, "Krabs", last_login_at=NOW - timedelta(days=1), activity_status="active"),
        create_member(db_session, "Sandy", last_login_at=NOW - timedelta(days=2), activity_status="active"),
        create_member(db_session, "Plankton", last_login_at=NOW - timedelta(days=3), activity_status="active"),
    ]


@pytest.fixture
def mock_notifier():
    """Notifier double recording alert calls."""
    from unittest.mock import Mock

    notifier = Mock()
    notifier.notify_batch_errors = Mock(return_value=True)
    notifier.notify_critical_failure = Mock(return_value=True)
    notifier.close = AsyncMock()
    return notifier
