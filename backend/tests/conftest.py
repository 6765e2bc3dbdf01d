"""Shared pytest fixtures for the backend test suite."""

import os

# Set required env vars before any backend module is imported so that
# pydantic-settings initialises without external credentials.
os.environ.setdefault("DATABASE_URL", "sqlite://")  # overridden by fixture
os.environ.setdefault("CLERK_JWKS_URL", "http://localhost/jwks")
os.environ.setdefault("CLERK_WEBHOOK_SECRET", "whsec_testonly")

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import Session, SQLModel, create_engine

import backend.models  # noqa: F401  (registers every table on the metadata)
from backend.models.base import utcnow
from backend.models.lesson import Lesson
from backend.models.profile import Profile
from chatsync.backbone import Backbone


@pytest.fixture(name="db_path")
def db_path_fixture(tmp_path):
    """Temporary file-based SQLite database path shared between sync and async engines."""
    return str(tmp_path / "test.db")


@pytest.fixture(name="engine")
def engine_fixture(db_path):
    """Sync SQLite engine with all tables created."""
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest_asyncio.fixture(name="async_engine")
async def async_engine_fixture(db_path, engine):
    """Async SQLite engine sharing the same file-based database as the sync engine."""
    # engine fixture is a dependency to ensure tables are created first.
    # NullPool: TestClient runs the app on its own event loop.
    async_eng = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    yield async_eng
    await async_eng.dispose()


@pytest.fixture(name="db")
def db_fixture(engine):
    with Session(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture(name="backbone")
def backbone_fixture(async_engine):
    return Backbone(async_sessionmaker(async_engine, expire_on_commit=False))


def _add(db, row):
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture(name="student")
def student_fixture(db):
    return _add(
        db,
        Profile(
            clerk_user_id="user_abc123",
            email="ada@example.com",
            full_name="Ada Student",
            school="Lagos State",
            course="Pharmacy",
        ),
    )


@pytest.fixture(name="other_student")
def other_student_fixture(db):
    return _add(
        db,
        Profile(
            clerk_user_id="user_xyz999",
            email="ben@example.com",
            full_name="Ben Student",
            school="Lagos State",
            course="Nursing",
        ),
    )


@pytest.fixture(name="ta")
def ta_fixture(db):
    return _add(
        db,
        Profile(clerk_user_id="user_ta001", email="tess@example.com", full_name="Tess Assistant", role="ta"),
    )


@pytest.fixture(name="admin")
def admin_fixture(db):
    return _add(
        db,
        Profile(clerk_user_id="user_admin01", email="ade@example.com", full_name="Ade Admin", role="admin"),
    )


@pytest.fixture(name="live_lesson")
def live_lesson_fixture(db):
    return _add(
        db,
        Lesson(
            topic="Pharmacology",
            status="live",
            scheduled_at=utcnow() - timedelta(minutes=5),
            started_at=utcnow() - timedelta(minutes=5),
        ),
    )


@pytest.fixture(name="app")
def app_fixture(async_engine, backbone):
    """FastAPI app with the DB session and the chat backbone bound to test SQLite."""
    from backend.core.database import get_async_session, get_session_factory
    from backend.main import app
    from backend.services.realtime import get_backbone

    async_session_factory = async_sessionmaker(async_engine, expire_on_commit=False)

    async def override_get_async_session():
        async with async_session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_session_factory] = lambda: async_session_factory
    app.dependency_overrides[get_backbone] = lambda: backbone
    yield app
    app.dependency_overrides.clear()


@pytest.fixture(name="login")
def login_fixture(app):
    """Authenticate subsequent requests as the given profile.

    The profile is reloaded per request, like the real dependency, so flags
    flipped by earlier requests (unlocks, raised hands) are visible.
    """
    from fastapi import Depends
    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.core.auth import get_current_user, get_ws_user
    from backend.core.database import get_async_session, get_session_factory

    def _login(profile):
        profile_id = profile.id

        async def current_profile(db: AsyncSession = Depends(get_async_session)):
            return await db.get(Profile, profile_id)

        async def current_ws_profile(session_factory=Depends(get_session_factory)):
            async with session_factory() as db:
                return await db.get(Profile, profile_id)

        app.dependency_overrides[get_current_user] = current_profile
        app.dependency_overrides[get_ws_user] = current_ws_profile
        return profile

    return _login
