"""Shared pytest fixtures for the chat core test suite."""

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
from backend.models.study_group import StudyGroup
from chatsync.backbone import Backbone
from chatsync.capabilities import Actor
from chatsync.dispatch import MessageDispatcher
from chatsync.lesson_state import LessonStateResolver
from chatsync.lock_settings import ChatLockSettings
from chatsync.replies import ReplyLinker


@pytest.fixture(name="db_path")
def db_path_fixture(tmp_path):
    return str(tmp_path / "chat.db")


@pytest.fixture(name="engine")
def engine_fixture(db_path):
    """Sync SQLite engine used to create tables and seed rows."""
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest_asyncio.fixture(name="async_engine")
async def async_engine_fixture(db_path, engine):  # noqa: ARG001
    async_eng = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    yield async_eng
    await async_eng.dispose()


@pytest.fixture(name="backbone")
def backbone_fixture(async_engine):
    return Backbone(async_sessionmaker(async_engine, expire_on_commit=False))


@pytest.fixture(name="db")
def db_fixture(engine):
    with Session(engine, expire_on_commit=False) as session:
        yield session


def _add(db, row):
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture(name="make_profile")
def make_profile_fixture(db):
    counter = [0]

    def _make(role="student", **fields):
        counter[0] += 1
        defaults = {
            "clerk_user_id": f"user_{role}_{counter[0]}",
            "email": f"{role}{counter[0]}@example.com",
            "full_name": f"{role.title()} {counter[0]}",
            "role": role,
        }
        return _add(db, Profile(**{**defaults, **fields}))

    return _make


@pytest.fixture(name="student")
def student_fixture(make_profile):
    return Actor.of(make_profile(full_name="Ada Student", school="Lagos State", course="Pharmacy"))


@pytest.fixture(name="other_student")
def other_student_fixture(make_profile):
    return Actor.of(make_profile(full_name="Ben Student", school="Lagos State", course="Nursing"))


@pytest.fixture(name="ta")
def ta_fixture(make_profile):
    return Actor.of(make_profile(role="ta", full_name="Tess Assistant"))


@pytest.fixture(name="admin")
def admin_fixture(make_profile):
    return Actor.of(make_profile(role="admin", full_name="Ade Admin"))


@pytest.fixture(name="make_lesson")
def make_lesson_fixture(db):
    def _make(topic="Pharmacology", status="scheduled", offset=timedelta(hours=1), **fields):
        return _add(db, Lesson(topic=topic, status=status, scheduled_at=utcnow() + offset, **fields))

    return _make


@pytest.fixture(name="make_group")
def make_group_fixture(db):
    def _make(group_type="school", name="Lagos State"):
        field = "school_name" if group_type == "school" else "course_name"
        return _add(db, StudyGroup(group_type=group_type, **{field: name}))

    return _make


@pytest.fixture(name="lock_settings")
def lock_settings_fixture(backbone):
    return ChatLockSettings(backbone)


@pytest.fixture(name="resolver")
def resolver_fixture(backbone, lock_settings):
    return LessonStateResolver(backbone, lock_settings)


@pytest.fixture(name="linker")
def linker_fixture(backbone):
    return ReplyLinker(backbone)


@pytest.fixture(name="dispatcher")
def dispatcher_fixture(backbone, linker, resolver):
    return MessageDispatcher(backbone, linker, resolver)
