from datetime import timedelta

import pytest

from backend.models.chat import ClassMessage
from backend.models.lesson import Lesson
from chatsync.errors import InvalidInput, InvalidTransition, NotFound, NotPermitted
from chatsync.lessons import LessonService
from chatsync.utils import utcnow


@pytest.fixture()
def lessons(backbone):
    return LessonService(backbone)


@pytest.mark.asyncio
async def test_schedule_requires_manager_and_topic(lessons, student, ta):
    when = utcnow() + timedelta(hours=1)
    with pytest.raises(NotPermitted):
        await lessons.schedule(student, "Pharmacology", when)
    with pytest.raises(InvalidInput):
        await lessons.schedule(ta, "  ", when)

    lesson = await lessons.schedule(ta, " Pharmacology ", when)
    assert lesson.topic == "Pharmacology"
    assert lesson.status == "scheduled"
    assert lesson.created_by == ta.id


@pytest.mark.asyncio
async def test_forward_only_transitions_stamp_timestamps(lessons, ta):
    lesson = await lessons.schedule(ta, "Anatomy", utcnow() + timedelta(hours=1))

    started = await lessons.start(ta, lesson.id)
    assert started.status == "live" and started.started_at is not None
    with pytest.raises(InvalidTransition):
        await lessons.start(ta, lesson.id)

    ended = await lessons.end(ta, lesson.id)
    assert ended.status == "completed" and ended.ended_at is not None
    with pytest.raises(InvalidTransition):
        await lessons.end(ta, lesson.id)


@pytest.mark.asyncio
async def test_end_auto_started_lesson_backfills_start(lessons, make_lesson, admin):
    due = make_lesson(offset=timedelta(minutes=-20))

    ended = await lessons.end(admin, due.id)
    assert ended.status == "completed"
    assert ended.started_at is not None


@pytest.mark.asyncio
async def test_cannot_end_future_lesson(lessons, make_lesson, ta):
    upcoming = make_lesson(offset=timedelta(hours=1))
    with pytest.raises(InvalidTransition):
        await lessons.end(ta, upcoming.id)
    with pytest.raises(NotFound):
        await lessons.end(ta, 4040)


@pytest.mark.asyncio
async def test_delete_removes_lesson_and_its_messages(lessons, backbone, db, make_lesson, student, ta):
    lesson = make_lesson(status="live", offset=timedelta(minutes=-5))
    keep = make_lesson(topic="Keep")
    for text in ("a", "b"):
        db.add(ClassMessage(lesson_id=lesson.id, user_id=student.id, content=text))
    db.add(ClassMessage(lesson_id=keep.id, user_id=student.id, content="stays"))
    db.commit()

    sub = backbone.subscribe(ClassMessage, channel_id="watch")
    await lessons.delete(ta, lesson.id)

    assert await backbone.get(Lesson, lesson.id) is None
    assert [m.content for m in await backbone.query(ClassMessage)] == ["stays"]
    assert sub.pending() == 2


@pytest.mark.asyncio
async def test_completed_lessons_are_kept_for_the_archive(lessons, make_lesson, ta):
    done = make_lesson(status="completed", offset=timedelta(days=-1))
    with pytest.raises(InvalidTransition):
        await lessons.delete(ta, done.id)


@pytest.mark.asyncio
async def test_archive_lists_completed_by_end_time_with_search(lessons, make_lesson):
    now = utcnow()
    make_lesson(topic="Renal Pharmacology", status="completed", ended_at=now - timedelta(days=2))
    make_lesson(topic="Cardiac Pharmacology", status="completed", ended_at=now - timedelta(days=1))
    make_lesson(topic="Microbiology", status="completed", ended_at=now - timedelta(days=3))
    make_lesson(topic="Pharmacology live", status="live")

    archive = await lessons.archive()
    assert [item["topic"] for item in archive] == ["Cardiac Pharmacology", "Renal Pharmacology", "Microbiology"]

    found = await lessons.archive("pharmACOLOGY")
    assert [item["topic"] for item in found] == ["Cardiac Pharmacology", "Renal Pharmacology"]


@pytest.mark.asyncio
async def test_list_flags_effectively_live_lessons(lessons, make_lesson):
    due = make_lesson(topic="Due", offset=timedelta(minutes=-1))
    future = make_lesson(topic="Future", offset=timedelta(hours=1))

    listed = {item["id"]: item for item in await lessons.list_lessons()}
    assert listed[due.id]["is_effectively_live"] is True
    assert listed[due.id]["status"] == "scheduled"
    assert listed[future.id]["is_effectively_live"] is False
