from datetime import timedelta

import pytest

from backend.models.chat import ClassMessage, DirectMessage
from chatsync.errors import TransientReadFailure
from chatsync.rooms import ClassRoom, DirectRoom
from chatsync.utils import utcnow


@pytest.fixture()
def lesson(make_lesson):
    return make_lesson(status="live", offset=timedelta(minutes=-5))


def _add(db, row):
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.mark.asyncio
async def test_batch_enrichment_quotes_parent_and_attaches_authors(linker, db, lesson, student, ta):
    room = ClassRoom(lesson_id=lesson.id)
    parent = _add(db, ClassMessage(lesson_id=lesson.id, user_id=ta.id, content="What is a beta blocker?"))
    reply = _add(
        db, ClassMessage(lesson_id=lesson.id, user_id=student.id, content="Propranolol", reply_to=parent.id)
    )

    enriched = await linker.enrich(room, [room.to_message(parent), room.to_message(reply)])

    assert enriched[0].reply_message is None
    assert enriched[1].reply_message.id == parent.id
    assert enriched[1].reply_message.content == "What is a beta blocker?"
    assert enriched[1].reply_message.author.role == "ta"
    assert enriched[1].author.full_name == "Ada Student"


@pytest.mark.asyncio
async def test_parent_outside_batch_is_fetched(linker, db, lesson, student, ta):
    room = ClassRoom(lesson_id=lesson.id)
    parent = _add(db, ClassMessage(lesson_id=lesson.id, user_id=ta.id, content="older"))
    reply = _add(db, ClassMessage(lesson_id=lesson.id, user_id=student.id, content="re", reply_to=parent.id))

    (enriched,) = await linker.enrich(room, [room.to_message(reply)])
    assert enriched.reply_message.content == "older"


@pytest.mark.asyncio
async def test_missing_parent_is_a_silent_miss(linker, db, lesson, student):
    room = ClassRoom(lesson_id=lesson.id)
    orphan = _add(db, ClassMessage(lesson_id=lesson.id, user_id=student.id, content="re", reply_to=9999))

    (enriched,) = await linker.enrich(room, [room.to_message(orphan)])
    assert enriched.reply_message is None
    assert enriched.reply_to == 9999


@pytest.mark.asyncio
async def test_parent_in_another_room_is_not_resolved(linker, db, lesson, student, other_student):
    private = _add(db, DirectMessage(id=50, sender_id=other_student.id, receiver_id=student.id, content="secret"))
    room = ClassRoom(lesson_id=lesson.id)
    lookup_reply = _add(
        db, ClassMessage(id=60, lesson_id=lesson.id, user_id=student.id, content="re", reply_to=private.id)
    )

    (enriched,) = await linker.enrich(room, [room.to_message(lookup_reply)])
    assert enriched.reply_message is None

    dm_room = DirectRoom(student.id, other_student.id)
    other_dm = _add(
        db,
        DirectMessage(id=70, sender_id=student.id, receiver_id=other_student.id, content="x", reply_to=lookup_reply.id),
    )
    (enriched,) = await linker.enrich(dm_room, [dm_room.to_message(other_dm)])
    assert enriched.reply_message is None


@pytest.mark.asyncio
async def test_quote_is_one_level_deep(linker, db, lesson, student, ta):
    room = ClassRoom(lesson_id=lesson.id)
    root = _add(db, ClassMessage(lesson_id=lesson.id, user_id=ta.id, content="root"))
    middle = _add(db, ClassMessage(lesson_id=lesson.id, user_id=student.id, content="middle", reply_to=root.id))
    leaf = _add(db, ClassMessage(lesson_id=lesson.id, user_id=ta.id, content="leaf", reply_to=middle.id))

    enriched = await linker.enrich(room, [room.to_message(r) for r in (root, middle, leaf)])
    quote = enriched[2].reply_message
    assert quote.id == middle.id
    assert not hasattr(quote, "reply_message")


@pytest.mark.asyncio
async def test_enrich_one_uses_known_log_before_querying(linker, backbone, db, lesson, student, ta, mocker):
    room = ClassRoom(lesson_id=lesson.id)
    parent = room.to_message(_add(db, ClassMessage(lesson_id=lesson.id, user_id=ta.id, content="known")))
    reply = room.to_message(
        {
            "id": 77,
            "lesson_id": lesson.id,
            "user_id": student.id,
            "content": "re",
            "reply_to": parent.id,
            "created_at": utcnow(),
        }
    )
    spy = mocker.spy(backbone, "query")

    enriched = await linker.enrich_one(room, reply, known={parent.id: parent})

    assert enriched.reply_message.content == "known"
    # Only the author lookup hits the store
    assert spy.call_count == 1


@pytest.mark.asyncio
async def test_lookup_failure_degrades_to_no_quote(linker, backbone, lesson, student, mocker):
    room = ClassRoom(lesson_id=lesson.id)
    reply = room.to_message(
        {"id": 1, "lesson_id": lesson.id, "user_id": student.id, "reply_to": 2, "created_at": utcnow()}
    )
    mocker.patch.object(backbone, "query", side_effect=TransientReadFailure("down"))

    enriched = await linker.enrich_one(room, reply)
    assert enriched.reply_message is None
    assert enriched.author is None
