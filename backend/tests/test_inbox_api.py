"""Inbox and study-group endpoints."""

from fastapi.testclient import TestClient

from backend.models.chat import DirectMessage


def test_inbox_lists_partners_and_unread(app, login, db, student, other_student, ta):
    db.add(DirectMessage(sender_id=other_student.id, receiver_id=student.id, content="hi"))
    db.add(DirectMessage(sender_id=ta.id, receiver_id=student.id, content="see me after class"))
    db.commit()
    login(student)

    with TestClient(app) as client:
        inbox = client.get("/api/inbox/").json()
        unread = client.get("/api/inbox/unread-count/").json()
        searched = client.get("/api/inbox/", params={"search": "tess"}).json()

    assert {item["user_id"] for item in inbox} == {other_student.id, ta.id}
    assert unread == {"unread": 2}
    assert [item["full_name"] for item in searched] == ["Tess Assistant"]


def test_ensure_profile_study_groups(app, login, student, other_student):
    with TestClient(app) as client:
        login(student)
        assert client.get("/api/study-groups/mine/").json() == []

        created = client.post("/api/study-groups/ensure/").json()
        assert [(g["group_type"], g["name"]) for g in created] == [
            ("school", "Lagos State"),
            ("course", "Pharmacy"),
        ]

        login(other_student)
        mine = client.post("/api/study-groups/ensure/").json()

    # Same school converges on the same group; a different course gets its own.
    assert mine[0]["id"] == created[0]["id"]
    assert mine[1]["id"] != created[1]["id"]


def test_ensure_named_group(app, login, student):
    login(student)
    with TestClient(app) as client:
        resp = client.post("/api/study-groups/ensure/", json={"group_type": "course", "name": "Nursing"})
        unlisted = client.post(
            "/api/study-groups/ensure/", json={"group_type": "school", "name": "Other / Not Listed"}
        )

    assert resp.status_code == 200
    assert resp.json()[0]["course_name"] == "Nursing"
    assert unlisted.status_code == 422
