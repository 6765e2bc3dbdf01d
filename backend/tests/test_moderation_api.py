from fastapi.testclient import TestClient
from sqlmodel import Session

from backend.models.profile import Profile


def test_hand_raise_and_unlock(app, login, engine, student, ta):
    with TestClient(app) as client:
        login(student)
        raised = client.post("/api/moderation/hand/", json={"raised": True})
        assert raised.json()["is_hand_raised"] is True
        assert client.get("/api/moderation/hands/").status_code == 403

        login(ta)
        hands = client.get("/api/moderation/hands/").json()
        assert [h["id"] for h in hands] == [student.id]

        unlocked = client.post(f"/api/moderation/students/{student.id}/unlock/", json={"unlocked": True})
        assert unlocked.json()["is_unlocked"] is True
        assert unlocked.json()["is_hand_raised"] is False
        assert client.get("/api/moderation/hands/").json() == []

    with Session(engine) as db:
        assert db.get(Profile, student.id).is_unlocked


def test_unlocked_student_can_send_under_global_lock(app, login, student, other_student, ta, live_lesson):
    url = f"/api/rooms/class/{live_lesson.id}/messages/"
    with TestClient(app) as client:
        login(ta)
        client.post("/api/moderation/lock/", json={"locked": True})
        client.post(f"/api/moderation/students/{student.id}/unlock/", json={"unlocked": True})

        login(student)
        assert client.post(url, json={"content": "thank you"}).status_code == 201
        login(other_student)
        assert client.post(url, json={"content": "me too"}).status_code == 403

        login(ta)
        assert client.post("/api/moderation/unlocks/reset/").json() == {"reset": 1}
        login(student)
        assert client.post(url, json={"content": "again"}).status_code == 403


def test_students_cannot_use_moderation_endpoints(app, login, student, other_student):
    login(student)
    with TestClient(app) as client:
        lock = client.post("/api/moderation/lock/", json={"locked": True})
        unlock = client.post(f"/api/moderation/students/{other_student.id}/unlock/", json={"unlocked": True})
        reset = client.post("/api/moderation/unlocks/reset/")

    assert lock.status_code == 403
    assert unlock.status_code == 403
    assert reset.status_code == 403


def test_unlock_unknown_student_is_404(app, login, admin):
    login(admin)
    with TestClient(app) as client:
        resp = client.post("/api/moderation/students/999/unlock/", json={"unlocked": True})
    assert resp.status_code == 404
