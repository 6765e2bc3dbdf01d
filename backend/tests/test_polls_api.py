from fastapi.testclient import TestClient


def _create(client, lesson_id, options=("Agonist", "Antagonist")):
    return client.post(
        "/api/polls/",
        json={"room_key": str(lesson_id), "question": "Naloxone is an opioid...", "options": list(options)},
    )


def test_poll_lifecycle(app, login, student, other_student, ta, live_lesson):
    with TestClient(app) as client:
        login(ta)
        created = _create(client, live_lesson.id)
        assert created.status_code == 201
        poll = created.json()["poll"]
        message = created.json()["message"]
        assert message["kind"] == "poll"
        assert message["media_ref"] == str(poll["id"])
        assert message["media_url"] is None

        login(student)
        voted = client.post(f"/api/polls/{poll['id']}/votes/", json={"option_index": 1})
        assert voted.status_code == 201
        assert voted.json()["my_vote"] == 1
        assert client.post(f"/api/polls/{poll['id']}/votes/", json={"option_index": 0}).status_code == 409

        login(other_student)
        client.post(f"/api/polls/{poll['id']}/votes/", json={"option_index": 1})
        results = client.get(f"/api/polls/{poll['id']}/").json()
        assert results["total_votes"] == 2
        assert results["options"][1]["percentage"] == 100

        login(ta)
        closed = client.post(f"/api/polls/{poll['id']}/close/")
        assert closed.json()["is_closed"] is True

        history = client.get(f"/api/rooms/class/{live_lesson.id}/messages/").json()["messages"]
        assert [m["kind"] for m in history] == ["poll"]


def test_poll_validation(app, login, student, ta, live_lesson):
    with TestClient(app) as client:
        login(student)
        assert _create(client, live_lesson.id).status_code == 403

        login(ta)
        assert _create(client, live_lesson.id, options=("only",)).status_code == 422
        assert client.get("/api/polls/404/").status_code == 404
        assert client.post("/api/polls/404/votes/", json={"option_index": -1}).status_code == 422
