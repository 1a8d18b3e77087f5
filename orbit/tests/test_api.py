import asyncio

from fastapi.testclient import TestClient

from orbit.main import app

client = TestClient(app)

DAY = "2024-01-10T09:00:00Z"
NEXT_MORNING = "2024-01-11T08:00:00Z"


def as_user(user_id):
    return {"X-User-Id": user_id}


def test_healthz():
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_complete_and_uncomplete_task(room):
    resp = client.post("/v1/rooms/r1/tasks/t1/complete", headers=as_user("alice"), params={"now": DAY})
    assert resp.status_code == 201
    body = resp.json()
    assert body["pointsAwarded"] == 10
    assert body["countedForStreak"] is True

    streak = client.get("/v1/streaks/user_room/alice:r1").json()
    assert streak["currentStreak"] == 1
    assert streak["lastActivityDate"] == "2024-01-10"

    resp = client.delete("/v1/rooms/r1/tasks/t1/complete", headers=as_user("alice"), params={"now": DAY})
    assert resp.status_code == 200
    assert client.get("/v1/streaks/user/alice").json()["currentStreak"] == 0


def test_duplicate_completion_is_conflict(room):
    client.post("/v1/rooms/r1/tasks/t1/complete", headers=as_user("alice"), params={"now": DAY})
    resp = client.post("/v1/rooms/r1/tasks/t1/complete", headers=as_user("alice"), params={"now": DAY})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "conflict"


def test_errors_have_standard_shape(room):
    resp = client.post("/v1/rooms/r1/tasks/t1/complete", headers=as_user("mallory"))
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["code"] == "forbidden"
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")

    missing = client.post("/v1/rooms/nope/tasks/t1/complete", headers=as_user("alice"))
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


def test_missing_user_header_is_validation_error(room):
    resp = client.post("/v1/rooms/r1/tasks/t1/complete")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_unknown_streak_scope():
    resp = client.get("/v1/streaks/galaxy/alice")
    assert resp.status_code == 400


def test_appreciation_quota_over_http(room):
    for to_user, kind in (("bob", "star"), ("bob", "fire"), ("carol", "shield")):
        resp = client.post(
            "/v1/appreciations/r1",
            headers=as_user("alice"),
            params={"now": DAY},
            json={"toUserId": to_user, "type": kind},
        )
        assert resp.status_code == 200

    denied = client.post(
        "/v1/appreciations/r1",
        headers=as_user("alice"),
        params={"now": DAY},
        json={"toUserId": "carol", "type": "star"},
    )
    assert denied.status_code == 429
    assert denied.json()["error"]["code"] == "limit_reached"

    remaining = client.get("/v1/appreciations/r1/remaining", headers=as_user("alice"), params={"now": DAY}).json()
    assert remaining["remaining"] == 0

    sent = client.get("/v1/appreciations/r1/sent", headers=as_user("alice"), params={"now": DAY}).json()
    assert len(sent["sent"]) == 3

    stats = client.get("/v1/appreciations/r1/user/bob", headers=as_user("carol"), params={"now": DAY}).json()
    assert stats["stats"] == {"star": 1, "fire": 1, "shield": 0}


def test_appreciation_body_validation(room):
    resp = client.post("/v1/appreciations/r1", headers=as_user("alice"), json={"toUserId": "bob", "type": "heart"})
    assert resp.status_code == 400


def test_nudge_flow(room):
    status = client.get("/v1/nudges/r1/can-send", headers=as_user("alice"), params={"now": DAY}).json()
    assert status["canSend"] is False

    client.post("/v1/rooms/r1/tasks/t1/complete", headers=as_user("alice"), params={"now": DAY})
    assert client.post("/v1/nudges/r1", headers=as_user("alice"), params={"now": DAY}).status_code == 200
    assert client.post("/v1/nudges/r1", headers=as_user("alice"), params={"now": DAY}).status_code == 429


def test_orbit_summary_and_mvp_endpoints(room):
    client.post("/v1/rooms/r1/tasks/t1/complete", headers=as_user("bob"), params={"now": DAY})

    summary = client.get("/v1/orbit-summary/r1", headers=as_user("alice"), params={"now": NEXT_MORNING}).json()
    assert summary["summary"]["mvp"]["userId"] == "bob"
    assert summary["summary"]["roomStreakStatus"] == "stable"

    assert client.get("/v1/orbit-summary/r1/today-mvp", headers=as_user("alice"), params={"now": NEXT_MORNING}).json() == {"mvp": None}

    from orbit.features.mvp.service import mvp_service

    mvp_service.decide("r1", "2024-01-10")
    today = client.get("/v1/orbit-summary/r1/today-mvp", headers=as_user("alice"), params={"now": NEXT_MORNING}).json()
    assert today["mvp"]["userId"] == "bob"
    assert today["mvp"]["username"] == "Bob"

    history = client.get("/v1/orbit-summary/r1/mvp-history", headers=as_user("alice"), params={"now": NEXT_MORNING}).json()
    assert [h["date"] for h in history["history"]] == ["2024-01-10"]

    assert client.get("/v1/orbit-summary/r1/mvp-history", headers=as_user("mallory")).status_code == 403


def test_room_socket_connects_members_only(room):
    with client.websocket_connect("/v1/ws/rooms/r1", headers=as_user("alice")) as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert hello["online_users"] == ["alice"]
        presence = ws.receive_json()
        assert presence["type"] == "presence"

        ws.send_text('{"type": "ping"}')
        assert ws.receive_json()["type"] == "pong"

    with client.websocket_connect("/v1/ws/rooms/r1", headers=as_user("mallory")) as ws:
        rejected = ws.receive_json()
        assert rejected["type"] == "error"
        assert rejected["code"] == "forbidden"


def test_room_socket_loads_room_off_the_event_loop(store, room, monkeypatch):
    loop_running = []
    real_get_room = store.get_room

    def get_room(room_id):
        try:
            asyncio.get_running_loop()
            loop_running.append(True)
        except RuntimeError:
            loop_running.append(False)
        return real_get_room(room_id)

    monkeypatch.setattr(store, "get_room", get_room)
    with client.websocket_connect("/v1/ws/rooms/r1", headers=as_user("alice")) as ws:
        assert ws.receive_json()["type"] == "connected"

    assert loop_running == [False]
