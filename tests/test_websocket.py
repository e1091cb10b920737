from __future__ import annotations

from livescreen.database import get_session_factory
from livescreen.main import app


def receive_until(ws, predicate, limit: int = 20):
    for _ in range(limit):
        frame = ws.receive_json()
        if predicate(frame):
            return frame
    raise AssertionError("expected frame never arrived")


def test_student_socket_follows_the_session(client, new_session):
    sid, headers = new_session()
    with client.websocket_connect(f"/ws/sessions/{sid}/student") as ws:
        first = ws.receive_json()
        assert first["kind"] == "waiting"

        client.post(f"/sessions/{sid}/navigate", json={"subtest_id": "PHONICS_CVC"}, headers=headers)
        frame = receive_until(ws, lambda f: f["kind"] == "stimulus")
        assert frame["content"] == {"text": "cat"}
        assert frame["item_index"] == 0

        client.post(
            f"/sessions/{sid}/responses",
            json={"item_index": 0, "score_code": "correct"},
            headers=headers,
        )
        frame = receive_until(ws, lambda f: f.get("item_index") == 1)
        assert frame["content"] == {"text": "sun"}

        client.post(f"/sessions/{sid}/state", json={"pointerPosition": {"x": 40, "y": 60}}, headers=headers)
        frame = receive_until(ws, lambda f: f.get("pointer") is not None)
        assert frame["pointer"] == {"x": 40.0, "y": 60.0}
        assert frame["state"]["pointerPosition"] == {"x": 40.0, "y": 60.0}

        client.post(f"/sessions/{sid}/end", json={"validity_status": "valid"}, headers=headers)
        receive_until(ws, lambda f: f["kind"] == "completed")


def test_socket_opened_mid_subtest_starts_on_the_current_item(client, new_session):
    sid, headers = new_session()
    client.post(f"/sessions/{sid}/navigate", json={"subtest_id": "HFW_G1"}, headers=headers)
    client.post(f"/sessions/{sid}/responses", json={"item_index": 0, "score_code": "correct"}, headers=headers)

    with client.websocket_connect(f"/ws/sessions/{sid}/student") as ws:
        first = ws.receive_json()
        assert first["kind"] == "stimulus"
        assert first["item_index"] == 1
        assert first["state"]["currentItemIndex"] == 1


def test_two_displays_see_the_same_updates(client, new_session):
    sid, headers = new_session()
    with client.websocket_connect(f"/ws/sessions/{sid}/student") as a, \
            client.websocket_connect(f"/ws/sessions/{sid}/student") as b:
        a.receive_json()
        b.receive_json()
        client.post(f"/sessions/{sid}/navigate", json={"subtest_id": "PHONICS_CVC"}, headers=headers)
        fa = receive_until(a, lambda f: f["kind"] == "stimulus")
        fb = receive_until(b, lambda f: f["kind"] == "stimulus")
        assert fa["content"] == fb["content"] == {"text": "cat"}


def test_idle_display_holds_no_database_session(client, new_session, db_factory):
    sid, headers = new_session()
    client.post(f"/sessions/{sid}/navigate", json={"subtest_id": "PHONICS_CVC"}, headers=headers)
    opened = []

    def tracking_factory():
        session = db_factory()
        opened.append(session)
        return session

    app.dependency_overrides[get_session_factory] = lambda: tracking_factory
    with client.websocket_connect(f"/ws/sessions/{sid}/student") as ws:
        assert ws.receive_json()["kind"] == "stimulus"
        # state, row and subtest reads each used their own session
        assert len(opened) == 3
        assert not any(s.in_transaction() for s in opened)
