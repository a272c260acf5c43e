"""Tests for the HTTP API."""

import base64

import pytest
from fastapi.testclient import TestClient

from tourney_chat.api import create_fastapi_app
from tourney_chat.api.routes import control
from tourney_chat.app import Application
from tourney_chat.config import ChatSettings


@pytest.fixture
def application():
    return Application(settings=ChatSettings(database_url=":memory:"))


@pytest.fixture
def client(application):
    """API client over an in-memory application with one seeded tournament."""
    control.set_sim_instance(None)
    with TestClient(create_fastapi_app(application)) as test_client:
        response = test_client.post(
            "/api/control/tournaments",
            json={
                "tournament_id": "t1",
                "organizer_id": "org",
                "player_ids": ["alice", "bob"],
            },
        )
        assert response.status_code == 200
        yield test_client


def _open(client, user_id, name, team_id=None, role="player"):
    response = client.post(
        "/api/chat/sessions",
        json={
            "user_id": user_id,
            "display_name": name,
            "role": role,
            "tournament_id": "t1",
            "team_id": team_id,
            "organizer_id": "org",
        },
    )
    assert response.status_code == 200, response.text
    return response.json()["session_id"]


class TestSessionsApi:
    """Tests for session endpoints."""

    def test_open_session(self, client):
        """Test opening a session returns its room."""
        response = client.post(
            "/api/chat/sessions",
            json={"user_id": "alice", "display_name": "Alice", "tournament_id": "t1"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["room_key"] == "t1:general"
        assert body["is_open"] is True
        assert body["muted"] is False

    def test_access_denied(self, client):
        """Test unregistered users get 403."""
        response = client.post(
            "/api/chat/sessions",
            json={"user_id": "mallory", "display_name": "M", "tournament_id": "t1"},
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "You do not have access to this chat"

    def test_unknown_session(self, client):
        """Test unknown session ids are 404."""
        assert client.get("/api/chat/sessions/nope/messages").status_code == 404
        assert client.delete("/api/chat/sessions/nope").status_code == 404

    def test_switch_scope(self, client):
        """Test switching to the team room."""
        sid = _open(client, "alice", "Alice")
        response = client.post(f"/api/chat/sessions/{sid}/scope", json={"team_id": "team-a"})
        assert response.json()["room_key"] == "t1:team-a"

    def test_mute(self, client):
        """Test muting is reflected on the session."""
        sid = _open(client, "alice", "Alice")
        response = client.post(f"/api/chat/sessions/{sid}/mute", json={"value": True})
        assert response.json()["muted"] is True


class TestMessagesApi:
    """Tests for message endpoints."""

    def test_send_and_list_across_sessions(self, client):
        """Test a message sent by one user is listed for another."""
        alice = _open(client, "alice", "Alice")
        bob = _open(client, "bob", "Bob")

        sent = client.post(f"/api/chat/sessions/{alice}/messages", json={"body": "hi all"})
        assert sent.status_code == 200
        assert sent.json()["pending"] is False

        listed = client.get(f"/api/chat/sessions/{bob}/messages").json()
        assert [m["body"] for m in listed] == ["hi all"]
        assert listed[0]["sender_name"] == "Alice"

    def test_empty_message_is_400(self, client):
        """Test failures map to 400 with the toast text."""
        sid = _open(client, "alice", "Alice")
        response = client.post(f"/api/chat/sessions/{sid}/messages", json={"body": " "})
        assert response.status_code == 400
        assert response.json()["detail"] == "Message cannot be empty"

    def test_edit_react_pin_delete(self, client):
        """Test the full message lifecycle over HTTP."""
        alice = _open(client, "alice", "Alice")
        org = _open(client, "org", "Olga", role="organizer")
        mid = client.post(
            f"/api/chat/sessions/{alice}/messages", json={"body": "court 2"}
        ).json()["id"]

        edited = client.patch(
            f"/api/chat/sessions/{alice}/messages/{mid}", json={"body": "court 3"}
        ).json()
        assert edited["body"] == "court 3"
        assert edited["is_edited"] is True

        reacted = client.post(
            f"/api/chat/sessions/{org}/messages/{mid}/reactions", json={"emoji": "👍"}
        ).json()
        assert reacted["reactions"] == {"👍": ["org"]}

        denied = client.post(f"/api/chat/sessions/{alice}/messages/{mid}/pin", json={})
        assert denied.status_code == 400
        pinned = client.post(f"/api/chat/sessions/{org}/messages/{mid}/pin", json={})
        assert pinned.json()["is_pinned"] is True

        listed = client.get(
            f"/api/chat/sessions/{alice}/messages", params={"filter": "pinned"}
        ).json()
        assert [m["id"] for m in listed] == [mid]

        assert client.delete(f"/api/chat/sessions/{org}/messages/{mid}").status_code == 200
        assert client.get(f"/api/chat/sessions/{alice}/messages").json() == []

    def test_message_deleted_during_edit_is_404(self, client, application, monkeypatch):
        """Test an edit whose message vanished before the reply is a 404."""
        sid = _open(client, "alice", "Alice")
        mid = client.post(f"/api/chat/sessions/{sid}/messages", json={"body": "hi"}).json()["id"]
        session = application.get_session(sid)

        async def edit_then_delete_echo(message_id, new_body):
            session.store.apply_delete(message_id)
            return True

        monkeypatch.setattr(session.composer, "edit", edit_then_delete_echo)
        response = client.patch(
            f"/api/chat/sessions/{sid}/messages/{mid}", json={"body": "hello"}
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Message not found"

    def test_failure_without_toast_uses_own_detail(self, client, application, monkeypatch):
        """Test an earlier error toast is not repeated for a later failure."""
        sid = _open(client, "alice", "Alice")
        client.post(f"/api/chat/sessions/{sid}/messages", json={"body": " "})
        session = application.get_session(sid)

        # Another send is still in flight
        monkeypatch.setattr(session.composer, "_sending", True)
        response = client.post(f"/api/chat/sessions/{sid}/messages", json={"body": "hi"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Failed to send message"

    def test_search(self, client):
        """Test the q parameter searches bodies."""
        sid = _open(client, "alice", "Alice")
        for body in ("semi finals", "lunch break"):
            client.post(f"/api/chat/sessions/{sid}/messages", json={"body": body})

        listed = client.get(f"/api/chat/sessions/{sid}/messages", params={"q": "LUNCH"}).json()
        assert [m["body"] for m in listed] == ["lunch break"]

    def test_announcement_requires_organizer(self, client):
        """Test only the organizer can announce."""
        alice = _open(client, "alice", "Alice")
        org = _open(client, "org", "Olga", role="organizer")

        assert (
            client.post(
                f"/api/chat/sessions/{alice}/announcements", json={"body": "x"}
            ).status_code
            == 400
        )
        response = client.post(f"/api/chat/sessions/{org}/announcements", json={"body": "Final!"})
        assert response.json()["kind"] == "announcement"

    def test_send_file(self, client):
        """Test base64 uploads become media messages."""
        sid = _open(client, "alice", "Alice")
        response = client.post(
            f"/api/chat/sessions/{sid}/files",
            json={
                "file_name": "bracket.png",
                "mime_type": "image/png",
                "content_base64": base64.b64encode(b"png").decode(),
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["kind"] == "image"
        assert body["attachment"]["file_name"] == "bracket.png"

        bad = client.post(
            f"/api/chat/sessions/{sid}/files",
            json={"file_name": "x", "content_base64": "***"},
        )
        assert bad.status_code == 400

    def test_typing_and_toasts(self, client):
        """Test typing presence and toast history endpoints."""
        alice = _open(client, "alice", "Alice")
        bob = _open(client, "bob", "Bob")

        client.post(f"/api/chat/sessions/{alice}/typing", json={"text": "hel"})
        typing = client.get(f"/api/chat/sessions/{bob}/typing").json()
        assert typing == {"label": "Alice is typing...", "users": ["Alice"]}

        client.post(f"/api/chat/sessions/{alice}/messages", json={"body": ""})
        toasts = client.get(f"/api/chat/sessions/{alice}/toasts").json()
        assert toasts[-1]["level"] == "error"
        assert toasts[-1]["text"] == "Message cannot be empty"


class TestControlAndDiagnosticsApi:
    """Tests for control and diagnostics endpoints."""

    def test_connectivity(self, client):
        """Test diagnostics report a healthy local backend."""
        response = client.get("/api/diagnostics/connectivity")
        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_reset(self, client):
        """Test reset closes sessions."""
        sid = _open(client, "alice", "Alice")
        assert client.post("/api/control/reset").json() == {"status": "ok"}
        assert client.get(f"/api/chat/sessions/{sid}/messages").status_code == 404

    def test_sim_not_configured(self, client):
        """Test sim endpoints 404 without a sim."""
        assert client.post("/api/control/sim/start").status_code == 404

    def test_sim_status(self, client):
        """Test sim status reports an unconfigured SIM."""
        assert client.get("/api/control/sim").json() == {"configured": False, "running": False}

    def test_health(self, client):
        """Test health reports the backend kind."""
        assert client.get("/api/health").json() == {
            "status": "ok",
            "backend": "local",
            "sessions": 0,
        }
