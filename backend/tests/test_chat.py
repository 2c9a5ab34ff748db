"""Tests for the WebSocket chat protocol and the message REST API.

Every scenario runs against a started app (see ``api_client`` in conftest),
so all sockets share one event loop and one chat hub.
"""
import time

import pytest

from conftest import HOMEOWNER, NEIGHBOUR, OTHER_PROJECT, PROJECT, PROVIDER, TYPING_TIMEOUT, wait_for
from projectchat.storage import MessageStore


def authenticate(ws, user_id, project_id=None):
    """Authenticate (optionally joining a project inline) and consume the acks."""
    frame = {"type": "authenticate", "userId": user_id}
    if project_id is not None:
        frame["projectId"] = project_id
    ws.send_json(frame)
    ack = ws.receive_json()
    assert ack["type"] == "authenticated"
    assert ack["userId"] == user_id
    if project_id is not None:
        assert ws.receive_json() == {"type": "joined_project", "projectId": project_id}
    return ack


def send_text(ws, sender_id, content, project_id=PROJECT, receiver_id=None):
    ws.send_json({
        "type": "send_message",
        "projectId": project_id,
        "senderId": sender_id,
        "receiverId": receiver_id,
        "content": content,
        "messageType": "text",
    })


def typing(ws, user_id, is_typing, project_id=PROJECT):
    ws.send_json({"type": "typing", "userId": user_id, "projectId": project_id, "isTyping": is_typing})


def assert_nothing_queued(ws):
    """Frames are delivered in order, so a ping answered first means nothing else was queued."""
    ws.send_json({"type": "ping"})
    assert ws.receive_json() == {"type": "pong"}


def receive_error(ws, code):
    frame = ws.receive_json()
    assert frame["type"] == "error", frame
    assert frame["code"] == code
    return frame


class FailingStore(MessageStore):
    """A message store whose every call fails."""

    async def create(self, *args, **kwargs):
        raise RuntimeError("disk full")

    async def list_by_project(self, project_id):
        raise RuntimeError("disk full")

    async def get(self, message_id):
        raise RuntimeError("disk full")

    async def mark_read(self, message_id):
        raise RuntimeError("disk full")

    async def mark_all_read(self, project_id, reader_id):
        raise RuntimeError("disk full")

    async def unread_count(self, project_id, reader_id):
        raise RuntimeError("disk full")


def rest_headers(user_id):
    return {"X-User-Id": str(user_id)}


# =============================================================================
# Authentication and rooms
# =============================================================================


class TestAuthentication:

    def test_authenticate_returns_connection_id(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            ack = authenticate(ws, HOMEOWNER)
            assert ack["connectionId"]

    def test_ping_allowed_before_authenticate(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            assert_nothing_queued(ws)

    def test_frames_before_authenticate_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join_project", "projectId": PROJECT})
            receive_error(ws, "UNAUTHENTICATED")

            send_text(ws, HOMEOWNER, "hello?")
            receive_error(ws, "UNAUTHENTICATED")

    def test_unknown_user_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "authenticate", "userId": 999})
            frame = receive_error(ws, "VALIDATION_ERROR")
            assert "999" in frame["message"]

    def test_reauthenticate_same_user_is_acknowledged(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            first = authenticate(ws, HOMEOWNER)
            second = authenticate(ws, HOMEOWNER)
            assert first["connectionId"] == second["connectionId"]

    def test_switching_user_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER)
            ws.send_json({"type": "authenticate", "userId": PROVIDER})
            receive_error(ws, "ALREADY_AUTHENTICATED")

    def test_authenticate_can_join_inline(self, api_client, app):
        with api_client.websocket_connect("/ws") as ws:
            ack = authenticate(ws, HOMEOWNER, PROJECT)
            assert app.state.chat_hub.registry.members_of(PROJECT) == {ack["connectionId"]}

    def test_user_lookup_failure_keeps_connection_open(self, api_client, app, monkeypatch):
        def broken(user_id):
            raise RuntimeError("directory offline")

        monkeypatch.setattr(app.state.chat_hub.users, "get", broken)
        with api_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "authenticate", "userId": HOMEOWNER})
            frame = receive_error(ws, "PERSISTENCE_FAILURE")
            assert frame["frameType"] == "authenticate"
            assert_nothing_queued(ws)

            monkeypatch.undo()
            authenticate(ws, HOMEOWNER, PROJECT)

    def test_project_lookup_failure_keeps_connection_open(self, api_client, app, monkeypatch):
        def broken(project_id):
            raise RuntimeError("directory offline")

        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER)
            monkeypatch.setattr(app.state.chat_hub.projects, "exists", broken)
            ws.send_json({"type": "join_project", "projectId": PROJECT})
            receive_error(ws, "PERSISTENCE_FAILURE")
            assert_nothing_queued(ws)


class TestRooms:

    def test_join_unknown_project_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER)
            ws.send_json({"type": "join_project", "projectId": 777})
            receive_error(ws, "VALIDATION_ERROR")

    def test_join_twice_is_harmless(self, api_client, app):
        with api_client.websocket_connect("/ws") as ws:
            ack = authenticate(ws, HOMEOWNER, PROJECT)
            ws.send_json({"type": "join_project", "projectId": PROJECT})
            assert ws.receive_json() == {"type": "joined_project", "projectId": PROJECT}
            assert app.state.chat_hub.registry.members_of(PROJECT) == {ack["connectionId"]}

    def test_leave_stops_delivery(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            alice.send_json({"type": "leave_project", "projectId": PROJECT})
            assert alice.receive_json() == {"type": "left_project", "projectId": PROJECT}

            send_text(bob, PROVIDER, "Anyone there?")
            assert bob.receive_json()["type"] == "new_message"
            assert_nothing_queued(alice)

            send_text(alice, HOMEOWNER, "Back again")
            receive_error(alice, "NOT_IN_ROOM")

    def test_leave_without_join_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER)
            ws.send_json({"type": "leave_project", "projectId": PROJECT})
            receive_error(ws, "NOT_IN_ROOM")

    def test_disconnect_removes_membership(self, api_client, app):
        registry = app.state.chat_hub.registry
        with api_client.websocket_connect("/ws") as alice:
            alice_id = authenticate(alice, HOMEOWNER, PROJECT)["connectionId"]
            with api_client.websocket_connect("/ws") as bob:
                authenticate(bob, PROVIDER, PROJECT)
                assert len(registry.members_of(PROJECT)) == 2

            wait_for(lambda: registry.members_of(PROJECT) == {alice_id})

            send_text(alice, HOMEOWNER, "Still here")
            assert alice.receive_json()["message"]["content"] == "Still here"

        wait_for(lambda: registry.connection_count() == 0)
        assert registry.room_count() == 0


# =============================================================================
# Messages
# =============================================================================


class TestMessages:

    def test_message_reaches_every_room_member_and_no_one_else(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob, \
             api_client.websocket_connect("/ws") as carol:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)
            authenticate(carol, NEIGHBOUR, OTHER_PROJECT)

            send_text(alice, HOMEOWNER, "Hi", receiver_id=PROVIDER)

            to_alice = alice.receive_json()
            to_bob = bob.receive_json()
            assert to_alice == to_bob
            assert to_bob["type"] == "new_message"
            message = to_bob["message"]
            assert message["content"] == "Hi"
            assert message["projectId"] == PROJECT
            assert message["senderId"] == HOMEOWNER
            assert message["receiverId"] == PROVIDER
            assert message["messageType"] == "text"
            assert message["isRead"] is False
            assert message["id"] > 0
            assert message["createdAt"]
            assert message["sender"]["displayName"] == "Alice Homeowner"
            assert message["sender"]["initials"] == "AH"

            assert_nothing_queued(carol)

    def test_receiver_id_does_not_narrow_delivery(self, api_client, app):
        app.state.chat_hub.users.add_user(4, "dave", "Dave", user_type="service_provider")
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob, \
             api_client.websocket_connect("/ws") as dave:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)
            authenticate(dave, 4, PROJECT)

            send_text(alice, HOMEOWNER, "For Bob", receiver_id=PROVIDER)
            for ws in (alice, bob, dave):
                assert ws.receive_json()["message"]["content"] == "For Bob"

    def test_send_before_join_rejected_and_not_persisted(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER)
            send_text(ws, HOMEOWNER, "Too early")
            frame = receive_error(ws, "NOT_IN_ROOM")
            assert str(PROJECT) in frame["message"]

        response = api_client.get(f"/api/messages/project/{PROJECT}", headers={"X-User-Id": str(HOMEOWNER)})
        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_content_rejected(self, api_client, content):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER, PROJECT)
            send_text(ws, HOMEOWNER, content)
            receive_error(ws, "VALIDATION_ERROR")
            assert_nothing_queued(ws)

    def test_overlong_content_rejected(self, api_client, app):
        limit = app.state.settings.chat.max_message_length
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER, PROJECT)
            send_text(ws, HOMEOWNER, "x" * (limit + 1))
            receive_error(ws, "VALIDATION_ERROR")

    def test_sender_must_be_authenticated_user(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER, PROJECT)
            send_text(ws, PROVIDER, "Pretending to be Bob")
            frame = receive_error(ws, "VALIDATION_ERROR")
            assert "senderId" in frame["message"]

    def test_system_messages_cannot_be_sent(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER, PROJECT)
            ws.send_json({
                "type": "send_message",
                "projectId": PROJECT,
                "senderId": HOMEOWNER,
                "content": "Project closed",
                "messageType": "system",
            })
            receive_error(ws, "VALIDATION_ERROR")

    def test_sender_messages_arrive_in_send_order(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            for n in range(5):
                send_text(alice, HOMEOWNER, f"message {n}")
            received = [bob.receive_json()["message"] for _ in range(5)]

            assert [m["content"] for m in received] == [f"message {n}" for n in range(5)]
            ids = [m["id"] for m in received]
            assert ids == sorted(ids)

    def test_sent_messages_listed_by_project(self, api_client):
        with api_client.websocket_connect("/ws") as alice:
            authenticate(alice, HOMEOWNER, PROJECT)
            send_text(alice, HOMEOWNER, "first")
            first = alice.receive_json()["message"]
            send_text(alice, HOMEOWNER, "second")
            second = alice.receive_json()["message"]

        response = api_client.get(f"/api/messages/project/{PROJECT}", headers={"X-User-Id": str(PROVIDER)})
        assert response.status_code == 200
        history = response.json()
        assert [m["id"] for m in history] == [first["id"], second["id"]]
        assert history[0] == first
        assert history[1]["content"] == "second"

        other = api_client.get(f"/api/messages/project/{OTHER_PROJECT}", headers={"X-User-Id": str(PROVIDER)})
        assert other.json() == []

    def test_persistence_failure_reported_to_sender_only(self, api_client, app):
        app.state.chat_hub.messages = FailingStore()
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            send_text(alice, HOMEOWNER, "Will this stick?")
            frame = receive_error(alice, "PERSISTENCE_FAILURE")
            assert frame["frameType"] == "send_message"
            assert_nothing_queued(bob)
            assert_nothing_queued(alice)

        response = api_client.get(f"/api/messages/project/{PROJECT}", headers={"X-User-Id": str(HOMEOWNER)})
        assert response.status_code == 503


class TestMalformedFrames:

    @pytest.mark.parametrize("payload, expected", [
        ("not json", "not valid JSON"),
        ("[1, 2]", "JSON object"),
        ('{"userId": 1}', "'type'"),
        ('{"type": "shout"}', "Unknown frame type"),
        ('{"type": "join_project"}', "projectId"),
        ('{"type": "join_project", "projectId": "abc"}', "projectId"),
    ])
    def test_malformed_frame_answered_with_error(self, api_client, payload, expected):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER)
            ws.send_text(payload)
            frame = receive_error(ws, "VALIDATION_ERROR")
            assert expected in frame["message"]
            # The connection survives.
            assert_nothing_queued(ws)

    def test_binary_frame_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\x00\x01")
            frame = receive_error(ws, "VALIDATION_ERROR")
            assert "Binary" in frame["message"]


# =============================================================================
# Typing
# =============================================================================


class TestTyping:

    def test_typing_broadcast_to_others_then_expires(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            typing(alice, HOMEOWNER, True)
            assert bob.receive_json() == {
                "type": "user_typing", "userId": HOMEOWNER, "projectId": PROJECT, "isTyping": True,
            }
            assert_nothing_queued(alice)

            # Alice never sends isTyping: false; the server expires it.
            started = time.monotonic()
            assert bob.receive_json() == {
                "type": "user_typing", "userId": HOMEOWNER, "projectId": PROJECT, "isTyping": False,
            }
            assert time.monotonic() - started < TYPING_TIMEOUT * 5
            assert_nothing_queued(alice)

    def test_typist_other_tabs_are_not_told(self, api_client):
        with api_client.websocket_connect("/ws") as tab1, \
             api_client.websocket_connect("/ws") as tab2, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(tab1, HOMEOWNER, PROJECT)
            authenticate(tab2, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            typing(tab1, HOMEOWNER, True)
            assert bob.receive_json() == {
                "type": "user_typing", "userId": HOMEOWNER, "projectId": PROJECT, "isTyping": True,
            }
            assert_nothing_queued(tab2)
            assert_nothing_queued(tab1)

            assert bob.receive_json() == {
                "type": "user_typing", "userId": HOMEOWNER, "projectId": PROJECT, "isTyping": False,
            }
            assert_nothing_queued(tab2)
            assert_nothing_queued(tab1)

    def test_typing_refresh_is_not_rebroadcast(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            typing(alice, HOMEOWNER, True)
            assert bob.receive_json()["isTyping"] is True
            typing(alice, HOMEOWNER, True)
            typing(alice, HOMEOWNER, False)
            assert bob.receive_json()["isTyping"] is False

            # The explicit stop cancelled the expiry; no second "false" follows.
            time.sleep(TYPING_TIMEOUT * 2)
            assert_nothing_queued(bob)

    def test_stop_when_idle_is_silent(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            typing(alice, HOMEOWNER, False)
            assert_nothing_queued(alice)
            assert_nothing_queued(bob)

    def test_sending_a_message_clears_typing(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            typing(alice, HOMEOWNER, True)
            assert bob.receive_json()["isTyping"] is True

            send_text(alice, HOMEOWNER, "Done typing")
            assert bob.receive_json()["type"] == "new_message"
            assert bob.receive_json() == {
                "type": "user_typing", "userId": HOMEOWNER, "projectId": PROJECT, "isTyping": False,
            }

    def test_typing_requires_membership(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            authenticate(ws, HOMEOWNER)
            typing(ws, HOMEOWNER, True)
            receive_error(ws, "NOT_IN_ROOM")

    def test_disconnect_clears_typing(self, api_client):
        with api_client.websocket_connect("/ws") as alice:
            authenticate(alice, HOMEOWNER, PROJECT)
            with api_client.websocket_connect("/ws") as bob:
                authenticate(bob, PROVIDER, PROJECT)
                typing(bob, PROVIDER, True)
                assert alice.receive_json()["isTyping"] is True

            assert alice.receive_json() == {
                "type": "user_typing", "userId": PROVIDER, "projectId": PROJECT, "isTyping": False,
            }
            time.sleep(TYPING_TIMEOUT * 2)
            assert_nothing_queued(alice)


# =============================================================================
# Read receipts
# =============================================================================


class TestMarkRead:

    def test_mark_read_broadcast_once(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            send_text(alice, HOMEOWNER, "Please confirm")
            message_id = alice.receive_json()["message"]["id"]
            bob.receive_json()

            read = {"type": "mark_read", "messageId": message_id, "userId": PROVIDER, "projectId": PROJECT}
            bob.send_json(read)
            expected = {"type": "message_read", "messageId": message_id, "readBy": PROVIDER, "projectId": PROJECT}
            assert alice.receive_json() == expected
            assert bob.receive_json() == expected

            # Already read: nothing changes, nothing is broadcast.
            bob.send_json(read)
            assert_nothing_queued(bob)
            assert_nothing_queued(alice)

        history = api_client.get(f"/api/messages/project/{PROJECT}", headers={"X-User-Id": str(HOMEOWNER)})
        assert history.json()[0]["isRead"] is True

    def test_own_message_is_not_marked(self, api_client):
        with api_client.websocket_connect("/ws") as alice:
            authenticate(alice, HOMEOWNER, PROJECT)
            send_text(alice, HOMEOWNER, "Note to self")
            message_id = alice.receive_json()["message"]["id"]

            alice.send_json({"type": "mark_read", "messageId": message_id, "userId": HOMEOWNER, "projectId": PROJECT})
            assert_nothing_queued(alice)

        history = api_client.get(f"/api/messages/project/{PROJECT}", headers={"X-User-Id": str(HOMEOWNER)})
        assert history.json()[0]["isRead"] is False

    def test_unknown_message_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as bob:
            authenticate(bob, PROVIDER, PROJECT)
            bob.send_json({"type": "mark_read", "messageId": 12345, "userId": PROVIDER, "projectId": PROJECT})
            receive_error(bob, "VALIDATION_ERROR")

    def test_message_from_other_project_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as carol, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(carol, NEIGHBOUR, OTHER_PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            send_text(carol, NEIGHBOUR, "Deck question", project_id=OTHER_PROJECT)
            message_id = carol.receive_json()["message"]["id"]

            bob.send_json({"type": "mark_read", "messageId": message_id, "userId": PROVIDER, "projectId": PROJECT})
            receive_error(bob, "VALIDATION_ERROR")


# =============================================================================
# REST
# =============================================================================


class TestMessageEndpoints:

    def test_health(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_history_requires_user(self, api_client):
        response = api_client.get(f"/api/messages/project/{PROJECT}")
        assert response.status_code == 401

    def test_history_unknown_project(self, api_client):
        response = api_client.get("/api/messages/project/999", headers={"X-User-Id": "1"})
        assert response.status_code == 404

    def test_post_message_is_broadcast(self, api_client):
        with api_client.websocket_connect("/ws") as bob:
            authenticate(bob, PROVIDER, PROJECT)

            response = api_client.post(
                "/api/messages",
                json={"projectId": PROJECT, "receiverId": PROVIDER, "content": "Sent from the web form"},
                headers={"X-User-Id": str(HOMEOWNER)},
            )
            assert response.status_code == 200
            stored = response.json()
            assert stored["senderId"] == HOMEOWNER

            frame = bob.receive_json()
            assert frame["type"] == "new_message"
            assert frame["message"]["id"] == stored["id"]

    def test_post_message_rejects_blank_content(self, api_client):
        response = api_client.post(
            "/api/messages",
            json={"projectId": PROJECT, "content": "  "},
            headers={"X-User-Id": str(HOMEOWNER)},
        )
        assert response.status_code == 400

    def test_post_message_unknown_project(self, api_client):
        response = api_client.post(
            "/api/messages",
            json={"projectId": 999, "content": "hello"},
            headers={"X-User-Id": str(HOMEOWNER)},
        )
        assert response.status_code == 404


class TestReadEndpoints:

    def test_mark_read_over_http_is_broadcast(self, api_client):
        with api_client.websocket_connect("/ws") as alice:
            authenticate(alice, HOMEOWNER, PROJECT)
            send_text(alice, HOMEOWNER, "Invoice attached")
            message_id = alice.receive_json()["message"]["id"]

            response = api_client.patch(f"/api/messages/{message_id}/read", headers=rest_headers(PROVIDER))
            assert response.status_code == 200
            assert response.json()["isRead"] is True
            assert response.json()["sender"]["id"] == HOMEOWNER
            assert alice.receive_json() == {
                "type": "message_read", "messageId": message_id, "readBy": PROVIDER, "projectId": PROJECT,
            }

            # Already read: accepted, nothing broadcast.
            again = api_client.patch(f"/api/messages/{message_id}/read", headers=rest_headers(PROVIDER))
            assert again.status_code == 200
            assert_nothing_queued(alice)

    def test_mark_read_unknown_message(self, api_client):
        response = api_client.patch("/api/messages/12345/read", headers=rest_headers(PROVIDER))
        assert response.status_code == 404

    def test_mark_read_requires_user(self, api_client):
        response = api_client.patch("/api/messages/1/read")
        assert response.status_code == 401

    def test_read_all_marks_only_messages_from_others(self, api_client):
        with api_client.websocket_connect("/ws") as alice, \
             api_client.websocket_connect("/ws") as bob:
            authenticate(alice, HOMEOWNER, PROJECT)
            authenticate(bob, PROVIDER, PROJECT)

            ids = []
            for sender, ws, text in ((HOMEOWNER, alice, "one"), (PROVIDER, bob, "two"), (HOMEOWNER, alice, "three")):
                send_text(ws, sender, text)
                ids.append(alice.receive_json()["message"]["id"])
                bob.receive_json()

            count = api_client.get(f"/api/messages/project/{PROJECT}/unread-count", headers=rest_headers(PROVIDER))
            assert count.json() == {"count": 2}

            response = api_client.patch(f"/api/messages/project/{PROJECT}/read-all", headers=rest_headers(PROVIDER))
            assert response.status_code == 200
            assert response.json()["messageIds"] == [ids[0], ids[2]]
            for message_id in (ids[0], ids[2]):
                assert alice.receive_json() == {
                    "type": "message_read", "messageId": message_id, "readBy": PROVIDER, "projectId": PROJECT,
                }
            assert_nothing_queued(alice)

        count = api_client.get(f"/api/messages/project/{PROJECT}/unread-count", headers=rest_headers(PROVIDER))
        assert count.json() == {"count": 0}
        # Bob's own message is still unread for Alice.
        count = api_client.get(f"/api/messages/project/{PROJECT}/unread-count", headers=rest_headers(HOMEOWNER))
        assert count.json() == {"count": 1}

    def test_read_all_unknown_project(self, api_client):
        response = api_client.patch("/api/messages/project/999/read-all", headers=rest_headers(PROVIDER))
        assert response.status_code == 404

    def test_unread_count_store_failure(self, api_client, app):
        app.state.chat_hub.messages = FailingStore()
        response = api_client.get(f"/api/messages/project/{PROJECT}/unread-count", headers=rest_headers(PROVIDER))
        assert response.status_code == 503
