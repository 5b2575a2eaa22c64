"""Tests for the /ws protocol through the real application.

Each test runs against a fresh app with in-memory databases (see the
``api_client`` fixture), so presence and rooms never leak between tests.
"""
import pytest
from fastapi import WebSocketDisconnect

from conftest import auth_headers, make_token


def open_socket(client, user_id):
    ws = client.websocket_connect(f"/ws?token={make_token(user_id)}")
    return ws


def receive_connected(ws, user_id):
    """Helper to receive and validate the greeting frame."""
    frame = ws.receive_json()
    assert frame["event"] == "connected"
    assert frame["data"]["userId"] == user_id
    return frame["data"]


def start_conversation(client, initiator, recipient):
    response = client.post(
        "/conversations",
        json={"recipientId": recipient},
        headers=auth_headers(initiator),
    )
    assert response.status_code in (200, 201)
    return response.json()["conversationId"]


def join(ws, conversation_id):
    ws.send_json({"event": "joinConversation", "data": {"conversationId": conversation_id}})
    frame = ws.receive_json()
    assert frame == {"event": "joinedConversation", "data": {"conversationId": conversation_id}}


class TestHandshake:
    """Credential checks before the socket is accepted."""

    def test_query_token(self, api_client):
        with open_socket(api_client, "alice") as ws:
            data = receive_connected(ws, "alice")
            assert data["onlineUsers"] == ["alice"]
            assert data["connectionId"]

    def test_authorization_header(self, api_client):
        with api_client.websocket_connect("/ws", headers=auth_headers("bob")) as ws:
            receive_connected(ws, "bob")

    def test_invalid_token_closed_with_policy_violation(self, api_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with api_client.websocket_connect("/ws?token=not-a-jwt"):
                pass
        assert exc_info.value.code == 1008

    def test_wrong_secret_rejected(self, api_client):
        token = make_token("alice", secret="someone-elses-secret")
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with api_client.websocket_connect(f"/ws?token={token}"):
                pass
        assert exc_info.value.code == 1008

    def test_missing_token_rejected(self, api_client):
        with pytest.raises(WebSocketDisconnect):
            with api_client.websocket_connect("/ws"):
                pass


class TestPresenceOverSocket:
    def test_online_and_offline_broadcast(self, api_client):
        with open_socket(api_client, "alice") as alice:
            receive_connected(alice, "alice")

            with open_socket(api_client, "bob") as bob:
                data = receive_connected(bob, "bob")
                assert data["onlineUsers"] == ["alice", "bob"]
                assert alice.receive_json() == {"event": "presence", "data": {"userId": "bob", "online": True}}

                response = api_client.get("/presence/bob", headers=auth_headers("alice"))
                assert response.json() == {"userId": "bob", "online": True}

            assert alice.receive_json() == {"event": "presence", "data": {"userId": "bob", "online": False}}

            response = api_client.get("/presence/bob", headers=auth_headers("alice"))
            assert response.json() == {"userId": "bob", "online": False}


class TestLiveMessaging:
    def test_delivery_ack_scenario(self, api_client):
        """B is online and in the room; A sends; A gets messageDelivered, B gets newMessage."""
        conversation_id = start_conversation(api_client, "alice", "bob")

        with open_socket(api_client, "alice") as alice, open_socket(api_client, "bob") as bob:
            receive_connected(alice, "alice")
            receive_connected(bob, "bob")
            assert alice.receive_json()["event"] == "presence"
            join(bob, conversation_id)

            alice.send_json({
                "event": "sendMessage",
                "data": {"conversationId": conversation_id, "body": "Ready for the session?"},
            })

            delivered = alice.receive_json()
            assert delivered["event"] == "messageDelivered"
            assert delivered["data"]["conversationId"] == conversation_id
            assert delivered["data"]["recipients"] == ["bob"]

            ack = alice.receive_json()
            assert ack["event"] == "messageSent"
            assert ack["data"]["message"]["id"] == delivered["data"]["messageId"]

            new_message = bob.receive_json()
            assert new_message["event"] == "newMessage"
            assert new_message["data"]["body"] == "Ready for the session?"
            assert new_message["data"]["senderId"] == "alice"
            assert new_message["data"]["firstName"] == "Alice"

    def test_http_send_reaches_room(self, api_client):
        conversation_id = start_conversation(api_client, "alice", "bob")

        with open_socket(api_client, "bob") as bob:
            receive_connected(bob, "bob")
            join(bob, conversation_id)

            response = api_client.post(
                f"/conversations/{conversation_id}/messages",
                json={"body": "sent over HTTP"},
                headers=auth_headers("alice"),
            )
            assert response.status_code == 201

            frame = bob.receive_json()
            assert frame["event"] == "newMessage"
            assert frame["data"]["id"] == response.json()["id"]

    def test_typing_and_read_receipts(self, api_client):
        conversation_id = start_conversation(api_client, "alice", "bob")
        api_client.post(
            f"/conversations/{conversation_id}/messages",
            json={"body": "unread"},
            headers=auth_headers("alice"),
        )

        with open_socket(api_client, "alice") as alice, open_socket(api_client, "bob") as bob:
            receive_connected(alice, "alice")
            receive_connected(bob, "bob")
            assert alice.receive_json()["event"] == "presence"
            join(alice, conversation_id)
            join(bob, conversation_id)

            bob.send_json({"event": "typing", "data": {"conversationId": conversation_id, "isTyping": True}})
            assert alice.receive_json() == {
                "event": "typing",
                "data": {"conversationId": conversation_id, "isTyping": True, "userId": "bob"},
            }

            bob.send_json({"event": "markRead", "data": {"conversationId": conversation_id}})
            assert alice.receive_json() == {
                "event": "messagesRead",
                "data": {"conversationId": conversation_id, "userId": "bob"},
            }

        messages = api_client.get(
            f"/conversations/{conversation_id}/messages", headers=auth_headers("alice")
        ).json()
        assert [m["isRead"] for m in messages] == [True]

    def test_error_keeps_connection_open(self, api_client):
        conversation_id = start_conversation(api_client, "alice", "bob")

        with open_socket(api_client, "carol") as carol:
            receive_connected(carol, "carol")

            carol.send_json({"event": "joinConversation", "data": {"conversationId": conversation_id}})
            assert carol.receive_json() == {
                "event": "error",
                "data": {"error": "Not authorized", "event": "joinConversation"},
            }

            carol.send_text("{broken")
            assert carol.receive_json()["event"] == "error"

            other = start_conversation(api_client, "carol", "bob")
            join(carol, other)
