"""Tests for the /messages HTTP endpoints."""
import pytest

from fellowship_chat.identity.schemas import UserRole


@pytest.fixture
def send(api_client, auth_header):
    """POST /messages as ``user_id`` and return the response."""
    def _send(user_id, body, role=UserRole.USER):
        return api_client.post("/messages", json=body, headers=auth_header(user_id, role))
    return _send


class TestAuthentication:
    def test_missing_token(self, api_client):
        response = api_client.get("/messages/community")
        assert response.status_code == 401
        assert response.json() == {
            "status": "fail",
            "message": "You are not logged in. Please log in to get access.",
        }

    def test_invalid_token(self, api_client):
        response = api_client.get(
            "/messages/community", headers={"Authorization": "Bearer garbage"}
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token. Please log in again."


class TestCreateMessage:
    """Tests for POST /messages."""

    def test_community_message_delivered_on_create(self, send):
        response = send("alice", {"scope": "community", "content": "Welcome all!"})
        assert response.status_code == 201
        body = response.json()
        assert body["id"]
        assert body["authorId"] == "alice"
        assert body["authorName"] == "Alice"
        assert body["delivered"] is True
        assert body["read"] is False
        assert body["recipientId"] is None

    def test_chat_type_alias(self, send):
        response = send("alice", {"chatType": "community", "content": "alias"})
        assert response.status_code == 201
        assert response.json()["scope"] == "community"

    def test_admin_scope_requires_role(self, send):
        response = send("alice", {"scope": "admin", "content": "let me in"})
        assert response.status_code == 403
        assert response.json()["status"] == "fail"

    def test_admin_scope_for_admin(self, send):
        response = send("pastor", {"scope": "admin", "content": "agenda"}, UserRole.ADMIN)
        assert response.status_code == 201
        assert response.json()["delivered"] is True

    def test_private_message_starts_undelivered(self, send):
        response = send("alice", {"scope": "private", "recipientId": "bob", "content": "hi"})
        assert response.status_code == 201
        assert response.json()["delivered"] is False

    def test_private_without_recipient(self, send):
        response = send("alice", {"scope": "private", "content": "hi"})
        assert response.status_code == 400

    def test_blank_content(self, send):
        assert send("alice", {"scope": "community", "content": "  "}).status_code == 400

    def test_unknown_scope(self, send):
        response = send("alice", {"scope": "lobby", "content": "hi"})
        assert response.status_code == 400
        assert response.json()["status"] == "fail"


class TestListMessages:
    def test_community_list_ascending(self, api_client, send, auth_header):
        for text in ("first", "second", "third"):
            send("alice", {"scope": "community", "content": text})
        response = api_client.get("/messages/community", headers=auth_header("bob"))
        assert response.status_code == 200
        assert [m["content"] for m in response.json()] == ["first", "second", "third"]

    def test_community_limit(self, api_client, send, auth_header):
        for text in ("first", "second", "third"):
            send("alice", {"scope": "community", "content": text})
        response = api_client.get("/messages/community?limit=2", headers=auth_header("bob"))
        assert [m["content"] for m in response.json()] == ["second", "third"]

    def test_limit_out_of_range(self, api_client, auth_header):
        response = api_client.get("/messages/community?limit=0", headers=auth_header("bob"))
        assert response.status_code == 400

    def test_admin_list_forbidden_for_user(self, api_client, auth_header):
        assert api_client.get("/messages/admin", headers=auth_header("bob")).status_code == 403

    def test_admin_list_for_super_admin(self, api_client, send, auth_header):
        send("pastor", {"scope": "admin", "content": "agenda"}, UserRole.ADMIN)
        response = api_client.get(
            "/messages/admin", headers=auth_header("root", UserRole.SUPER_ADMIN)
        )
        assert response.status_code == 200
        assert [m["content"] for m in response.json()] == ["agenda"]

    def test_private_requires_user_id(self, api_client, auth_header):
        response = api_client.get("/messages/private", headers=auth_header("alice"))
        assert response.status_code == 400
        assert response.json()["message"] == "User ID is required to fetch private messages."

    def test_private_conversation(self, api_client, send, auth_header):
        send("alice", {"scope": "private", "recipientId": "bob", "content": "one"})
        send("bob", {"scope": "private", "recipientId": "alice", "content": "two"})
        send("alice", {"scope": "private", "recipientId": "carol", "content": "elsewhere"})
        response = api_client.get("/messages/private?userId=alice", headers=auth_header("bob"))
        assert [m["content"] for m in response.json()] == ["one", "two"]

    def test_online_users_empty_without_sockets(self, api_client, auth_header):
        response = api_client.get("/messages/online-users", headers=auth_header("alice"))
        assert response.status_code == 200
        assert response.json() == []


class TestReceipts:
    """Tests for delivered/read endpoints."""

    def test_delivered_then_read(self, api_client, send, services, auth_header):
        message = send("alice", {"scope": "private", "recipientId": "bob", "content": "hi"}).json()

        response = api_client.put(f"/messages/{message['id']}/delivered", headers=auth_header("bob"))
        assert response.status_code == 200
        assert response.json() == {"success": True}

        response = api_client.put(f"/messages/{message['id']}/read", headers=auth_header("bob"))
        assert response.status_code == 200
        assert response.json() == {"success": True}

        [stored] = api_client.get("/messages/private?userId=alice", headers=auth_header("bob")).json()
        assert stored["delivered"] is True
        assert stored["read"] is True
        record = services.store.get(stored["id"])
        assert record.deliveredAt <= record.readAt

    def test_delivered_unknown_id_is_ok(self, api_client, auth_header):
        response = api_client.put("/messages/does-not-exist/delivered", headers=auth_header("bob"))
        assert response.status_code == 200
        assert response.json() == {"success": True}

    def test_delivered_requires_token(self, api_client, send, services):
        message = send("alice", {"scope": "private", "recipientId": "bob", "content": "hi"}).json()
        response = api_client.put(f"/messages/{message['id']}/delivered")
        assert response.status_code == 401
        assert services.store.get(message["id"]).delivered is False

    def test_delivered_by_any_identity(self, api_client, send, services, auth_header):
        message = send("alice", {"scope": "private", "recipientId": "bob", "content": "hi"}).json()
        response = api_client.put(f"/messages/{message['id']}/delivered", headers=auth_header("carol"))
        assert response.status_code == 200
        assert services.store.get(message["id"]).delivered is True

    def test_read_unknown_id(self, api_client, auth_header):
        response = api_client.put("/messages/does-not-exist/read", headers=auth_header("bob"))
        assert response.status_code == 404
        assert response.json() == {"status": "fail", "message": "Message not found."}

    def test_read_by_outsider(self, api_client, send, auth_header):
        message = send("alice", {"scope": "private", "recipientId": "bob", "content": "hi"}).json()
        response = api_client.put(f"/messages/{message['id']}/read", headers=auth_header("carol"))
        assert response.status_code == 403

    def test_read_is_idempotent(self, api_client, send, services, auth_header):
        message = send("alice", {"scope": "private", "recipientId": "bob", "content": "hi"}).json()
        api_client.put(f"/messages/{message['id']}/read", headers=auth_header("bob"))
        first = services.store.get(message["id"]).readAt
        api_client.put(f"/messages/{message['id']}/read", headers=auth_header("bob"))
        assert services.store.get(message["id"]).readAt == first


class TestReactions:
    def test_toggle_on_and_off(self, api_client, send, auth_header):
        message = send("alice", {"scope": "community", "content": "Amen"}).json()
        url = f"/messages/{message['id']}/react"

        response = api_client.post(url, json={"emoji": "🙏"}, headers=auth_header("bob"))
        assert response.status_code == 200
        assert response.json()["added"] is True
        assert response.json()["reactions"] == {"🙏": {"count": 1, "users": ["bob"]}}

        response = api_client.post(url, json={"emoji": "🙏"}, headers=auth_header("bob"))
        assert response.json()["added"] is False
        assert response.json()["reactions"] == {}

    def test_react_unknown_id(self, api_client, auth_header):
        response = api_client.post(
            "/messages/nope/react", json={"emoji": "🙏"}, headers=auth_header("bob")
        )
        assert response.status_code == 404

    def test_react_missing_emoji(self, api_client, send, auth_header):
        message = send("alice", {"scope": "community", "content": "Amen"}).json()
        response = api_client.post(
            f"/messages/{message['id']}/react", json={}, headers=auth_header("bob")
        )
        assert response.status_code == 400

    def test_react_private_outsider(self, api_client, send, auth_header):
        message = send("alice", {"scope": "private", "recipientId": "bob", "content": "hi"}).json()
        response = api_client.post(
            f"/messages/{message['id']}/react", json={"emoji": "🙏"}, headers=auth_header("carol")
        )
        assert response.status_code == 403


class TestUnreadCounts:
    def test_counts_and_watermark(self, api_client, send, auth_header):
        send("alice", {"scope": "private", "recipientId": "bob", "content": "1"})
        send("alice", {"scope": "private", "recipientId": "bob", "content": "2"})
        send("carol", {"scope": "community", "content": "hello"})

        counts = api_client.get("/messages/unread-counts", headers=auth_header("bob")).json()
        assert counts == {"private": {"alice": 2}, "community": 1, "admin": 0}

        response = api_client.put("/messages/watermarks/community", headers=auth_header("bob"))
        assert response.status_code == 200
        assert response.json()["scope"] == "community"

        counts = api_client.get("/messages/unread-counts", headers=auth_header("bob")).json()
        assert counts["community"] == 0

    def test_admin_watermark_requires_role(self, api_client, auth_header):
        response = api_client.put("/messages/watermarks/admin", headers=auth_header("bob"))
        assert response.status_code == 403

    def test_private_watermark_rejected(self, api_client, auth_header):
        response = api_client.put("/messages/watermarks/private", headers=auth_header("bob"))
        assert response.status_code == 400


def test_health(api_client):
    assert api_client.get("/health").json() == {"status": "ok"}
