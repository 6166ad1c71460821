import pytest
from anyio.from_thread import start_blocking_portal
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketDisconnect

from conftest import new_id
from dm_chat.database.connection import mongo_db_dependency
from dm_chat.main import create_app


@pytest.fixture
def app(settings, db, storage, push_provider):
    application = create_app(settings, storage=storage, push=push_provider)
    application.dependency_overrides[mongo_db_dependency] = lambda: db
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


class TestAuth:

    async def test_missing_bearer_is_401(self, client):
        resp = await client.get("/chats")
        assert resp.status_code == 401
        assert resp.json() == {"message": "Unauthorized"}

    async def test_garbage_bearer_is_401(self, client):
        resp = await client.get("/chats", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401

    async def test_token_without_object_id_subject_is_401(self, client, settings):
        from jose import jwt

        token = jwt.encode({"sub": "alice"}, settings.jwt_secret, algorithm="HS256")
        resp = await client.get("/chats", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


class TestMessagingFlow:

    async def test_send_list_read_cycle(self, client, auth_header, app):
        alice, bob = new_id(), new_id()

        sent = await client.post(f"/chats/{bob}/messages", json={"text": "  hi "}, headers=auth_header(alice))
        assert sent.status_code == 201
        body = sent.json()
        assert body["success"] is True
        message = body["message"]
        assert message["text"] == "hi"
        assert message["isRead"] is False
        assert message["senderId"] == alice
        assert message["receiverId"] == bob
        assert "_id" in message and "conversationId" in message

        listed = await client.get("/chats", headers=auth_header(bob))
        [convo] = listed.json()["conversations"]
        assert convo["unreadCount"] == 1
        assert convo["lastMessage"]["text"] == "hi"
        assert convo["otherUser"] is None

        history = await client.get(f"/chats/{alice}/messages", headers=auth_header(bob))
        page = history.json()
        assert page["conversationId"] == message["conversationId"]
        assert page["hasMore"] is False
        assert [m["_id"] for m in page["messages"]] == [message["_id"]]

        read = await client.post(f"/chats/{message['conversationId']}/read", headers=auth_header(bob))
        assert read.json() == {"success": True}

        listed = await client.get("/chats", headers=auth_header(bob))
        assert listed.json()["conversations"][0]["unreadCount"] == 0

        await app.state.tasks.drain()

    async def test_empty_history_shape(self, client, auth_header):
        resp = await client.get(f"/chats/{new_id()}/messages", headers=auth_header(new_id()))
        assert resp.status_code == 200
        assert resp.json() == {"messages": [], "conversationId": None, "page": 1, "hasMore": False}

    async def test_pagination_query_is_clamped(self, client, auth_header):
        resp = await client.get(
            f"/chats/{new_id()}/messages", params={"page": "-2", "limit": "999"}, headers=auth_header(new_id())
        )
        assert resp.json()["page"] == 1

    async def test_blank_text_is_400(self, client, auth_header):
        resp = await client.post(f"/chats/{new_id()}/messages", json={"text": "   "}, headers=auth_header(new_id()))
        assert resp.status_code == 400
        assert resp.json() == {"message": "Message text is required"}

    async def test_voice_without_url_is_400(self, client, auth_header):
        resp = await client.post(
            f"/chats/{new_id()}/messages", json={"messageType": "voice"}, headers=auth_header(new_id())
        )
        assert resp.status_code == 400

    async def test_unknown_message_type_is_400(self, client, auth_header):
        resp = await client.post(
            f"/chats/{new_id()}/messages", json={"messageType": "video", "text": "x"}, headers=auth_header(new_id())
        )
        assert resp.status_code == 400
        assert resp.json() == {"message": "Invalid request"}

    async def test_bad_recipient_is_400(self, client, auth_header):
        resp = await client.post("/chats/bob/messages", json={"text": "hi"}, headers=auth_header(new_id()))
        assert resp.status_code == 400
        assert resp.json() == {"message": "Invalid recipient id"}

    async def test_voice_message_returns_signed_url(self, client, auth_header, app):
        resp = await client.post(
            f"/chats/{new_id()}/messages",
            json={"messageType": "voice", "voiceUrl": "voice/u/1.m4a", "voiceDuration": 3},
            headers=auth_header(new_id()),
        )
        assert resp.status_code == 201
        assert resp.json()["message"]["voiceUrl"].startswith("https://signed.example/voice/u/1.m4a")
        await app.state.tasks.drain()

    async def test_start_conversation(self, client, auth_header, make_user):
        bob = await make_user("Bob", photos=["photos/bob.jpg"], city="Berlin", isOnline=True)
        resp = await client.get(f"/chats/start/{bob}", headers=auth_header(new_id()))
        body = resp.json()
        assert body["conversationId"]
        assert body["otherUser"]["name"] == "Bob"
        assert body["otherUser"]["city"] == "Berlin"
        assert body["otherUser"]["isOnline"] is True
        assert body["otherUser"]["photo"].startswith("https://signed.example/photos/bob.jpg")

    async def test_read_with_malformed_id_is_400(self, client, auth_header):
        resp = await client.post("/chats/nope/read", headers=auth_header(new_id()))
        assert resp.status_code == 400


class TestDelete:

    async def test_deletes_owned_and_reports_count(self, client, auth_header, app):
        alice, bob, carol = new_id(), new_id(), new_id()
        mine = (await client.post(f"/chats/{bob}/messages", json={"text": "x"}, headers=auth_header(alice))).json()
        theirs = (await client.post(f"/chats/{carol}/messages", json={"text": "y"}, headers=auth_header(bob))).json()

        resp = await client.request(
            "DELETE",
            "/chats",
            json={"conversationIds": [mine["message"]["conversationId"], theirs["message"]["conversationId"], "junk"]},
            headers=auth_header(alice),
        )

        assert resp.json() == {"success": True, "deletedCount": 1}
        await app.state.tasks.drain()

    async def test_nothing_owned_is_404(self, client, auth_header):
        resp = await client.request("DELETE", "/chats", json={"conversationIds": [new_id()]}, headers=auth_header(new_id()))
        assert resp.status_code == 404

    async def test_missing_ids_is_400(self, client, auth_header):
        resp = await client.request("DELETE", "/chats", json={}, headers=auth_header(new_id()))
        assert resp.status_code == 400


class TestPushTokens:

    async def test_register_twice_then_unregister(self, client, auth_header, db):
        user = new_id()
        for device in ("a", "b"):
            resp = await client.post(
                "/chats/push-token",
                json={"fcmToken": "tok-1", "platform": "ios", "deviceId": device},
                headers=auth_header(user),
            )
            assert resp.json() == {"success": True}

        docs = await db["device_tokens"].find({}).to_list(length=None)
        assert len(docs) == 1
        assert docs[0]["device_id"] == "b"

        resp = await client.request("DELETE", "/chats/push-token", json={"fcmToken": "tok-1"}, headers=auth_header(user))
        assert resp.json() == {"success": True}
        assert await db["device_tokens"].count_documents({}) == 0

    async def test_bad_platform_is_400(self, client, auth_header):
        resp = await client.post(
            "/chats/push-token", json={"fcmToken": "t", "platform": "windows"}, headers=auth_header(new_id())
        )
        assert resp.status_code == 400


class TestVoiceUpload:

    async def test_upload_returns_key_and_signed_url(self, client, auth_header, s3_client):
        user = new_id()
        resp = await client.post(
            "/chats/upload-voice",
            files={"voice": ("memo.m4a", b"\x00\x01", "audio/x-m4a")},
            headers=auth_header(user),
        )

        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["voiceKey"].startswith(f"voice/{user}/")
        assert body["voiceUrl"].startswith(f"https://signed.example/{body['voiceKey']}")
        s3_client.put_object.assert_called_once()

    async def test_rejects_unsupported_audio(self, client, auth_header, s3_client):
        resp = await client.post(
            "/chats/upload-voice",
            files={"voice": ("memo.ogg", b"\x00", "audio/ogg")},
            headers=auth_header(new_id()),
        )
        assert resp.status_code == 400
        s3_client.put_object.assert_not_called()

    async def test_missing_file_is_400(self, client, auth_header):
        resp = await client.post("/chats/upload-voice", headers=auth_header(new_id()))
        assert resp.status_code == 400


class TestRealtimeSocket:

    @pytest.fixture
    def ws_client(self, settings, storage, push_provider):
        client = TestClient(create_app(settings, storage=storage, push=push_provider))
        # share one event loop across sockets so hub emits reach the peer socket
        with start_blocking_portal() as portal:
            client.portal = portal
            yield client

    def test_handshake_without_token_is_rejected(self, ws_client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with ws_client.websocket_connect("/ws"):
                pass
        assert exc.value.code == 4401

    def test_typing_is_relayed_between_sockets(self, ws_client, settings):
        from dm_chat.utils.security import create_access_token

        alice, bob = new_id(), new_id()
        with ws_client.websocket_connect(f"/ws?token={create_access_token(bob, settings)}") as bob_ws:
            with ws_client.websocket_connect(
                "/ws", headers={"Authorization": f"Bearer {create_access_token(alice, settings)}"}
            ) as alice_ws:
                alice_ws.send_json({"type": "typing_start", "recipientId": bob})
                assert bob_ws.receive_json() == {"event": "typing", "data": {"senderId": alice, "isTyping": True}}

    def test_binary_frame_is_ignored(self, ws_client, settings):
        from dm_chat.utils.security import create_access_token

        alice, bob = new_id(), new_id()
        with ws_client.websocket_connect(f"/ws?token={create_access_token(bob, settings)}") as bob_ws:
            with ws_client.websocket_connect(f"/ws?token={create_access_token(alice, settings)}") as alice_ws:
                alice_ws.send_bytes(b"\x00\x01")
                alice_ws.send_json({"type": "typing_stop", "recipientId": bob})
                assert bob_ws.receive_json() == {"event": "typing", "data": {"senderId": alice, "isTyping": False}}
