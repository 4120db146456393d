import pytest

from clubchat.domain.chat.exceptions import ConnectivityFailure
from clubchat.infra.jwt import encode_access

MEMBER = {"X-User-Id": "m1"}
STAFF = {"X-User-Id": "s1"}
OTHER_MEMBER = {"X-User-Id": "m2"}


@pytest.mark.asyncio
async def test_chat_full_flow(api_client):
    contacts = await api_client.get("/chat/contacts", headers=MEMBER)
    assert contacts.status_code == 200
    assert [item["id"] for item in contacts.json()] == ["a1", "s1", "s2"]

    start = await api_client.post("/chat/conversations", json={"target_user_id": "s1"}, headers=MEMBER)
    assert start.status_code == 201
    cid = start.json()["conversation_id"]
    assert cid == "m1_s1"

    sent = await api_client.post(
        f"/chat/conversations/{cid}/messages",
        json={"body": "Is practice on tonight?", "client_msg_id": "01HX0000000000000000000001"},
        headers=MEMBER,
    )
    assert sent.status_code == 201
    message = sent.json()
    assert message["seq"] == 1
    assert message["sender_id"] == "m1"
    assert sent.headers["X-Request-Id"]

    inbox = await api_client.get("/chat/inbox", headers=STAFF)
    assert inbox.status_code == 200
    body = inbox.json()
    assert body["unread_total"] == 1
    assert body["items"][0]["last_message"] == "Is practice on tonight?"
    assert body["items"][0]["peer_name"] == "Mia Member"

    read = await api_client.post(f"/chat/conversations/{cid}/read", headers=STAFF)
    assert read.status_code == 200
    assert (await api_client.get("/chat/inbox", headers=STAFF)).json()["unread_total"] == 0

    edited = await api_client.patch(
        f"/chat/conversations/{cid}/messages/{message['message_id']}",
        json={"body": "Is practice on tonight at 7?"},
        headers=MEMBER,
    )
    assert edited.status_code == 200
    assert edited.json()["edited"] is True

    history = await api_client.get(f"/chat/conversations/{cid}/messages", headers=STAFF)
    assert history.status_code == 200
    assert [item["body"] for item in history.json()["items"]] == ["Is practice on tonight at 7?"]

    favorite = await api_client.post("/chat/inbox/m1/favorite", headers=STAFF)
    assert favorite.json() == {"peer_id": "m1", "is_favorite": True}

    deleted = await api_client.delete(
        f"/chat/conversations/{cid}/messages/{message['message_id']}",
        headers=MEMBER,
    )
    assert deleted.status_code == 204
    staff_inbox = (await api_client.get("/chat/inbox", headers=STAFF)).json()
    assert staff_inbox["items"][0]["last_message"] == "No messages yet"

    removed = await api_client.delete(f"/chat/conversations/{cid}", headers=MEMBER)
    assert removed.status_code == 200
    assert removed.json() == {"conversation_id": cid, "purged": 0}
    assert (await api_client.get("/chat/inbox", headers=MEMBER)).json()["items"] == []
    assert len((await api_client.get("/chat/inbox", headers=STAFF)).json()["items"]) == 1


@pytest.mark.asyncio
async def test_policy_denial_maps_to_forbidden(api_client):
    response = await api_client.post(
        "/chat/conversations",
        json={"target_user_id": "m2"},
        headers={**MEMBER, "X-Request-Id": "req-123"},
    )
    assert response.status_code == 403
    assert response.json() == {"detail": "member_cannot_contact_member", "request_id": "req-123"}


@pytest.mark.asyncio
async def test_sending_into_an_unopened_thread_follows_role_policy(api_client):
    admin = {"X-User-Id": "a1"}
    denied = await api_client.post("/chat/conversations/a1_m1/messages", json={"body": "hi member"}, headers=admin)
    assert denied.status_code == 403
    assert denied.json()["detail"] == "admin_cannot_contact_member"
    ghost = await api_client.post("/chat/conversations/ghost_m1/messages", json={"body": "hi"}, headers=MEMBER)
    assert ghost.status_code == 404
    assert (await api_client.get("/chat/inbox", headers=MEMBER)).json()["items"] == []


@pytest.mark.asyncio
async def test_domain_errors_map_to_status_codes(api_client, clock):
    cid = (await api_client.post("/chat/conversations", json={"target_user_id": "s1"}, headers=MEMBER)).json()[
        "conversation_id"
    ]
    blank = await api_client.post(f"/chat/conversations/{cid}/messages", json={"body": "   "}, headers=MEMBER)
    assert blank.status_code == 400
    assert blank.json()["detail"] == "empty_body"

    outsider = await api_client.get(f"/chat/conversations/{cid}/messages", headers=OTHER_MEMBER)
    assert outsider.status_code == 403

    unknown_target = await api_client.post("/chat/conversations", json={"target_user_id": "ghost"}, headers=MEMBER)
    assert unknown_target.status_code == 404

    own = await api_client.post("/chat/conversations", json={"target_user_id": "m1"}, headers=MEMBER)
    assert own.status_code == 400

    message = (
        await api_client.post(f"/chat/conversations/{cid}/messages", json={"body": "hi"}, headers=MEMBER)
    ).json()
    not_author = await api_client.patch(
        f"/chat/conversations/{cid}/messages/{message['message_id']}",
        json={"body": "changed"},
        headers=STAFF,
    )
    assert not_author.status_code == 403
    missing = await api_client.delete(f"/chat/conversations/{cid}/messages/nope", headers=MEMBER)
    assert missing.status_code == 404

    clock.advance(hours=2)
    late = await api_client.patch(
        f"/chat/conversations/{cid}/messages/{message['message_id']}",
        json={"body": "changed"},
        headers=MEMBER,
    )
    assert late.status_code == 409
    assert late.json()["detail"] == "edit_window_expired"

    not_in_inbox = await api_client.post("/chat/inbox/a1/favorite", headers=MEMBER)
    assert not_in_inbox.status_code == 403


@pytest.mark.asyncio
async def test_validation_errors_carry_request_id(api_client):
    response = await api_client.post("/chat/conversations/m1_s1/messages", json={"body": ""}, headers=MEMBER)
    assert response.status_code == 422
    payload = response.json()
    assert payload["detail"] == "validation_error"
    assert payload["request_id"]


@pytest.mark.asyncio
async def test_connectivity_failure_maps_to_service_unavailable(api_client, service, monkeypatch):
    async def unavailable(*args, **kwargs):
        raise ConnectivityFailure()

    monkeypatch.setattr(service, "list_inbox", unavailable)
    response = await api_client.get("/chat/inbox", headers=MEMBER)
    assert response.status_code == 503
    assert response.json()["detail"] == "connectivity"


@pytest.mark.asyncio
async def test_authentication(api_client):
    anonymous = await api_client.get("/chat/inbox")
    assert anonymous.status_code == 401

    stranger = await api_client.get("/chat/inbox", headers={"X-User-Id": "ghost"})
    assert stranger.status_code == 401
    assert stranger.json()["detail"] == "unknown_user"

    token = encode_access("s1")
    bearer = await api_client.get("/chat/inbox", headers={"Authorization": f"Bearer {token}"})
    assert bearer.status_code == 200

    expired = encode_access("s1", ttl_seconds=-60)
    late = await api_client.get("/chat/inbox", headers={"Authorization": f"Bearer {expired}"})
    assert late.status_code == 401
    assert late.json()["detail"] == "invalid_token"

    forged = await api_client.get("/chat/inbox", headers={"Authorization": "Bearer not-a-token"})
    assert forged.status_code == 401


@pytest.mark.asyncio
async def test_ops_endpoints(api_client):
    live = await api_client.get("/health/live")
    assert live.json() == {"status": "ok"}
    ready = await api_client.get("/health/ready")
    assert ready.status_code == 200
    metrics = await api_client.get("/metrics")
    assert metrics.status_code == 200
    assert "clubchat_http_requests_total" in metrics.text
