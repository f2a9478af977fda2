from __future__ import annotations

import uuid
from typing import Any

import pytest
from sqlalchemy import func, select

from backend.app.core.config import settings
from backend.app.llm.completion_client import CompletionError
from backend.app.models import Conversation, Message, User


def _count(session_factory, model) -> int:
    with session_factory() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def test_auth_guard_requires_session(app: Any) -> None:
    response = app.get("/api/conversations")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_unsafe_method_requires_csrf_token(app: Any, auth_session: dict[str, str]) -> None:
    app.cookies.set(settings.SESSION_COOKIE_NAME, auth_session["cookie"])
    response = app.post("/api/conversations", json={})
    assert response.status_code == 403

    response = app.post(
        "/api/conversations", json={}, headers={"X-CSRF-Token": "not-the-token"}
    )
    assert response.status_code == 403


def test_non_ascii_csrf_header_is_rejected(app: Any, auth_session: dict[str, str]) -> None:
    app.cookies.set(settings.SESSION_COOKIE_NAME, auth_session["cookie"])
    response = app.post(
        "/api/conversations", json={}, headers={"X-CSRF-Token": "tést".encode("latin-1")}
    )
    assert response.status_code == 403
    assert response.json() == {"detail": "Invalid CSRF token"}


def test_create_conversation_defaults_title(client: Any) -> None:
    response = client.post("/api/conversations", json={})
    assert response.status_code == 201
    body = response.json()
    assert set(body) == {"id", "sessionToken"}
    assert body["sessionToken"] != body["id"]
    assert len(body["sessionToken"]) == 16

    listing = client.get("/api/conversations").json()
    assert [item["id"] for item in listing] == [body["id"]]
    assert listing[0]["title"] == settings.DEFAULT_CONVERSATION_TITLE
    assert listing[0]["messageIds"] == []


def test_create_conversation_without_body(client: Any) -> None:
    response = client.post("/api/conversations")
    assert response.status_code == 201


def test_create_conversation_rejects_long_title(client: Any) -> None:
    response = client.post("/api/conversations", json={"title": "x" * 101})
    assert response.status_code == 400
    assert response.json()["detail"] == "Validation failed"


def test_send_without_conversation_creates_one(client: Any, session_factory, gateway) -> None:
    text = "Hello there, can you tell me what day it is today?"
    response = client.post("/api/conversations/send", json={"text": text})
    assert response.status_code == 201
    body = response.json()

    assert body["userMessage"]["role"] == "user"
    assert body["userMessage"]["text"] == text
    assert body["aiMessage"]["role"] == "ai"
    assert body["aiMessage"]["text"] == "Hello from the assistant"
    assert body["userMessage"]["sessionToken"] == body["conversation"]["sessionToken"]

    conversation_id = uuid.UUID(body["conversation"]["id"])
    with session_factory() as session:
        conversations = session.execute(select(Conversation)).scalars().all()
        assert [c.id for c in conversations] == [conversation_id]
        assert conversations[0].title == text[:30]
        assert conversations[0].message_ids == [
            body["userMessage"]["id"],
            body["aiMessage"]["id"],
        ]
    assert _count(session_factory, Message) == 2
    assert len(gateway.calls) == 1


def test_send_to_existing_conversation(client: Any, session_factory) -> None:
    created = client.post("/api/conversations", json={"title": "Trip"}).json()
    with session_factory() as session:
        before = session.get(Conversation, uuid.UUID(created["id"])).updated_at

    response = client.post(
        "/api/conversations/send",
        json={"text": "Plan a route", "conversationId": created["id"]},
    )
    assert response.status_code == 201
    assert response.json()["conversation"] == created

    assert _count(session_factory, Conversation) == 1
    assert _count(session_factory, Message) == 2
    with session_factory() as session:
        conversation = session.get(Conversation, uuid.UUID(created["id"]))
        assert conversation.updated_at > before
        assert conversation.title == "Trip"


def test_send_to_foreign_conversation_is_not_found(
    client: Any, session_factory, seed_conversation, gateway
) -> None:
    foreign = seed_conversation(owner_id="someone-else")

    response = client.post(
        "/api/conversations/send",
        json={"text": "Hi", "conversationId": str(foreign.id)},
    )
    assert response.status_code == 404
    assert response.json() == {"detail": "Conversation not found"}
    assert _count(session_factory, Message) == 0
    assert _count(session_factory, Conversation) == 1
    assert gateway.calls == []

    assert client.get(f"/api/conversations/{foreign.id}").status_code == 404
    assert client.patch(f"/api/conversations/{foreign.id}", json={"title": "Mine"}).status_code == 404
    assert client.delete(f"/api/conversations/{foreign.id}").status_code == 404


def test_send_to_missing_conversation_is_not_found(client: Any, session_factory) -> None:
    response = client.post(
        "/api/conversations/send",
        json={"text": "Hi", "conversationId": str(uuid.uuid4())},
    )
    assert response.status_code == 404
    assert _count(session_factory, Conversation) == 0


def test_get_messages_is_ordered_and_repeatable(client: Any) -> None:
    first = client.post("/api/conversations/send", json={"text": "First question"}).json()
    conversation_id = first["conversation"]["id"]
    client.post(
        "/api/conversations/send",
        json={"text": "Second question", "conversationId": conversation_id},
    )

    response = client.get(f"/api/conversations/{conversation_id}")
    assert response.status_code == 200
    messages = response.json()["messages"]
    assert [m["role"] for m in messages] == ["user", "ai", "user", "ai"]
    assert [m["text"] for m in messages[::2]] == ["First question", "Second question"]
    assert all(m["conversationId"] == conversation_id for m in messages)

    assert client.get(f"/api/conversations/{conversation_id}").json()["messages"] == messages


def test_completion_failure_uses_fallback(client: Any, gateway) -> None:
    gateway.error = CompletionError("service down")

    response = client.post("/api/conversations/send", json={"text": "Are you there?"})
    assert response.status_code == 201
    body = response.json()
    assert body["aiMessage"]["text"] == settings.COMPLETION_FALLBACK_TEXT
    assert body["userMessage"]["text"] == "Are you there?"


def test_store_failure_aborts_before_completion(
    client: Any, auth_session, gateway, session_factory, seed_conversation, failing_commit
) -> None:
    conversation = seed_conversation(owner_id=auth_session["user_id"])
    rolled_back = failing_commit()

    response = client.post(
        "/api/conversations/send",
        json={"text": "Hello", "conversationId": str(conversation.id)},
    )
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
    assert gateway.calls == []
    assert rolled_back

    assert _count(session_factory, Message) == 0


def test_store_failure_after_completion_keeps_user_message(
    client: Any, auth_session, gateway, session_factory, seed_conversation, failing_commit
) -> None:
    conversation = seed_conversation(owner_id=auth_session["user_id"])
    rolled_back = failing_commit(when=lambda: bool(gateway.calls))

    response = client.post(
        "/api/conversations/send",
        json={"text": "Hello", "conversationId": str(conversation.id)},
    )
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
    assert len(gateway.calls) == 1
    assert rolled_back

    with session_factory() as session:
        messages = session.execute(select(Message)).scalars().all()
        assert [(m.role, m.content) for m in messages] == [("user", "Hello")]
        assert session.get(Conversation, conversation.id).message_ids == []


@pytest.mark.parametrize(
    "payload",
    [
        {"text": ""},
        {"text": "x" * 2001},
        {"text": "<script>alert(1)</script>"},
        {"text": "Hi", "conversationId": "not-a-uuid"},
        {},
    ],
)
def test_send_rejects_invalid_payload(client: Any, session_factory, payload: dict) -> None:
    response = client.post("/api/conversations/send", json=payload)
    assert response.status_code == 400
    assert _count(session_factory, Message) == 0


def test_send_strips_markup_from_text(client: Any) -> None:
    response = client.post(
        "/api/conversations/send",
        json={"text": "hello <script>alert(1)</script>world"},
    )
    assert response.status_code == 201
    assert response.json()["userMessage"]["text"] == "hello world"


def test_rename_conversation(client: Any) -> None:
    created = client.post("/api/conversations", json={}).json()

    response = client.patch(f"/api/conversations/{created['id']}", json={"title": "  Greeting  "})
    assert response.status_code == 200
    assert response.json()["title"] == "Greeting"

    response = client.patch(f"/api/conversations/{created['id']}", json={"title": "   "})
    assert response.status_code == 400


def test_delete_conversation_removes_messages(client: Any, session_factory) -> None:
    sent = client.post("/api/conversations/send", json={"text": "Remember this"}).json()
    conversation_id = sent["conversation"]["id"]

    response = client.delete(f"/api/conversations/{conversation_id}")
    assert response.status_code == 200
    assert response.json() == {"detail": "Conversation deleted"}

    assert client.get(f"/api/conversations/{conversation_id}").status_code == 404
    assert client.delete(f"/api/conversations/{conversation_id}").status_code == 404
    assert _count(session_factory, Message) == 0


def test_list_conversations_by_recency(client: Any) -> None:
    older = client.post("/api/conversations", json={"title": "Older"}).json()
    newer = client.post("/api/conversations", json={"title": "Newer"}).json()

    listing = client.get("/api/conversations").json()
    assert [item["id"] for item in listing] == [newer["id"], older["id"]]

    client.post(
        "/api/conversations/send",
        json={"text": "Bump", "conversationId": older["id"]},
    )
    listing = client.get("/api/conversations").json()
    assert [item["id"] for item in listing] == [older["id"], newer["id"]]


def test_conversations_are_scoped_to_owner(client: Any, seed_conversation) -> None:
    seed_conversation(owner_id="someone-else", title="Not yours")
    mine = client.post("/api/conversations", json={"title": "Mine"}).json()

    listing = client.get("/api/conversations").json()
    assert [item["id"] for item in listing] == [mine["id"]]


def test_conversation_lifecycle(client: Any) -> None:
    created = client.post("/api/conversations", json={}).json()
    conversation_id = created["id"]

    sent = client.post(
        "/api/conversations/send",
        json={"text": "Hello", "conversationId": conversation_id},
    )
    assert sent.status_code == 201
    listing = client.get("/api/conversations").json()
    assert listing[0]["title"] == settings.DEFAULT_CONVERSATION_TITLE
    assert len(listing[0]["messageIds"]) == 2

    renamed = client.patch(f"/api/conversations/{conversation_id}", json={"title": "Greeting"})
    assert renamed.json()["title"] == "Greeting"

    assert client.delete(f"/api/conversations/{conversation_id}").status_code == 200
    assert conversation_id not in [item["id"] for item in client.get("/api/conversations").json()]


def test_local_login_and_me(app: Any, session_factory) -> None:
    response = app.post(
        "/auth/local-login",
        json={"email": settings.LOCAL_LOGIN_EMAIL, "password": settings.LOCAL_LOGIN_PASSWORD},
    )
    assert response.status_code == 200
    principal_id = response.json()["principalId"]
    csrf_token = response.json()["csrfToken"]

    session_cookie = response.cookies.get(settings.SESSION_COOKIE_NAME)
    assert session_cookie
    app.cookies.set(settings.SESSION_COOKIE_NAME, session_cookie)

    me = app.get("/auth/me")
    assert me.status_code == 200
    assert me.json() == {
        "principalId": principal_id,
        "email": settings.LOCAL_LOGIN_EMAIL,
        "displayName": settings.LOCAL_LOGIN_EMAIL,
        "conversationCount": 0,
        "csrfToken": csrf_token,
    }

    created = app.post("/api/conversations", json={}, headers={"X-CSRF-Token": csrf_token})
    assert created.status_code == 201
    with session_factory() as session:
        user = session.execute(select(User)).scalar_one()
        conversation = session.get(Conversation, uuid.UUID(created.json()["id"]))
        assert str(user.id) == principal_id
        assert conversation.owner_id == principal_id

    assert app.get("/auth/me").json()["conversationCount"] == 1


def test_local_login_rejects_bad_credentials(app: Any) -> None:
    response = app.post(
        "/auth/local-login",
        json={"email": settings.LOCAL_LOGIN_EMAIL, "password": "wrong"},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_local_login_rejects_non_ascii_password(app: Any) -> None:
    response = app.post(
        "/auth/local-login",
        json={"email": settings.LOCAL_LOGIN_EMAIL, "password": "pässwört"},
    )
    assert response.status_code == 401


def test_admin_health_and_metrics(app: Any, client: Any) -> None:
    health = app.get("/admin/health")
    assert health.status_code == 200
    assert health.json() == {"status": "ok", "database": "ok"}

    client.post("/api/conversations/send", json={"text": "Count me"})
    metrics = app.get("/admin/metrics")
    assert metrics.status_code == 200
    assert "chat_completion_results_total" in metrics.text
    assert "X-Process-Time" in health.headers
