from __future__ import annotations

import base64
import json
import sys
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Sequence

import itsdangerous
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.api import routes_conversations
from backend.app.chat.orchestrator import ConversationOrchestrator
from backend.app.core import db as db_module
from backend.app.core.config import settings
from backend.app.llm.completion_client import Completion, CompletionUsage
from backend.app.main import create_app
from backend.app.models import Base

CSRF_TOKEN = "test-csrf-token"


class FakeGateway:
    """Completion gateway double recording every turn list it receives."""

    def __init__(self, reply: str = "Hello from the assistant") -> None:
        self.reply = reply
        self.error: BaseException | None = None
        self.calls: list[list[dict[str, str]]] = []

    async def complete(
        self,
        turns: Sequence[dict[str, str]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        self.calls.append([dict(turn) for turn in turns])
        if self.error is not None:
            raise self.error
        return Completion(
            text=self.reply,
            model="fake-model",
            usage=CompletionUsage(prompt_tokens=3, completion_tokens=5, total_tokens=8),
        )


@pytest.fixture()
def engine() -> Iterator:
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _):  # pragma: no cover - sqlite setup
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)


def _session_ctx(factory: sessionmaker):
    def _get_session() -> Iterator[Session]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _get_session


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def orchestrator(session_factory: sessionmaker, gateway: FakeGateway) -> ConversationOrchestrator:
    return ConversationOrchestrator(session_factory, gateway)


@pytest.fixture()
def app(
    monkeypatch: pytest.MonkeyPatch,
    session_factory: sessionmaker,
    orchestrator: ConversationOrchestrator,
) -> TestClient:
    monkeypatch.setattr(db_module, "SessionLocal", session_factory)

    app = create_app()
    app.dependency_overrides[db_module.get_session] = _session_ctx(session_factory)
    app.dependency_overrides[routes_conversations.get_orchestrator] = lambda: orchestrator
    return TestClient(app)


def make_session_cookie(user_id: str, csrf_token: str = CSRF_TOKEN) -> str:
    signer = itsdangerous.TimestampSigner(settings.SESSION_SECRET)
    payload = base64.b64encode(
        json.dumps({"user_id": user_id, "csrf_token": csrf_token}).encode("utf-8")
    )
    return signer.sign(payload).decode("utf-8")


@pytest.fixture()
def auth_session() -> dict[str, str]:
    user_id = str(uuid.uuid4())
    return {"cookie": make_session_cookie(user_id), "user_id": user_id, "csrf_token": CSRF_TOKEN}


@pytest.fixture()
def client(app: TestClient, auth_session: dict[str, str]) -> TestClient:
    """Test client carrying an authenticated session and the CSRF header."""

    app.cookies.set(settings.SESSION_COOKIE_NAME, auth_session["cookie"])
    app.headers["X-CSRF-Token"] = auth_session["csrf_token"]
    return app


@pytest.fixture()
def failing_commit(monkeypatch: pytest.MonkeyPatch):
    """Make ``Session.commit`` raise ``OperationalError`` while ``when()`` is true.

    Returns the list of sessions rolled back while the patch is active.
    """

    rolled_back: list[Session] = []
    original_commit = Session.commit
    original_rollback = Session.rollback

    def _install(when=lambda: True) -> list[Session]:
        def _commit(self: Session) -> None:
            if when():
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            original_commit(self)

        def _rollback(self: Session) -> None:
            rolled_back.append(self)
            original_rollback(self)

        monkeypatch.setattr(Session, "commit", _commit)
        monkeypatch.setattr(Session, "rollback", _rollback)
        return rolled_back

    return _install


@pytest.fixture()
def seed_conversation(session_factory: sessionmaker):
    """Insert a conversation directly, bypassing the API."""

    from backend.app.models import Conversation

    def _seed(owner_id: str, title: str = "Seeded") -> Any:
        with session_factory() as session:
            conversation = Conversation(owner_id=owner_id, title=title, message_ids=[])
            session.add(conversation)
            session.commit()
            return conversation

    return _seed
