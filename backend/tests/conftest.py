"""Shared fixtures: in-memory database, scripted AI service, authenticated HTTP client."""

from collections.abc import AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from branched.core.deps import get_response_worker
from branched.core.locks import SessionLockRegistry
from branched.core.security import create_access_token
from branched.database import Base, get_db, init_db
from branched.main import app
from branched.services.base import AIService
from branched.services.events import NodeEventBus, get_event_bus
from branched.services.response_worker import ResponseWorker


class ScriptedAIService(AIService):
    """Answers from a lookup table keyed by the last user message."""

    def __init__(self, replies: dict[str, str] | None = None, error: Exception | None = None):
        self.replies = dict(replies or {})
        self.error = error
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.calls.append([dict(message) for message in messages])
        if self.error is not None:
            raise self.error
        question = messages[-1]["content"]
        return self.replies.get(question, f"echo: {question}")


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database shared by every connection of the test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def locks() -> SessionLockRegistry:
    return SessionLockRegistry(timeout=1.0)


@pytest.fixture
def ai_service() -> ScriptedAIService:
    return ScriptedAIService(replies={"Hi": "Hello!"})


@pytest.fixture
def event_bus() -> NodeEventBus:
    return NodeEventBus(maxsize=10)


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    """Build an Authorization header for a user id."""

    def _headers(user_id: str) -> dict[str, str]:
        token = create_access_token(data={"sub": user_id})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest_asyncio.fixture
async def client(
    session_factory: sessionmaker,
    ai_service: ScriptedAIService,
    event_bus: NodeEventBus,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test database and the scripted AI service."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_bus] = lambda: event_bus
    app.dependency_overrides[get_response_worker] = lambda: ResponseWorker(
        ai_service, session_factory=session_factory, event_bus=event_bus, timeout=5.0
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
