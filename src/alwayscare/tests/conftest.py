import io
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image
from sqlalchemy.orm import Session

from src.alwayscare.main import app as fastapi_app
from src.alwayscare.api.deps import get_db, get_enqueuer, get_upload_storage
from src.alwayscare.core.security import owner_id_from_token
from src.alwayscare.domain.services.risk_assessment import assess
from src.alwayscare.domain.value_objects import AnalysisResult, Detection
from src.alwayscare.infra.db import init_db, make_engine, make_session_factory
from src.alwayscare.infra.storage import UploadStorage
from src.alwayscare.infra.uow import SqlAlchemyUoW


@pytest.fixture
def anyio_backend():
    return "asyncio"


class StubAnalyzer:
    """
    Analyzer double. `outcomes` maps an artifact location to a list of
    (name, confidence) pairs, an exception to raise, or a callable taking the
    location and returning either of those.
    """

    def __init__(self, outcomes: Optional[dict[str, Any]] = None, default: Any = ()):
        self.outcomes = dict(outcomes or {})
        self.default = default
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def analyze(self, artifact_location: str) -> AnalysisResult:
        with self._lock:
            self.calls.append(artifact_location)

        outcome = self.outcomes.get(artifact_location, self.default)
        if callable(outcome):
            outcome = outcome(artifact_location)
        if isinstance(outcome, BaseException):
            raise outcome
        return assess([Detection(name, conf) for name, conf in outcome])


@pytest.fixture
def make_analyzer():
    return StubAnalyzer


@pytest.fixture
def engine(tmp_path):
    """
    File-backed sqlite per test: separate sessions behave like separate
    connections, which the claim tests rely on.
    """
    eng = make_engine(f"sqlite:///{tmp_path / 'alwayscare-test.db'}")
    init_db(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db_session(session_factory) -> Session:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def uow(db_session) -> SqlAlchemyUoW:
    return SqlAlchemyUoW(db_session)


@pytest.fixture
def make_user(uow):
    def _make(email: Optional[str] = None) -> int:
        user = uow.users.create(email or f"u_{uuid.uuid4().hex[:8]}@test.local", "not-a-real-hash")
        uow.commit()
        return user.id

    return _make


@pytest.fixture
def owner(make_user) -> int:
    return make_user()


@pytest.fixture
def make_record(uow, owner):
    """
    Creates pending records with strictly increasing submission times so
    FIFO order is well defined.
    """
    base = datetime.now(timezone.utc) - timedelta(minutes=5)
    counter = {"n": 0}

    def _make(location: Optional[str] = None, owner_id: Optional[int] = None, submitted_at: Optional[datetime] = None):
        counter["n"] += 1
        rec = uow.records.create(
            owner_id=owner_id or owner,
            artifact_location=location or f"img-{counter['n']}.png",
            original_filename=f"photo-{counter['n']}.png",
            submitted_at=submitted_at or base + timedelta(seconds=counter["n"]),
        )
        uow.commit()
        return rec

    return _make


@pytest.fixture
def status_of(session_factory) -> Callable[[int], Any]:
    """Reads a record through a fresh session, as another process would."""
    def _read(record_id: int):
        db = session_factory()
        try:
            return SqlAlchemyUoW(db).records.get_by_id(record_id)
        finally:
            db.close()

    return _read


@pytest.fixture
def image_file(tmp_path):
    def _make(name: str = "photo.png", size: tuple[int, int] = (64, 48), fmt: str = "PNG") -> str:
        path = tmp_path / name
        Image.new("RGB", size, color=(200, 180, 90)).save(path, format=fmt)
        return str(path)

    return _make


# API
@pytest.fixture
def enqueued() -> list[int]:
    return []


@pytest.fixture
def app(session_factory, tmp_path, enqueued):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    async def _enqueue(record_id: int) -> None:
        enqueued.append(record_id)

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_upload_storage] = lambda: UploadStorage(root=tmp_path / "uploads")
    fastapi_app.dependency_overrides[get_enqueuer] = lambda: _enqueue
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_headers():
    def _make(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
async def register_user(client):
    """Registers through the API and returns (token, user_id)."""
    async def _call(email: Optional[str] = None, password: str = "pass1234"):
        email = email or f"u_{uuid.uuid4().hex[:8]}@test.local"
        r = await client.post("/api/auth/register", json={"email": email, "password": password})
        assert r.status_code == 201, r.text
        token = r.json()["access_token"]
        return token, owner_id_from_token(token)

    return _call


@pytest.fixture
def png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (32, 32), color=(10, 120, 200)).save(buf, format="PNG")
    return buf.getvalue()
