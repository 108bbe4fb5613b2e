import os
import pytest
from contextlib import contextmanager
from sqlalchemy import create_engine, event, StaticPool
from sqlalchemy.orm import sessionmaker

os.environ["CANVASCHAT_SKIP_CREATE_TABLES"] = "1"

from canvaschat.database import Base, get_db
from canvaschat.main import app
from canvaschat.routers.auth import CurrentUser, get_current_user, get_optional_user
from canvaschat.routers.chat import get_image_generator, get_text_generator
from canvaschat.services.image_generation import ImageAttempt, ImageGenerator, ImageProvider
from canvaschat.services.text_generation import TextChunk, TextResult

POLLINATIONS_URL = (
    "https://image.pollinations.ai/prompt/a%20red%20cat"
    "?width=512&height=512&seed=42&model=flux&nologo=true"
)


@contextmanager
def count_commits(db_session):
    """Context manager that counts DB commits."""
    counter = {"count": 0}

    def _after_commit(session):
        counter["count"] += 1

    event.listen(db_session, "after_commit", _after_commit)
    try:
        yield counter
    finally:
        event.remove(db_session, "after_commit", _after_commit)


class FakeTextGenerator:
    def __init__(self, result: TextResult | None = None, chunks: list[TextChunk] | None = None):
        self.result = result or TextResult(response="Hi there", success=True)
        self.chunks = chunks if chunks is not None else [
            TextChunk(text="Hi", done=False, success=True),
            TextChunk(text=" there", done=False, success=True),
            TextChunk(text="", done=True, success=True),
        ]
        self.calls: list[str] = []

    def generate(self, user_message: str) -> TextResult:
        self.calls.append(user_message)
        return self.result

    async def stream(self, user_message: str):
        self.calls.append(user_message)
        for chunk in self.chunks:
            yield chunk


class FakeProvider(ImageProvider):
    def __init__(self, name: str, ok: bool = True, url: str = "", configured: bool = True,
                 raises: Exception | None = None):
        self.name = name
        self.ok = ok
        self.url = url or f"https://images.example/{name}.png"
        self._configured = configured
        self.raises = raises
        self.calls = 0

    @property
    def configured(self) -> bool:
        return self._configured

    async def attempt(self, prompt: str) -> ImageAttempt:
        self.calls += 1
        if self.raises:
            raise self.raises
        if self.ok:
            return self._ok(self.url)
        return self._failed("boom")


@pytest.fixture(autouse=True)
def _log_dir(tmp_path, monkeypatch):
    monkeypatch.setattr("canvaschat.config.settings.log_dir", tmp_path / "logs")


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def text_generator():
    return FakeTextGenerator()


@pytest.fixture
def image_providers():
    return [
        FakeProvider("huggingface", configured=False),
        FakeProvider("pollinations", url=POLLINATIONS_URL),
        FakeProvider("openai", configured=False),
    ]


@pytest.fixture
def image_generator(image_providers):
    return ImageGenerator(image_providers)


@pytest.fixture
def current_user():
    return CurrentUser(sub="u1", name="Test User", email="u1@example.com")


@pytest.fixture
def anon_client(db_session, text_generator, image_generator):
    """Client with no logged-in user."""
    from fastapi.testclient import TestClient

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_text_generator] = lambda: text_generator
    app.dependency_overrides[get_image_generator] = lambda: image_generator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def client(anon_client, current_user):
    app.dependency_overrides[get_current_user] = lambda: current_user
    app.dependency_overrides[get_optional_user] = lambda: current_user
    yield anon_client
