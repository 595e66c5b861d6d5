import os
import sys
import types
import uuid
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# 1. Set required env vars BEFORE app imports to satisfy pydantic-settings Fail Fast
os.environ["DATABASE_URL"] = "sqlite:///./dummy.db"
os.environ["SUPABASE_URL"] = "http://test"
os.environ["SUPABASE_KEY"] = "testkey"
# Keep third-party integrations off so results are deterministic
os.environ["GEMINI_API_KEY"] = ""
os.environ["GOOGLE_MAPS_API_KEY"] = ""
os.environ["SMTP_HOST"] = ""


# 2. Mock Supabase before it's imported by the app
class FakeBucket:
    def __init__(self, name):
        self.name = name
        self.uploaded = {}

    def upload(self, file_name, data, file_options=None):
        self.uploaded[file_name] = data
        return {"error": None}

    def get_public_url(self, file_name):
        return f"https://storage.example.com/{self.name}/{file_name}"


class FakeStorage:
    def __init__(self):
        self.buckets = {}

    def from_(self, name):
        return self.buckets.setdefault(name, FakeBucket(name))


class FakeAuth:
    def __init__(self):
        self.accounts = {}  # email -> (password, user)
        self.sessions = {}  # access token -> user

    def sign_up(self, credentials):
        user = SimpleNamespace(
            id=str(uuid.uuid4()),
            email=credentials["email"],
            user_metadata=credentials.get("options", {}).get("data", {}),
            app_metadata={"provider": "email"},
        )
        self.accounts[credentials["email"]] = (credentials["password"], user)
        return SimpleNamespace(user=user)

    def sign_in_with_password(self, credentials):
        account = self.accounts.get(credentials["email"])
        if not account or account[0] != credentials["password"]:
            raise Exception("Invalid login credentials")
        user = account[1]
        token = f"token-{user.id}"
        self.sessions[token] = user
        return SimpleNamespace(session=SimpleNamespace(access_token=token), user=user)

    def get_user(self, token):
        user = self.sessions.get(token)
        if not user:
            raise Exception("invalid JWT: unable to parse or verify signature")
        return SimpleNamespace(user=user)

    def reset(self):
        self.accounts.clear()
        self.sessions.clear()


def make_fake_supabase_module():
    mod = types.ModuleType("supabase")

    def create_client(url, key):
        return SimpleNamespace(storage=FakeStorage(), auth=FakeAuth())

    mod.create_client = create_client
    mod.Client = SimpleNamespace
    return mod


sys.modules["supabase"] = make_fake_supabase_module()

# 3. Import app modules safely
import main as app_module  # noqa: E402
from niramay.core.database import get_db  # noqa: E402
from niramay.models import Base, Profile  # noqa: E402
from niramay.services.media import supabase  # noqa: E402


@pytest.fixture
def session_factory(tmp_path):
    """Isolated SQLite database per test."""
    db_path = tmp_path / "test.db"
    test_engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=test_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app_module.app.dependency_overrides[get_db] = override_get_db
    supabase.auth.reset()
    # Entering the context runs the lifespan, which sets up app.state
    with TestClient(app_module.app) as test_client:
        yield test_client
    app_module.app.dependency_overrides.clear()


@pytest.fixture
def make_profile(db):
    def _make(role="citizen", **fields):
        fields.setdefault("name", f"{role.title()} {uuid.uuid4().hex[:6]}")
        fields.setdefault("email", f"{uuid.uuid4().hex[:8]}@gmail.com")
        if role == "subworker":
            fields.setdefault("status", "available")
        profile = Profile(role=role, **fields)
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return profile

    return _make


@pytest.fixture
def auth_headers():
    """Registers a session for an existing profile with the fake Supabase auth."""
    def _headers(profile):
        token = f"token-{profile.id}"
        supabase.auth.sessions[token] = SimpleNamespace(id=profile.id, email=profile.email, user_metadata={})
        return {"Authorization": f"Bearer {token}"}

    return _headers
