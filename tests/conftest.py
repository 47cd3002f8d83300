from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.samrambhaka import auth, create_app
from app.samrambhaka.db import session_scope
from app.samrambhaka.models import Base, Role, User
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.rbac import seed_roles_and_permissions

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def _reset_login_attempts():
    auth._login_attempts.clear()
    yield
    auth._login_attempts.clear()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.delenv("CSRF_ENABLED", raising=False)
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "PUBLIC_BASE_URL"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        seed_roles_and_permissions(s)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(app):
    """Create a user + profile directly in the DB; returns the user id."""

    def _make(login_email: str, *, full_name: str = "Test User", roles: tuple[str, ...] = (), **profile_fields) -> int:
        now = datetime.utcnow()
        with session_scope(app) as s:
            u = User(email=login_email, password_hash=generate_password_hash(PASSWORD), is_active=True, created_at=now)
            for key in roles:
                u.roles.append(s.query(Role).filter(Role.key == key).one())
            s.add(u)
            s.flush()
            s.add(Profile(id=u.id, full_name=full_name, created_at=now, updated_at=now, **profile_fields))
            return u.id

    return _make


@pytest.fixture()
def login_as(app):
    """Fresh test client signed in as `email`."""

    def _login(email: str):
        c = app.test_client()
        r = c.post("/auth/login", json={"email": email, "password": PASSWORD})
        assert r.status_code == 200, r.json
        return c

    return _login
