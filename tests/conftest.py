"""
Shared fixtures: a throwaway SQLite app, one holding with two firms
("alpha", "beta") and one user per role in "alpha".
"""

from __future__ import annotations

import pytest
from werkzeug.security import generate_password_hash

from app.senexus import auth, create_app
from app.senexus.bindings import install_system_modules
from app.senexus.db import session_scope
from app.senexus.models import Base, Firm, FirmRole, Holding, User, UserFirm
from app.senexus.rbac import RequestContext
from app.senexus.registry import sync_manifests

PASSWORD = "password123"

ROLE_USERS = {
    "owner@example.com": FirmRole.OWNER,
    "admin@example.com": FirmRole.ADMIN,
    "manager@example.com": FirmRole.MANAGER,
    "staff@example.com": FirmRole.STAFF,
    "viewer@example.com": FirmRole.VIEWER,
}


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    auth._login_attempts.clear()

    app = create_app()
    app.config["TESTING"] = True
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def seeded(app):
    """Returns {"holding": id, "alpha": id, "beta": id, "users": {email: id}}."""
    out: dict = {"users": {}}
    with session_scope(app) as s:
        sync_manifests(s)
        holding = Holding(name="Groupe Test")
        s.add(holding)
        s.flush()
        alpha = Firm(slug="alpha", name="Alpha", holding_id=holding.id, theme_color="default")
        beta = Firm(slug="beta", name="Beta", holding_id=holding.id, theme_color="blue")
        s.add_all([alpha, beta])
        s.flush()

        for email, role in ROLE_USERS.items():
            u = User(email=email, name=email.split("@")[0].title(), password_hash=generate_password_hash(PASSWORD), is_active=True)
            s.add(u)
            s.flush()
            s.add(UserFirm(user_id=u.id, firm_id=alpha.id, role=role.value))
            out["users"][email] = u.id

        outsider = User(email="outsider@example.com", name="Outsider", password_hash=generate_password_hash(PASSWORD), is_active=True)
        s.add(outsider)
        s.flush()
        out["users"][outsider.email] = outsider.id
        # The owner also runs beta, so transfers between the two firms can be exercised.
        s.add(UserFirm(user_id=out["users"]["owner@example.com"], firm_id=beta.id, role=FirmRole.OWNER.value))

        install_system_modules(s, alpha, None)
        install_system_modules(s, beta, None)
        s.flush()
        out.update(holding=holding.id, alpha=alpha.id, beta=beta.id)
    return out


@pytest.fixture()
def client(app, seeded):
    return app.test_client()


@pytest.fixture()
def login(client, seeded):
    """login(email) -> headers carrying the CSRF token for mutating requests."""

    def _login(email: str) -> dict[str, str]:
        with client.session_transaction() as sess:
            sess["user_id"] = seeded["users"][email]
            sess["csrf_token"] = "test-csrf-token"
        return {"X-CSRF-Token": "test-csrf-token"}

    return _login


@pytest.fixture()
def db(app, seeded):
    s = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def ctx_for(db, seeded):
    """ctx_for(email) -> RequestContext for calling services directly."""

    def _ctx(email: str) -> RequestContext:
        return RequestContext(session=db, user=db.get(User, seeded["users"][email]), request_id="test")

    return _ctx
