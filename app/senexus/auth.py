from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy import select
from werkzeug.security import check_password_hash

from app.senexus.audit import record_event
from app.senexus.db import db_session
from app.senexus.models import User
from app.senexus.rbac import current_context, require_login
from app.senexus.security import ensure_csrf_token
from app.senexus.serializers import firm_to_dict, user_to_dict
from app.senexus.tenancy import list_user_firms

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _credentials() -> tuple[str, str]:
    if request.is_json:
        body = request.get_json(silent=True) or {}
        if not isinstance(body, dict):
            body = {}
        return str(body.get("email") or "").strip().lower(), str(body.get("password") or "")
    return (request.form.get("email") or "").strip().lower(), request.form.get("password") or ""


@bp.get("/csrf")
def csrf():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.post("/login")
def login():
    email, password = _credentials()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"error": "Too many login attempts. Please wait 5 minutes."}), 429
    _record_attempt(ip)

    s = db_session()
    user = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity="User",
            entity_id=email or None,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        current_app.logger.info("login failed (email=%s ip=%s)", email, ip)
        return jsonify({"error": "Invalid credentials"}), 401

    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    ensure_csrf_token()
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity="User", entity_id=user.id)
    s.commit()
    return jsonify({"user": user_to_dict(user), "csrf_token": session["csrf_token"]})


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity="User", entity_id=user.id)
        s.commit()
    session.clear()
    return jsonify({"success": True})


@bp.get("/me")
@require_login
def me():
    ctx = current_context()
    firms = [firm_to_dict(f, role=role) for f, role in list_user_firms(ctx)]
    return jsonify({"user": user_to_dict(ctx.require_user()), "firms": firms})
