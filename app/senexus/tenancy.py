"""
Holdings, firms (tenants), users and memberships.

A user belongs to firms through UserFirm rows; the role lives on the
membership. Every firm-scoped function here runs the gate first.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from app.senexus.audit import record_event
from app.senexus.bindings import install_system_modules
from app.senexus.constants import AUDIT_PAGE_SIZE, MIN_NAME_LENGTH, MIN_PASSWORD_LENGTH, THEMES
from app.senexus.errors import Conflict, Forbidden, NotFound, ValidationError, conflict_from_integrity
from app.senexus.models import AuditLog, Firm, FirmModule, FirmRole, Holding, Module, User, UserFirm
from app.senexus.rbac import RequestContext, authorize, find_membership, require_platform_admin, roles_for
from app.senexus.utils import SLUG_RE, clean_str

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_DUPLICATE_FIRM_SLUG = "A firm with this slug already exists"
_DUPLICATE_EMAIL = "A user with this email already exists"


# ---------- Firms ----------


def resolve_firm(ctx: RequestContext, firm_ref: str | int) -> Firm:
    return authorize(ctx, firm_ref, capability="firm.view").firm


def list_user_firms(ctx: RequestContext) -> list[tuple[Firm, str]]:
    user = ctx.require_user()
    rows = ctx.session.execute(
        select(Firm, UserFirm.role)
        .join(UserFirm, UserFirm.firm_id == Firm.id)
        .where(UserFirm.user_id == user.id)
        .order_by(Firm.name.asc())
    ).all()
    return [(firm, role) for firm, role in rows]


def _valid_logo(url: str) -> bool:
    p = urlparse(url)
    return p.scheme in ("http", "https") and bool(p.netloc)


def validate_firm_payload(payload: dict, *, partial: bool = False) -> tuple[dict[str, Any], dict[str, str]]:
    """Returns (fields, errors). With partial=True only the keys present are validated."""
    errors: dict[str, str] = {}
    fields: dict[str, Any] = {}

    if not partial or "name" in payload:
        name = clean_str(payload.get("name")) or ""
        if len(name) < MIN_NAME_LENGTH:
            errors["name"] = "Name must be at least 2 characters."
        fields["name"] = name

    if not partial or "slug" in payload:
        slug = clean_str(payload.get("slug")) or ""
        if len(slug) < 2:
            errors["slug"] = "Slug must be at least 2 characters."
        elif not SLUG_RE.match(slug):
            errors["slug"] = "Slug must be lowercase alphanumeric with hyphens only."
        fields["slug"] = slug

    if not partial or "holdingId" in payload:
        raw = payload.get("holdingId")
        try:
            fields["holding_id"] = int(raw)
        except (TypeError, ValueError):
            errors["holdingId"] = "Holding is required."

    if "logo" in payload:
        logo = clean_str(payload.get("logo"))
        if logo and not _valid_logo(logo):
            errors["logo"] = "Logo must be a valid URL."
        fields["logo"] = logo

    if not partial or "themeColor" in payload:
        theme = clean_str(payload.get("themeColor")) or "default"
        if theme not in THEMES:
            errors["themeColor"] = f"Theme must be one of: {', '.join(THEMES)}"
        fields["theme_color"] = theme

    return fields, errors


def _check_holding(ctx: RequestContext, holding_id: int) -> Holding:
    holding = ctx.session.get(Holding, holding_id)
    if holding is None:
        raise ValidationError("Invalid holding", details={"holdingId": "Holding not found."})
    return holding


def _flush_or_conflict(ctx: RequestContext, message: str) -> None:
    try:
        ctx.session.flush()
    except IntegrityError as e:
        ctx.session.rollback()
        raise conflict_from_integrity(e, message, status_code=400) from e


def create_firm(ctx: RequestContext, payload: dict) -> Firm:
    """
    Creates a firm, binds every active system module to it and makes the
    caller its OWNER. Duplicate slugs are reported as a 400 Conflict.
    """
    actor = require_platform_admin(ctx)
    s = ctx.session
    fields, errors = validate_firm_payload(payload)
    if errors:
        raise ValidationError("Invalid firm", details=errors)
    _check_holding(ctx, fields["holding_id"])
    if s.execute(select(Firm.id).where(Firm.slug == fields["slug"])).first() is not None:
        raise Conflict(_DUPLICATE_FIRM_SLUG, status_code=400)

    now = datetime.utcnow()
    firm = Firm(created_at=now, updated_at=now, **fields)
    s.add(firm)
    _flush_or_conflict(ctx, _DUPLICATE_FIRM_SLUG)

    s.add(UserFirm(user_id=actor.id, firm_id=firm.id, role=FirmRole.OWNER.value))
    bound = install_system_modules(s, firm, actor)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="firm.create",
        firm_id=firm.id,
        entity="Firm",
        entity_id=firm.id,
        metadata={"slug": firm.slug, "name": firm.name, "system_modules": [b.module.slug for b in bound]},
        request_id=ctx.request_id,
    )
    logger.info("firm %s created by user %s", firm.slug, actor.id)
    return firm


def update_firm(ctx: RequestContext, firm_ref: str | int, payload: dict) -> Firm:
    auth = authorize(ctx, firm_ref, capability="firm.update")
    s = ctx.session
    firm = auth.firm
    fields, errors = validate_firm_payload(payload, partial=True)
    if errors:
        raise ValidationError("Invalid firm", details=errors)
    if "holding_id" in fields:
        _check_holding(ctx, fields["holding_id"])
    new_slug = fields.get("slug")
    if new_slug and new_slug != firm.slug:
        taken = s.execute(select(Firm.id).where(Firm.slug == new_slug, Firm.id != firm.id)).first()
        if taken is not None:
            raise Conflict(_DUPLICATE_FIRM_SLUG, status_code=400)

    changes = {}
    for k, v in fields.items():
        old = getattr(firm, k)
        if old != v:
            changes[k] = {"old": old, "new": v}
            setattr(firm, k, v)
    firm.updated_at = datetime.utcnow()
    _flush_or_conflict(ctx, _DUPLICATE_FIRM_SLUG)

    record_event(
        s,
        actor=auth.user,
        action="firm.update",
        firm_id=firm.id,
        entity="Firm",
        entity_id=firm.id,
        metadata={"changes": changes},
        request_id=ctx.request_id,
    )
    return firm


def delete_firm(ctx: RequestContext, firm_ref: str | int) -> None:
    auth = authorize(ctx, firm_ref, capability="firm.delete")
    s = ctx.session
    firm = auth.firm
    actor = auth.user
    firm_id, slug = firm.id, firm.slug
    s.delete(firm)
    s.flush()
    # firm_id stays empty: the firm no longer exists.
    record_event(
        s,
        actor=actor,
        action="firm.delete",
        entity="Firm",
        entity_id=firm_id,
        metadata={"slug": slug},
        request_id=ctx.request_id,
    )
    logger.info("firm %s deleted by user %s", slug, actor.id)


def list_holding_firms(ctx: RequestContext, holding_id: int, module_slug: str | None = None) -> list[Firm]:
    """Firms of a holding the caller belongs to, optionally only those with an enabled module."""
    user = ctx.require_user()
    s = ctx.session
    member_of_holding = s.execute(
        select(UserFirm.id)
        .join(Firm, UserFirm.firm_id == Firm.id)
        .where(UserFirm.user_id == user.id, Firm.holding_id == holding_id)
    ).first()
    if member_of_holding is None:
        raise Forbidden("You do not have access to this holding")

    q = select(Firm).where(Firm.holding_id == holding_id)
    if module_slug:
        q = (
            q.join(FirmModule, FirmModule.firm_id == Firm.id)
            .join(Module, FirmModule.module_id == Module.id)
            .where(Module.slug == module_slug, FirmModule.is_enabled.is_(True), Module.is_active.is_(True))
        )
    return list(s.execute(q.order_by(Firm.name.asc())).scalars())


def list_firm_audit(ctx: RequestContext, firm_ref: str | int, limit: int = AUDIT_PAGE_SIZE) -> list[AuditLog]:
    auth = authorize(ctx, firm_ref, capability="firm.audit")
    return list(
        ctx.session.execute(
            select(AuditLog)
            .where(AuditLog.firm_id == auth.firm_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
        ).scalars()
    )


# ---------- Users & memberships ----------


def _validate_password(payload: dict, errors: dict[str, str]) -> str:
    password = payload.get("password") or ""
    confirm = payload.get("confirmPassword")
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = "Password must be at least 8 characters."
    elif confirm is not None and confirm != password:
        errors["confirmPassword"] = "Passwords do not match."
    return password if isinstance(password, str) else ""


def validate_user_payload(payload: dict) -> tuple[dict[str, Any], dict[str, str]]:
    errors: dict[str, str] = {}
    name = clean_str(payload.get("name")) or ""
    if len(name) < MIN_NAME_LENGTH:
        errors["name"] = "Name must be at least 2 characters."
    email = (clean_str(payload.get("email")) or "").lower()
    if not _EMAIL_RE.match(email):
        errors["email"] = "Invalid email address."
    role = FirmRole.parse(payload.get("role") if isinstance(payload.get("role"), str) else None)
    if role is None:
        errors["role"] = f"Role must be one of: {', '.join(r.value for r in FirmRole)}"
    firm_ids = payload.get("firmIds")
    if not isinstance(firm_ids, list) or not firm_ids:
        errors["firmIds"] = "At least one firm must be selected."
        firm_ids = []
    password = _validate_password(payload, errors)
    return {"name": name, "email": email, "role": role, "firm_ids": firm_ids, "password": password}, errors


def _check_grant(role: FirmRole, granter_role: FirmRole) -> None:
    if role == FirmRole.OWNER and granter_role != FirmRole.OWNER:
        raise Forbidden("Only an OWNER can grant the OWNER role")


def create_user(ctx: RequestContext, payload: dict) -> User:
    """Creates the user and their memberships in one transaction."""
    ctx.require_user()
    s = ctx.session
    fields, errors = validate_user_payload(payload)
    if errors:
        raise ValidationError("Invalid user", details=errors)

    role: FirmRole = fields["role"]
    firms = []
    for ref in dict.fromkeys(fields["firm_ids"]):
        auth = authorize(ctx, ref, capability="users.manage")
        _check_grant(role, auth.role)
        firms.append(auth.firm)

    if s.execute(select(User.id).where(User.email == fields["email"])).first() is not None:
        raise Conflict(_DUPLICATE_EMAIL, status_code=400)

    user = User(
        email=fields["email"],
        name=fields["name"],
        password_hash=generate_password_hash(fields["password"]),
        is_active=True,
        created_at=datetime.utcnow(),
    )
    s.add(user)
    _flush_or_conflict(ctx, _DUPLICATE_EMAIL)
    for firm in firms:
        user.memberships.append(UserFirm(firm_id=firm.id, role=role.value))
    s.flush()

    for firm in firms:
        record_event(
            s,
            actor=ctx.user,
            action="user.create",
            firm_id=firm.id,
            entity="User",
            entity_id=user.id,
            metadata={"email": user.email, "role": role.value},
            request_id=ctx.request_id,
        )
    return user


def _owner_count(ctx: RequestContext, firm_id: int) -> int:
    return len(
        ctx.session.execute(
            select(UserFirm.id).where(UserFirm.firm_id == firm_id, UserFirm.role == FirmRole.OWNER.value)
        ).all()
    )


def list_members(ctx: RequestContext, firm_ref: str | int) -> list[UserFirm]:
    auth = authorize(ctx, firm_ref, capability="firm.view")
    return list(
        ctx.session.execute(
            select(UserFirm).join(User, UserFirm.user_id == User.id).where(UserFirm.firm_id == auth.firm_id).order_by(User.email.asc())
        ).scalars()
    )


def set_membership(ctx: RequestContext, firm_ref: str | int, user_id: int, role: str | FirmRole) -> UserFirm:
    auth = authorize(ctx, firm_ref, capability="firm.members")
    s = ctx.session
    new_role = role if isinstance(role, FirmRole) else FirmRole.parse(role)
    if new_role is None:
        raise ValidationError("Invalid role", details={"role": f"Role must be one of: {', '.join(r.value for r in FirmRole)}"})
    _check_grant(new_role, auth.role)
    target = s.get(User, user_id)
    if target is None:
        raise NotFound("User not found")

    membership = find_membership(s, target.id, auth.firm_id)
    old_role = membership.role if membership else None
    if membership is None:
        membership = UserFirm(user_id=target.id, firm_id=auth.firm_id, role=new_role.value)
        s.add(membership)
    else:
        if old_role == FirmRole.OWNER.value and new_role != FirmRole.OWNER:
            if auth.role != FirmRole.OWNER:
                raise Forbidden("Only an OWNER can change another OWNER's role")
            if _owner_count(ctx, auth.firm_id) <= 1:
                raise ValidationError("A firm must keep at least one OWNER", details={"role": "Last owner."})
        membership.role = new_role.value
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="membership.set",
        firm_id=auth.firm_id,
        entity="UserFirm",
        entity_id=membership.id,
        metadata={"user_id": target.id, "old_role": old_role, "new_role": new_role.value},
        request_id=ctx.request_id,
    )
    return membership


def remove_membership(ctx: RequestContext, firm_ref: str | int, user_id: int) -> None:
    auth = authorize(ctx, firm_ref, capability="firm.members")
    s = ctx.session
    membership = find_membership(s, user_id, auth.firm_id)
    if membership is None:
        raise NotFound("Membership not found")
    if membership.role == FirmRole.OWNER.value:
        if auth.role != FirmRole.OWNER:
            raise Forbidden("Only an OWNER can remove another OWNER")
        if _owner_count(ctx, auth.firm_id) <= 1:
            raise ValidationError("A firm must keep at least one OWNER", details={"userId": "Last owner."})

    membership_id, role = membership.id, membership.role
    s.delete(membership)
    s.flush()
    record_event(
        s,
        actor=auth.user,
        action="membership.remove",
        firm_id=auth.firm_id,
        entity="UserFirm",
        entity_id=membership_id,
        metadata={"user_id": user_id, "role": role},
        request_id=ctx.request_id,
    )


def change_password(ctx: RequestContext, user_id: int, payload: dict) -> User:
    """Self-service, or OWNER/ADMIN of any firm the target belongs to."""
    actor = ctx.require_user()
    s = ctx.session
    target = s.get(User, user_id)
    if target is None:
        raise NotFound("User not found")

    if target.id != actor.id:
        managing = {r.value for r in roles_for("users.manage")}
        actor_roles = {m.firm_id: m.role for m in actor.memberships}
        if not any(actor_roles.get(m.firm_id) in managing for m in target.memberships):
            raise Forbidden("You cannot change this user's password")

    errors: dict[str, str] = {}
    password = _validate_password(payload, errors)
    if "confirmPassword" not in payload:
        errors.setdefault("confirmPassword", "Password confirmation is required.")
    if errors:
        raise ValidationError("Invalid password", details=errors)

    target.password_hash = generate_password_hash(password)
    for m in target.memberships or [None]:
        record_event(
            s,
            actor=actor,
            action="user.password_change",
            firm_id=m.firm_id if m else None,
            entity="User",
            entity_id=target.id,
            metadata={"self": target.id == actor.id},
            request_id=ctx.request_id,
        )
    return target


def _managed_firms(ctx: RequestContext) -> dict[int, FirmRole]:
    """Firms where the caller may administer users, with the caller's role there."""
    actor = ctx.require_user()
    managing = set(roles_for("users.manage"))
    out = {}
    for m in actor.memberships:
        role = FirmRole.parse(m.role)
        if role in managing:
            out[m.firm_id] = role
    return out


def list_users(ctx: RequestContext) -> list[User]:
    """Users belonging to at least one firm the caller manages."""
    managed = _managed_firms(ctx)
    if not managed:
        raise Forbidden("You cannot list users")
    q = (
        select(User)
        .join(UserFirm, UserFirm.user_id == User.id)
        .where(UserFirm.firm_id.in_(list(managed)))
        .distinct()
        .order_by(User.email.asc())
    )
    return list(ctx.session.execute(q).scalars())


def _visible_user(ctx: RequestContext, user_id: int) -> User:
    actor = ctx.require_user()
    target = ctx.session.get(User, user_id)
    if target is None:
        raise NotFound("User not found")
    if target.id != actor.id:
        managed = _managed_firms(ctx)
        if not any(m.firm_id in managed for m in target.memberships):
            raise Forbidden("You cannot manage this user")
    return target


def get_user(ctx: RequestContext, user_id: int) -> User:
    return _visible_user(ctx, user_id)


def update_user(ctx: RequestContext, user_id: int, payload: dict) -> User:
    """
    Name, email and the active flag. Roles and firm access go through the
    membership endpoints. Nobody can deactivate their own account.
    """
    actor = ctx.require_user()
    s = ctx.session
    target = _visible_user(ctx, user_id)

    errors: dict[str, str] = {}
    changes: dict[str, Any] = {}
    if "name" in payload:
        name = clean_str(payload.get("name")) or ""
        if len(name) < MIN_NAME_LENGTH:
            errors["name"] = "Name must be at least 2 characters."
        elif name != target.name:
            changes["name"] = name
    if "email" in payload:
        email = (clean_str(payload.get("email")) or "").lower()
        if not _EMAIL_RE.match(email):
            errors["email"] = "Invalid email address."
        elif email != target.email:
            changes["email"] = email
    if "isActive" in payload:
        active = payload["isActive"]
        if not isinstance(active, bool):
            errors["isActive"] = "isActive must be a boolean."
        elif active != target.is_active:
            if target.id == actor.id:
                errors["isActive"] = "You cannot deactivate your own account."
            else:
                changes["is_active"] = active
    if errors:
        raise ValidationError("Invalid user", details=errors)
    if not changes:
        return target

    if "email" in changes:
        taken = s.execute(select(User.id).where(User.email == changes["email"], User.id != target.id)).first()
        if taken is not None:
            raise Conflict(_DUPLICATE_EMAIL, status_code=400)
    audit = {k: {"old": getattr(target, k), "new": v} for k, v in changes.items()}
    for attr, value in changes.items():
        setattr(target, attr, value)
    _flush_or_conflict(ctx, _DUPLICATE_EMAIL)

    for m in target.memberships or [None]:
        record_event(
            s,
            actor=actor,
            action="user.update",
            firm_id=m.firm_id if m else None,
            entity="User",
            entity_id=target.id,
            metadata={"changes": audit},
            request_id=ctx.request_id,
        )
    return target


def delete_user(ctx: RequestContext, user_id: int) -> None:
    """
    The caller must manage every firm the target belongs to. Deleting an
    OWNER takes an OWNER, so every firm keeps at least one.
    """
    actor = ctx.require_user()
    s = ctx.session
    target = s.get(User, user_id)
    if target is None:
        raise NotFound("User not found")
    if target.id == actor.id:
        raise ValidationError("You cannot delete your own account", details={"userId": "Self."})

    managed = _managed_firms(ctx)
    memberships = list(target.memberships)
    if not memberships or any(m.firm_id not in managed for m in memberships):
        raise Forbidden("You cannot delete this user")
    if any(m.role == FirmRole.OWNER.value and managed[m.firm_id] != FirmRole.OWNER for m in memberships):
        raise Forbidden("Only an OWNER can delete another OWNER")

    email = target.email
    s.delete(target)
    s.flush()
    for m in memberships:
        record_event(
            s,
            actor=actor,
            action="user.delete",
            firm_id=m.firm_id,
            entity="User",
            entity_id=user_id,
            metadata={"email": email, "role": m.role},
            request_id=ctx.request_id,
        )
    logger.info("user %s deleted by %s", email, actor.email)
