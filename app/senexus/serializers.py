"""JSON shapes returned by the API (camelCase keys, ISO dates)."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from app.senexus.models import AuditLog, Firm, FirmModule, Holding, Module, User, UserFirm


def _iso(v: date | datetime | None) -> str | None:
    return v.isoformat() if v is not None else None


def holding_to_dict(h: Holding) -> dict[str, Any]:
    return {"id": h.id, "name": h.name, "description": h.description}


def firm_to_dict(f: Firm, *, role: str | None = None) -> dict[str, Any]:
    out = {
        "id": f.id,
        "slug": f.slug,
        "name": f.name,
        "logo": f.logo,
        "themeColor": f.theme_color,
        "holdingId": f.holding_id,
        "createdAt": _iso(f.created_at),
        "updatedAt": _iso(f.updated_at),
    }
    if role is not None:
        out["role"] = role
    return out


def user_to_dict(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "emailVerified": _iso(u.email_verified_at),
        "isActive": u.is_active,
        "createdAt": _iso(u.created_at),
    }


def membership_to_dict(m: UserFirm) -> dict[str, Any]:
    return {
        "id": m.id,
        "userId": m.user_id,
        "firmId": m.firm_id,
        "role": m.role,
        "firm": firm_to_dict(m.firm),
    }


def module_to_dict(m: Module, *, counts: tuple[int, int] | None = None) -> dict[str, Any]:
    out = {
        "id": m.id,
        "slug": m.slug,
        "name": m.name,
        "description": m.description,
        "version": m.version,
        "icon": m.icon,
        "basePath": m.base_path,
        "isSystem": m.is_system,
        "isActive": m.is_active,
        "permittedRoles": list(m.permitted_roles or []),
        "metadata": m.meta or {},
        "createdAt": _iso(m.created_at),
    }
    if counts is not None:
        out["installCount"], out["enabledCount"] = counts
    return out


def binding_to_dict(b: FirmModule) -> dict[str, Any]:
    return {
        "id": b.id,
        "firmId": b.firm_id,
        "moduleId": b.module_id,
        "isEnabled": b.is_enabled,
        "settings": b.settings or {},
        "installedBy": b.installed_by_user_id,
        "installedAt": _iso(b.installed_at),
        "updatedAt": _iso(b.updated_at),
        "module": module_to_dict(b.module) if b.module is not None else None,
    }


def audit_to_dict(ev: AuditLog) -> dict[str, Any]:
    return {
        "id": ev.id,
        "createdAt": _iso(ev.created_at),
        "requestId": ev.request_id,
        "firmId": ev.firm_id,
        "actorId": ev.actor_id,
        "actorEmail": ev.actor_email,
        "action": ev.action,
        "entity": ev.entity,
        "entityId": ev.entity_id,
        "reason": ev.reason,
        "metadata": ev.metadata_json,
        "clientIp": ev.client_ip,
    }
