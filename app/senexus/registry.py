"""
Module catalog.

Modules are shared across firms; a firm reaches one only through a FirmModule
binding. System modules are not special-cased by the gate: they are bound to
every firm when the firm is created and when the module is registered.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.senexus.audit import record_event
from app.senexus.bindings import install_in_all_firms
from app.senexus.errors import Conflict, NotFound, ValidationError, conflict_from_integrity
from app.senexus.models import FirmModule, FirmRole, Module
from app.senexus.modules.crm.config import CRM_MANIFEST
from app.senexus.modules.hr.config import HR_MANIFEST
from app.senexus.modules.manifest import ModuleManifest
from app.senexus.rbac import RequestContext, require_platform_admin
from app.senexus.utils import SLUG_RE, clean_str, find_module

logger = logging.getLogger(__name__)

BUILTIN_MANIFESTS: tuple[ModuleManifest, ...] = (HR_MANIFEST, CRM_MANIFEST)

_DUPLICATE_SLUG = "A module with this slug already exists"


def _validate_roles(raw: Any, field: str, errors: dict[str, str]) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        errors[field] = "Expected a list of roles."
        return []
    out = []
    for r in raw:
        role = FirmRole.parse(r if isinstance(r, str) else None)
        if role is None:
            errors[field] = f"Unknown role {r!r}."
            return []
        if role.value not in out:
            out.append(role.value)
    return out


def _validate_routes(raw: Any, errors: dict[str, str]) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        errors["routes"] = "Expected a list of route records."
        return []
    out = []
    for i, r in enumerate(raw):
        if not isinstance(r, dict) or not isinstance(r.get("path"), str) or not clean_str(r.get("name")):
            errors["routes"] = f"Route #{i + 1} needs a path and a name."
            return []
        req_errors: dict[str, str] = {}
        required = _validate_roles(r.get("requiredRoles"), "routes", req_errors)
        if req_errors:
            errors["routes"] = f"Route #{i + 1}: {req_errors['routes']}"
            return []
        out.append(
            {
                "path": r["path"].strip().strip("/"),
                "name": clean_str(r.get("name")),
                "icon": clean_str(r.get("icon")),
                "requiredRoles": required,
            }
        )
    return out


def validate_module_payload(payload: dict) -> tuple[dict[str, Any], dict[str, str]]:
    """Normalize a module registration body. Returns (fields, errors)."""
    errors: dict[str, str] = {}
    slug = (payload.get("slug") or "").strip() if isinstance(payload.get("slug"), str) else ""
    name = clean_str(payload.get("name"))
    base_path = clean_str(payload.get("basePath"))

    if not slug:
        errors["slug"] = "Slug is required."
    elif not SLUG_RE.match(slug):
        errors["slug"] = "Slug must contain only lowercase letters, digits and dashes."
    if not name:
        errors["name"] = "Name is required."
    if not base_path:
        errors["basePath"] = "basePath is required."

    metadata = payload.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        errors["metadata"] = "Expected a JSON object."
        metadata = None

    fields = {
        "slug": slug,
        "name": name,
        "base_path": base_path,
        "description": clean_str(payload.get("description")),
        "version": clean_str(payload.get("version")) or "1.0.0",
        "icon": clean_str(payload.get("icon")),
        "is_system": bool(payload.get("isSystem", False)),
        "is_active": bool(payload.get("isActive", True)),
        "permitted_roles": _validate_roles(payload.get("permittedRoles"), "permittedRoles", errors),
        "routes": _validate_routes(payload.get("routes"), errors),
        "metadata": metadata or {},
    }
    return fields, errors


def _slug_taken(s: Session, slug: str) -> bool:
    return s.execute(select(Module.id).where(Module.slug == slug)).first() is not None


def register_module(
    ctx: RequestContext,
    *,
    slug: str,
    name: str,
    base_path: str,
    routes: list[dict[str, Any]] | None = None,
    permitted_roles: list[str] | None = None,
    is_system: bool = False,
    is_active: bool = True,
    description: str | None = None,
    version: str = "1.0.0",
    icon: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Module:
    actor = require_platform_admin(ctx)
    s = ctx.session
    if not slug or not SLUG_RE.match(slug):
        raise ValidationError(
            "Invalid module slug",
            details={"slug": "Slug must contain only lowercase letters, digits and dashes."},
        )
    if _slug_taken(s, slug):
        raise Conflict(_DUPLICATE_SLUG)

    meta = dict(metadata or {})
    meta["routes"] = list(routes or [])
    now = datetime.utcnow()
    module = Module(
        slug=slug,
        name=name,
        description=description,
        version=version or "1.0.0",
        icon=icon,
        base_path=base_path,
        is_system=is_system,
        is_active=is_active,
        permitted_roles=list(permitted_roles or []),
        meta=meta,
        created_at=now,
        updated_at=now,
    )
    s.add(module)
    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise conflict_from_integrity(e, _DUPLICATE_SLUG) from e

    bound = install_in_all_firms(s, module, actor) if is_system and is_active else 0
    record_event(
        s,
        actor=actor,
        action="module.register",
        entity="Module",
        entity_id=module.id,
        metadata={"slug": slug, "is_system": is_system, "auto_installed": bound},
        request_id=ctx.request_id,
    )
    logger.info("module %s registered (system=%s, bound to %d firms)", slug, is_system, bound)
    return module


def install_counts(s: Session) -> dict[int, tuple[int, int]]:
    rows = s.execute(
        select(
            FirmModule.module_id,
            func.count(FirmModule.id),
            func.sum(case((FirmModule.is_enabled.is_(True), 1), else_=0)),
        ).group_by(FirmModule.module_id)
    ).all()
    return {module_id: (int(total), int(enabled or 0)) for module_id, total, enabled in rows}


def list_modules(ctx: RequestContext) -> list[tuple[Module, int, int]]:
    """All modules ordered by name, with (installCount, enabledCount)."""
    ctx.require_user()
    s = ctx.session
    counts = install_counts(s)
    modules = s.execute(select(Module).order_by(Module.name.asc())).scalars().all()
    return [(m, *counts.get(m.id, (0, 0))) for m in modules]


def get_module(s: Session, module_ref: str | int) -> Module:
    module = find_module(s, module_ref)
    if module is None:
        raise NotFound("Module not found")
    return module


def sync_manifests(s: Session, manifests: tuple[ModuleManifest, ...] = BUILTIN_MANIFESTS) -> list[Module]:
    """
    Upsert built-in module manifests into the catalog. Idempotent.

    The catalog row is refreshed from the manifest on every run; ``is_active``
    is left alone on existing rows so an operator can retire a module.
    A newly created system module is bound to every existing firm.
    """
    out = []
    for manifest in manifests:
        fields = manifest.catalog_fields()
        module = s.execute(select(Module).where(Module.slug == manifest.slug)).scalar_one_or_none()
        created = module is None
        if created:
            module = Module(slug=manifest.slug, is_active=True, created_at=datetime.utcnow())
            s.add(module)
        for k, v in fields.items():
            setattr(module, k, v)
        module.updated_at = datetime.utcnow()
        s.flush()
        if created and module.is_system:
            install_in_all_firms(s, module, None)
        logger.info("manifest %s %s", manifest.slug, "created" if created else "refreshed")
        out.append(module)
    return out
