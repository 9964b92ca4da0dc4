"""
Firm-module bindings.

A FirmModule row's existence means "installed"; ``is_enabled`` decides whether
the module is currently reachable. Lifecycle:

    Uninstalled -> Installed(enabled) <-> Installed(disabled) -> Uninstalled

Enable/disable never touches ``settings``; only uninstall discards them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.senexus.audit import record_event
from app.senexus.errors import Conflict, NotFound, ValidationError, conflict_from_integrity
from app.senexus.models import Firm, FirmModule, Module, User
from app.senexus.rbac import RequestContext, authorize
from app.senexus.utils import find_module

logger = logging.getLogger(__name__)

_ALREADY_INSTALLED = "Module is already installed for this firm"
_NOT_INSTALLED = "Module is not installed for this firm"


def get_binding(s: Session, firm_id: int, module_id: int) -> FirmModule | None:
    return s.execute(
        select(FirmModule).where(FirmModule.firm_id == firm_id, FirmModule.module_id == module_id)
    ).scalar_one_or_none()


def _require_module(s: Session, module_ref: str | int) -> Module:
    module = find_module(s, module_ref)
    if module is None:
        raise NotFound("Module not found")
    return module


def _validate_settings(settings: Any) -> dict | None:
    if settings is None:
        return None
    if not isinstance(settings, dict):
        raise ValidationError("Invalid settings", details={"settings": "Expected a JSON object."})
    return settings


def list_bindings(ctx: RequestContext, firm_ref: str | int) -> list[FirmModule]:
    auth = authorize(ctx, firm_ref, capability="modules.view")
    rows = ctx.session.execute(
        select(FirmModule)
        .join(Module, FirmModule.module_id == Module.id)
        .where(FirmModule.firm_id == auth.firm_id)
        .order_by(Module.name.asc())
    ).scalars()
    return list(rows)


def install(
    ctx: RequestContext,
    firm_ref: str | int,
    module_id: str | int,
    *,
    is_enabled: bool = True,
    settings: dict | None = None,
) -> FirmModule:
    # Role check runs before anything about the module is looked at.
    auth = authorize(ctx, firm_ref, capability="modules.manage")
    s = ctx.session
    if module_id is None or (isinstance(module_id, str) and not module_id.strip()):
        raise ValidationError("Invalid body", details={"moduleId": "moduleId is required."})
    if not isinstance(module_id, (int, str)) or isinstance(module_id, bool):
        raise ValidationError("Invalid body", details={"moduleId": "moduleId must be an id or slug."})
    settings = _validate_settings(settings)
    module = _require_module(s, module_id)

    if get_binding(s, auth.firm_id, module.id) is not None:
        raise Conflict(_ALREADY_INSTALLED)

    now = datetime.utcnow()
    binding = FirmModule(
        firm_id=auth.firm_id,
        module_id=module.id,
        is_enabled=bool(is_enabled),
        settings=settings or {},
        installed_by_user_id=auth.user.id,
        installed_at=now,
        updated_at=now,
    )
    s.add(binding)
    try:
        s.flush()
    except IntegrityError as e:
        # Concurrent install won the unique (firm_id, module_id) race.
        s.rollback()
        raise conflict_from_integrity(e, _ALREADY_INSTALLED) from e

    record_event(
        s,
        actor=auth.user,
        action="module.install",
        firm_id=auth.firm_id,
        entity="FirmModule",
        entity_id=binding.id,
        metadata={"module": module.slug, "is_enabled": binding.is_enabled},
        request_id=ctx.request_id,
    )
    logger.info("module %s installed for firm %s by user %s", module.slug, auth.firm.slug, auth.user.id)
    return binding


def update_binding(
    ctx: RequestContext,
    firm_ref: str | int,
    module_id: str | int,
    *,
    is_enabled: bool | None = None,
    settings: dict | None = None,
) -> FirmModule:
    """Partial update: only the provided fields change."""
    auth = authorize(ctx, firm_ref, capability="modules.manage")
    s = ctx.session
    settings = _validate_settings(settings)
    module = _require_module(s, module_id)
    binding = get_binding(s, auth.firm_id, module.id)
    if binding is None:
        raise NotFound(_NOT_INSTALLED)

    changes: dict[str, Any] = {}
    if is_enabled is not None and bool(is_enabled) != binding.is_enabled:
        changes["is_enabled"] = {"old": binding.is_enabled, "new": bool(is_enabled)}
        binding.is_enabled = bool(is_enabled)
    if settings is not None:
        changes["settings"] = {"old": binding.settings, "new": settings}
        binding.settings = settings
    binding.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=auth.user,
        action="module.update",
        firm_id=auth.firm_id,
        entity="FirmModule",
        entity_id=binding.id,
        metadata={"module": module.slug, "changes": changes},
        request_id=ctx.request_id,
    )
    return binding


def uninstall(ctx: RequestContext, firm_ref: str | int, module_id: str | int) -> None:
    """Not idempotent: a second call raises NotFound."""
    auth = authorize(ctx, firm_ref, capability="modules.manage")
    s = ctx.session
    module = _require_module(s, module_id)
    binding = get_binding(s, auth.firm_id, module.id)
    if binding is None:
        raise NotFound(_NOT_INSTALLED)

    binding_id = binding.id
    s.delete(binding)
    s.flush()
    record_event(
        s,
        actor=auth.user,
        action="module.uninstall",
        firm_id=auth.firm_id,
        entity="FirmModule",
        entity_id=binding_id,
        metadata={"module": module.slug},
        request_id=ctx.request_id,
    )
    logger.info("module %s uninstalled for firm %s by user %s", module.slug, auth.firm.slug, auth.user.id)


def module_status(s: Session, firm_id: int, module_slug: str) -> dict[str, Any]:
    binding = s.execute(
        select(FirmModule)
        .join(Module, FirmModule.module_id == Module.id)
        .where(FirmModule.firm_id == firm_id, Module.slug == module_slug)
    ).scalar_one_or_none()
    if binding is None:
        return {"isInstalled": False, "isEnabled": False, "installedAt": None, "settings": None}
    return {
        "isInstalled": True,
        "isEnabled": binding.is_enabled,
        "installedAt": binding.installed_at.isoformat(),
        "settings": binding.settings or {},
    }


def enabled_bindings(s: Session, firm_id: int) -> list[FirmModule]:
    """Enabled bindings of active modules, ordered by module name."""
    rows = s.execute(
        select(FirmModule)
        .join(Module, FirmModule.module_id == Module.id)
        .where(FirmModule.firm_id == firm_id, FirmModule.is_enabled.is_(True), Module.is_active.is_(True))
        .order_by(Module.name.asc())
    ).scalars()
    return list(rows)


def install_system_modules(s: Session, firm: Firm, installer: User | None) -> list[FirmModule]:
    """Bind every active system module to a new firm (enabled)."""
    modules = s.execute(
        select(Module).where(Module.is_system.is_(True), Module.is_active.is_(True))
    ).scalars().all()
    created = []
    now = datetime.utcnow()
    for module in modules:
        if firm.id is not None and get_binding(s, firm.id, module.id) is not None:
            continue
        b = FirmModule(
            firm=firm,
            module=module,
            is_enabled=True,
            settings={},
            installed_by_user_id=installer.id if installer else None,
            installed_at=now,
            updated_at=now,
        )
        s.add(b)
        created.append(b)
    return created


def install_in_all_firms(s: Session, module: Module, installer: User | None) -> int:
    """Bind a (system) module to every firm that lacks a binding for it."""
    bound = set(s.execute(select(FirmModule.firm_id).where(FirmModule.module_id == module.id)).scalars())
    now = datetime.utcnow()
    n = 0
    for firm in s.execute(select(Firm)).scalars().all():
        if firm.id in bound:
            continue
        s.add(
            FirmModule(
                firm_id=firm.id,
                module=module,
                is_enabled=True,
                settings={},
                installed_by_user_id=installer.id if installer else None,
                installed_at=now,
                updated_at=now,
            )
        )
        n += 1
    return n
