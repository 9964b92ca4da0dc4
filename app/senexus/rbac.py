"""
Authorization gate.

Every firm-scoped operation goes through ``authorize()``: identity, then firm
membership, then the operation's role allow-list, then (for module routes) the
firm's binding for that module and the module's own permitted roles.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import g
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.senexus.errors import AppError, Forbidden, ModuleDisabled, ModuleNotInstalled, Unauthenticated
from app.senexus.models import ALL_ROLES, Firm, FirmModule, FirmRole, Module, User, UserFirm
from app.senexus.utils import find_firm

_OWNER_ADMIN = frozenset({FirmRole.OWNER, FirmRole.ADMIN})
_HR_ROLES = frozenset({FirmRole.OWNER, FirmRole.ADMIN, FirmRole.MANAGER})
_CRM_ROLES = frozenset({FirmRole.OWNER, FirmRole.ADMIN, FirmRole.MANAGER, FirmRole.STAFF})

# Operation -> roles allowed to perform it within a firm.
CAPABILITIES: dict[str, frozenset[FirmRole]] = {
    "platform.admin": _OWNER_ADMIN,  # held in at least one firm
    "firm.view": ALL_ROLES,
    "firm.update": _OWNER_ADMIN,
    "firm.delete": frozenset({FirmRole.OWNER}),
    "firm.members": _OWNER_ADMIN,
    "firm.audit": _OWNER_ADMIN,
    "users.manage": _OWNER_ADMIN,
    "modules.view": ALL_ROLES,
    "modules.manage": _OWNER_ADMIN,
    "navigation.view": ALL_ROLES,
    "hr.employees.view": _HR_ROLES,
    "hr.employees.create": _HR_ROLES,
    "hr.employees.import": _HR_ROLES,
    "hr.employees.update": _HR_ROLES,
    "hr.employees.delete": _OWNER_ADMIN,
    "hr.documents.view": _HR_ROLES,
    "hr.documents.upload": _HR_ROLES,
    "hr.documents.verify": _HR_ROLES,
    "hr.contracts.view": _HR_ROLES,
    "hr.contracts.create": _HR_ROLES,
    "hr.contracts.update": _HR_ROLES,
    "hr.contracts.renew": _HR_ROLES,
    "hr.contracts.terminate": _HR_ROLES,
    "hr.contracts.delete": _OWNER_ADMIN,
    "hr.transfers.view": _HR_ROLES,
    "hr.transfers.request": _HR_ROLES,
    "hr.transfers.decide": _HR_ROLES,
    "crm.clients.view": _CRM_ROLES,
    "crm.clients.create": _CRM_ROLES,
}

_NO_MEMBERSHIP = "You do not have access to this firm"


@dataclass(frozen=True)
class RequestContext:
    """Store handle plus resolved identity, passed explicitly into every service."""

    session: Session
    user: User | None
    request_id: str | None = None

    def require_user(self) -> User:
        if self.user is None or not self.user.is_active:
            raise Unauthenticated()
        return self.user


@dataclass(frozen=True)
class Authorized:
    firm: Firm
    membership: UserFirm
    role: FirmRole
    module: Module | None = None
    binding: FirmModule | None = None

    @property
    def firm_id(self) -> int:
        return self.firm.id

    @property
    def user(self) -> User:
        return self.membership.user


def current_context() -> RequestContext:
    from app.senexus.db import db_session

    return RequestContext(
        session=db_session(),
        user=getattr(g, "current_user", None),
        request_id=getattr(g, "request_id", None),
    )


def roles_for(capability: str) -> frozenset[FirmRole]:
    try:
        return CAPABILITIES[capability]
    except KeyError:
        raise KeyError(f"Unknown capability {capability!r}") from None


def module_denial(role: FirmRole, module: Module | None, binding: FirmModule | None) -> AppError | None:
    """
    The single availability rule for a module within one firm.
    Shared by the gate and the navigation composer so both agree.
    """
    if module is None or binding is None:
        return ModuleNotInstalled()
    if not binding.is_enabled or not module.is_active:
        return ModuleDisabled()
    permitted = module.roles
    if permitted and role not in permitted:
        return Forbidden(f"Role {role.value} cannot access module {module.slug}")
    return None


def module_visible_to(role: FirmRole, module: Module | None, binding: FirmModule | None) -> bool:
    return module_denial(role, module, binding) is None


def route_visible_to(role: FirmRole, route: dict[str, Any]) -> bool:
    required = route.get("requiredRoles") or []
    if not required:
        return True
    return role.value in {str(r).upper() for r in required}


def find_membership(s: Session, user_id: int, firm_id: int) -> UserFirm | None:
    return s.execute(
        select(UserFirm).where(UserFirm.user_id == user_id, UserFirm.firm_id == firm_id)
    ).scalar_one_or_none()


def authorize(
    ctx: RequestContext,
    firm_ref: str | int,
    *,
    module_slug: str | None = None,
    required_roles: Iterable[FirmRole] | None = None,
    capability: str | None = None,
) -> Authorized:
    user = ctx.require_user()
    s = ctx.session

    # An unknown firm and a firm without membership are indistinguishable to the caller.
    firm = find_firm(s, firm_ref)
    if firm is None:
        raise Forbidden(_NO_MEMBERSHIP)
    membership = find_membership(s, user.id, firm.id)
    if membership is None:
        raise Forbidden(_NO_MEMBERSHIP)

    role = membership.firm_role
    allowed: set[FirmRole] | None = None
    if required_roles is not None:
        allowed = set(required_roles)
    if capability is not None:
        cap_roles = roles_for(capability)
        allowed = set(cap_roles) if allowed is None else allowed & cap_roles
    if allowed is not None and role not in allowed:
        raise Forbidden(f"Role {role.value} is not allowed to perform this operation")

    if module_slug is None:
        return Authorized(firm=firm, membership=membership, role=role)

    module = s.execute(select(Module).where(Module.slug == module_slug)).scalar_one_or_none()
    binding = None
    if module is not None:
        binding = s.execute(
            select(FirmModule).where(FirmModule.firm_id == firm.id, FirmModule.module_id == module.id)
        ).scalar_one_or_none()
    denial = module_denial(role, module, binding)
    if denial is not None:
        raise denial
    return Authorized(firm=firm, membership=membership, role=role, module=module, binding=binding)


def require_platform_admin(ctx: RequestContext) -> User:
    """Caller must hold a platform-admin role in at least one firm."""
    user = ctx.require_user()
    allowed = {r.value for r in roles_for("platform.admin")}
    if not any(m.role in allowed for m in user.memberships):
        raise Forbidden("Requires ADMIN or OWNER role in at least one firm")
    return user


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            raise Unauthenticated()
        return fn(*args, **kwargs)

    return wrapped
