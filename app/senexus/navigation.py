"""
Navigation composer.

The menu a member sees in a firm is: the core dashboard entry, one section per
module the gate would let them into (ordered by module name), then the account
section. Module availability is decided by ``rbac.module_visible_to`` so the
menu and the gate never disagree.

If the binding store cannot be read, the composer returns the static table for
the firm slug instead of raising; callers can tell the two apart by type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy.exc import SQLAlchemyError

from app.senexus import bindings
from app.senexus.models import FirmRole
from app.senexus.rbac import RequestContext, module_visible_to, route_visible_to

logger = logging.getLogger(__name__)

NavSection = dict[str, Any]

_ACCOUNT_TITLE = "Compte"


@dataclass(frozen=True)
class Composed:
    sections: list[NavSection]


@dataclass(frozen=True)
class Fallback:
    sections: list[NavSection]
    reason: str


NavigationResult = Union[Composed, Fallback]


def core_sections(firm_slug: str) -> list[NavSection]:
    return [
        {
            "title": "Tableau de bord",
            "url": f"/{firm_slug}/dashboard/overview",
            "icon": "dashboard",
            "isActive": False,
            "items": [],
        },
        {
            "title": _ACCOUNT_TITLE,
            "url": "#",
            "icon": "billing",
            "isActive": False,
            "items": [{"title": "Profil", "url": f"/{firm_slug}/dashboard/profile", "icon": "userPen"}],
        },
    ]


def _fallback_module_sections(firm_slug: str) -> list[NavSection]:
    base = f"/{firm_slug}/hr"
    return [
        {
            "title": "Ressources Humaines",
            "url": base,
            "icon": "users",
            "isActive": False,
            "items": [
                {"title": "Tableau de bord", "url": base, "icon": "dashboard"},
                {"title": "Employés", "url": f"{base}/employees", "icon": "user"},
                {"title": "Départements", "url": f"{base}/departments", "icon": "building"},
                {"title": "Congés", "url": f"{base}/leaves", "icon": "calendar"},
                {"title": "Missions", "url": f"{base}/missions", "icon": "plane"},
            ],
        }
    ]


def static_navigation(firm_slug: str) -> list[NavSection]:
    """Role- and module-agnostic menu used when composition is not possible."""
    return core_sections(firm_slug) + _fallback_module_sections(firm_slug)


def module_section(firm_slug: str, module, role: FirmRole) -> NavSection:
    base = f"/{firm_slug}/{module.slug}"
    items = []
    for route in module.routes:
        if not route_visible_to(role, route):
            continue
        path = str(route.get("path") or "").strip("/")
        item = {
            "title": route.get("name"),
            "url": f"{base}/{path}" if path else base,
            "icon": route.get("icon"),
        }
        if route.get("requiredRoles"):
            item["requiredRoles"] = list(route["requiredRoles"])
        items.append(item)
    return {"title": module.name, "url": base, "icon": module.icon, "isActive": False, "items": items}


def compose_navigation(ctx: RequestContext, firm_id: int, firm_slug: str, role: FirmRole) -> NavigationResult:
    try:
        visible = [
            b.module
            for b in bindings.enabled_bindings(ctx.session, firm_id)
            if module_visible_to(role, b.module, b)
        ]
    except SQLAlchemyError as e:
        logger.exception("navigation: binding lookup failed for firm %s, serving static menu", firm_slug)
        return Fallback(static_navigation(firm_slug), reason=type(e).__name__)

    core = core_sections(firm_slug)
    account = [c for c in core if c["title"] == _ACCOUNT_TITLE]
    head = [c for c in core if c["title"] != _ACCOUNT_TITLE]
    sections = head + [module_section(firm_slug, m, role) for m in visible] + account
    return Composed(sections)
