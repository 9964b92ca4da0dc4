from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.senexus.models import FirmRole


@dataclass(frozen=True)
class ModuleRoute:
    path: str
    name: str
    icon: str | None = None
    required_roles: tuple[FirmRole, ...] = ()

    def to_record(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "icon": self.icon,
            "requiredRoles": [r.value for r in self.required_roles],
        }


@dataclass(frozen=True)
class ModuleManifest:
    """Static description of a built-in module, synced into the catalog by the bootstrap script."""

    slug: str
    name: str
    base_path: str
    version: str = "1.0.0"
    description: str | None = None
    icon: str | None = None
    is_system: bool = False
    permitted_roles: tuple[FirmRole, ...] = ()
    routes: tuple[ModuleRoute, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def catalog_fields(self) -> dict[str, Any]:
        meta = dict(self.metadata)
        meta["routes"] = [r.to_record() for r in self.routes]
        return {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "icon": self.icon,
            "base_path": self.base_path,
            "is_system": self.is_system,
            "permitted_roles": [r.value for r in self.permitted_roles],
            "meta": meta,
        }
