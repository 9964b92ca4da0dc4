from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class FirmRole(str, enum.Enum):
    """Role a user holds inside one firm. Unordered: access uses explicit allow-lists."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    VIEWER = "VIEWER"

    @classmethod
    def parse(cls, value: str | None) -> "FirmRole | None":
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            return None


ALL_ROLES = frozenset(FirmRole)


class Holding(Base):
    __tablename__ = "holdings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    firms: Mapped[list["Firm"]] = relationship(back_populates="holding", lazy="selectin")


class Firm(Base):
    __tablename__ = "firms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    logo: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    theme_color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    holding_id: Mapped[int] = mapped_column(ForeignKey("holdings.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    holding: Mapped[Holding] = relationship(back_populates="firms", lazy="selectin")
    memberships: Mapped[list["UserFirm"]] = relationship(
        back_populates="firm",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    bindings: Mapped[list["FirmModule"]] = relationship(
        back_populates="firm",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    memberships: Mapped[list["UserFirm"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class UserFirm(Base):
    """Membership of a user in a firm. The role belongs to the relationship, not the user."""

    __tablename__ = "user_firms"
    __table_args__ = (
        UniqueConstraint("user_id", "firm_id", name="uq_user_firms_user_firm"),
        Index("idx_user_firms_firm", "firm_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=FirmRole.VIEWER.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship(back_populates="memberships", lazy="selectin")
    firm: Mapped[Firm] = relationship(back_populates="memberships", lazy="selectin")

    @property
    def firm_role(self) -> FirmRole:
        return FirmRole(self.role)


class Module(Base):
    """
    Catalog entry for an installable feature bundle.

    ``meta`` holds the route records (``{"routes": [{"path", "name", "icon", "requiredRoles"}]}``)
    plus presentation keys such as color/category.
    """

    __tablename__ = "modules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str] = mapped_column(String(32), nullable=False, default="1.0.0")
    icon: Mapped[str | None] = mapped_column(String(64), nullable=True)
    base_path: Mapped[str] = mapped_column(String(255), nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    permitted_roles: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    bindings: Mapped[list["FirmModule"]] = relationship(
        back_populates="module",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def roles(self) -> frozenset[FirmRole]:
        parsed = {FirmRole.parse(r) for r in (self.permitted_roles or [])}
        parsed.discard(None)
        return frozenset(parsed)  # type: ignore[arg-type]

    @property
    def routes(self) -> list[dict[str, Any]]:
        routes = (self.meta or {}).get("routes") or []
        return [r for r in routes if isinstance(r, dict)]


class FirmModule(Base):
    """Installation record of a Module for a Firm. Row existence means installed."""

    __tablename__ = "firm_modules"
    __table_args__ = (
        UniqueConstraint("firm_id", "module_id", name="uq_firm_modules_firm_module"),
        Index("idx_firm_modules_module", "module_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    module_id: Mapped[int] = mapped_column(ForeignKey("modules.id", ondelete="CASCADE"), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    settings: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)
    installed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    installed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    firm: Mapped[Firm] = relationship(back_populates="bindings")
    module: Mapped[Module] = relationship(back_populates="bindings", lazy="selectin")


class AuditLog(Base):
    """
    Append-only audit trail.
    firm_id is a plain column so history survives firm deletion.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_firm_created", "firm_id", "created_at"),
        Index("idx_audit_logs_action", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    firm_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "module.install"
    entity: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "FirmModule"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.senexus.modules.hr.models import Contract, Department, Employee, EmployeeDocument, EmployeeTransfer  # noqa: E402,F401
from app.senexus.modules.crm.models import Client  # noqa: E402,F401
