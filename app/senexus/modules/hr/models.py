from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.senexus.models import Base

if TYPE_CHECKING:
    from app.senexus.models import Firm
    from app.senexus.modules.crm.models import Client


EMPLOYEE_STATUSES = ("ACTIVE", "INACTIVE", "SUSPENDED", "TERMINATED", "ON_LEAVE")
CONTRACT_TYPES = ("CDI", "CDD", "INTERIM", "PRESTATION", "STAGE")
CONTRACT_STATUSES = ("ACTIVE", "TERMINATED", "EXPIRED", "RENEWED")
TRANSFER_STATUSES = ("PENDING", "APPROVED", "REJECTED", "COMPLETED")
DOCUMENT_TYPES = ("CNI", "PASSPORT", "CONTRACT", "DIPLOMA", "CV", "MEDICAL", "BANK", "OTHER")


class Department(Base):
    __tablename__ = "hr_departments"
    __table_args__ = (UniqueConstraint("firm_id", "code", name="uq_hr_departments_firm_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Employee(Base):
    __tablename__ = "hr_employees"
    __table_args__ = (
        Index("idx_hr_employees_firm", "firm_id"),
        Index("idx_hr_employees_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)

    # Globally unique; bulk import relies on this constraint for all-or-nothing batches.
    matricule: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)

    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    place_of_birth: Mapped[str | None] = mapped_column(String(255), nullable=True)
    marital_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    nationality: Mapped[str | None] = mapped_column(String(128), nullable=True)
    cni: Mapped[str | None] = mapped_column(String(64), nullable=True)  # national identity card number
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    contract_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")

    department_id: Mapped[int | None] = mapped_column(ForeignKey("hr_departments.id", ondelete="SET NULL"), nullable=True)
    assigned_client_id: Mapped[int | None] = mapped_column(ForeignKey("crm_clients.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    firm: Mapped["Firm"] = relationship("Firm")
    department: Mapped[Department | None] = relationship(Department)
    assigned_client: Mapped["Client | None"] = relationship("Client")
    contracts: Mapped[list["Contract"]] = relationship(
        back_populates="employee",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Contract(Base):
    __tablename__ = "hr_contracts"
    __table_args__ = (
        Index("idx_hr_contracts_firm", "firm_id"),
        Index("idx_hr_contracts_employee", "employee_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    employee_id: Mapped[int] = mapped_column(ForeignKey("hr_employees.id", ondelete="CASCADE"), nullable=False)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("crm_clients.id", ondelete="SET NULL"), nullable=True)

    contract_type: Mapped[str] = mapped_column(String(16), nullable=False, default="CDD")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    termination_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set on the contract created by a renewal; the previous one is marked RENEWED.
    renewed_from_id: Mapped[int | None] = mapped_column(ForeignKey("hr_contracts.id", ondelete="SET NULL"), nullable=True)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    employee: Mapped[Employee] = relationship(back_populates="contracts", lazy="selectin")
    renewed_from: Mapped["Contract | None"] = relationship(remote_side=[id])


class EmployeeTransfer(Base):
    """Move of an employee between two firms of the same holding."""

    __tablename__ = "hr_employee_transfers"
    __table_args__ = (
        Index("idx_hr_transfers_from", "from_firm_id"),
        Index("idx_hr_transfers_to", "to_firm_id"),
        Index("idx_hr_transfers_employee_status", "employee_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("hr_employees.id", ondelete="CASCADE"), nullable=False)
    from_firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    to_firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)

    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")

    requested_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    employee: Mapped[Employee] = relationship(lazy="selectin")


class EmployeeDocument(Base):
    """
    File attached to an employee (ID card, diploma, medical certificate...).
    The bytes live in Storage; only the key/URL is kept here.
    """

    __tablename__ = "hr_employee_documents"
    __table_args__ = (
        Index("idx_hr_documents_employee", "employee_id"),
        Index("idx_hr_documents_firm", "firm_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    employee_id: Mapped[int] = mapped_column(ForeignKey("hr_employees.id", ondelete="CASCADE"), nullable=False)

    document_type: Mapped[str] = mapped_column(String(32), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    employee: Mapped[Employee] = relationship()
