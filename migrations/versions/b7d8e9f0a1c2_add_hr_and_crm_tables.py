"""add hr (departments, employees, contracts, transfers) and crm clients

Revision ID: b7d8e9f0a1c2
Revises: a0c1e2d3f4b5
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "b7d8e9f0a1c2"
down_revision: Union[str, Sequence[str], None] = "a0c1e2d3f4b5"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())


def upgrade() -> None:
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    if "crm_clients" not in existing_tables:
        op.create_table(
            "crm_clients",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("firm_id", sa.Integer(), sa.ForeignKey("firms.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
            sa.Column("industry", sa.String(length=128), nullable=True),
            sa.Column("contact_name", sa.String(length=255), nullable=True),
            sa.Column("contact_email", sa.String(length=320), nullable=True),
            sa.Column("contact_phone", sa.String(length=64), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
        )
        op.create_index("idx_crm_clients_firm_name", "crm_clients", ["firm_id", "name"])
        op.create_index("idx_crm_clients_status", "crm_clients", ["status"])

    if "hr_departments" not in existing_tables:
        op.create_table(
            "hr_departments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("firm_id", sa.Integer(), sa.ForeignKey("firms.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("code", sa.String(length=32), nullable=True),
            _timestamp("created_at"),
            sa.UniqueConstraint("firm_id", "code", name="uq_hr_departments_firm_code"),
        )

    if "hr_employees" not in existing_tables:
        op.create_table(
            "hr_employees",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("firm_id", sa.Integer(), sa.ForeignKey("firms.id", ondelete="CASCADE"), nullable=False),
            sa.Column("matricule", sa.String(length=64), nullable=False),
            sa.Column("first_name", sa.String(length=128), nullable=False),
            sa.Column("last_name", sa.String(length=128), nullable=False),
            sa.Column("date_of_birth", sa.Date(), nullable=True),
            sa.Column("place_of_birth", sa.String(length=255), nullable=True),
            sa.Column("marital_status", sa.String(length=64), nullable=True),
            sa.Column("nationality", sa.String(length=128), nullable=True),
            sa.Column("cni", sa.String(length=64), nullable=True),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("phone", sa.String(length=64), nullable=True),
            sa.Column("job_title", sa.String(length=255), nullable=True),
            sa.Column("category", sa.String(length=64), nullable=True),
            sa.Column("hire_date", sa.Date(), nullable=False),
            sa.Column("contract_end_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
            sa.Column("department_id", sa.Integer(), sa.ForeignKey("hr_departments.id", ondelete="SET NULL"), nullable=True),
            sa.Column("assigned_client_id", sa.Integer(), sa.ForeignKey("crm_clients.id", ondelete="SET NULL"), nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
            sa.UniqueConstraint("matricule", name="uq_hr_employees_matricule"),
        )
        op.create_index("idx_hr_employees_firm", "hr_employees", ["firm_id"])
        op.create_index("idx_hr_employees_status", "hr_employees", ["status"])

    if "hr_contracts" not in existing_tables:
        op.create_table(
            "hr_contracts",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("firm_id", sa.Integer(), sa.ForeignKey("firms.id", ondelete="CASCADE"), nullable=False),
            sa.Column("employee_id", sa.Integer(), sa.ForeignKey("hr_employees.id", ondelete="CASCADE"), nullable=False),
            sa.Column("client_id", sa.Integer(), sa.ForeignKey("crm_clients.id", ondelete="SET NULL"), nullable=True),
            sa.Column("contract_type", sa.String(length=16), nullable=False, server_default="CDD"),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("job_title", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("termination_date", sa.Date(), nullable=True),
            sa.Column("termination_reason", sa.Text(), nullable=True),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
        )
        op.create_index("idx_hr_contracts_firm", "hr_contracts", ["firm_id"])
        op.create_index("idx_hr_contracts_employee", "hr_contracts", ["employee_id"])

    if "hr_employee_transfers" not in existing_tables:
        op.create_table(
            "hr_employee_transfers",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("employee_id", sa.Integer(), sa.ForeignKey("hr_employees.id", ondelete="CASCADE"), nullable=False),
            sa.Column("from_firm_id", sa.Integer(), sa.ForeignKey("firms.id", ondelete="CASCADE"), nullable=False),
            sa.Column("to_firm_id", sa.Integer(), sa.ForeignKey("firms.id", ondelete="CASCADE"), nullable=False),
            sa.Column("transfer_date", sa.Date(), nullable=False),
            sa.Column("effective_date", sa.Date(), nullable=False),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
            sa.Column("requested_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
        )
        op.create_index("idx_hr_transfers_from", "hr_employee_transfers", ["from_firm_id"])
        op.create_index("idx_hr_transfers_to", "hr_employee_transfers", ["to_firm_id"])
        op.create_index("idx_hr_transfers_employee_status", "hr_employee_transfers", ["employee_id", "status"])


def downgrade() -> None:
    op.drop_table("hr_employee_transfers")
    op.drop_table("hr_contracts")
    op.drop_table("hr_employees")
    op.drop_table("hr_departments")
    op.drop_table("crm_clients")
