"""add contract renewal link and hr employee documents

Revision ID: c3d4e5f6a7b8
Revises: b7d8e9f0a1c2
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "c3d4e5f6a7b8"
down_revision: Union[str, Sequence[str], None] = "b7d8e9f0a1c2"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    contract_cols = {c["name"] for c in insp.get_columns("hr_contracts")}
    if "renewed_from_id" not in contract_cols:
        with op.batch_alter_table("hr_contracts") as batch:
            batch.add_column(sa.Column("renewed_from_id", sa.Integer(), nullable=True))
            batch.create_foreign_key(
                "fk_hr_contracts_renewed_from", "hr_contracts", ["renewed_from_id"], ["id"], ondelete="SET NULL"
            )

    if "hr_employee_documents" not in existing_tables:
        op.create_table(
            "hr_employee_documents",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("firm_id", sa.Integer(), sa.ForeignKey("firms.id", ondelete="CASCADE"), nullable=False),
            sa.Column("employee_id", sa.Integer(), sa.ForeignKey("hr_employees.id", ondelete="CASCADE"), nullable=False),
            sa.Column("document_type", sa.String(length=32), nullable=False),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("file_url", sa.String(length=1024), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("mime_type", sa.String(length=128), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("expiry_date", sa.Date(), nullable=True),
            sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("verified_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("verified_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        )
        op.create_index("idx_hr_documents_employee", "hr_employee_documents", ["employee_id"])
        op.create_index("idx_hr_documents_firm", "hr_employee_documents", ["firm_id"])


def downgrade() -> None:
    op.drop_index("idx_hr_documents_firm", table_name="hr_employee_documents")
    op.drop_index("idx_hr_documents_employee", table_name="hr_employee_documents")
    op.drop_table("hr_employee_documents")
    with op.batch_alter_table("hr_contracts") as batch:
        batch.drop_constraint("fk_hr_contracts_renewed_from", type_="foreignkey")
        batch.drop_column("renewed_from_id")
