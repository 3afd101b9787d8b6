"""Sync ledger: synced_contacts table.

Revision ID: 001_sync_ledger
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_sync_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "synced_contacts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_id", sa.String(100), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("first_name", sa.String(200), nullable=True),
        sa.Column("last_name", sa.String(200), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("is_customer", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_synced_contacts_source_id", "synced_contacts", ["source_id"], unique=True)
    op.create_index("ix_synced_contacts_target_id", "synced_contacts", ["target_id"])
    op.create_index("ix_synced_contacts_status", "synced_contacts", ["status"])
    op.create_index("ix_synced_contacts_is_customer", "synced_contacts", ["is_customer"])


def downgrade() -> None:
    op.drop_index("ix_synced_contacts_is_customer", table_name="synced_contacts")
    op.drop_index("ix_synced_contacts_status", table_name="synced_contacts")
    op.drop_index("ix_synced_contacts_target_id", table_name="synced_contacts")
    op.drop_index("ix_synced_contacts_source_id", table_name="synced_contacts")
    op.drop_table("synced_contacts")
