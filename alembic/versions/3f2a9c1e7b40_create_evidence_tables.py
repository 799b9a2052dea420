"""create_evidence_tables

Revision ID: 3f2a9c1e7b40
Revises:
Create Date: 2026-10-19 09:12:31.402118

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1e7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create file_records, payment_ledger_entries and system_state."""
    op.create_table(
        "file_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_address", sqlmodel.sql.sqltypes.AutoString(length=42), nullable=False),
        sa.Column("content_digest", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("pin_cid", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column(
            "pin_status",
            sa.Enum("QUEUED", "PINNED", "FAILED", name="pinstatus"),
            nullable=False,
        ),
        sa.Column("pinned_at", sa.DateTime(), nullable=True),
        sa.Column("piece_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column("deal_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column(
            "storage_provider", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True
        ),
        sa.Column("storage_path", sa.Enum("PRIMARY", "DIRECT", name="storagepath"), nullable=True),
        sa.Column(
            "durable_status",
            sa.Enum("QUEUED", "UPLOADING", "COMPLETED", "FAILED", name="durablestatus"),
            nullable=False,
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=True),
        sa.Column(
            "original_filename", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False
        ),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("mime_type", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_file_records_owner_address", "file_records", ["owner_address"])
    op.create_index("ix_file_records_content_digest", "file_records", ["content_digest"])
    op.create_index("ix_file_records_pin_cid", "file_records", ["pin_cid"])
    op.create_index("ix_file_records_pin_status", "file_records", ["pin_status"])
    op.create_index("ix_file_records_piece_id", "file_records", ["piece_id"])
    op.create_index("ix_file_records_durable_status", "file_records", ["durable_status"])
    op.create_index("ix_file_records_created_at", "file_records", ["created_at"])

    op.create_table(
        "payment_ledger_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_address", sqlmodel.sql.sqltypes.AutoString(length=42), nullable=False),
        sa.Column(
            "entry_type",
            sa.Enum(
                "BALANCE_CHECK",
                "APPROVAL",
                "DEPOSIT",
                "DEAL_PAYMENT",
                "SERVICE_APPROVAL",
                name="paymententrytype",
            ),
            nullable=False,
        ),
        sa.Column(
            "transaction_ref", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True
        ),
        sa.Column("amount", sqlmodel.sql.sqltypes.AutoString(length=78), nullable=False),
        sa.Column("token", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column(
            "status",
            sa.Enum("CONFIRMED", "PENDING", "FAILED", name="paymententrystatus"),
            nullable=False,
        ),
        sa.Column("entry_metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_payment_ledger_entries_owner_address", "payment_ledger_entries", ["owner_address"]
    )
    op.create_index(
        "ix_payment_ledger_entries_entry_type", "payment_ledger_entries", ["entry_type"]
    )
    op.create_index(
        "ix_payment_ledger_entries_transaction_ref", "payment_ledger_entries", ["transaction_ref"]
    )
    op.create_index(
        "ix_payment_ledger_entries_created_at", "payment_ledger_entries", ["created_at"]
    )

    op.create_table(
        "system_state",
        sa.Column("key", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("state_value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    """Drop evidence tables and their enum types."""
    op.drop_table("system_state")
    op.drop_index("ix_payment_ledger_entries_created_at", table_name="payment_ledger_entries")
    op.drop_index("ix_payment_ledger_entries_transaction_ref", table_name="payment_ledger_entries")
    op.drop_index("ix_payment_ledger_entries_entry_type", table_name="payment_ledger_entries")
    op.drop_index("ix_payment_ledger_entries_owner_address", table_name="payment_ledger_entries")
    op.drop_table("payment_ledger_entries")
    op.drop_index("ix_file_records_created_at", table_name="file_records")
    op.drop_index("ix_file_records_durable_status", table_name="file_records")
    op.drop_index("ix_file_records_piece_id", table_name="file_records")
    op.drop_index("ix_file_records_pin_status", table_name="file_records")
    op.drop_index("ix_file_records_pin_cid", table_name="file_records")
    op.drop_index("ix_file_records_content_digest", table_name="file_records")
    op.drop_index("ix_file_records_owner_address", table_name="file_records")
    op.drop_table("file_records")
    sa.Enum(name="paymententrystatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="paymententrytype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="durablestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="storagepath").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="pinstatus").drop(op.get_bind(), checkfirst=True)
