"""Initial database schema.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create field registry, ledger, outbox and autofill tables."""
    op.create_table(
        "field_records",
        sa.Column("field_hash", sa.String(length=128), primary_key=True),
        sa.Column("tag", sa.String(length=50), nullable=False),
        sa.Column("field_type", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=500), nullable=True),
        sa.Column("label", sa.Text(), nullable=True),
        sa.Column("placeholder", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_file_upload", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("classification", sa.String(length=100), nullable=False),
        sa.Column(
            "semantic_type",
            sa.Enum(
                "text",
                "choice",
                "date",
                "file",
                "boolean",
                "unknown",
                name="field_semantic_type",
                native_enum=False,
            ),
            nullable=False,
            server_default="unknown",
        ),
        sa.Column("link_type", sa.String(length=100), nullable=True),
        sa.Column("inference_hint", sa.String(length=100), nullable=True),
        sa.Column("answer_template", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "user_balances",
        sa.Column("user_id", sa.String(length=200), primary_key=True),
        sa.Column("credit_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("credit_balance >= 0", name="ck_user_balances_non_negative"),
    )

    op.create_table(
        "credit_usage",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=200), nullable=False),
        sa.Column(
            "kind",
            sa.Enum(
                "autofill",
                "top_up",
                "refund",
                "adjustment",
                name="credit_usage_kind",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("credits_delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reference_id", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_credit_usage_user_created", "credit_usage", ["user_id", "created_at"]
    )

    op.create_table(
        "outbox_entries",
        sa.Column("log_id", sa.String(length=64), primary_key=True),
        sa.Column("kind", sa.String(length=100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("owner_key", sa.String(length=200), nullable=True),
        sa.Column("dedupe_key", sa.String(length=200), nullable=True, unique=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "claimed",
                "done",
                "failed",
                name="outbox_status",
                native_enum=False,
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("claim_token", sa.String(length=64), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_outbox_status_available",
        "outbox_entries",
        ["status", "available_at", "created_at"],
    )
    op.create_index("ix_outbox_status_claimed", "outbox_entries", ["status", "claimed_at"])
    op.create_index("ix_outbox_owner_key", "outbox_entries", ["owner_key"])

    op.create_table(
        "autofills",
        sa.Column("autofill_id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=200), nullable=False),
        sa.Column("form_hash", sa.String(length=128), nullable=False),
        sa.Column("credits_charged", sa.Integer(), nullable=False),
        sa.Column("filled_values", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_autofills_user_created", "autofills", ["user_id", "created_at"])


def downgrade() -> None:
    """Drop all Lazyfill tables."""
    op.drop_index("ix_autofills_user_created", table_name="autofills")
    op.drop_table("autofills")
    op.drop_index("ix_outbox_owner_key", table_name="outbox_entries")
    op.drop_index("ix_outbox_status_claimed", table_name="outbox_entries")
    op.drop_index("ix_outbox_status_available", table_name="outbox_entries")
    op.drop_table("outbox_entries")
    op.drop_index("ix_credit_usage_user_created", table_name="credit_usage")
    op.drop_table("credit_usage")
    op.drop_table("user_balances")
    op.drop_table("field_records")
