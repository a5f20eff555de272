"""Record model token usage on autofills.

Revision ID: 0002_autofill_llm_usage
Revises: 0001_initial
Create Date: 2026-10-18 12:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_autofill_llm_usage"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add per-stage token usage and cost to autofills."""
    op.add_column("autofills", sa.Column("llm_usage", sa.JSON(), nullable=True))


def downgrade() -> None:
    """Drop autofill token usage."""
    with op.batch_alter_table("autofills") as batch_op:
        batch_op.drop_column("llm_usage")
