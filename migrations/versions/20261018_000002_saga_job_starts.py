"""Add the lease-start log used by the queue rate limit.

Revision ID: 20261018_000002
Revises: 20261018_000001
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "20261018_000002"
down_revision = "20261018_000001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "saga_job_starts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.String(36), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_saga_job_starts_started_at", "saga_job_starts", ["started_at"])


def downgrade() -> None:
    op.drop_index("ix_saga_job_starts_started_at", table_name="saga_job_starts")
    op.drop_table("saga_job_starts")
