"""Create the sagas and saga_jobs tables."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None

_json = sa.JSON(none_as_null=True).with_variant(postgresql.JSONB(none_as_null=True), "postgresql")


def upgrade() -> None:
    op.create_table(
        "sagas",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("game_id", sa.String(100), nullable=False),
        sa.Column("wallet_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("progress_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_step", sa.String(40), nullable=True),
        sa.Column("narrative_title", sa.String(255), nullable=True),
        sa.Column("pages", _json, nullable=True),
        sa.Column("panels", _json, nullable=True),
        sa.Column("total_pages", sa.Integer(), nullable=True),
        sa.Column("total_panels", sa.Integer(), nullable=True),
        sa.Column("generation_time_seconds", sa.Integer(), nullable=True),
        sa.Column("cost_estimate_usd", sa.Float(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_sagas_game_id", "sagas", ["game_id"])
    op.create_index("ix_sagas_status", "sagas", ["status"])
    op.create_index("ix_sagas_created_at", "sagas", ["created_at"])
    op.create_index("ix_sagas_game_status_created", "sagas", ["game_id", "status", "created_at"])

    op.create_table(
        "saga_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("game_id", sa.String(100), nullable=False),
        sa.Column("wallet_id", sa.String(255), nullable=False),
        sa.Column("payload", _json, nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="waiting"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stall_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("celery_task_id", sa.String(64), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
    )
    op.create_index("ix_saga_jobs_state", "saga_jobs", ["state"])
    op.create_index("ix_saga_jobs_enqueued_at", "saga_jobs", ["enqueued_at"])


def downgrade() -> None:
    op.drop_table("saga_jobs")
    op.drop_table("sagas")
