"""Generation job records and the work queue."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261016_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "generation_job",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False),
        sa.Column(
            "priority", sa.String(length=16), nullable=False, server_default="standard"
        ),
        sa.Column("request_json", sa.Text(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("provider_handle", sa.String(length=128), unique=True),
        sa.Column("progress", sa.Float()),
        sa.Column("result_json", sa.Text()),
        sa.Column("error_kind", sa.String(length=32)),
        sa.Column("error_message", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
    )
    op.create_index(
        "ix_generation_job_state_updated_at",
        "generation_job",
        ["state", "updated_at"],
    )
    op.create_index(
        "ix_generation_job_owner_created_at",
        "generation_job",
        ["owner_id", "created_at"],
    )

    op.create_table(
        "queue_item",
        sa.Column("job_id", sa.String(length=36), primary_key=True),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("available_at", sa.DateTime(), nullable=False),
        sa.Column("sort_key", sa.DateTime(), nullable=False),
        sa.Column("leased_until", sa.DateTime()),
        sa.Column("receipt", sa.String(length=36)),
        sa.Column("delivery_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enqueued_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_queue_item_sort_key", "queue_item", ["sort_key"])


def downgrade() -> None:
    op.drop_index("ix_queue_item_sort_key", table_name="queue_item")
    op.drop_table("queue_item")
    op.drop_index("ix_generation_job_owner_created_at", table_name="generation_job")
    op.drop_index("ix_generation_job_state_updated_at", table_name="generation_job")
    op.drop_table("generation_job")
