"""create orchestration schema

Revision ID: 3c1e9a7b5d20
Revises:
Create Date: 2026-10-18 09:00:00

Purpose:
- orders and their pipeline jobs (one physical table serves the job monitor)
- video batches with videos, clips and per-video texts
- media generations (source of batches grouped by script group)
- monthly brand quotas with a usage event log
- planner memory (global / user / brand scopes)

Operational notes:
- requires pgcrypto for gen_random_uuid()
- jobs.status includes 'blocked' for stages waiting on their predecessor
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3c1e9a7b5d20"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _ts(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.execute("create extension if not exists pgcrypto")

    op.create_table(
        "orders",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("brand_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("intent_json", postgresql.JSONB(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="draft"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint(
            "status in ('draft', 'queued', 'processing', 'done', 'failed')",
            name="ck_orders_status",
        ),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_brand_id", "orders", ["brand_id"])

    op.create_table(
        "jobs",
        _uuid_pk(),
        sa.Column(
            "order_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("brand_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "predecessor_job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("started_at", nullable=True),
        _ts("finished_at", nullable=True),
        sa.CheckConstraint(
            "kind in ('copy', 'vision', 'render', 'upload', 'thumb', 'publish')",
            name="ck_jobs_kind",
        ),
        sa.CheckConstraint(
            "status in ('blocked', 'queued', 'running', 'completed', 'failed')",
            name="ck_jobs_status",
        ),
        sa.CheckConstraint("attempt <= max_attempts", name="ck_jobs_attempt_bound"),
    )
    op.create_index("ix_jobs_status_created_at", "jobs", ["status", "created_at"])
    op.create_index("ix_jobs_order_id", "jobs", ["order_id"])
    op.create_index("ix_jobs_predecessor_job_id", "jobs", ["predecessor_job_id"])

    op.create_table(
        "video_batches",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("brand_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("input_prompt", sa.Text(), nullable=False, server_default=""),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("error", sa.Text(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_video_batches_user_id", "video_batches", ["user_id"])

    op.create_table(
        "batch_videos",
        _uuid_pk(),
        sa.Column(
            "batch_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("video_batches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("video_index", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("error", sa.Text(), nullable=True),
        _ts("updated_at"),
        sa.UniqueConstraint("batch_id", "video_index", name="uq_batch_videos_index"),
    )

    op.create_table(
        "batch_clips",
        _uuid_pk(),
        sa.Column(
            "video_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("batch_videos.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("clip_index", sa.Integer(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("anchor_url", sa.Text(), nullable=True),
        sa.Column("clip_url", sa.Text(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="8"),
        _ts("updated_at"),
        sa.CheckConstraint(
            "status in ('queued', 'processing', 'done', 'failed')",
            name="ck_batch_clips_status",
        ),
        sa.UniqueConstraint("video_id", "clip_index", name="uq_batch_clips_index"),
    )

    op.create_table(
        "batch_video_texts",
        _uuid_pk(),
        sa.Column(
            "video_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("batch_videos.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("cta", sa.Text(), nullable=True),
        sa.Column("clips", postgresql.JSONB(), nullable=True),
    )

    op.create_table(
        "media_generations",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("brand_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("output_url", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("script_group", sa.Text(), nullable=True),
        sa.Column("scene_order", sa.Integer(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_media_generations_user_id", "media_generations", ["user_id"])
    op.create_index("ix_media_generations_script_group", "media_generations", ["script_group"])

    op.create_table(
        "brand_quotas",
        sa.Column("brand_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("period_yyyymm", sa.Integer(), primary_key=True),
        sa.Column("plan", sa.Text(), nullable=True),
        sa.Column("quota_images", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quota_videos", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quota_woofs", sa.Integer(), nullable=False, server_default="150"),
        sa.Column("images_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("videos_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("woofs_used", sa.Integer(), nullable=False, server_default="0"),
        _ts("updated_at"),
        sa.CheckConstraint("woofs_used >= 0 and woofs_used <= quota_woofs", name="ck_brand_quotas_woofs"),
        sa.CheckConstraint("images_used >= 0", name="ck_brand_quotas_images"),
        sa.CheckConstraint("videos_used >= 0", name="ck_brand_quotas_videos"),
    )

    op.create_table(
        "usage_events",
        _uuid_pk(),
        sa.Column("brand_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("delta_woofs", sa.Integer(), nullable=False),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint("kind in ('consume', 'refund')", name="ck_usage_events_kind"),
    )
    op.create_index("ix_usage_events_brand_id", "usage_events", ["brand_id"])

    op.create_table(
        "alfie_memory",
        _uuid_pk(),
        sa.Column("scope", sa.Text(), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("brand_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("value", postgresql.JSONB(), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint("scope in ('global', 'user', 'brand')", name="ck_alfie_memory_scope"),
    )
    op.create_index("ix_alfie_memory_scope_key", "alfie_memory", ["scope", "key"])


def downgrade() -> None:
    op.drop_index("ix_alfie_memory_scope_key", table_name="alfie_memory")
    op.drop_table("alfie_memory")
    op.drop_index("ix_usage_events_brand_id", table_name="usage_events")
    op.drop_table("usage_events")
    op.drop_table("brand_quotas")
    op.drop_index("ix_media_generations_script_group", table_name="media_generations")
    op.drop_index("ix_media_generations_user_id", table_name="media_generations")
    op.drop_table("media_generations")
    op.drop_table("batch_video_texts")
    op.drop_table("batch_clips")
    op.drop_table("batch_videos")
    op.drop_index("ix_video_batches_user_id", table_name="video_batches")
    op.drop_table("video_batches")
    op.drop_index("ix_jobs_predecessor_job_id", table_name="jobs")
    op.drop_index("ix_jobs_order_id", table_name="jobs")
    op.drop_index("ix_jobs_status_created_at", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_orders_brand_id", table_name="orders")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_table("orders")
