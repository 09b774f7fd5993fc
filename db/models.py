from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import text

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


ORDER_STATUSES = ("draft", "queued", "processing", "done", "failed")
JOB_KINDS = ("copy", "vision", "render", "upload", "thumb", "publish")
JOB_STATUSES = ("blocked", "queued", "running", "completed", "failed")
CLIP_STATUSES = ("queued", "processing", "done", "failed")


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} in ({quoted})"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), index=True)
    brand_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), index=True)
    intent_json: Mapped[dict] = mapped_column(JSONB)
    status: Mapped[str] = mapped_column(Text, default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    jobs: Mapped[list["Job"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", ORDER_STATUSES), name="ck_orders_status"),
    )


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    order_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=True,
    )
    user_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    brand_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    kind: Mapped[str] = mapped_column(Text)
    type: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict] = mapped_column(JSONB, default=dict)
    result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    status: Mapped[str] = mapped_column(Text, default="queued")
    attempt: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    predecessor_job_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    order: Mapped["Order | None"] = relationship(back_populates="jobs")

    __table_args__ = (
        CheckConstraint(_in_clause("kind", JOB_KINDS), name="ck_jobs_kind"),
        CheckConstraint(_in_clause("status", JOB_STATUSES), name="ck_jobs_status"),
        CheckConstraint("attempt <= max_attempts", name="ck_jobs_attempt_bound"),
        Index("ix_jobs_status_created_at", "status", "created_at"),
    )


class VideoBatch(Base):
    __tablename__ = "video_batches"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), index=True)
    brand_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    input_prompt: Mapped[str] = mapped_column(Text, default="")
    settings: Mapped[dict] = mapped_column(JSONB, default=dict)
    status: Mapped[str] = mapped_column(Text, default="queued")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    videos: Mapped[list["BatchVideo"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchVideo.video_index",
    )


class BatchVideo(Base):
    __tablename__ = "batch_videos"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    batch_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("video_batches.id", ondelete="CASCADE"),
    )
    video_index: Mapped[int] = mapped_column(Integer)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, default="queued")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    batch: Mapped["VideoBatch"] = relationship(back_populates="videos")
    clips: Mapped[list["BatchClip"]] = relationship(
        back_populates="video",
        cascade="all, delete-orphan",
        order_by="BatchClip.clip_index",
    )
    texts: Mapped["BatchVideoText | None"] = relationship(
        back_populates="video",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        UniqueConstraint("batch_id", "video_index", name="uq_batch_videos_index"),
    )


class BatchClip(Base):
    __tablename__ = "batch_clips"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    video_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("batch_videos.id", ondelete="CASCADE"),
    )
    clip_index: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(Text, default="queued")
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    anchor_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    clip_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=8)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    video: Mapped["BatchVideo"] = relationship(back_populates="clips")

    __table_args__ = (
        CheckConstraint(_in_clause("status", CLIP_STATUSES), name="ck_batch_clips_status"),
        UniqueConstraint("video_id", "clip_index", name="uq_batch_clips_index"),
    )


class BatchVideoText(Base):
    __tablename__ = "batch_video_texts"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    video_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("batch_videos.id", ondelete="CASCADE"),
        unique=True,
    )
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    cta: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{"title": ..., "subtitle": ...}] in clip order
    clips: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    video: Mapped["BatchVideo"] = relationship(back_populates="texts")


class MediaGeneration(Base):
    __tablename__ = "media_generations"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), index=True)
    brand_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    order_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    kind: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default="queued")
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    script_group: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    scene_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class BrandQuota(Base):
    __tablename__ = "brand_quotas"

    brand_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    period_yyyymm: Mapped[int] = mapped_column(Integer, primary_key=True)
    plan: Mapped[str | None] = mapped_column(Text, nullable=True)
    quota_images: Mapped[int] = mapped_column(Integer, default=0)
    quota_videos: Mapped[int] = mapped_column(Integer, default=0)
    quota_woofs: Mapped[int] = mapped_column(Integer, default=150)
    images_used: Mapped[int] = mapped_column(Integer, default=0)
    videos_used: Mapped[int] = mapped_column(Integer, default=0)
    woofs_used: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("woofs_used >= 0 and woofs_used <= quota_woofs", name="ck_brand_quotas_woofs"),
        CheckConstraint("images_used >= 0", name="ck_brand_quotas_images"),
        CheckConstraint("videos_used >= 0", name="ck_brand_quotas_videos"),
    )


class UsageEvent(Base):
    __tablename__ = "usage_events"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    brand_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), index=True)
    kind: Mapped[str] = mapped_column(Text)
    delta_woofs: Mapped[int] = mapped_column(Integer)
    meta: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint("kind in ('consume', 'refund')", name="ck_usage_events_kind"),
    )


class MemoryEntry(Base):
    __tablename__ = "alfie_memory"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    scope: Mapped[str] = mapped_column(Text)
    user_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    brand_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    key: Mapped[str] = mapped_column(Text)
    value: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint("scope in ('global', 'user', 'brand')", name="ck_alfie_memory_scope"),
    )
