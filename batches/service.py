from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from db.models import BatchClip, BatchVideo, MediaGeneration, VideoBatch
from pipeline.errors import NotFound

from .rollup import BatchView, ExplicitBatch, group_virtual, merge_sources, project

logger = logging.getLogger(__name__)


def _batch_query():
    return select(VideoBatch).options(
        selectinload(VideoBatch.videos).selectinload(BatchVideo.clips),
        selectinload(VideoBatch.videos).selectinload(BatchVideo.texts),
    )


def load_batches(session, user_id: UUID, brand_id: UUID | None = None) -> list[BatchView]:
    stmt = _batch_query().where(VideoBatch.user_id == user_id).order_by(VideoBatch.created_at.desc())
    if brand_id is not None:
        stmt = stmt.where(VideoBatch.brand_id == brand_id)
    explicit = [ExplicitBatch(record) for record in session.execute(stmt).scalars().unique().all()]

    gen_stmt = (
        select(MediaGeneration)
        .where(MediaGeneration.user_id == user_id, MediaGeneration.script_group.is_not(None))
        .order_by(MediaGeneration.script_group, MediaGeneration.scene_order)
    )
    if brand_id is not None:
        gen_stmt = gen_stmt.where(MediaGeneration.brand_id == brand_id)
    virtual = group_virtual(session.execute(gen_stmt).scalars().all())

    views = [project(source) for source in merge_sources(explicit, virtual)]
    views.sort(key=lambda view: view.created_at.timestamp() if view.created_at else 0.0, reverse=True)
    return views


def get_batch(session, batch_id: UUID, user_id: UUID | None = None) -> BatchView:
    stmt = _batch_query().where(VideoBatch.id == batch_id)
    if user_id is not None:
        stmt = stmt.where(VideoBatch.user_id == user_id)
    record = session.execute(stmt).scalars().first()
    if record is None:
        raise NotFound(message=f"Batch not found: {batch_id}")
    return project(ExplicitBatch(record))


def retry_clip(session, clip_id: UUID, user_id: UUID | None = None) -> BatchClip:
    """Put one clip back in the queue; sibling clips are not touched."""
    clip = session.get(BatchClip, clip_id)
    if clip is None:
        raise NotFound(message=f"Clip not found: {clip_id}")
    if user_id is not None and clip.video.batch.user_id != user_id:
        raise NotFound(message=f"Clip not found: {clip_id}")
    clip.status = "queued"
    clip.clip_url = None
    clip.error = None
    session.add(clip)
    session.commit()
    logger.info("clip %s re-queued", clip_id)
    return clip


def regenerate_video(session, video_id: UUID, user_id: UUID | None = None) -> BatchVideo:
    video = session.get(BatchVideo, video_id)
    if video is None:
        raise NotFound(message=f"Video not found: {video_id}")
    if user_id is not None and video.batch.user_id != user_id:
        raise NotFound(message=f"Video not found: {video_id}")
    for clip in video.clips:
        clip.status = "queued"
        clip.clip_url = None
        clip.error = None
        session.add(clip)
    video.status = "queued"
    video.error = None
    session.add(video)
    session.commit()
    logger.info("video %s re-queued with %s clip(s)", video_id, len(video.clips))
    return video


def mark_unqueued(session, clips: list[BatchClip], reason: str) -> None:
    """Record clips that were reset but never reached the render queue."""
    session.rollback()
    for clip in clips:
        clip.status = "failed"
        clip.error = reason
        session.add(clip)
    session.commit()
    logger.warning("%s clip(s) could not be queued: %s", len(clips), reason)
