from __future__ import annotations

import logging
from typing import Any, Callable
from uuid import UUID

from rq.job import Job as RQJob

from batches.realtime import publish_batch_change
from db.models import BatchClip, Job
from db.session import SessionLocal
from providers import call_stage

from .errors import PipelineError
from .guarded import RenderRequest, guarded_render
from .state import claim_next_job, complete_job, fail_job

logger = logging.getLogger(__name__)

VIDEO_CLIP_COST_KEY = "video_clip"


def _upstream(job: Job) -> dict[str, Any]:
    return dict((job.payload or {}).get("upstream") or {})


def _stage_payload(job: Job) -> dict[str, Any]:
    payload = {key: value for key, value in (job.payload or {}).items() if key != "upstream"}
    payload["job_id"] = str(job.id)
    return payload


def _render_prompt(job: Job) -> str:
    upstream = _upstream(job)
    for stage in ("vision", "copy"):
        value = (upstream.get(stage) or {}).get("prompt")
        if value:
            return str(value)
    raise PipelineError(message=f"render job {job.id} has no prompt from upstream stages")


def handle_copy(session, job: Job) -> dict[str, Any]:
    return call_stage("copy", _stage_payload(job))


def handle_vision(session, job: Job) -> dict[str, Any]:
    payload = _stage_payload(job)
    payload["copy"] = _upstream(job).get("copy")
    return call_stage("vision", payload)


def handle_render(session, job: Job) -> dict[str, Any]:
    payload = job.payload or {}
    kind = payload.get("kind")
    if kind == "text":
        stage_payload = _stage_payload(job)
        stage_payload["copy"] = _upstream(job).get("copy")
        return call_stage("render", stage_payload)

    brand_id = payload.get("brand_id") or job.brand_id
    return guarded_render(
        session,
        RenderRequest(
            brand_id=UUID(str(brand_id)),
            prompt=_render_prompt(job),
            cost_key=str(kind),
            modality="video" if kind == "video" else "image",
            format=str(payload.get("ratio") or "1:1"),
            quality=str(payload.get("quality") or "fast"),
            duration_s=payload.get("duration_s"),
            meta={"order_id": payload.get("order_id"), "job_id": str(job.id)},
            require_media="video_url" if kind == "video" else None,
        ),
    )


def handle_upload(session, job: Job) -> dict[str, Any]:
    payload = _stage_payload(job)
    rendered = _upstream(job).get("render") or {}
    payload["media"] = rendered.get("media") or rendered
    return call_stage("upload", payload)


def handle_thumb(session, job: Job) -> dict[str, Any]:
    payload = _stage_payload(job)
    payload["upload"] = _upstream(job).get("upload")
    return call_stage("thumb", payload)


def handle_publish(session, job: Job) -> dict[str, Any]:
    payload = _stage_payload(job)
    payload["upload"] = _upstream(job).get("upload")
    return call_stage("publish", payload)


STAGE_HANDLERS: dict[str, Callable[[Any, Job], dict[str, Any]]] = {
    "copy": handle_copy,
    "vision": handle_vision,
    "render": handle_render,
    "upload": handle_upload,
    "thumb": handle_thumb,
    "publish": handle_publish,
}


def run_job(session, job: Job) -> str:
    """Execute one claimed job; failures land on the job row, never in the caller."""
    handler = STAGE_HANDLERS.get(job.kind)
    if handler is None:
        return fail_job(session, job, f"Unknown job kind: {job.kind}", retryable=False)
    try:
        result = handler(session, job)
    except PipelineError as exc:
        session.rollback()
        logger.warning("job %s (%s) failed: %s", job.id, job.kind, exc)
        return fail_job(session, job, str(exc), retryable=exc.retryable)
    except Exception as exc:
        session.rollback()
        logger.warning("job %s (%s) crashed", job.id, job.kind, exc_info=True)
        return fail_job(session, job, f"{type(exc).__name__}: {exc}")
    complete_job(session, job, result)
    return "completed"


def process_due_jobs(limit: int = 5) -> int:
    session = SessionLocal()
    processed = 0
    try:
        while processed < max(1, limit):
            job = claim_next_job(session)
            session.commit()
            if job is None:
                break
            run_job(session, job)
            processed += 1
        return processed
    finally:
        session.close()


def _notify_clip(clip: BatchClip) -> None:
    batch = clip.video.batch
    publish_batch_change(batch.user_id, batch.id)


def _mark_clip(session, clip: BatchClip, status: str, *, url: str | None = None, error: str | None = None) -> None:
    clip.status = status
    clip.error = error
    if url is not None:
        clip.clip_url = url
    session.add(clip)
    session.commit()
    _notify_clip(clip)


def render_clip_job(clip_id: str) -> dict[str, Any]:
    session = SessionLocal()
    try:
        clip = session.get(BatchClip, UUID(str(clip_id)))
        if clip is None:
            raise RuntimeError(f"Clip not found: {clip_id}")
        batch = clip.video.batch
        _mark_clip(session, clip, "processing")

        if batch.brand_id is None:
            _mark_clip(session, clip, "failed", error="Batch has no brand to bill")
            return {"clip_id": clip_id, "status": "failed"}

        settings = batch.settings or {}
        try:
            rendered = guarded_render(
                session,
                RenderRequest(
                    brand_id=batch.brand_id,
                    prompt=clip.prompt or batch.input_prompt,
                    cost_key=VIDEO_CLIP_COST_KEY,
                    modality="video",
                    format=str(settings.get("ratio") or "9:16"),
                    quality=str(settings.get("quality") or "fast"),
                    duration_s=clip.duration_seconds,
                    use_case="video_batch",
                    style=str(settings.get("style") or "default"),
                    meta={"batch_id": str(batch.id), "clip_id": str(clip.id)},
                    require_media="video_url",
                ),
            )
        except PipelineError as exc:
            session.rollback()
            logger.warning("clip %s failed: %s", clip_id, exc)
            _mark_clip(session, clip, "failed", error=exc.message)
            return {"clip_id": clip_id, "status": "failed", "error": exc.to_dict()}

        url = rendered["media"]["video_url"]
        _mark_clip(session, clip, "done", url=url)
        return {"clip_id": clip_id, "status": "done", "clip_url": url}
    finally:
        session.close()


def rq_on_failure(job: RQJob, connection, exc_type, exc_value, traceback) -> None:  # type: ignore[no-untyped-def]
    session = SessionLocal()
    try:
        clip_id = job.args[0] if job.args else None
        if clip_id is None:
            return
        clip = session.get(BatchClip, UUID(str(clip_id)))
        if clip is None:
            return
        _mark_clip(session, clip, "failed", error=str(exc_value) or "render worker failed")
    finally:
        session.close()


def rq_on_success(job: RQJob, connection, result, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
    logger.info("rq job %s finished: %s", job.id, result)
