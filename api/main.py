from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from os import getenv
from typing import Any, Iterator, List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from redis.exceptions import RedisError
from sqlalchemy import desc, select, text

from batches.export import CSV_BOM, build_zip, copy_all_texts, generate_canva_csv, zip_filename
from batches.realtime import batch_channel, listen, publish_batch_change, user_channel
from batches.service import get_batch, load_batches, mark_unqueued, regenerate_video, retry_clip
from db.models import Job
from db.session import SessionLocal
from guard import content_policy_message, detect_celebrity_violation, sanitize
from pipeline.errors import (
    ContentPolicyViolation,
    IntentValidationError,
    NotFound,
    OrphanedOrder,
    PipelineError,
    ProviderFailure,
    QuotaExceeded,
    Unauthorized,
)
from pipeline.queue import enqueue_clip_render, enqueue_worker_run, get_queue, get_redis, trigger_worker
from pipeline.state import fail_expired, job_summary, unlock_stuck
from planner import plan_order
from quota import quota_status

logger = logging.getLogger(__name__)

MONITOR_REFRESH_INTERVAL_S = 5
QUEUE_UNAVAILABLE = "Render queue unavailable, retry the clip"

app = FastAPI(title="Alfie Orchestrator API", version="0.1.0")


def _cors_origins() -> list[str]:
    raw = getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_CODES: dict[type, int] = {
    IntentValidationError: 400,
    Unauthorized: 401,
    ContentPolicyViolation: 422,
    QuotaExceeded: 402,
    ProviderFailure: 502,
    OrphanedOrder: 500,
    NotFound: 404,
}


def _status_for(exc: PipelineError) -> int:
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def _http_error(exc: PipelineError) -> HTTPException:
    return HTTPException(status_code=_status_for(exc), detail=exc.to_dict())


@app.exception_handler(PipelineError)
def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return JSONResponse(status_code=_status_for(exc), content={"ok": False, **exc.to_dict()})


def _paginate(limit: int, offset: int) -> tuple[int, int]:
    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    return limit, offset


def _require_operator(x_operator_token: str | None = Header(default=None)) -> None:
    expected = getenv("OPERATOR_TOKEN", "")
    if not expected:
        if getenv("ALLOW_OPS_WITHOUT_TOKEN", "0") == "1":
            return
        raise HTTPException(status_code=503, detail="operator_token_missing")
    if x_operator_token != expected:
        raise HTTPException(status_code=401, detail="operator_token_required")


def _current_user(x_user_id: str | None = Header(default=None)) -> UUID | None:
    if not x_user_id:
        return None
    try:
        return UUID(x_user_id)
    except ValueError:
        return None


def _require_user(user_id: UUID | None = Depends(_current_user)) -> UUID:
    if user_id is None:
        raise _http_error(Unauthorized(message="Missing or invalid user context"))
    return user_id


def _worker_state() -> dict:
    try:
        from rq import Worker

        redis = get_redis()
        redis.ping()
        queue = get_queue()
        workers = Worker.all(connection=redis)
        return {
            "redis_ok": True,
            "online": len(workers) > 0,
            "worker_count": len(workers),
            "queue_depth": queue.count,
        }
    except Exception:
        return {
            "redis_ok": False,
            "online": False,
            "worker_count": 0,
            "queue_depth": None,
        }


def _job_row(job: Job) -> dict:
    return {
        "id": job.id,
        "order_id": job.order_id,
        "kind": job.kind,
        "type": job.type,
        "status": job.status,
        "attempts": job.attempt,
        "max_attempts": job.max_attempts,
        "error": job.error,
        "predecessor_job_id": job.predecessor_job_id,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


class PlanRequest(BaseModel):
    intent: dict[str, Any]

    model_config = ConfigDict(extra="forbid")


class SanitizeRequest(BaseModel):
    prompt: str = Field(min_length=1)

    model_config = ConfigDict(extra="forbid")


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/system/status")
def system_status() -> dict:
    worker = _worker_state()
    postgres_ok = True
    session = SessionLocal()
    try:
        session.execute(text("select 1"))
    except Exception:
        postgres_ok = False
    finally:
        session.close()
    return {
        "postgres_ok": postgres_ok,
        "worker": worker,
        "updated_at": datetime.now(timezone.utc),
    }


@app.post("/plan")
def plan(req: PlanRequest, user_id: UUID | None = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        result = plan_order(session, req.intent, user_id)
        return {"ok": True, "data": jsonable_encoder(result.to_dict())}
    except PipelineError as exc:
        raise _http_error(exc)
    finally:
        session.close()


@app.get("/jobs")
def list_jobs(
    status: Optional[str] = None,
    order_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: UUID = Depends(_require_user),
) -> dict:
    limit, offset = _paginate(limit, offset)
    session = SessionLocal()
    try:
        stmt = select(Job).where(Job.user_id == user_id)
        if status:
            stmt = stmt.where(Job.status == status)
        if order_id:
            stmt = stmt.where(Job.order_id == order_id)
        stmt = stmt.order_by(desc(Job.created_at)).limit(limit).offset(offset)
        rows = session.execute(stmt).scalars().all()
        return jsonable_encoder(
            {
                "jobs": [_job_row(job) for job in rows],
                "summary": job_summary(session, user_id),
                "refresh_interval_s": MONITOR_REFRESH_INTERVAL_S,
            }
        )
    finally:
        session.close()


@app.post("/ops/trigger-worker")
def ops_trigger_worker(
    limit: Optional[int] = Query(None, ge=1, le=100),
    background: bool = False,
    _guard: None = Depends(_require_operator),
) -> dict:
    if background:
        try:
            return {"enqueued": True, "rq_id": enqueue_worker_run(limit)}
        except RedisError as exc:
            raise HTTPException(status_code=503, detail=f"queue_unavailable: {exc}")
    return {"processed": trigger_worker(limit)}


@app.post("/ops/unlock-stuck")
def ops_unlock_stuck(
    threshold_minutes: Optional[int] = Query(None, ge=1),
    _guard: None = Depends(_require_operator),
) -> dict:
    session = SessionLocal()
    try:
        return {"unlocked": unlock_stuck(session, threshold_minutes)}
    finally:
        session.close()


@app.post("/ops/fail-expired")
def ops_fail_expired(
    max_age_hours: Optional[int] = Query(None, ge=1),
    _guard: None = Depends(_require_operator),
) -> dict:
    session = SessionLocal()
    try:
        return {"failed": fail_expired(session, max_age_hours)}
    finally:
        session.close()


@app.get("/batches")
def list_batches(
    brand_id: Optional[UUID] = None,
    user_id: UUID = Depends(_require_user),
) -> List[dict]:
    session = SessionLocal()
    try:
        return jsonable_encoder([view.to_dict() for view in load_batches(session, user_id, brand_id)])
    finally:
        session.close()


def _batch_events(user_id: UUID, brand_id: UUID | None, batch_id: UUID | None) -> Iterator[str]:
    channels = [user_channel(user_id)]
    if batch_id is not None:
        channels.append(batch_channel(batch_id))
    for notice in listen(channels):
        if notice is None:
            yield ": keepalive\n\n"
            continue
        session = SessionLocal()
        try:
            views = load_batches(session, user_id, brand_id)
        finally:
            session.close()
        payload = jsonable_encoder([view.to_dict() for view in views])
        yield f"data: {json.dumps(payload)}\n\n"


@app.get("/batches/stream")
def stream_batches(
    brand_id: Optional[UUID] = None,
    batch_id: Optional[UUID] = None,
    user_id: UUID = Depends(_require_user),
) -> StreamingResponse:
    return StreamingResponse(_batch_events(user_id, brand_id, batch_id), media_type="text/event-stream")


@app.get("/batches/{batch_id}")
def get_batch_detail(batch_id: UUID, user_id: UUID = Depends(_require_user)) -> dict:
    session = SessionLocal()
    try:
        return jsonable_encoder(get_batch(session, batch_id, user_id).to_dict())
    except PipelineError as exc:
        raise _http_error(exc)
    finally:
        session.close()


@app.post("/batches/clips/{clip_id}/retry")
def retry_batch_clip(clip_id: UUID, user_id: UUID = Depends(_require_user)) -> dict:
    session = SessionLocal()
    try:
        clip = retry_clip(session, clip_id, user_id)
        batch = clip.video.batch
        try:
            rq_id = enqueue_clip_render(str(clip.id))
        except RedisError as exc:
            mark_unqueued(session, [clip], QUEUE_UNAVAILABLE)
            publish_batch_change(batch.user_id, batch.id)
            raise HTTPException(status_code=503, detail=f"queue_unavailable: {exc}")
        publish_batch_change(batch.user_id, batch.id)
        return {"ok": True, "clip_id": clip.id, "status": clip.status, "rq_id": rq_id}
    except PipelineError as exc:
        raise _http_error(exc)
    finally:
        session.close()


@app.post("/batches/videos/{video_id}/regenerate")
def regenerate_batch_video(video_id: UUID, user_id: UUID = Depends(_require_user)) -> dict:
    session = SessionLocal()
    try:
        video = regenerate_video(session, video_id, user_id)
        rq_ids: list[str] = []
        for index, clip in enumerate(video.clips):
            try:
                rq_ids.append(enqueue_clip_render(str(clip.id)))
            except RedisError as exc:
                mark_unqueued(session, list(video.clips[index:]), QUEUE_UNAVAILABLE)
                publish_batch_change(video.batch.user_id, video.batch_id)
                raise HTTPException(status_code=503, detail=f"queue_unavailable: {exc}")
        publish_batch_change(video.batch.user_id, video.batch_id)
        return {"ok": True, "video_id": video.id, "status": video.status, "rq_ids": rq_ids}
    except PipelineError as exc:
        raise _http_error(exc)
    finally:
        session.close()


@app.get("/batches/{batch_id}/csv")
def download_batch_csv(batch_id: UUID, user_id: UUID = Depends(_require_user)) -> Response:
    session = SessionLocal()
    try:
        batch = get_batch(session, batch_id, user_id)
    except PipelineError as exc:
        raise _http_error(exc)
    finally:
        session.close()
    return Response(
        content=CSV_BOM + generate_canva_csv(batch),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="batch-{batch.id[:8]}-canva.csv"'},
    )


@app.get("/batches/{batch_id}/zip")
def download_batch_zip(batch_id: UUID, user_id: UUID = Depends(_require_user)) -> Response:
    session = SessionLocal()
    try:
        batch = get_batch(session, batch_id, user_id)
    except PipelineError as exc:
        raise _http_error(exc)
    finally:
        session.close()
    return Response(
        content=build_zip(batch),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{zip_filename(batch)}"'},
    )


@app.get("/batches/{batch_id}/texts")
def batch_texts(batch_id: UUID, user_id: UUID = Depends(_require_user)) -> PlainTextResponse:
    session = SessionLocal()
    try:
        batch = get_batch(session, batch_id, user_id)
    except PipelineError as exc:
        raise _http_error(exc)
    finally:
        session.close()
    return PlainTextResponse(copy_all_texts(batch))


@app.get("/quota/{brand_id}")
def get_quota(brand_id: UUID, user_id: UUID = Depends(_require_user)) -> dict:
    session = SessionLocal()
    try:
        return jsonable_encoder(quota_status(session, brand_id))
    finally:
        session.close()


@app.post("/prompt/sanitize")
def sanitize_prompt(req: SanitizeRequest) -> dict:
    result = sanitize(req.prompt)
    violation = detect_celebrity_violation(req.prompt)
    payload = result.to_dict()
    if result.was_modified:
        message, suggestions = content_policy_message(result)
        payload["message"] = message
        payload["suggestions"] = suggestions
    payload["violation"] = violation.to_dict() if violation is not None else None
    return payload
