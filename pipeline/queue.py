from __future__ import annotations

import os

from rq import Queue

from pipeline.connections import get_redis
from pipeline.jobs import process_due_jobs, render_clip_job, rq_on_failure, rq_on_success


def _timeout_seconds(kind: str) -> int:
    if kind == "render":
        return int(os.getenv("RQ_RENDER_TIMEOUT", "600"))
    return int(os.getenv("RQ_JOB_TIMEOUT", "120"))


def trigger_limit() -> int:
    return int(os.getenv("WORKER_TRIGGER_LIMIT", "5"))


def get_queue(name: str = "default") -> Queue:
    return Queue(name, connection=get_redis())


def trigger_worker(limit: int | None = None) -> int:
    """Run up to `limit` due jobs in-process; more may remain queued."""
    return process_due_jobs(limit or trigger_limit())


def enqueue_worker_run(limit: int | None = None) -> str:
    queue = get_queue()
    rq_job = queue.enqueue(
        process_due_jobs,
        limit or trigger_limit(),
        job_timeout=_timeout_seconds("render"),
        on_success=rq_on_success,
    )
    return rq_job.id


def enqueue_clip_render(clip_id: str) -> str:
    queue = get_queue()
    rq_job = queue.enqueue(
        render_clip_job,
        str(clip_id),
        job_timeout=_timeout_seconds("render"),
        on_failure=rq_on_failure,
        on_success=rq_on_success,
    )
    return rq_job.id
