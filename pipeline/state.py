from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging
import os
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, select, update

from db.models import Job, Order

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")
PREDECESSOR_FAILED = "predecessor failed"
MAX_RETRIES_EXCEEDED = "Max retries exceeded"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def stuck_minutes() -> int:
    return int(os.getenv("JOB_STUCK_MINUTES", "5"))


def max_age_hours() -> int:
    return int(os.getenv("JOB_MAX_AGE_HOURS", "24"))


def claim_next_job(session) -> Job | None:
    """Move the oldest queued job to running; concurrent callers never get the same row."""
    next_id = (
        select(Job.id)
        .where(Job.status == "queued")
        .order_by(Job.created_at)
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )
    stmt = (
        update(Job)
        .where(Job.id == next_id)
        .values(status="running", started_at=func.now(), updated_at=func.now())
        .returning(Job)
        .execution_options(synchronize_session=False)
    )
    job = session.execute(stmt).scalars().first()
    if job is None:
        return None
    if job.order_id is not None:
        session.execute(
            update(Order)
            .where(Order.id == job.order_id, Order.status == "queued")
            .values(status="processing", updated_at=func.now())
        )
    return job


def _fail_orders(session, order_ids: Iterable[UUID | None]) -> None:
    ids = {order_id for order_id in order_ids if order_id is not None}
    if not ids:
        return
    session.execute(
        update(Order)
        .where(Order.id.in_(ids), Order.status != "done")
        .values(status="failed", updated_at=func.now())
    )


def propagate_failure(session, job_ids: Iterable[UUID], order_ids: Iterable[UUID | None]) -> int:
    """Fail every blocked job downstream of `job_ids` and the owning orders."""
    frontier = set(job_ids)
    failed = 0
    while frontier:
        rows = session.execute(
            update(Job)
            .where(Job.predecessor_job_id.in_(frontier), Job.status == "blocked")
            .values(
                status="failed",
                error=PREDECESSOR_FAILED,
                finished_at=func.now(),
                updated_at=func.now(),
            )
            .returning(Job.id)
        ).all()
        frontier = {row[0] for row in rows}
        failed += len(frontier)
    _fail_orders(session, order_ids)
    return failed


def complete_job(session, job: Job, result: dict[str, Any] | None) -> Job | None:
    """Mark `job` completed and promote its successor; returns the promoted job, if any."""
    result = result or {}
    job.status = "completed"
    job.result = result
    job.error = None
    job.finished_at = _utcnow()
    job.updated_at = _utcnow()
    session.add(job)

    successor = session.execute(
        select(Job)
        .where(Job.predecessor_job_id == job.id, Job.status == "blocked")
        .with_for_update()
    ).scalars().first()
    if successor is not None:
        upstream = dict((job.payload or {}).get("upstream") or {})
        upstream[job.kind] = result
        successor.payload = {**(successor.payload or {}), "upstream": upstream}
        successor.status = "queued"
        successor.updated_at = _utcnow()
        session.add(successor)

    if job.order_id is not None:
        session.flush()
        remaining = session.execute(
            select(func.count())
            .select_from(Job)
            .where(Job.order_id == job.order_id, Job.status != "completed")
        ).scalar_one()
        if int(remaining) == 0:
            session.execute(
                update(Order).where(Order.id == job.order_id).values(status="done", updated_at=func.now())
            )
    session.commit()
    return successor


def fail_job(session, job: Job, error: str, *, retryable: bool = True) -> str:
    """Record a failed attempt; returns the job's new status (queued or failed)."""
    job.error = error
    job.updated_at = _utcnow()
    if retryable and job.attempt < job.max_attempts:
        job.status = "queued"
        job.attempt = job.attempt + 1
        job.started_at = None
        session.add(job)
        session.commit()
        logger.info("job %s re-queued (attempt %s/%s)", job.id, job.attempt, job.max_attempts)
        return "queued"

    if retryable:
        job.error = f"{MAX_RETRIES_EXCEEDED}: {error}"
    job.status = "failed"
    job.finished_at = _utcnow()
    session.add(job)
    session.flush()
    propagate_failure(session, [job.id], [job.order_id])
    session.commit()
    logger.warning("job %s failed terminally: %s", job.id, job.error)
    return "failed"


def unlock_stuck(session, threshold_minutes: int | None = None) -> int:
    threshold = threshold_minutes if threshold_minutes is not None else stuck_minutes()
    cutoff = _utcnow() - timedelta(minutes=threshold)
    running_since = func.coalesce(Job.started_at, Job.updated_at)

    exhausted = session.execute(
        update(Job)
        .where(
            Job.status == "running",
            running_since < cutoff,
            Job.attempt >= Job.max_attempts,
        )
        .values(
            status="failed",
            error=MAX_RETRIES_EXCEEDED,
            finished_at=func.now(),
            updated_at=func.now(),
        )
        .returning(Job.id, Job.order_id)
    ).all()
    if exhausted:
        propagate_failure(session, [row[0] for row in exhausted], [row[1] for row in exhausted])

    unlocked = session.execute(
        update(Job)
        .where(
            Job.status == "running",
            running_since < cutoff,
            Job.attempt < Job.max_attempts,
        )
        .values(
            status="queued",
            attempt=Job.attempt + 1,
            started_at=None,
            error=f"Unlocked after running longer than {threshold} min",
            updated_at=func.now(),
        )
        .returning(Job.id)
    ).all()
    session.commit()
    logger.info("unlock sweep: %s unlocked, %s exhausted", len(unlocked), len(exhausted))
    return len(unlocked)


def fail_expired(session, max_age: int | None = None) -> int:
    hours = max_age if max_age is not None else max_age_hours()
    cutoff = _utcnow() - timedelta(hours=hours)
    rows = session.execute(
        update(Job)
        .where(Job.created_at < cutoff, Job.status.not_in(TERMINAL_STATUSES))
        .values(
            status="failed",
            error=f"Expired: not completed within {hours}h",
            finished_at=func.now(),
            updated_at=func.now(),
        )
        .returning(Job.id, Job.order_id)
    ).all()
    if rows:
        propagate_failure(session, [row[0] for row in rows], [row[1] for row in rows])
    session.commit()
    logger.info("expiry sweep: %s job(s) failed", len(rows))
    return len(rows)


def job_summary(session, user_id: UUID | None = None) -> dict[str, int]:
    stmt = select(Job.status, func.count()).group_by(Job.status)
    if user_id is not None:
        stmt = stmt.where(Job.user_id == user_id)
    rows = session.execute(stmt).all()
    summary = {status: 0 for status in ("blocked", "queued", "running", "completed", "failed")}
    for status, count in rows:
        summary[str(status)] = int(count)
    summary["total"] = sum(summary.values())
    return summary
