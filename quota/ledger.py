from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import logging
import os
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.sql import func

from db.models import BrandQuota, UsageEvent
from pipeline.errors import QuotaExceeded

logger = logging.getLogger(__name__)

THRESHOLD_RATIO = 0.8


@dataclass(frozen=True)
class QuotaCheck:
    ok: bool
    remaining: int
    quota: int
    used: int

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "remaining": self.remaining, "quota": self.quota, "used": self.used}


def default_quota_woofs() -> int:
    return int(os.getenv("QUOTA_DEFAULT_WOOFS", "150"))


def period_key(now: datetime | None = None) -> int:
    now = now or datetime.now(UTC)
    return now.year * 100 + now.month


def _ensure_row(session, brand_id: UUID, period: int) -> None:
    stmt = (
        pg_insert(BrandQuota)
        .values(
            brand_id=brand_id,
            period_yyyymm=period,
            quota_woofs=default_quota_woofs(),
            woofs_used=0,
            images_used=0,
            videos_used=0,
        )
        .on_conflict_do_nothing(index_elements=["brand_id", "period_yyyymm"])
    )
    session.execute(stmt)


def _usage_counter(meta: dict[str, Any] | None) -> str | None:
    kind = (meta or {}).get("kind")
    if kind in {"image", "carousel"}:
        return "images_used"
    if kind in {"video", "video_clip", "video_premium"}:
        return "videos_used"
    return None


def check_quota(session, brand_id: UUID, cost: int, period: int | None = None) -> QuotaCheck:
    period = period or period_key()
    _ensure_row(session, brand_id, period)
    row = session.execute(
        select(BrandQuota.quota_woofs, BrandQuota.woofs_used).where(
            BrandQuota.brand_id == brand_id,
            BrandQuota.period_yyyymm == period,
        )
    ).one()
    quota, used = int(row[0]), int(row[1])
    remaining = max(0, quota - used)
    return QuotaCheck(ok=remaining >= cost, remaining=remaining, quota=quota, used=used)


def consume(
    session,
    brand_id: UUID,
    cost: int,
    meta: dict[str, Any] | None = None,
    period: int | None = None,
) -> int:
    """Atomically spend `cost` woofs; returns the remaining balance."""
    if cost < 0:
        raise ValueError("cost must be >= 0")
    period = period or period_key()
    _ensure_row(session, brand_id, period)
    values: dict[str, Any] = {"woofs_used": BrandQuota.woofs_used + cost, "updated_at": func.now()}
    counter = _usage_counter(meta)
    if counter is not None:
        values[counter] = getattr(BrandQuota, counter) + 1
    row = session.execute(
        update(BrandQuota)
        .where(
            BrandQuota.brand_id == brand_id,
            BrandQuota.period_yyyymm == period,
            BrandQuota.woofs_used + cost <= BrandQuota.quota_woofs,
        )
        .values(**values)
        .returning(BrandQuota.quota_woofs, BrandQuota.woofs_used)
    ).first()
    if row is None:
        session.rollback()
        status = check_quota(session, brand_id, cost, period)
        session.commit()
        raise QuotaExceeded(
            message="Insufficient woofs for this generation",
            remaining=status.remaining,
            required=cost,
        )
    session.add(UsageEvent(brand_id=brand_id, kind="consume", delta_woofs=cost, meta=meta or {}))
    session.commit()
    remaining = int(row[0]) - int(row[1])
    logger.info("quota consume brand=%s cost=%s remaining=%s", brand_id, cost, remaining)
    return remaining


def refund(
    session,
    brand_id: UUID,
    cost: int,
    meta: dict[str, Any] | None = None,
    period: int | None = None,
) -> int:
    """Atomically give back `cost` woofs, never dropping usage below zero.

    Pass the `period` that was charged; a refund computed from the clock
    would land on the next month when a render crosses the boundary.
    """
    if cost < 0:
        raise ValueError("cost must be >= 0")
    period = period or period_key()
    values: dict[str, Any] = {
        "woofs_used": func.greatest(BrandQuota.woofs_used - cost, 0),
        "updated_at": func.now(),
    }
    counter = _usage_counter(meta)
    if counter is not None:
        column = getattr(BrandQuota, counter)
        values[counter] = func.greatest(column - 1, 0)
    row = session.execute(
        update(BrandQuota)
        .where(BrandQuota.brand_id == brand_id, BrandQuota.period_yyyymm == period)
        .values(**values)
        .returning(BrandQuota.quota_woofs, BrandQuota.woofs_used)
    ).first()
    if row is None:
        session.rollback()
        raise RuntimeError(f"No quota row to refund for brand {brand_id} period {period}")
    session.add(UsageEvent(brand_id=brand_id, kind="refund", delta_woofs=-cost, meta=meta or {}))
    session.commit()
    remaining = int(row[0]) - int(row[1])
    logger.info("quota refund brand=%s cost=%s remaining=%s", brand_id, cost, remaining)
    return remaining


def quota_status(session, brand_id: UUID) -> dict[str, Any]:
    period = period_key()
    _ensure_row(session, brand_id, period)
    row = session.execute(
        select(BrandQuota).where(
            BrandQuota.brand_id == brand_id,
            BrandQuota.period_yyyymm == period,
        )
    ).scalar_one()
    session.commit()
    quota = int(row.quota_woofs or 0)
    used = int(row.woofs_used or 0)
    return {
        "brand_id": brand_id,
        "period": period,
        "plan": row.plan,
        "quota_woofs": quota,
        "woofs_used": used,
        "remaining": max(0, quota - used),
        "images_used": int(row.images_used or 0),
        "videos_used": int(row.videos_used or 0),
        "threshold_80": quota > 0 and used >= quota * THRESHOLD_RATIO,
    }
