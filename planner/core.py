from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
import re
from typing import Any, Iterable
import unicodedata
from uuid import UUID, uuid4

from sqlalchemy import select

from db.models import Job, MemoryEntry, Order
from pipeline.errors import OrphanedOrder, PipelineError, Unauthorized
from pipeline.saga import Saga

from .intent import Intent, parse_intent

logger = logging.getLogger(__name__)

KIND_DEFAULTS: dict[str, dict[str, Any]] = {
    "carousel": {"slides": 5, "ratio": "9:16"},
    "image": {"slides": 1, "ratio": "1:1"},
    "video": {"ratio": "16:9"},
}
RATIOS = ("1:1", "9:16", "16:9", "3:4")
VISUAL_KINDS = ("image", "carousel", "video")
THUMB_KINDS = ("carousel", "video")


@dataclass(frozen=True)
class StagePlan:
    kind: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class PlanResult:
    order_id: UUID
    plan_kinds: list[str]
    warnings: list[str] = field(default_factory=list)
    intent: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"orderId": self.order_id, "plan": list(self.plan_kinds), "warnings": list(self.warnings)}


def _max_attempts() -> int:
    return int(os.getenv("JOB_MAX_ATTEMPTS", "3"))


def slugify(value: str) -> str:
    text = unicodedata.normalize("NFD", value.lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def validate_business_rules(intent: Intent) -> list[str]:
    """Warnings for the intent as submitted, before defaults are filled in."""
    warnings: list[str] = []
    if intent.kind == "carousel":
        if intent.slides is None or intent.slides < 3:
            warnings.append("A carousel should have at least 3 slides; default applied when missing.")
        if intent.ratio is None:
            warnings.append("A ratio is required for carousels; default applied.")
    if intent.kind == "video" and intent.ratio is None:
        warnings.append("A ratio is required for videos; default applied.")
    return warnings


def apply_defaults(intent: Intent) -> Intent:
    defaults = KIND_DEFAULTS.get(intent.kind, {})
    updates = {name: value for name, value in defaults.items() if getattr(intent, name) is None}
    if not updates:
        return intent
    return intent.model_copy(update=updates)


def enrich_with_memory(intent: Intent, memories: Iterable[tuple[str, Any]]) -> Intent:
    # later scopes win: global, then user, then brand
    memory = dict(memories)
    updates: dict[str, Any] = {}

    cta = memory.get("cta.defaults")
    if intent.cta is None and isinstance(cta, dict) and cta.get("default"):
        updates["cta"] = str(cta["default"])

    locks = memory.get("brand.locks")
    if isinstance(locks, dict):
        if intent.palette_lock is None and locks.get("palette"):
            updates["palette_lock"] = True
        if intent.typography_lock is None and locks.get("typography"):
            updates["typography_lock"] = True

    ratios = memory.get("ratio.defaults")
    if intent.ratio is None and isinstance(ratios, dict):
        preferred = ratios.get(intent.kind)
        if preferred in RATIOS:
            updates["ratio"] = preferred

    if not updates:
        return intent
    return intent.model_copy(update=updates)


def prepare_intent(raw: dict, memories: Iterable[tuple[str, Any]] = ()) -> tuple[Intent, list[str]]:
    intent = parse_intent(raw)
    warnings = validate_business_rules(intent)
    intent = apply_defaults(intent)
    intent = enrich_with_memory(intent, memories)
    return intent, warnings


def build_tags(intent: Intent, order_id: UUID | str) -> list[str]:
    return [
        f"brand:{intent.brand_id}",
        f"order:{order_id}",
        f"type:{intent.kind}",
        f"ratio:{intent.ratio or '1:1'}",
        f"lang:{intent.language}",
        f"campaign:{slugify(intent.campaign or 'default')}",
    ]


def build_pipeline(intent: Intent, order_id: UUID | str) -> list[StagePlan]:
    order_ref = str(order_id)
    stages: list[StagePlan] = []

    if intent.kind != "text" or intent.copy_brief:
        stages.append(
            StagePlan(
                "copy",
                {
                    "order_id": order_ref,
                    "brief": intent.copy_brief,
                    "language": intent.language,
                    "cta": intent.cta,
                    "kind": intent.kind,
                    "slides": intent.slides,
                },
            )
        )

    if intent.kind in VISUAL_KINDS:
        stages.append(
            StagePlan(
                "vision",
                {
                    "order_id": order_ref,
                    "kind": intent.kind,
                    "ratio": intent.ratio,
                    "slides": intent.slides,
                    "locks": {
                        "palette": bool(intent.palette_lock),
                        "typography": bool(intent.typography_lock),
                    },
                    "template_id": intent.template_id,
                    "assets_refs": list(intent.assets_refs),
                },
            )
        )

    stages.append(
        StagePlan(
            "render",
            {
                "order_id": order_ref,
                "kind": intent.kind,
                "ratio": intent.ratio,
                "quality": intent.quality,
                "brand_id": str(intent.brand_id),
            },
        )
    )

    stages.append(
        StagePlan(
            "upload",
            {
                "order_id": order_ref,
                "brand_id": str(intent.brand_id),
                "tags": build_tags(intent, order_ref),
            },
        )
    )

    if intent.kind in THUMB_KINDS:
        stages.append(StagePlan("thumb", {"order_id": order_ref}))

    return stages


def build_job_rows(order: Order, intent: Intent, stages: list[StagePlan]) -> list[Job]:
    """First stage is claimable; every later stage waits on its predecessor."""
    rows: list[Job] = []
    max_attempts = _max_attempts()
    previous: Job | None = None
    for stage in stages:
        job = Job(
            id=uuid4(),
            order_id=order.id,
            user_id=order.user_id,
            brand_id=order.brand_id,
            kind=stage.kind,
            type=f"{intent.kind}:{stage.kind}",
            payload=stage.payload,
            status="queued" if previous is None else "blocked",
            attempt=0,
            max_attempts=max_attempts,
            predecessor_job_id=previous.id if previous is not None else None,
        )
        rows.append(job)
        previous = job
    return rows


def read_memory(session, user_id: UUID, brand_id: UUID) -> list[tuple[str, Any]]:
    scopes = [
        select(MemoryEntry.key, MemoryEntry.value).where(MemoryEntry.scope == "global"),
        select(MemoryEntry.key, MemoryEntry.value).where(
            MemoryEntry.scope == "user",
            MemoryEntry.user_id == user_id,
        ),
        select(MemoryEntry.key, MemoryEntry.value).where(
            MemoryEntry.scope == "brand",
            MemoryEntry.user_id == user_id,
            MemoryEntry.brand_id == brand_id,
        ),
    ]
    entries: list[tuple[str, Any]] = []
    for stmt in scopes:
        entries.extend((key, value) for key, value in session.execute(stmt).all())
    return entries


def plan_order(session, raw_intent: dict, user_id: UUID | None) -> PlanResult:
    if user_id is None:
        raise Unauthorized(message="Missing or invalid user context")

    intent, warnings = prepare_intent(raw_intent)
    intent = enrich_with_memory(intent, read_memory(session, user_id, intent.brand_id))
    intent_json = intent.to_json()

    def create_order(ctx: dict[str, Any]) -> Order:
        order = Order(
            id=uuid4(),
            user_id=user_id,
            brand_id=intent.brand_id,
            intent_json=intent_json,
            status="draft",
        )
        session.add(order)
        session.commit()
        return order

    def delete_order(ctx: dict[str, Any]) -> None:
        session.rollback()
        session.delete(ctx["order"])
        session.commit()
        logger.warning("plan rollback: deleted order %s", ctx["order"].id)

    def insert_jobs(ctx: dict[str, Any]) -> list[Job]:
        stages = build_pipeline(intent, ctx["order"].id)
        jobs = build_job_rows(ctx["order"], intent, stages)
        session.add_all(jobs)
        session.commit()
        return jobs

    def mark_queued(ctx: dict[str, Any]) -> None:
        ctx["order"].status = "queued"
        session.commit()

    saga = (
        Saga("plan")
        .step("order", create_order, compensate=delete_order)
        .step("jobs", insert_jobs)
        .step("queued", mark_queued)
    )
    ctx: dict[str, Any] = {}
    try:
        saga.run(ctx)
    except PipelineError:
        raise
    except Exception as exc:
        if "order" not in ctx:
            raise
        order_id = ctx["order"].id
        if ctx.get("compensation_failures"):
            logger.error("plan rollback failed, order %s may be orphaned", order_id)
        step = ctx.get("failed_step", "unknown")
        raise OrphanedOrder(
            message=f"Plan step '{step}' failed for order {order_id}: {exc}",
            order_id=str(order_id),
        ) from exc

    jobs: list[Job] = ctx["jobs"]
    logger.info("planned order %s with stages %s", ctx["order"].id, [job.kind for job in jobs])
    return PlanResult(
        order_id=ctx["order"].id,
        plan_kinds=[job.kind for job in jobs],
        warnings=warnings,
        intent=intent_json,
    )
