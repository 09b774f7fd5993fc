from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any
from uuid import UUID

from guard import detect_celebrity_violation, sanitize
from providers import build_selector_request, render_media, select_provider
from quota import check_quota, consume, period_key, refund, woof_cost

from .errors import ContentPolicyViolation, ProviderFailure, QuotaExceeded
from .saga import Saga

logger = logging.getLogger(__name__)

SAFE_RETRY_SUFFIX = "Depict only generic, unbranded subjects. Do not show real people or logos."


@dataclass(frozen=True)
class RenderRequest:
    brand_id: UUID
    prompt: str
    cost_key: str
    modality: str
    format: str
    quality: str = "fast"
    duration_s: int | None = None
    use_case: str = "general"
    style: str = "default"
    meta: dict[str, Any] = field(default_factory=dict)
    # media key the caller needs, e.g. "video_url"; a response without it fails the render
    require_media: str | None = None


def guarded_render(session, request: RenderRequest) -> dict[str, Any]:
    """Gate, price, pay for and run one external render.

    Steps run in a fixed order: celebrity gate, sanitization, provider
    selection, quota check, consume, render. When the render fails the
    consumed woofs are refunded to the same period they were taken from
    before the error propagates.
    """
    violation = detect_celebrity_violation(request.prompt)
    if violation is not None:
        raise violation

    cleaned = sanitize(request.prompt)
    estimate = woof_cost(request.cost_key)
    decision = select_provider(
        build_selector_request(
            modality=request.modality,
            format=request.format,
            quality=request.quality,
            budget_woofs=estimate,
            use_case=request.use_case,
            style=request.style,
            duration_s=request.duration_s,
        )
    )
    if not decision.ok:
        hint = "; ".join(decision.suggestions)
        raise ProviderFailure(
            message=f"No provider available for {request.modality} {request.format}" + (f" ({hint})" if hint else ""),
            provider=decision.provider,
        )

    cost = decision.cost_woofs or estimate
    period = period_key()
    status = check_quota(session, request.brand_id, cost, period)
    if not status.ok:
        raise QuotaExceeded(
            message="Insufficient woofs for this generation",
            remaining=status.remaining,
            required=cost,
        )

    meta = {**request.meta, "kind": request.cost_key, "provider": decision.provider}

    def do_consume(ctx: dict[str, Any]) -> int:
        return consume(session, request.brand_id, cost, meta, period=period)

    def do_refund(ctx: dict[str, Any]) -> None:
        refund(session, request.brand_id, cost, {**meta, "reason": "render_failed"}, period=period)

    def do_render(ctx: dict[str, Any]) -> dict[str, Any]:
        kwargs = {
            "provider": decision.provider,
            "prompt": cleaned.sanitized_prompt,
            "format": request.format,
            "brand_id": str(request.brand_id),
            "modality": request.modality,
            "quality": request.quality,
        }
        try:
            media = render_media(**kwargs)
        except ContentPolicyViolation as exc:
            logger.warning("render rejected by content policy, retrying once: %s", exc.message)
            kwargs["prompt"] = f"{cleaned.sanitized_prompt}\n\n{SAFE_RETRY_SUFFIX}"
            media = render_media(**kwargs)
        if request.require_media and not media.get(request.require_media):
            raise ProviderFailure(
                message=f"{decision.provider} returned no {request.require_media}",
                provider=decision.provider,
                retryable=True,
            )
        return media

    ctx = (
        Saga("guarded-render")
        .step("consume", do_consume, compensate=do_refund)
        .step("render", do_render)
        .run()
    )
    return {
        "provider": decision.provider,
        "cost_woofs": cost,
        "remaining_woofs": ctx["consume"],
        "media": ctx["render"],
        "sanitized_prompt": cleaned.sanitized_prompt,
        "prompt_warnings": list(cleaned.warnings),
        "replacements": [item.to_dict() for item in cleaned.replacements],
    }
