from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any

from .http import post_json


@dataclass(frozen=True)
class SelectorConfig:
    url: str
    secret: str
    timeout_s: int


def load_selector_config() -> SelectorConfig:
    url = os.getenv("PROVIDER_SELECTOR_URL", "").strip()
    if not url:
        raise RuntimeError("PROVIDER_SELECTOR_URL is not set")
    return SelectorConfig(
        url=url.rstrip("/"),
        secret=os.getenv("INTERNAL_FN_SECRET", "").strip(),
        timeout_s=int(os.getenv("PROVIDER_TIMEOUT_S", "60")),
    )


@dataclass(frozen=True)
class ProviderDecision:
    decision: str
    provider: str | None
    cost_woofs: int
    eta_s: int | None = None
    quality_score: float | None = None
    suggestions: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.decision == "OK" and bool(self.provider)


def build_selector_request(
    *,
    modality: str,
    format: str,
    quality: str,
    budget_woofs: int,
    use_case: str = "general",
    style: str = "default",
    duration_s: int | None = None,
) -> dict[str, Any]:
    return {
        "brief": {"use_case": use_case, "style": style},
        "modality": modality,
        "format": format,
        "duration_s": duration_s,
        "quality": quality,
        "budget_woofs": budget_woofs,
    }


def parse_decision(data: dict[str, Any]) -> ProviderDecision:
    decision = str(data.get("decision") or "KO").upper()
    eta = data.get("eta_s")
    score = data.get("quality_score")
    return ProviderDecision(
        decision=decision if decision in {"OK", "KO"} else "KO",
        provider=data.get("provider") or None,
        cost_woofs=int(data.get("cost_woofs") or 0),
        eta_s=int(eta) if eta is not None else None,
        quality_score=float(score) if score is not None else None,
        suggestions=[str(item) for item in data.get("suggestions") or []],
    )


def select_provider(request: dict[str, Any], config: SelectorConfig | None = None) -> ProviderDecision:
    config = config or load_selector_config()
    data = post_json(
        config.url,
        request,
        provider="provider-selector",
        secret=config.secret,
        timeout_s=config.timeout_s,
    )
    return parse_decision(data)
