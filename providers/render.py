from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Any

from pipeline.errors import ProviderFailure

from .http import post_json

STAGE_ENDPOINTS = {
    "copy": "/api/generate-copy",
    "vision": "/api/generate-vision",
    "render": "/api/render",
    "upload": "/api/upload-cloudinary",
    "thumb": "/api/thumbnail",
    "publish": "/api/publish",
}


@dataclass(frozen=True)
class RenderConfig:
    base_url: str
    secret: str
    timeout_s: int


def load_render_config() -> RenderConfig:
    base_url = os.getenv("RENDER_BACKEND_URL", "").strip()
    if not base_url:
        raise RuntimeError("RENDER_BACKEND_URL is not set")
    return RenderConfig(
        base_url=base_url.rstrip("/"),
        secret=os.getenv("INTERNAL_FN_SECRET", "").strip(),
        timeout_s=int(os.getenv("PROVIDER_TIMEOUT_S", "60")),
    )


def call_stage(kind: str, payload: dict[str, Any], config: RenderConfig | None = None) -> dict[str, Any]:
    endpoint = STAGE_ENDPOINTS.get(kind)
    if endpoint is None:
        raise ValueError(f"Unknown stage kind: {kind}")
    config = config or load_render_config()
    return post_json(
        f"{config.base_url}{endpoint}",
        payload,
        provider=f"render-backend:{kind}",
        secret=config.secret,
        timeout_s=config.timeout_s,
    )


def render_media(
    *,
    provider: str,
    prompt: str,
    format: str,
    brand_id: str,
    modality: str,
    quality: str = "fast",
    config: RenderConfig | None = None,
) -> dict[str, Any]:
    """Call the render endpoint; returns {"image_urls": [...]} or {"video_url": ...}."""
    data = call_stage(
        "render",
        {
            "provider": provider,
            "prompt": prompt,
            "format": format,
            "aspectRatio": format,
            "brand_id": brand_id,
            "modality": modality,
            "quality": quality,
        },
        config=config,
    )
    if data.get("video_url"):
        return {"video_url": data["video_url"]}
    urls = data.get("image_urls") or []
    if not urls:
        raise ProviderFailure(message="render returned no media", provider=provider)
    return {"image_urls": list(urls)}
