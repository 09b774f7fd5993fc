from __future__ import annotations

from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pipeline.errors import IntentValidationError

Kind = Literal["carousel", "image", "video", "text"]
Ratio = Literal["1:1", "9:16", "16:9", "3:4"]


class Intent(BaseModel):
    kind: Kind
    brand_id: UUID = Field(alias="brandId")
    language: Literal["fr", "en", "es"] = "fr"
    audience: Optional[str] = None
    goal: Optional[Literal["awareness", "lead", "sale"]] = None
    slides: Optional[int] = Field(default=None, ge=1)
    ratio: Optional[Ratio] = None
    template_id: Optional[str] = Field(default=None, alias="templateId")
    copy_brief: Optional[str] = Field(default=None, alias="copyBrief")
    cta: Optional[str] = None
    palette_lock: Optional[bool] = Field(default=None, alias="paletteLock")
    typography_lock: Optional[bool] = Field(default=None, alias="typographyLock")
    assets_refs: List[str] = Field(default_factory=list, alias="assetsRefs")
    quality: Literal["fast", "high"] = "fast"
    campaign: Optional[str] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def _format_error(err: dict) -> str:
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def parse_intent(raw: dict) -> Intent:
    if not isinstance(raw, dict):
        raise IntentValidationError(message="Intent must be an object", errors=["intent: expected object"])
    try:
        return Intent.model_validate(raw)
    except ValidationError as exc:
        errors = [_format_error(err) for err in exc.errors()]
        raise IntentValidationError(message="Invalid intent", errors=errors) from exc
