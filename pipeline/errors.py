from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class PipelineError(Exception):
    message: str
    code: str = "PIPELINE_ERROR"
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


@dataclass(eq=False)
class IntentValidationError(PipelineError):
    code: str = "VALIDATION_ERROR"
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "details": list(self.errors)}


@dataclass(eq=False)
class Unauthorized(PipelineError):
    code: str = "UNAUTHORIZED"


@dataclass(eq=False)
class NotFound(PipelineError):
    code: str = "NOT_FOUND"


@dataclass(eq=False)
class ContentPolicyViolation(PipelineError):
    code: str = "CONTENT_POLICY_VIOLATION"
    suggestions: list[str] = field(default_factory=list)
    detected_names: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "suggestions": list(self.suggestions),
            "detectedNames": list(self.detected_names),
        }


@dataclass(eq=False)
class QuotaExceeded(PipelineError):
    code: str = "INSUFFICIENT_WOOFS"
    remaining: int = 0
    required: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "remaining": self.remaining, "required": self.required}


@dataclass(eq=False)
class ProviderFailure(PipelineError):
    code: str = "PROVIDER_FAILURE"
    provider: str | None = None


@dataclass(eq=False)
class OrphanedOrder(PipelineError):
    code: str = "ORPHANED_ORDER"
    order_id: str | None = None
