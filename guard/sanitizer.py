from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
import logging
from pathlib import Path
import re
from typing import Any

import yaml

from pipeline.errors import ContentPolicyViolation

logger = logging.getLogger(__name__)

POLICY_PATH = Path(__file__).with_name("policy.yaml")

TRADEMARK = "trademark"
PERSON_REFERENCE = "person_reference"


@dataclass(frozen=True)
class Replacement:
    original: str
    replacement: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"original": self.original, "replacement": self.replacement, "reason": self.reason}


@dataclass(frozen=True)
class SanitizeResult:
    sanitized_prompt: str
    was_modified: bool
    replacements: list[Replacement] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sanitizedPrompt": self.sanitized_prompt,
            "wasModified": self.was_modified,
            "replacements": [item.to_dict() for item in self.replacements],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class PromptPolicy:
    trademarks: tuple[tuple[re.Pattern[str], str], ...]
    person_patterns: tuple[re.Pattern[str], ...]
    named_people: tuple[re.Pattern[str], ...]
    person_replacement: str
    provider_policy_markers: tuple[str, ...]


def _compile_policy(data: dict[str, Any]) -> PromptPolicy:
    trademarks = data.get("trademarks") or {}
    if not isinstance(trademarks, dict):
        raise ValueError("policy.trademarks must be a mapping")
    compiled_trademarks = tuple(
        (re.compile(rf"\b{re.escape(str(brand))}\b", re.IGNORECASE), str(replacement))
        for brand, replacement in trademarks.items()
    )
    named = tuple(re.compile(p, re.IGNORECASE) for p in data.get("named_people") or [])
    generic = tuple(re.compile(p, re.IGNORECASE) for p in data.get("person_patterns") or [])
    return PromptPolicy(
        trademarks=compiled_trademarks,
        person_patterns=generic + named,
        named_people=named,
        person_replacement=str(data.get("person_replacement") or "a professional person"),
        provider_policy_markers=tuple(
            str(marker).lower() for marker in data.get("provider_policy_markers") or []
        ),
    )


@lru_cache(maxsize=1)
def load_policy(path: Path = POLICY_PATH) -> PromptPolicy:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Prompt policy must be a mapping: {path}")
    return _compile_policy(data)


def sanitize(prompt: str, policy: PromptPolicy | None = None) -> SanitizeResult:
    policy = policy or load_policy()
    text = prompt or ""
    replacements: list[Replacement] = []

    for pattern, generic in policy.trademarks:
        matches = [m.group(0) for m in pattern.finditer(text)]
        if not matches:
            continue
        text = pattern.sub(lambda _m: generic, text)
        for match in matches:
            replacements.append(Replacement(match, generic, TRADEMARK))
            logger.info("prompt guard replaced trademark %r -> %r", match, generic)

    for pattern in policy.person_patterns:
        matches = [m.group(0) for m in pattern.finditer(text)]
        if not matches:
            continue
        text = pattern.sub(lambda _m: policy.person_replacement, text)
        for match in matches:
            replacements.append(Replacement(match, policy.person_replacement, PERSON_REFERENCE))
            logger.info("prompt guard replaced person reference %r", match)

    warnings: list[str] = []
    if any(r.reason == TRADEMARK for r in replacements):
        warnings.append("Trademarks were replaced with generic descriptions.")
    if any(r.reason == PERSON_REFERENCE for r in replacements):
        warnings.append("References to real people were replaced with generic descriptions.")

    return SanitizeResult(
        sanitized_prompt=text.strip(),
        was_modified=bool(replacements),
        replacements=replacements,
        warnings=warnings,
    )


def content_policy_message(result: SanitizeResult) -> tuple[str, list[str]]:
    brand_issues = [r for r in result.replacements if r.reason == TRADEMARK]
    person_issues = [r for r in result.replacements if r.reason == PERSON_REFERENCE]

    message = "Your prompt was adjusted to comply with the generation rules."
    suggestions: list[str] = []
    if brand_issues:
        message += f" {len(brand_issues)} brand(s) replaced."
        suggestions.append("Use generic descriptions ('cola' rather than 'Coca-Cola').")
        suggestions.append("Describe the kind of product instead of the brand.")
    if person_issues:
        message += f" {len(person_issues)} reference(s) to people replaced."
        suggestions.append("Avoid references to photos of real people.")
        suggestions.append("Describe characters generically.")
    return message, suggestions


def detect_celebrity_violation(
    prompt: str, policy: PromptPolicy | None = None
) -> ContentPolicyViolation | None:
    policy = policy or load_policy()
    names: list[str] = []
    for pattern in policy.named_people:
        for match in pattern.finditer(prompt or ""):
            name = match.group(0)
            if name.lower() not in {n.lower() for n in names}:
                names.append(name)
    if not names:
        return None
    logger.info("prompt guard blocked named individuals: %s", ", ".join(names))
    return ContentPolicyViolation(
        message=f"Real people cannot be generated: {', '.join(names[:3])}.",
        suggestions=[
            "Describe the person generically (e.g. 'a dynamic entrepreneur').",
            "Reference photos inspire style only; faces are not reproduced.",
        ],
        detected_names=names,
    )


def is_content_policy_violation(error_text: str, policy: PromptPolicy | None = None) -> bool:
    policy = policy or load_policy()
    lowered = (error_text or "").lower()
    return any(marker in lowered for marker in policy.provider_policy_markers)
