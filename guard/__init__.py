from .sanitizer import (
    PromptPolicy,
    Replacement,
    SanitizeResult,
    content_policy_message,
    detect_celebrity_violation,
    is_content_policy_violation,
    load_policy,
    sanitize,
)

__all__ = [
    "PromptPolicy",
    "Replacement",
    "SanitizeResult",
    "content_policy_message",
    "detect_celebrity_violation",
    "is_content_policy_violation",
    "load_policy",
    "sanitize",
]
