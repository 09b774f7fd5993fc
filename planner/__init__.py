from .core import (
    PlanResult,
    StagePlan,
    apply_defaults,
    build_pipeline,
    build_tags,
    enrich_with_memory,
    plan_order,
    prepare_intent,
    read_memory,
    slugify,
    validate_business_rules,
)
from .intent import Intent, parse_intent

__all__ = [
    "Intent",
    "PlanResult",
    "StagePlan",
    "apply_defaults",
    "build_pipeline",
    "build_tags",
    "enrich_with_memory",
    "parse_intent",
    "plan_order",
    "prepare_intent",
    "read_memory",
    "slugify",
    "validate_business_rules",
]
