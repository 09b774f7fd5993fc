from __future__ import annotations

WOOF_COSTS: dict[str, int] = {
    "image": 1,
    "carousel": 10,
    "video_premium": 25,
    "video_clip": 25,
}

# order kind -> cost key
KIND_COST_KEYS = {
    "image": "image",
    "carousel": "carousel",
    "video": "video_premium",
}


def woof_cost(kind: str) -> int:
    key = KIND_COST_KEYS.get(kind, kind)
    if key not in WOOF_COSTS:
        raise ValueError(f"No woof cost defined for: {kind}")
    return WOOF_COSTS[key]
