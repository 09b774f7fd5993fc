from .render import RenderConfig, call_stage, load_render_config, render_media
from .selector import (
    ProviderDecision,
    SelectorConfig,
    build_selector_request,
    load_selector_config,
    select_provider,
)

__all__ = [
    "RenderConfig",
    "call_stage",
    "load_render_config",
    "render_media",
    "ProviderDecision",
    "SelectorConfig",
    "build_selector_request",
    "load_selector_config",
    "select_provider",
]
