from .export import build_zip, copy_all_texts, generate_canva_csv, generate_manifest, generate_texts_markdown
from .rollup import BatchView, normalize_clip_status, progress_percent, rollup_statuses

__all__ = [
    "BatchView",
    "build_zip",
    "copy_all_texts",
    "generate_canva_csv",
    "generate_manifest",
    "generate_texts_markdown",
    "normalize_clip_status",
    "progress_percent",
    "rollup_statuses",
]
