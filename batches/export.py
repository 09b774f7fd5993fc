from __future__ import annotations

import io
import json
from typing import Any
import zipfile

from fastapi.encoders import jsonable_encoder

from .rollup import BatchView, VideoView

CSV_BOM = "\ufeff"
ZIP_CSV_PATH = "csv/canva_bulk.csv"
ZIP_TEXTS_PATH = "texts/texts.md"
ZIP_MANIFEST_PATH = "manifest/manifest.json"


def _escape(value: str | None) -> str:
    cleaned = (value or "").replace('"', '""').replace("\r\n", " ").replace("\n", " ")
    return f'"{cleaned}"'


def _video_title(video: VideoView) -> str:
    return video.title or f"Video {video.video_index}"


def csv_header(clips_per_video: int = 3) -> str:
    columns = ["batch_key", "video_index", "video_title"]
    for index in range(1, max(3, clips_per_video) + 1):
        columns.extend([f"clip{index}_title", f"clip{index}_subtitle"])
    columns.append("cta")
    return ",".join(columns)


def generate_canva_csv(batch: BatchView) -> str:
    """Canva bulk-create CSV: one row per video, no trailing newline."""
    clip_count = max(3, batch.clips_per_video)
    lines = [csv_header(clip_count)]
    for video in batch.videos:
        row = [_escape(batch.id), str(video.video_index), _escape(_video_title(video))]
        for index in range(clip_count):
            title, subtitle = video.texts.clip_text(index) if video.texts else ("", "")
            row.extend([_escape(title), _escape(subtitle)])
        row.append(_escape(video.texts.cta if video.texts else None))
        lines.append(",".join(row))
    return "\n".join(lines)


def generate_texts_markdown(batch: BatchView) -> str:
    created = batch.created_at.date().isoformat() if batch.created_at else "-"
    out = [f"# Video Batch Texts\n\nBatch ID: {batch.id}\nCreated: {created}\n\n---\n\n"]
    clip_count = max(3, batch.clips_per_video)
    for video in batch.videos:
        texts = video.texts
        out.append(f"## Video {video.video_index}: {video.title or 'Untitled'}\n\n")
        if texts and texts.caption:
            out.append(f"### Caption\n{texts.caption}\n\n")
        if texts and texts.cta:
            out.append(f"### CTA\n{texts.cta}\n\n")
        out.append("### Clip texts\n| Clip | Title | Subtitle |\n|------|-------|----------|\n")
        for index in range(clip_count):
            title, subtitle = texts.clip_text(index) if texts else ("", "")
            out.append(f"| {index + 1} | {title or '-'} | {subtitle or '-'} |\n")
        out.append("\n### Clip URLs\n")
        for clip in video.clips:
            out.append(f"- Clip {clip.clip_index}: {clip.clip_url or 'In progress...'}\n")
        out.append("\n---\n\n")
    return "".join(out)


def generate_manifest(batch: BatchView) -> dict[str, Any]:
    return jsonable_encoder(
        {
            "batch_id": batch.id,
            "created_at": batch.created_at,
            "settings": batch.settings,
            "status": batch.status,
            "videos": [
                {
                    "id": video.id,
                    "index": video.video_index,
                    "title": video.title,
                    "status": video.status,
                    "texts": video.texts.to_dict() if video.texts else None,
                    "clips": [
                        {
                            "index": clip.clip_index,
                            "status": clip.status,
                            "anchor_url": clip.anchor_url,
                            "clip_url": clip.clip_url,
                            "duration": clip.duration_seconds,
                        }
                        for clip in video.clips
                    ],
                }
                for video in batch.videos
            ],
        }
    )


def zip_filename(batch: BatchView) -> str:
    return f"batch-{batch.id[:8]}.zip"


def build_zip(batch: BatchView) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(ZIP_CSV_PATH, CSV_BOM + generate_canva_csv(batch))
        archive.writestr(ZIP_TEXTS_PATH, generate_texts_markdown(batch))
        archive.writestr(ZIP_MANIFEST_PATH, json.dumps(generate_manifest(batch), indent=2, ensure_ascii=False))
    return buffer.getvalue()


def copy_all_texts(batch: BatchView) -> str:
    clip_count = int(batch.settings.get("clips_per_video") or 3)
    out = [f"VIDEO BATCH - {len(batch.videos)} videos x {clip_count} clips\n", "=" * 30 + "\n\n"]
    for video in batch.videos:
        texts = video.texts
        out.append(f"VIDEO {video.video_index}: {video.title or 'Untitled'}\n\n")
        if texts and texts.caption:
            out.append(f"Caption:\n{texts.caption}\n\n")
        if texts and texts.cta:
            out.append(f"CTA: {texts.cta}\n\n")
        out.append("Clips:\n")
        for index in range(clip_count):
            title, subtitle = texts.clip_text(index) if texts else ("", "")
            out.append(f"{index + 1}. {title or '-'} | {subtitle or '-'}\n")
        out.append("\n---\n\n")
    return "".join(out).strip()
