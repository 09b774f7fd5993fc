from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Union

from db.models import MediaGeneration, VideoBatch

STATUS_ALIASES = {
    "pending": "queued",
    "queued": "queued",
    "processing": "processing",
    "running": "processing",
    "completed": "done",
    "done": "done",
    "error": "failed",
    "failed": "failed",
}


def normalize_clip_status(status: str | None) -> str:
    return STATUS_ALIASES.get((status or "").strip().lower(), "queued")


@dataclass(frozen=True)
class Rollup:
    status: str
    progress: int
    completed_clips: int
    error_clips: int
    total_clips: int


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up, not banker's rounding
    return int(completed * 100 / total + 0.5)


def rollup_statuses(statuses: Iterable[str | None]) -> Rollup:
    canonical = [normalize_clip_status(status) for status in statuses]
    total = len(canonical)
    completed = sum(1 for status in canonical if status == "done")
    errors = sum(1 for status in canonical if status == "failed")
    if errors:
        status = "failed"
    elif completed == total:
        status = "done"
    else:
        status = "processing"
    return Rollup(
        status=status,
        progress=progress_percent(completed, total),
        completed_clips=completed,
        error_clips=errors,
        total_clips=total,
    )


@dataclass(frozen=True)
class ClipView:
    id: str
    clip_index: int
    status: str
    clip_url: str | None = None
    error: str | None = None
    anchor_url: str | None = None
    duration_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "clipIndex": self.clip_index,
            "status": self.status,
            "clipUrl": self.clip_url,
            "error": self.error,
            "anchorUrl": self.anchor_url,
            "durationSeconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class VideoTexts:
    caption: str | None = None
    cta: str | None = None
    clips: list[dict[str, str]] = field(default_factory=list)

    def clip_text(self, index: int) -> tuple[str, str]:
        if 0 <= index < len(self.clips):
            item = self.clips[index] or {}
            return str(item.get("title") or ""), str(item.get("subtitle") or "")
        return "", ""

    def to_dict(self) -> dict[str, Any]:
        return {"caption": self.caption, "cta": self.cta, "clips": [dict(item) for item in self.clips]}


@dataclass(frozen=True)
class VideoView:
    id: str
    video_index: int
    title: str | None
    status: str
    progress: int
    completed_clips: int
    total_clips: int
    clips: list[ClipView] = field(default_factory=list)
    texts: VideoTexts | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "video_index": self.video_index,
            "title": self.title,
            "status": self.status,
            "error": self.error,
            "progress": self.progress,
            "completedClips": self.completed_clips,
            "totalClips": self.total_clips,
            "clips": [clip.to_dict() for clip in self.clips],
            "texts": self.texts.to_dict() if self.texts is not None else None,
        }


@dataclass(frozen=True)
class BatchView:
    id: str
    source: str
    status: str
    progress: int
    completed_clips: int
    error_clips: int
    total_clips: int
    videos: list[VideoView] = field(default_factory=list)
    input_prompt: str = ""
    settings: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    error: str | None = None

    @property
    def clips_per_video(self) -> int:
        configured = self.settings.get("clips_per_video")
        if configured:
            return int(configured)
        return max([len(video.clips) for video in self.videos] or [3])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "inputPrompt": self.input_prompt,
            "settings": dict(self.settings),
            "status": self.status,
            "error": self.error,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "progress": self.progress,
            "completedClips": self.completed_clips,
            "errorClips": self.error_clips,
            "totalClips": self.total_clips,
            "videos": [video.to_dict() for video in self.videos],
        }


@dataclass(frozen=True)
class ExplicitBatch:
    record: VideoBatch

    @property
    def id(self) -> str:
        return str(self.record.id)


@dataclass(frozen=True)
class VirtualBatch:
    group_key: str
    members: list[MediaGeneration]

    @property
    def id(self) -> str:
        return self.group_key


BatchSource = Union[ExplicitBatch, VirtualBatch]


def merge_sources(explicit: Iterable[ExplicitBatch], virtual: Iterable[VirtualBatch]) -> list[BatchSource]:
    merged: list[BatchSource] = list(explicit)
    seen = {source.id for source in merged}
    for source in virtual:
        if source.id in seen:
            continue
        seen.add(source.id)
        merged.append(source)
    return merged


def group_virtual(generations: Iterable[MediaGeneration]) -> list[VirtualBatch]:
    groups: dict[str, list[MediaGeneration]] = {}
    for generation in generations:
        if not generation.script_group:
            continue
        groups.setdefault(generation.script_group, []).append(generation)
    return [
        VirtualBatch(
            group_key=key,
            members=sorted(members, key=lambda item: (item.scene_order is None, item.scene_order or 0)),
        )
        for key, members in groups.items()
    ]


def _batch_rollup(videos: list[VideoView], clip_statuses: list[str]) -> Rollup:
    clips = rollup_statuses(clip_statuses)
    videos_only = rollup_statuses([video.status for video in videos])
    return Rollup(
        status=videos_only.status,
        progress=clips.progress,
        completed_clips=clips.completed_clips,
        error_clips=clips.error_clips,
        total_clips=clips.total_clips,
    )


def _explicit_view(record: VideoBatch) -> BatchView:
    videos: list[VideoView] = []
    clip_statuses: list[str] = []
    for video in sorted(record.videos, key=lambda item: item.video_index):
        clips = [
            ClipView(
                id=str(clip.id),
                clip_index=clip.clip_index,
                status=normalize_clip_status(clip.status),
                clip_url=clip.clip_url,
                error=clip.error,
                anchor_url=clip.anchor_url,
                duration_seconds=clip.duration_seconds,
            )
            for clip in sorted(video.clips, key=lambda item: item.clip_index)
        ]
        rolled = rollup_statuses([clip.status for clip in clips])
        clip_statuses.extend(clip.status for clip in clips)
        texts = None
        if video.texts is not None:
            texts = VideoTexts(
                caption=video.texts.caption,
                cta=video.texts.cta,
                clips=list(video.texts.clips or []),
            )
        videos.append(
            VideoView(
                id=str(video.id),
                video_index=video.video_index,
                title=video.title,
                status=rolled.status,
                progress=rolled.progress,
                completed_clips=rolled.completed_clips,
                total_clips=rolled.total_clips,
                clips=clips,
                texts=texts,
                error=video.error,
            )
        )
    rolled = _batch_rollup(videos, clip_statuses)
    return BatchView(
        id=str(record.id),
        source="explicit",
        status=rolled.status,
        progress=rolled.progress,
        completed_clips=rolled.completed_clips,
        error_clips=rolled.error_clips,
        total_clips=rolled.total_clips,
        videos=videos,
        input_prompt=record.input_prompt or "",
        settings=dict(record.settings or {}),
        created_at=record.created_at,
        updated_at=record.updated_at,
        error=record.error,
    )


def _virtual_view(source: VirtualBatch) -> BatchView:
    clips = [
        ClipView(
            id=str(member.id),
            clip_index=index,
            status=normalize_clip_status(member.status),
            clip_url=member.output_url,
            error=member.error,
            duration_seconds=member.duration_seconds,
        )
        for index, member in enumerate(source.members)
    ]
    rolled = rollup_statuses([clip.status for clip in clips])
    first = source.members[0] if source.members else None
    video = VideoView(
        id=source.group_key,
        video_index=1,
        title=first.title if first is not None else None,
        status=rolled.status,
        progress=rolled.progress,
        completed_clips=rolled.completed_clips,
        total_clips=rolled.total_clips,
        clips=clips,
    )
    created = [member.created_at for member in source.members if member.created_at is not None]
    updated = [member.updated_at for member in source.members if member.updated_at is not None]
    return BatchView(
        id=source.group_key,
        source="virtual",
        status=rolled.status,
        progress=rolled.progress,
        completed_clips=rolled.completed_clips,
        error_clips=rolled.error_clips,
        total_clips=rolled.total_clips,
        videos=[video],
        input_prompt=(first.prompt or "") if first is not None else "",
        settings={"videos_count": 1, "clips_per_video": len(clips)},
        created_at=min(created) if created else None,
        updated_at=max(updated) if updated else None,
    )


def project(source: BatchSource) -> BatchView:
    if isinstance(source, ExplicitBatch):
        return _explicit_view(source.record)
    return _virtual_view(source)
