from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi import HTTPException
from redis.exceptions import ConnectionError as RedisConnectionError

import api.main as api_main
from batches.rollup import BatchView, VideoTexts, VideoView
from db.models import Job
from pipeline.errors import IntentValidationError, NotFound, QuotaExceeded
from planner import PlanResult


class _FakeScalarResult:
    def __init__(self, items=None) -> None:
        self._items = list(items or [])

    def all(self):
        return list(self._items)


class _FakeExecuteResult:
    def __init__(self, items=None) -> None:
        self._items = items

    def scalars(self):
        return _FakeScalarResult(self._items)


class _FakeSession:
    def __init__(self, items=None) -> None:
        self.items = items
        self.closed = False
        self.added: list[object] = []
        self.commits = 0
        self.rollbacks = 0

    def execute(self, stmt):
        return _FakeExecuteResult(self.items)

    def add(self, obj):
        self.added.append(obj)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


def _batch_view() -> BatchView:
    video = VideoView(
        id=str(uuid4()),
        video_index=1,
        title="Teaser",
        status="done",
        progress=100,
        completed_clips=0,
        total_clips=0,
        texts=VideoTexts(caption="c", cta="Buy", clips=[{"title": "Hook", "subtitle": "Now"}]),
    )
    return BatchView(
        id=str(uuid4()),
        source="explicit",
        status="done",
        progress=0,
        completed_clips=0,
        error_clips=0,
        total_clips=0,
        videos=[video],
        settings={"clips_per_video": 3},
        created_at=datetime(2026, 10, 1, tzinfo=UTC),
    )


def test_plan_returns_order_and_warnings(monkeypatch) -> None:
    session = _FakeSession()
    order_id = uuid4()
    user_id = uuid4()
    seen: list = []

    def fake_plan(session, intent, user):
        seen.append((intent, user))
        return PlanResult(order_id=order_id, plan_kinds=["copy", "render"], warnings=["w"])

    monkeypatch.setattr(api_main, "SessionLocal", lambda: session)
    monkeypatch.setattr(api_main, "plan_order", fake_plan)

    response = api_main.plan(api_main.PlanRequest(intent={"kind": "text"}), user_id=user_id)

    assert response == {"ok": True, "data": {"orderId": str(order_id), "plan": ["copy", "render"], "warnings": ["w"]}}
    assert seen == [({"kind": "text"}, user_id)]
    assert session.closed


@pytest.mark.parametrize(
    "error, status_code",
    [
        (IntentValidationError(message="Invalid intent", errors=["kind: bad"]), 400),
        (QuotaExceeded(message="no woofs", remaining=3, required=10), 402),
    ],
)
def test_plan_maps_pipeline_errors(monkeypatch, error, status_code) -> None:
    def fake_plan(session, intent, user):
        raise error

    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession())
    monkeypatch.setattr(api_main, "plan_order", fake_plan)

    with pytest.raises(HTTPException) as exc_info:
        api_main.plan(api_main.PlanRequest(intent={}), user_id=uuid4())
    assert exc_info.value.status_code == status_code
    assert exc_info.value.detail["error"] == error.code


def test_plan_without_user_is_unauthorized(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession())
    with pytest.raises(HTTPException) as exc_info:
        api_main.plan(api_main.PlanRequest(intent={"kind": "image"}), user_id=None)
    assert exc_info.value.status_code == 401


def test_require_user_rejects_garbage_header() -> None:
    assert api_main._current_user("not-a-uuid") is None
    with pytest.raises(HTTPException) as exc_info:
        api_main._require_user(None)
    assert exc_info.value.status_code == 401


def test_list_jobs_includes_refresh_interval(monkeypatch) -> None:
    user_id = uuid4()
    job = Job(id=uuid4(), kind="render", status="failed", attempt=3, max_attempts=3, error="Max retries exceeded")
    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession([job]))
    monkeypatch.setattr(api_main, "job_summary", lambda session, user: {"failed": 1, "total": 1})

    response = api_main.list_jobs(status=None, order_id=None, limit=50, offset=0, user_id=user_id)

    assert response["refresh_interval_s"] == 5
    assert response["summary"] == {"failed": 1, "total": 1}
    assert response["jobs"][0]["attempts"] == 3
    assert response["jobs"][0]["status"] == "failed"


def test_retry_clip_endpoint_enqueues_and_notifies(monkeypatch) -> None:
    user_id = uuid4()
    batch = SimpleNamespace(id=uuid4(), user_id=user_id)
    clip = SimpleNamespace(id=uuid4(), status="queued", video=SimpleNamespace(batch=batch))
    enqueued: list[str] = []
    published: list[tuple] = []

    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession())
    monkeypatch.setattr(api_main, "retry_clip", lambda session, clip_id, user: clip)
    monkeypatch.setattr(api_main, "enqueue_clip_render", lambda clip_id: enqueued.append(clip_id) or "rq-7")
    monkeypatch.setattr(api_main, "publish_batch_change", lambda user, batch_id: published.append((user, batch_id)))

    response = api_main.retry_batch_clip(clip.id, user_id=user_id)

    assert response["rq_id"] == "rq-7"
    assert response["status"] == "queued"
    assert enqueued == [str(clip.id)]
    assert published == [(user_id, batch.id)]


def test_retry_clip_endpoint_queue_down_fails_clip(monkeypatch) -> None:
    user_id = uuid4()
    batch = SimpleNamespace(id=uuid4(), user_id=user_id)
    clip = SimpleNamespace(id=uuid4(), status="queued", error=None, video=SimpleNamespace(batch=batch))
    session = _FakeSession()
    published: list[str] = []

    def queue_down(clip_id):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(api_main, "SessionLocal", lambda: session)
    monkeypatch.setattr(api_main, "retry_clip", lambda session, clip_id, user: clip)
    monkeypatch.setattr(api_main, "enqueue_clip_render", queue_down)
    monkeypatch.setattr(api_main, "publish_batch_change", lambda user, batch_id: published.append(clip.status))

    with pytest.raises(HTTPException) as exc_info:
        api_main.retry_batch_clip(clip.id, user_id=user_id)

    assert exc_info.value.status_code == 503
    assert clip.status == "failed"
    assert clip.error == api_main.QUEUE_UNAVAILABLE
    assert session.commits == 1
    assert published == ["failed"]
    assert session.closed


def test_regenerate_endpoint_fails_clips_left_unqueued(monkeypatch) -> None:
    user_id = uuid4()
    batch = SimpleNamespace(id=uuid4(), user_id=user_id)
    clips = [SimpleNamespace(id=uuid4(), status="queued", error=None) for _ in range(3)]
    video = SimpleNamespace(id=uuid4(), status="queued", clips=clips, batch=batch, batch_id=batch.id)
    enqueued: list[str] = []

    def flaky_enqueue(clip_id):
        if enqueued:
            raise RedisConnectionError("connection reset")
        enqueued.append(clip_id)
        return "rq-1"

    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession())
    monkeypatch.setattr(api_main, "regenerate_video", lambda session, video_id, user: video)
    monkeypatch.setattr(api_main, "enqueue_clip_render", flaky_enqueue)
    monkeypatch.setattr(api_main, "publish_batch_change", lambda user, batch_id: None)

    with pytest.raises(HTTPException) as exc_info:
        api_main.regenerate_batch_video(video.id, user_id=user_id)

    assert exc_info.value.status_code == 503
    assert [clip.status for clip in clips] == ["queued", "failed", "failed"]
    assert enqueued == [str(clips[0].id)]


def test_retry_clip_endpoint_missing_clip(monkeypatch) -> None:
    def missing(session, clip_id, user):
        raise NotFound(message=f"Clip not found: {clip_id}")

    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession())
    monkeypatch.setattr(api_main, "retry_clip", missing)
    monkeypatch.setattr(api_main, "enqueue_clip_render", lambda clip_id: pytest.fail("must not enqueue"))

    with pytest.raises(HTTPException) as exc_info:
        api_main.retry_batch_clip(uuid4(), user_id=uuid4())
    assert exc_info.value.status_code == 404
    assert exc_info.value.detail["error"] == "NOT_FOUND"


def test_csv_download_starts_with_bom(monkeypatch) -> None:
    view = _batch_view()
    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession())
    monkeypatch.setattr(api_main, "get_batch", lambda session, batch_id, user: view)

    response = api_main.download_batch_csv(uuid4(), user_id=uuid4())

    body = response.body.decode("utf-8")
    assert body.startswith("\ufeffbatch_key,video_index,video_title")
    assert len(body.split("\n")) == 2
    assert f"batch-{view.id[:8]}-canva.csv" in response.headers["content-disposition"]


def test_texts_download(monkeypatch) -> None:
    view = _batch_view()
    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession())
    monkeypatch.setattr(api_main, "get_batch", lambda session, batch_id, user: view)

    response = api_main.batch_texts(uuid4(), user_id=uuid4())

    assert response.body.decode("utf-8").startswith("VIDEO BATCH - 1 videos x 3 clips")


def test_operator_guard(monkeypatch) -> None:
    monkeypatch.delenv("OPERATOR_TOKEN", raising=False)
    monkeypatch.delenv("ALLOW_OPS_WITHOUT_TOKEN", raising=False)
    with pytest.raises(HTTPException) as exc_info:
        api_main._require_operator(None)
    assert exc_info.value.status_code == 503

    monkeypatch.setenv("ALLOW_OPS_WITHOUT_TOKEN", "1")
    assert api_main._require_operator(None) is None

    monkeypatch.setenv("OPERATOR_TOKEN", "secret")
    with pytest.raises(HTTPException) as exc_info:
        api_main._require_operator("wrong")
    assert exc_info.value.status_code == 401
    assert api_main._require_operator("secret") is None


def test_ops_sweeps_return_counts(monkeypatch) -> None:
    session = _FakeSession()
    monkeypatch.setattr(api_main, "SessionLocal", lambda: session)
    monkeypatch.setattr(api_main, "unlock_stuck", lambda session, minutes: 2)
    monkeypatch.setattr(api_main, "fail_expired", lambda session, hours: 1)
    monkeypatch.setattr(api_main, "trigger_worker", lambda limit: 4)

    assert api_main.ops_unlock_stuck(threshold_minutes=5, _guard=None) == {"unlocked": 2}
    assert api_main.ops_fail_expired(max_age_hours=24, _guard=None) == {"failed": 1}
    assert api_main.ops_trigger_worker(limit=None, background=False, _guard=None) == {"processed": 4}
    assert session.closed


def test_sanitize_endpoint_reports_changes_and_violations() -> None:
    response = api_main.sanitize_prompt(api_main.SanitizeRequest(prompt="Elon Musk drinking Pepsi"))

    assert response["wasModified"] is True
    assert "Pepsi" not in response["sanitizedPrompt"]
    assert response["suggestions"]
    assert response["violation"]["detectedNames"] == ["Elon Musk"]

    clean = api_main.sanitize_prompt(api_main.SanitizeRequest(prompt="a calm lake at dawn"))
    assert clean["wasModified"] is False
    assert clean["violation"] is None
    assert "message" not in clean
