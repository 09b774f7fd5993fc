from __future__ import annotations

from uuid import uuid4

import pipeline.jobs as pipeline_jobs
import pipeline.queue as pipeline_queue
from db.models import BatchClip, BatchVideo, Job, VideoBatch
from pipeline.errors import ProviderFailure
from pipeline.state import complete_job, fail_expired, fail_job, unlock_stuck


class _Result:
    def __init__(self, rows=None, scalar=None) -> None:
        self._rows = list(rows or [])
        self._scalar = scalar

    def all(self):
        return list(self._rows)

    def scalars(self):
        return self

    def first(self):
        return self._rows[0] if self._rows else None

    def scalar_one(self):
        return self._scalar


class _FakeSession:
    """Replays canned results for each execute() call in order."""

    def __init__(self, results=None) -> None:
        self.results = list(results or [])
        self.statements: list[object] = []
        self.added: list[object] = []
        self.commits = 0
        self.rollbacks = 0
        self.flushes = 0
        self.closed = False

    def execute(self, stmt):
        self.statements.append(stmt)
        if self.results:
            return self.results.pop(0)
        return _Result()

    def add(self, obj):
        self.added.append(obj)

    def flush(self):
        self.flushes += 1

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


def _job(**fields) -> Job:
    values = {
        "id": uuid4(),
        "order_id": uuid4(),
        "kind": "render",
        "payload": {"kind": "image"},
        "status": "running",
        "attempt": 0,
        "max_attempts": 3,
    }
    values.update(fields)
    return Job(**values)


def test_fail_job_requeues_while_attempts_remain() -> None:
    session = _FakeSession()
    job = _job(attempt=1)

    status = fail_job(session, job, "timeout")

    assert status == "queued"
    assert job.status == "queued"
    assert job.attempt == 2
    assert job.error == "timeout"
    assert session.commits == 1
    assert session.statements == []


def test_fail_job_is_terminal_once_attempts_are_used() -> None:
    session = _FakeSession()
    job = _job(attempt=3)

    status = fail_job(session, job, "timeout")

    assert status == "failed"
    assert job.status == "failed"
    assert job.attempt == 3
    assert job.error == "Max retries exceeded: timeout"
    assert job.finished_at is not None
    # successor cascade, then the owning order
    assert len(session.statements) == 2
    assert session.commits == 1


def test_non_retryable_failure_skips_retries() -> None:
    session = _FakeSession()
    job = _job(attempt=0)

    assert fail_job(session, job, "bad request", retryable=False) == "failed"
    assert job.error == "bad request"
    assert job.attempt == 0


def test_complete_job_promotes_successor_with_upstream_result() -> None:
    first = _job(kind="copy", payload={"order_id": "o"})
    successor = _job(
        kind="vision",
        status="blocked",
        order_id=first.order_id,
        predecessor_job_id=first.id,
        payload={"order_id": "o"},
    )
    session = _FakeSession([_Result(rows=[successor]), _Result(scalar=4)])

    promoted = complete_job(session, first, {"prompt": "a cat"})

    assert promoted is successor
    assert first.status == "completed"
    assert first.result == {"prompt": "a cat"}
    assert successor.status == "queued"
    assert successor.payload["upstream"] == {"copy": {"prompt": "a cat"}}
    assert successor.payload["order_id"] == "o"
    # successor lookup and remaining count, no order update
    assert len(session.statements) == 2
    assert session.commits == 1


def test_complete_last_job_marks_order_done() -> None:
    last = _job(kind="upload")
    session = _FakeSession([_Result(rows=[]), _Result(scalar=0)])

    assert complete_job(session, last, None) is None
    assert last.result == {}
    assert len(session.statements) == 3


def test_unlock_stuck_counts_requeued_jobs_only() -> None:
    exhausted = [(uuid4(), uuid4())]
    session = _FakeSession(
        [
            _Result(rows=exhausted),
            _Result(rows=[]),  # no blocked successors
            _Result(),  # order failed
            _Result(rows=[(uuid4(),), (uuid4(),)]),
        ]
    )

    assert unlock_stuck(session, threshold_minutes=5) == 2
    assert session.commits == 1


def test_unlock_stuck_with_nothing_running() -> None:
    session = _FakeSession([_Result(rows=[]), _Result(rows=[])])

    assert unlock_stuck(session, threshold_minutes=5) == 0
    assert len(session.statements) == 2


def test_fail_expired_propagates_to_successors() -> None:
    expired = [(uuid4(), uuid4()), (uuid4(), None)]
    downstream = [(uuid4(),)]
    session = _FakeSession(
        [
            _Result(rows=expired),
            _Result(rows=downstream),
            _Result(rows=[]),
            _Result(),
        ]
    )

    assert fail_expired(session, max_age=24) == 2
    assert len(session.statements) == 4


def test_run_job_maps_non_retryable_provider_failure(monkeypatch) -> None:
    session = _FakeSession()
    job = _job(attempt=0)

    def boom(session, job):
        raise ProviderFailure(message="HTTP 400", provider="render", retryable=False)

    monkeypatch.setitem(pipeline_jobs.STAGE_HANDLERS, "render", boom)

    assert pipeline_jobs.run_job(session, job) == "failed"
    assert job.error == "PROVIDER_FAILURE: HTTP 400"
    assert session.rollbacks == 1


def test_run_job_retries_unexpected_errors(monkeypatch) -> None:
    session = _FakeSession()
    job = _job(attempt=0)

    def crash(session, job):
        raise KeyError("media")

    monkeypatch.setitem(pipeline_jobs.STAGE_HANDLERS, "render", crash)

    assert pipeline_jobs.run_job(session, job) == "queued"
    assert job.attempt == 1
    assert job.error.startswith("KeyError")


def test_run_job_completes_on_success(monkeypatch) -> None:
    session = _FakeSession()
    job = _job(kind="thumb")
    completed: list[tuple[Job, dict]] = []

    monkeypatch.setitem(pipeline_jobs.STAGE_HANDLERS, "thumb", lambda session, job: {"url": "t.png"})
    monkeypatch.setattr(pipeline_jobs, "complete_job", lambda session, job, result: completed.append((job, result)))

    assert pipeline_jobs.run_job(session, job) == "completed"
    assert completed == [(job, {"url": "t.png"})]


def test_render_prompt_prefers_vision_over_copy() -> None:
    job = _job(payload={"upstream": {"copy": {"prompt": "copy"}, "vision": {"prompt": "vision"}}})
    assert pipeline_jobs._render_prompt(job) == "vision"


def test_process_due_jobs_stops_at_limit(monkeypatch) -> None:
    session = _FakeSession()
    claimed: list[Job] = []
    ran: list[Job] = []

    def claim(session):
        job = _job()
        claimed.append(job)
        return job

    monkeypatch.setattr(pipeline_jobs, "SessionLocal", lambda: session)
    monkeypatch.setattr(pipeline_jobs, "claim_next_job", claim)
    monkeypatch.setattr(pipeline_jobs, "run_job", lambda session, job: ran.append(job) or "completed")

    assert pipeline_jobs.process_due_jobs(limit=2) == 2
    assert ran == claimed
    assert session.closed


def test_process_due_jobs_stops_when_queue_is_empty(monkeypatch) -> None:
    session = _FakeSession()
    jobs = [_job()]

    monkeypatch.setattr(pipeline_jobs, "SessionLocal", lambda: session)
    monkeypatch.setattr(pipeline_jobs, "claim_next_job", lambda session: jobs.pop() if jobs else None)
    monkeypatch.setattr(pipeline_jobs, "run_job", lambda session, job: "completed")

    assert pipeline_jobs.process_due_jobs(limit=5) == 1


def test_trigger_worker_uses_configured_limit(monkeypatch) -> None:
    seen: list[int] = []
    monkeypatch.setenv("WORKER_TRIGGER_LIMIT", "7")
    monkeypatch.setattr(pipeline_queue, "process_due_jobs", lambda limit: seen.append(limit) or 0)

    pipeline_queue.trigger_worker()
    pipeline_queue.trigger_worker(limit=2)

    assert seen == [7, 2]


def test_enqueue_clip_render_registers_failure_callback(monkeypatch) -> None:
    calls: list[tuple] = []

    class _FakeQueue:
        def enqueue(self, func, *args, **kwargs):
            calls.append((func, args, kwargs))

            class _Queued:
                id = "rq-1"

            return _Queued()

    monkeypatch.setattr(pipeline_queue, "get_queue", lambda name="default": _FakeQueue())

    assert pipeline_queue.enqueue_clip_render(uuid4()) == "rq-1"
    func, args, kwargs = calls[0]
    assert func is pipeline_jobs.render_clip_job
    assert isinstance(args[0], str)
    assert kwargs["on_failure"] is pipeline_jobs.rq_on_failure


class _ClipSession(_FakeSession):
    def __init__(self, clip: BatchClip) -> None:
        super().__init__()
        self.clip = clip

    def get(self, model, ident):
        if model is BatchClip and ident == self.clip.id:
            return self.clip
        return None


def _batch_clip(brand_id=None, settings=None) -> BatchClip:
    batch = VideoBatch(
        id=uuid4(),
        user_id=uuid4(),
        brand_id=brand_id,
        input_prompt="summer launch",
        settings=settings or {"ratio": "9:16", "quality": "fast"},
    )
    video = BatchVideo(id=uuid4(), video_index=1, batch=batch)
    return BatchClip(id=uuid4(), clip_index=0, status="queued", prompt="waves at sunset", duration_seconds=8, video=video)


def _install_clip_job(monkeypatch, clip: BatchClip, render) -> tuple[_ClipSession, list[str]]:
    session = _ClipSession(clip)
    statuses: list[str] = []
    monkeypatch.setattr(pipeline_jobs, "SessionLocal", lambda: session)
    monkeypatch.setattr(pipeline_jobs, "guarded_render", render)
    monkeypatch.setattr(pipeline_jobs, "publish_batch_change", lambda user_id, batch_id: statuses.append(clip.status))
    return session, statuses


def test_render_clip_job_marks_clip_done(monkeypatch) -> None:
    clip = _batch_clip(brand_id=uuid4())
    requests: list = []

    def render(session, request):
        requests.append(request)
        return {"media": {"video_url": "https://cdn.test/clip-0.mp4"}}

    session, statuses = _install_clip_job(monkeypatch, clip, render)

    result = pipeline_jobs.render_clip_job(str(clip.id))

    assert result == {"clip_id": str(clip.id), "status": "done", "clip_url": "https://cdn.test/clip-0.mp4"}
    assert clip.status == "done"
    assert clip.clip_url == "https://cdn.test/clip-0.mp4"
    assert statuses == ["processing", "done"]
    request = requests[0]
    assert request.prompt == "waves at sunset"
    assert request.cost_key == "video_clip"
    assert request.format == "9:16"
    assert request.require_media == "video_url"
    assert request.meta == {"batch_id": str(clip.video.batch.id), "clip_id": str(clip.id)}
    assert session.closed


def test_render_clip_job_without_brand_fails_before_render(monkeypatch) -> None:
    clip = _batch_clip(brand_id=None)

    def render(session, request):
        raise AssertionError("render must not run without a brand")

    _, statuses = _install_clip_job(monkeypatch, clip, render)

    result = pipeline_jobs.render_clip_job(str(clip.id))

    assert result == {"clip_id": str(clip.id), "status": "failed"}
    assert clip.status == "failed"
    assert clip.error == "Batch has no brand to bill"
    assert statuses == ["processing", "failed"]


def test_render_clip_job_maps_pipeline_error_to_failed_clip(monkeypatch) -> None:
    clip = _batch_clip(brand_id=uuid4())

    def render(session, request):
        raise ProviderFailure(message="veo-fast returned no video_url", provider="veo-fast", retryable=True)

    session, statuses = _install_clip_job(monkeypatch, clip, render)

    result = pipeline_jobs.render_clip_job(str(clip.id))

    assert result["status"] == "failed"
    assert result["error"]["error"] == "PROVIDER_FAILURE"
    assert clip.status == "failed"
    assert clip.error == "veo-fast returned no video_url"
    assert clip.clip_url is None
    assert session.rollbacks == 1
    assert statuses == ["processing", "failed"]
