"""Tests for upload analysis and the clip service."""
import asyncio
from datetime import datetime
from pathlib import Path

import pytest

from app.config import settings
from app.models.job import UploadJob, UploadJobStatus
from app.pipeline.clip_analysis import ClipAnalysisPipeline
from app.services.clip_service import ClipService, safe_filename
from app.services.media_store import LocalMediaStore
from app.services.scorer import SegmentAnalysis, SegmentScores, fallback_segment
from app.utils.ffmpeg import FFmpegError


class FakeStore:
    def __init__(self):
        self.clips = []
        self.jobs = {}
        self.counts = {}
        self.fail_increment = False

    async def insert_clip(self, clip):
        clip.id = len(self.clips) + 1
        self.clips.append(clip)
        return clip

    async def get_clip(self, clip_id):
        return next((c for c in self.clips if c.id == clip_id), None)

    async def create_upload_job(self, job_id, user_id, upload_url=None, filename=None):
        job = UploadJob(
            job_id=job_id,
            user_id=user_id,
            status=UploadJobStatus.PROCESSING,
            upload_url=upload_url,
            filename=filename,
        )
        self.jobs[job_id] = job
        return job

    async def update_upload_job(self, job_id, status, clip_id=None, error=None):
        job = self.jobs.setdefault(job_id, UploadJob(job_id=job_id, user_id="u1"))
        job.status = status
        if clip_id is not None:
            job.clip_id = clip_id
        if error is not None:
            job.error = error
        return job

    async def increment_upload_counter(self, user_id):
        if self.fail_increment:
            raise RuntimeError("profile table unavailable")
        self.counts[user_id] = self.counts.get(user_id, 0) + 1
        return self.counts[user_id]


class FakeScorer:
    def __init__(self, segment=None, block=False):
        self.segment = segment
        self.block = block
        self.calls = []

    async def analyze_single_clip(self, media_path, intent, duration_sec=None):
        self.calls.append((Path(media_path).name, intent, duration_sec))
        if self.block:
            await asyncio.Event().wait()
        return self.segment or fallback_segment(duration_sec)


class FakeTranscoder:
    def __init__(self, duration=10.0, fail_compress=False):
        self.duration = duration
        self.fail_compress = fail_compress

    async def probe_duration(self, video_path):
        return self.duration

    async def thumbnail(self, video_path, output_path):
        Path(output_path).write_bytes(b"jpg")
        return Path(output_path)

    async def compress(self, source_path, output_path):
        if self.fail_compress:
            raise FFmpegError("Compression failed: invalid data")
        Path(output_path).write_bytes(b"mp4")
        return Path(output_path)


class FakeRunner:
    def __init__(self, accept=True):
        self.accept = accept
        self.started = []

    async def start_job(self, job_key, job_type, **kwargs):
        self.started.append((job_key, job_type, kwargs))
        return self.accept


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def config(tmp_path):
    return settings.model_copy(update={"work_dir": tmp_path / "work"})


@pytest.fixture
def media_store(tmp_path):
    return LocalMediaStore(tmp_path / "media", "http://testserver/api/media")


def make_pipeline(store, media_store, config, scorer=None, transcoder=None):
    return ClipAnalysisPipeline(
        store=store,
        scorer=scorer or FakeScorer(),
        transcoder=transcoder or FakeTranscoder(),
        media_store=media_store,
        config=config,
    )


# =============================================================================
# Analysis pipeline
# =============================================================================

@pytest.mark.asyncio
async def test_analysis_stores_scored_clip(media_store, config):
    upload_url = await media_store.put_bytes(b"original", "clips/u1/2024-05-12/1-a.mp4")
    store = FakeStore()
    await store.create_upload_job("job-1", "u1", upload_url=upload_url)
    segment = SegmentAnalysis(
        start_sec=2.0,
        end_sec=6.0,
        description="Kid scores a goal.",
        scores=SegmentScores(relevance=0.9, quality=0.8, confidence=0.7),
    )
    scorer = FakeScorer(segment)
    captured_at = datetime(2024, 5, 8, 14, 30)
    pipeline = make_pipeline(store, media_store, config, scorer=scorer)

    clip = await pipeline.run("job-1", "u1", upload_url, "soccer goals", captured_at)

    assert clip is not None
    assert (clip.start_sec, clip.end_sec) == (2.0, 6.0)
    assert clip.score == pytest.approx(0.9 * 0.7 + 0.8 * 0.2 + 0.7 * 0.1)
    assert clip.captured_at == captured_at
    assert clip.source_url == upload_url
    assert media_store.exists(clip.thumbnail_url)
    assert clip.week_end_date.weekday() == 6

    assert scorer.calls == [("compressed.mp4", "soccer goals", 10.0)]
    assert store.jobs["job-1"].status == UploadJobStatus.COMPLETED
    assert store.jobs["job-1"].clip_id == clip.id
    assert store.counts == {"u1": 1}
    assert list(Path(config.work_dir).iterdir()) == []


@pytest.mark.asyncio
async def test_segment_is_clamped_to_video_length(media_store, config):
    upload_url = await media_store.put_bytes(b"original", "clips/u1/2024-05-12/1-a.mp4")
    segment = SegmentAnalysis(
        start_sec=9.0,
        end_sec=14.0,
        description="Past the end",
        scores=SegmentScores(),
    )
    pipeline = make_pipeline(
        FakeStore(), media_store, config,
        scorer=FakeScorer(segment),
        transcoder=FakeTranscoder(duration=4.0),
    )

    clip = await pipeline.run("job-1", "u1", upload_url, "anything")

    assert clip.end_sec == 4.0
    assert clip.start_sec == 3.5


@pytest.mark.asyncio
async def test_default_prompt_and_fallback_segment(media_store, config):
    upload_url = await media_store.put_bytes(b"original", "clips/u1/2024-05-12/1-a.mp4")
    scorer = FakeScorer()
    pipeline = make_pipeline(FakeStore(), media_store, config, scorer=scorer)

    clip = await pipeline.run("job-1", "u1", upload_url)

    assert scorer.calls[0][1] == config.default_user_prompt
    assert (clip.start_sec, clip.end_sec) == (0.0, 3.0)
    assert clip.description == "Video analysis failed."


@pytest.mark.asyncio
async def test_transcoder_failure_fails_the_job(media_store, config):
    upload_url = await media_store.put_bytes(b"original", "clips/u1/2024-05-12/1-a.mp4")
    store = FakeStore()
    pipeline = make_pipeline(store, media_store, config, transcoder=FakeTranscoder(fail_compress=True))

    clip = await pipeline.run("job-1", "u1", upload_url, "anything")

    assert clip is None
    assert store.clips == []
    assert store.jobs["job-1"].status == UploadJobStatus.FAILED
    assert "Compression failed" in store.jobs["job-1"].error
    assert list(Path(config.work_dir).iterdir()) == []


@pytest.mark.asyncio
async def test_missing_upload_fails_the_job(media_store, config):
    store = FakeStore()
    pipeline = make_pipeline(store, media_store, config)

    clip = await pipeline.run("job-1", "u1", "clips/u1/gone.mp4", "anything")

    assert clip is None
    assert store.jobs["job-1"].status == UploadJobStatus.FAILED


@pytest.mark.asyncio
async def test_counter_failure_still_completes(media_store, config):
    upload_url = await media_store.put_bytes(b"original", "clips/u1/2024-05-12/1-a.mp4")
    store = FakeStore()
    store.fail_increment = True
    pipeline = make_pipeline(store, media_store, config)

    clip = await pipeline.run("job-1", "u1", upload_url, "anything")

    assert clip is not None
    assert store.jobs["job-1"].status == UploadJobStatus.COMPLETED


@pytest.mark.asyncio
async def test_timeout_marks_job_failed(media_store, config):
    upload_url = await media_store.put_bytes(b"original", "clips/u1/2024-05-12/1-a.mp4")
    store = FakeStore()
    pipeline = make_pipeline(store, media_store, config, scorer=FakeScorer(block=True))

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(pipeline.run("job-1", "u1", upload_url, "anything"), timeout=0.2)

    assert store.jobs["job-1"].status == UploadJobStatus.FAILED
    assert list(Path(config.work_dir).iterdir()) == []


# =============================================================================
# Clip service
# =============================================================================

def test_safe_filename():
    assert safe_filename("../../My Holiday (1).MOV") == "My_Holiday_1_.MOV"
    assert safe_filename(None) == "video.mp4"
    assert safe_filename("...") == "video.mp4"


@pytest.mark.asyncio
async def test_accept_upload_stores_and_schedules(media_store):
    store = FakeStore()
    runner = FakeRunner()
    service = ClipService(store, media_store, runner)

    job = await service.accept_upload("u1", "beach.mp4", b"video-bytes", " sunsets ", "2024-05-08T10:00:00Z")

    assert job.status == UploadJobStatus.PROCESSING
    assert media_store.exists(job.upload_url)
    assert "/clips/u1/" in job.upload_url
    assert job.upload_url.endswith("-beach.mp4")

    [(job_key, job_type, kwargs)] = runner.started
    assert job_key == f"upload:{job.job_id}"
    assert job_type == "clip_analysis"
    assert kwargs["user_prompt"] == "sunsets"
    assert kwargs["captured_at"] == datetime(2024, 5, 8, 10, 0)


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt, date, data, message", [
    ("", "2024-05-08", b"x", "user_prompt is required."),
    ("dogs", None, b"x", "date is required"),
    ("dogs", "not-a-date", b"x", "Invalid date"),
    ("dogs", "2024-05-08", b"", "No file was uploaded."),
])
async def test_accept_upload_validation(media_store, prompt, date, data, message):
    runner = FakeRunner()
    service = ClipService(FakeStore(), media_store, runner)

    with pytest.raises(ValueError, match=message):
        await service.accept_upload("u1", "a.mp4", data, prompt, date)
    assert runner.started == []


@pytest.mark.asyncio
async def test_unschedulable_upload_is_marked_failed(media_store):
    store = FakeStore()
    service = ClipService(store, media_store, FakeRunner(accept=False))

    job = await service.accept_upload("u1", "a.mp4", b"x", "dogs", "2024-05-08")

    assert job.status == UploadJobStatus.FAILED
    assert job.error == "could not be scheduled"
