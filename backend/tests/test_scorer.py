"""Tests for the Gemini scorer adapter."""
import json

import httpx
import pytest

from app.services import scorer
from app.services.scorer import (
    GeminiScorer,
    ScorerOverloadedError,
    ScorerResponseError,
    fallback_segment,
    parse_redundancy_response,
    parse_segment_response,
    retry_on_overload,
)


class _FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON payload")
        return self._payload


class _FakeClient:
    """Serves queued responses across client instances, one per request."""

    def __init__(self, responses, requests, **kwargs):
        self._responses = responses
        self._requests = requests

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, params=None, json=None):
        self._requests.append({"url": url, "params": params, "json": json})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def gemini_reply(body) -> _FakeResponse:
    text = body if isinstance(body, str) else json.dumps(body)
    return _FakeResponse(
        status_code=200,
        payload={"candidates": [{"content": {"parts": [{"text": text}]}}]},
    )


SEGMENT_BODY = {
    "segments": [{
        "start_sec": 1.5,
        "end_sec": 5.0,
        "description": "Dog catches a frisbee mid-air.",
        "scores": {"relevance": 0.9, "quality": 0.8, "confidence": 0.7},
    }]
}

OVERLOADED = _FakeResponse(status_code=503, text="The model is overloaded.")


@pytest.fixture
def requests_sent():
    return []


@pytest.fixture
def queue_responses(monkeypatch, requests_sent):
    def _queue(*responses):
        pending = list(responses)
        monkeypatch.setattr(
            scorer.httpx,
            "AsyncClient",
            lambda **kwargs: _FakeClient(pending, requests_sent, **kwargs),
        )
        return pending
    return _queue


@pytest.fixture
def gemini():
    return GeminiScorer(
        api_key="test-key",
        model="gemini-test",
        api_base="https://gemini.test/v1beta",
        max_attempts=3,
        backoff_base_sec=0,
        jitter_sec=0,
        max_concurrency=2,
    )


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "compressed.mp4"
    path.write_bytes(b"\x00" * 2048)
    return path


# =============================================================================
# Parsing
# =============================================================================

class TestParsing:
    def test_segment_response(self):
        segment = parse_segment_response(json.dumps(SEGMENT_BODY))

        assert segment.start_sec == 1.5
        assert segment.end_sec == 5.0
        assert segment.scores.relevance == 0.9
        assert segment.scores.composite == pytest.approx(0.9 * 0.7 + 0.8 * 0.2 + 0.7 * 0.1)
        assert not segment.is_fallback

    def test_segment_bounds_are_clamped(self):
        body = {"segments": [{"start_sec": -2, "end_sec": -1.9, "scores": {"relevance": 1.7}}]}
        segment = parse_segment_response(json.dumps(body))

        assert segment.start_sec == 0.0
        assert segment.end_sec == 0.5
        assert segment.scores.relevance == 1.0
        assert segment.scores.quality == 0.5
        assert segment.description == "No description"

    @pytest.mark.parametrize("text", [
        "not json",
        json.dumps({"segments": []}),
        json.dumps({"segments": [{"start_sec": "a", "end_sec": 2}]}),
        json.dumps([1, 2]),
    ])
    def test_segment_response_rejects_bad_payloads(self, text):
        with pytest.raises(ScorerResponseError):
            parse_segment_response(text)

    def test_redundancy_response_keeps_integer_indices(self):
        indices = parse_redundancy_response(json.dumps({"remove_indices": [4, "2", 1.5, True, 0]}))
        assert indices == [4, 0]

    def test_redundancy_response_requires_list(self):
        with pytest.raises(ScorerResponseError):
            parse_redundancy_response(json.dumps({"remove": [1]}))


class TestFallback:
    def test_short_clip_uses_its_own_length(self):
        segment = fallback_segment(1.2, max_sec=3.0)
        assert (segment.start_sec, segment.end_sec) == (0.0, 1.2)
        assert segment.is_fallback

    def test_long_clip_is_capped(self):
        assert fallback_segment(42.0, max_sec=3.0).end_sec == 3.0

    def test_unknown_duration(self):
        assert fallback_segment(None, max_sec=3.0).end_sec == 0.5


# =============================================================================
# Retry
# =============================================================================

@pytest.mark.asyncio
async def test_retry_only_on_overload():
    calls = []

    async def _call():
        calls.append(1)
        raise ValueError("bad request")

    with pytest.raises(ValueError):
        await retry_on_overload(_call, max_attempts=3, backoff_base_sec=0, jitter_sec=0)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_attempts():
    calls = []

    async def _call():
        calls.append(1)
        raise ScorerOverloadedError("503")

    with pytest.raises(ScorerOverloadedError):
        await retry_on_overload(_call, max_attempts=3, backoff_base_sec=0, jitter_sec=0)
    assert len(calls) == 3


# =============================================================================
# Single clip analysis
# =============================================================================

@pytest.mark.asyncio
async def test_overloaded_twice_then_success(gemini, video_file, queue_responses, requests_sent):
    queue_responses(OVERLOADED, OVERLOADED, gemini_reply(SEGMENT_BODY))

    segment = await gemini.analyze_single_clip(video_file, "my dog", duration_sec=10.0)

    assert not segment.is_fallback
    assert (segment.start_sec, segment.end_sec) == (1.5, 5.0)
    assert len(requests_sent) == 3

    request = requests_sent[0]
    assert request["url"] == "https://gemini.test/v1beta/models/gemini-test:generateContent"
    assert request["params"] == {"key": "test-key"}
    parts = request["json"]["contents"][0]["parts"]
    assert "my dog" in parts[0]["text"]
    assert parts[1]["inline_data"]["mime_type"] == "video/mp4"


@pytest.mark.asyncio
async def test_overload_exhaustion_falls_back(gemini, video_file, queue_responses, requests_sent):
    queue_responses(OVERLOADED, OVERLOADED, OVERLOADED)

    segment = await gemini.analyze_single_clip(video_file, "my dog", duration_sec=10.0)

    assert segment.is_fallback
    assert segment.end_sec == 3.0
    assert len(requests_sent) == 3


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(gemini, video_file, queue_responses, requests_sent):
    queue_responses(_FakeResponse(status_code=400, text="invalid argument"))

    segment = await gemini.analyze_single_clip(video_file, "my dog", duration_sec=2.0)

    assert segment.is_fallback
    assert segment.end_sec == 2.0
    assert len(requests_sent) == 1


@pytest.mark.asyncio
async def test_transport_error_falls_back(gemini, video_file, queue_responses):
    queue_responses(httpx.ConnectError("connection refused"))

    segment = await gemini.analyze_single_clip(video_file, "my dog", duration_sec=10.0)

    assert segment.is_fallback


@pytest.mark.asyncio
async def test_malformed_reply_falls_back(gemini, video_file, queue_responses):
    queue_responses(gemini_reply("I could not find a segment."))

    segment = await gemini.analyze_single_clip(video_file, "my dog", duration_sec=10.0)

    assert segment.is_fallback


@pytest.mark.asyncio
async def test_tiny_file_is_not_sent(gemini, tmp_path, queue_responses, requests_sent):
    queue_responses()
    tiny = tmp_path / "tiny.mp4"
    tiny.write_bytes(b"\x00" * 10)

    segment = await gemini.analyze_single_clip(tiny, "my dog", duration_sec=1.0)

    assert segment.is_fallback
    assert segment.end_sec == 1.0
    assert requests_sent == []


@pytest.mark.asyncio
async def test_missing_api_key_falls_back(video_file, queue_responses, requests_sent):
    queue_responses()
    unconfigured = GeminiScorer(api_key="", backoff_base_sec=0, jitter_sec=0)

    segment = await unconfigured.analyze_single_clip(video_file, "my dog", duration_sec=10.0)

    assert segment.is_fallback
    assert requests_sent == []


# =============================================================================
# Redundancy suggestions
# =============================================================================

CLIPS = [
    {"index": 0, "description": "Beach sunset"},
    {"index": 1, "description": "Beach sunset, slightly later"},
    {"index": 2, "description": "Birthday cake"},
]


@pytest.mark.asyncio
async def test_suggest_redundant(gemini, queue_responses, requests_sent):
    queue_responses(gemini_reply({"remove_indices": [1]}))

    assert await gemini.suggest_redundant(CLIPS) == [1]
    assert "Birthday cake" in requests_sent[0]["json"]["contents"][0]["parts"][0]["text"]


@pytest.mark.asyncio
async def test_suggest_redundant_retries_overload(gemini, queue_responses, requests_sent):
    queue_responses(OVERLOADED, gemini_reply({"remove_indices": [1, 0]}))

    assert await gemini.suggest_redundant(CLIPS) == [1, 0]
    assert len(requests_sent) == 2


@pytest.mark.asyncio
async def test_suggest_redundant_failure_returns_empty(gemini, queue_responses):
    queue_responses(_FakeResponse(status_code=500, text="internal"))

    assert await gemini.suggest_redundant(CLIPS) == []


@pytest.mark.asyncio
async def test_suggest_redundant_skips_empty_pool(gemini, queue_responses, requests_sent):
    queue_responses()

    assert await gemini.suggest_redundant([]) == []
    assert requests_sent == []
