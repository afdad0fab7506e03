"""Content scoring through the Gemini API."""
import asyncio
import base64
import json
import logging
import random
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from app.config import settings
from app.models.clip import weighted_score

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Inline payloads shorter than this are treated as unreadable media
MIN_VIDEO_BASE64_LENGTH = 1000

# Shortest segment the analysis may return
MIN_SEGMENT_SECONDS = 0.5

SINGLE_CLIP_PROMPT = """
You are a video editor assistant. Analyze the provided video and return JSON ONLY.
Goal: Find the single best segment, between 2 and 8 seconds long, that matches the user's intent.
User intent: "{intent}"
Rules:
- Find only the one best clip.
- The clip should be between 2 and 6 seconds, unless there is someone speaking to the camera in which case you can include their full statement.
- Provide: start_sec, end_sec, description (1-2 short sentences, concrete details), and scores for relevance (0..1: how well it matches user intent), quality (0..1: how high quality the video is), and confidence (0..1: confidence in your analysis).
- Return compact JSON with a top-level "segments" array containing just ONE segment.
Example: {{ "segments": [ {{ "start_sec": 1.5, "end_sec": 5.2, "description": "...", "scores": {{ "relevance": 0.9, "quality": 0.8, "confidence": 0.7 }} }} ] }}"""

REDUNDANCY_PROMPT = """
You are a video montage editor. I have a list of potential video clips, each with an index and a description.
Your goal is to identify clips that are visually or thematically redundant to improve the variety of the final video.
Do not remove clips that are unique. Only target clips that are very similar to others.

Here is the list of clips:
{clips}

Please return a JSON object with a single key, "remove_indices", which is an array of numbers.
The numbers should be the indices of the clips you recommend removing.
Prioritize the most redundant clips first in the array. If there are no redundant clips, return an empty array.

Example response:
{{
  "remove_indices": [12, 5, 2]
}}"""


class ScorerError(Exception):
    """Scoring request failed."""


class ScorerOverloadedError(ScorerError):
    """The scoring service is temporarily overloaded; the call may be retried."""


class ScorerResponseError(ScorerError):
    """The scoring service answered with an unusable payload."""


@dataclass
class SegmentScores:
    """Analysis scores, each in [0, 1]."""
    relevance: float = 0.0
    quality: float = 0.5
    confidence: float = 0.5

    @property
    def composite(self) -> float:
        return weighted_score(self.relevance, self.quality, self.confidence)


@dataclass
class SegmentAnalysis:
    """Best segment found in one clip."""
    start_sec: float
    end_sec: float
    description: str
    scores: SegmentScores
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    is_fallback: bool = False

    @property
    def duration_sec(self) -> float:
        return self.end_sec - self.start_sec


def fallback_segment(duration_sec: Optional[float], max_sec: Optional[float] = None) -> SegmentAnalysis:
    """
    Segment used when analysis fails.

    Covers the start of the clip, up to the shorter of the clip itself and
    ``max_sec``.
    """
    if max_sec is None:
        max_sec = settings.fallback_segment_max_sec
    if not isinstance(duration_sec, (int, float)) or duration_sec <= 0:
        duration_sec = MIN_SEGMENT_SECONDS

    logger.info("Returning default segment due to analysis failure.")
    return SegmentAnalysis(
        start_sec=0.0,
        end_sec=min(float(duration_sec), max_sec),
        description="Video analysis failed.",
        scores=SegmentScores(relevance=0.5, quality=0.5, confidence=0.5),
        is_fallback=True,
    )


def _score(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return min(1.0, max(0.0, float(value)))


def parse_segment_response(text: str) -> SegmentAnalysis:
    """
    Parse a single-clip analysis payload.

    Raises:
        ScorerResponseError: If the payload is not JSON or has no usable segment
    """
    try:
        parsed = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise ScorerResponseError(f"Response is not JSON: {e}")

    segments = parsed.get("segments") if isinstance(parsed, dict) else None
    if not isinstance(segments, list) or not segments or not isinstance(segments[0], dict):
        raise ScorerResponseError(f"Invalid response structure or no segments found. Got: {text[:500]}")

    segment = segments[0]
    start = segment.get("start_sec")
    end = segment.get("end_sec")
    if not isinstance(start, (int, float)) or not isinstance(end, (int, float)):
        raise ScorerResponseError(f"Segment bounds missing or not numeric: {segment}")

    start_sec = max(0.0, float(start))
    end_sec = max(float(end), start_sec + MIN_SEGMENT_SECONDS)

    raw_scores = segment.get("scores") if isinstance(segment.get("scores"), dict) else {}

    return SegmentAnalysis(
        start_sec=start_sec,
        end_sec=end_sec,
        description=segment.get("description") or "No description",
        scores=SegmentScores(
            relevance=_score(raw_scores.get("relevance"), 0.0),
            quality=_score(raw_scores.get("quality"), 0.5),
            confidence=_score(raw_scores.get("confidence"), 0.5),
        ),
    )


def parse_redundancy_response(text: str) -> List[int]:
    """
    Parse a redundancy payload into a priority-ordered index list.

    Raises:
        ScorerResponseError: If ``remove_indices`` is missing or not a list
    """
    try:
        parsed = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise ScorerResponseError(f"Response is not JSON: {e}")

    indices = parsed.get("remove_indices") if isinstance(parsed, dict) else None
    if not isinstance(indices, list):
        raise ScorerResponseError(f"Missing remove_indices. Got: {text[:500]}")

    return [i for i in indices if isinstance(i, int) and not isinstance(i, bool)]


async def retry_on_overload(
    call: Callable[[], Awaitable[T]],
    max_attempts: int,
    backoff_base_sec: float,
    jitter_sec: float = 1.0,
    label: str = "Scorer call",
) -> T:
    """
    Run ``call``, retrying only when the service reports it is overloaded.

    Waits ``backoff_base_sec * 2**attempt`` plus up to ``jitter_sec`` of random
    jitter between attempts. Any other error propagates immediately.
    """
    attempt = 1
    while True:
        try:
            return await call()
        except ScorerOverloadedError as e:
            if attempt >= max_attempts:
                logger.error(f"{label} still overloaded after {attempt} attempts")
                raise
            delay = backoff_base_sec * (2 ** attempt) + random.uniform(0, jitter_sec)
            logger.warning(f"{label} attempt {attempt} overloaded ({e}). Retrying in {delay:.1f}s...")
            await asyncio.sleep(delay)
            attempt += 1


class GeminiScorer:
    """Scorer adapter that calls the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_base: Optional[str] = None,
        max_attempts: Optional[int] = None,
        backoff_base_sec: Optional[float] = None,
        jitter_sec: float = 1.0,
        max_concurrency: Optional[int] = None,
        timeout_sec: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.api_base = (api_base or settings.gemini_api_base).rstrip("/")
        self.max_attempts = max_attempts or settings.scorer_max_attempts
        self.backoff_base_sec = (
            backoff_base_sec if backoff_base_sec is not None else settings.scorer_backoff_base_sec
        )
        self.jitter_sec = jitter_sec
        self.timeout_sec = timeout_sec or settings.scorer_timeout_sec
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.scorer_max_concurrency)

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def _generate(self, parts: List[Dict[str, Any]], temperature: float) -> str:
        """Send one generateContent request and return the response text."""
        if not self.api_key:
            raise ScorerError("Gemini API key is not configured")

        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "responseMimeType": "application/json",
            },
        }

        async with self._semaphore:
            try:
                async with httpx.AsyncClient(timeout=self.timeout_sec) as client:
                    response = await client.post(
                        self.endpoint,
                        params={"key": self.api_key},
                        json=payload,
                    )
            except httpx.HTTPError as e:
                raise ScorerError(f"Gemini request failed: {e}")

        if response.status_code == 503:
            raise ScorerOverloadedError("Gemini API returned 503")
        if response.status_code != 200:
            raise ScorerError(f"Gemini API returned HTTP {response.status_code}: {response.text[:500]}")

        try:
            body = response.json()
            return body["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ScorerResponseError(f"Unexpected Gemini response shape: {e}")

    async def suggest_redundant(self, clips: List[Dict[str, Any]]) -> List[int]:
        """
        Ask for clips that repeat others, most redundant first.

        Args:
            clips: ``[{"index": int, "description": str}, ...]``

        Returns:
            Indices to remove in priority order; empty on any failure
        """
        if not clips:
            return []

        prompt = REDUNDANCY_PROMPT.format(clips=json.dumps(clips))

        async def _call() -> List[int]:
            text = await self._generate([{"text": prompt}], temperature=0.2)
            return parse_redundancy_response(text)

        try:
            logger.info(f"Asking Gemini for pruning suggestions over {len(clips)} clips...")
            indices = await retry_on_overload(
                _call,
                self.max_attempts,
                self.backoff_base_sec,
                self.jitter_sec,
                label="Pruning suggestions",
            )
        except ScorerError as e:
            logger.error(f"Gemini pruning analysis failed: {e}")
            return []

        logger.info(f"Gemini suggested removing clips at indices: {indices}")
        return indices

    async def analyze_single_clip(
        self,
        media_path: Path,
        intent: str,
        duration_sec: Optional[float] = None,
    ) -> SegmentAnalysis:
        """
        Find the best segment of a clip for the user's intent.

        Never raises for scoring failures; returns the fallback segment
        instead.
        """
        media_path = Path(media_path)

        try:
            raw = await asyncio.to_thread(media_path.read_bytes)
        except OSError as e:
            logger.error(f"Could not read {media_path.name} for analysis: {e}")
            return fallback_segment(duration_sec)

        video_base64 = base64.b64encode(raw).decode("ascii")
        if len(video_base64) < MIN_VIDEO_BASE64_LENGTH:
            logger.error(f"Video file is corrupt or empty: {media_path.name}")
            return fallback_segment(duration_sec)

        parts = [
            {"text": SINGLE_CLIP_PROMPT.format(intent=intent)},
            {"inline_data": {"mime_type": "video/mp4", "data": video_base64}},
        ]

        async def _call() -> SegmentAnalysis:
            text = await self._generate(parts, temperature=0.1)
            return parse_segment_response(text)

        try:
            segment = await retry_on_overload(
                _call,
                self.max_attempts,
                self.backoff_base_sec,
                self.jitter_sec,
                label=f"Analysis of {media_path.name}",
            )
        except ScorerError as e:
            logger.error(f"Gemini analysis failed for {media_path.name}: {e}")
            return fallback_segment(duration_sec)

        logger.info(f"Successfully analyzed {media_path.name}")
        return segment
