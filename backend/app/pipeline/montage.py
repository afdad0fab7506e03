"""Montage assembly pipeline.

Runs fetch -> redundancy hints -> select -> normalize -> assemble -> publish
-> finalize for one montage record. The record is created in ``processing``
before the run starts and always ends in ``complete`` or ``failed``; the
per-run working directory is removed on every exit path.
"""
import asyncio
import enum
import logging
import shutil
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional

from app.config import settings as default_settings
from app.models.montage import MontageStatus
from app.pipeline.selection import (
    Selection,
    SelectionConstraints,
    ScoredCandidate,
    select_montage,
    select_per_source,
)
from app.services.media_store import MediaNotFoundError
from app.utils.ffmpeg import FFmpegError

logger = logging.getLogger(__name__)

REASON_NO_CLIPS = "no clips"
REASON_NOTHING_PROCESSED = "no clips could be processed"


class MontageStage(str, enum.Enum):
    """Pipeline stages, in execution order."""
    FETCH = "fetch"
    REDUNDANCY_HINT = "redundancy_hint"
    SELECT = "select"
    NORMALIZE = "normalize"
    ASSEMBLE = "assemble"
    PUBLISH = "publish"
    FINALIZE = "finalize"


class MontageAborted(Exception):
    """A normal terminal outcome: the run cannot produce a montage."""

    def __init__(self, stage: MontageStage, reason: str):
        super().__init__(reason)
        self.stage = stage
        self.reason = reason


@dataclass
class MontageRunResult:
    """Outcome of one pipeline run, mirroring what was persisted."""
    montage_id: int
    user_id: str
    status: MontageStatus = MontageStatus.PROCESSING
    stage: Optional[MontageStage] = None
    reason: Optional[str] = None
    clip_count: int = 0
    skipped_clip_ids: List[Any] = field(default_factory=list)
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    work_dir: Optional[Path] = None
    selection: Optional[Selection] = None


class MontagePipeline:
    """
    Builds one montage from a user's weekly clips.

    All collaborators are injected:

    - store: ``fetch_clips``, ``update_montage``, ``reset_upload_counter``
    - scorer: ``suggest_redundant``
    - transcoder: ``normalize``, ``concatenate``, ``thumbnail``
    - media_store: ``fetch``, ``put_file``
    """

    def __init__(self, store, scorer, transcoder, media_store, config=None):
        self.store = store
        self.scorer = scorer
        self.transcoder = transcoder
        self.media_store = media_store
        self.config = config or default_settings

    def _make_work_dir(self, user_id: str) -> Path:
        base = Path(self.config.work_dir)
        base.mkdir(parents=True, exist_ok=True)
        work_dir = base / f"{user_id}-{int(time.time() * 1000)}"
        while work_dir.exists():
            work_dir = base / f"{user_id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
        work_dir.mkdir(parents=True)
        return work_dir

    async def run(self, montage_id: int, user_id: str, week_end_date: date) -> MontageRunResult:
        """
        Execute every stage for an existing montage record.

        Pipeline failures end in a ``failed`` record and are reported through
        the returned result, never raised. Cancellation (e.g. the job
        timeout) marks a still-processing record failed, cleans up, and
        propagates.
        """
        result = MontageRunResult(montage_id=montage_id, user_id=user_id)
        stage = MontageStage.FETCH
        work_dir = None

        try:
            work_dir = self._make_work_dir(user_id)
            result.work_dir = work_dir
            logger.info(f"[Montage {montage_id}] Starting for user {user_id} in {work_dir}")

            clips = await self.store.fetch_clips(user_id, week_end_date)
            if not clips:
                raise MontageAborted(stage, REASON_NO_CLIPS)
            logger.info(f"[Montage {montage_id}] Found {len(clips)} clips")

            stage = MontageStage.REDUNDANCY_HINT
            hints = await self._redundancy_hints(montage_id, clips)

            stage = MontageStage.SELECT
            selection = self.select(clips, hints)
            result.selection = selection
            if not selection.candidates:
                raise MontageAborted(stage, REASON_NO_CLIPS)

            stage = MontageStage.NORMALIZE
            normalized = await self._normalize_all(montage_id, selection, work_dir, result)
            if not normalized:
                raise MontageAborted(stage, REASON_NOTHING_PROCESSED)

            stage = MontageStage.ASSEMBLE
            montage_path = work_dir / "final_montage.mp4"
            thumbnail_path = work_dir / "final_montage_thumb.jpg"
            await self.transcoder.concatenate(normalized, montage_path)
            await self.transcoder.thumbnail(montage_path, thumbnail_path)

            stage = MontageStage.PUBLISH
            video_url, thumbnail_url = await self._publish(
                user_id, week_end_date, montage_path, thumbnail_path
            )
            logger.info(f"[Montage {montage_id}] Uploaded to {video_url}")

            stage = MontageStage.FINALIZE
            await self.store.update_montage(
                montage_id,
                MontageStatus.COMPLETE,
                video_url=video_url,
                thumbnail_url=thumbnail_url,
                clip_count=len(normalized),
                completed_at=datetime.utcnow(),
            )
            result.status = MontageStatus.COMPLETE
            result.clip_count = len(normalized)
            result.video_url = video_url
            result.thumbnail_url = thumbnail_url

            await self._reset_upload_counter(montage_id, user_id)
            logger.info(f"[Montage {montage_id}] Complete with {len(normalized)} clips")

        except MontageAborted as e:
            logger.warning(f"[Montage {montage_id}] Stopped at {e.stage.value}: {e.reason}")
            await self._mark_failed(result, e.stage, e.reason)

        except asyncio.CancelledError:
            logger.error(f"[Montage {montage_id}] Cancelled during {stage.value}")
            await self._mark_failed(result, stage, f"{stage.value}: cancelled or timed out")
            raise

        except Exception as e:
            logger.exception(f"[Montage {montage_id}] Failed during {stage.value}: {e}")
            await self._mark_failed(result, stage, f"{stage.value}: {e}")

        finally:
            if work_dir is not None:
                self._cleanup(montage_id, work_dir)

        return result

    def select(self, clips: List[Any], redundant_indices: List[int]) -> Selection:
        """Run the configured selection mode."""
        constraints = SelectionConstraints.from_settings(self.config)
        if self.config.selection_mode == "per_source":
            return select_per_source(
                clips,
                constraints,
                start_threshold=self.config.per_source_start_threshold,
                threshold_step=self.config.per_source_threshold_step,
                floor_threshold=self.config.per_source_floor_threshold,
            )
        return select_montage(clips, constraints, redundant_indices)

    async def _redundancy_hints(self, montage_id: int, clips: List[Any]) -> List[int]:
        """Ask the scorer for redundant clips; any failure means no hints."""
        descriptions = [
            {"index": index, "description": clip.description or ""}
            for index, clip in enumerate(clips)
        ]
        try:
            hints = await self.scorer.suggest_redundant(descriptions)
        except Exception as e:
            logger.warning(f"[Montage {montage_id}] Redundancy hints unavailable: {e}")
            return []
        return list(hints or [])

    async def _normalize_all(
        self,
        montage_id: int,
        selection: Selection,
        work_dir: Path,
        result: MontageRunResult,
    ) -> List[Path]:
        """Normalize selected clips concurrently, keeping selection order."""
        semaphore = asyncio.Semaphore(max(1, self.config.transcode_concurrency))

        async def _bounded(position: int, candidate: ScoredCandidate) -> Optional[Path]:
            async with semaphore:
                return await self._normalize_one(montage_id, position, candidate, work_dir)

        outputs = await asyncio.gather(
            *(_bounded(i, c) for i, c in enumerate(selection.candidates))
        )

        normalized = []
        for candidate, output in zip(selection.candidates, outputs):
            if output is None:
                result.skipped_clip_ids.append(candidate.clip_id)
            else:
                normalized.append(output)

        if result.skipped_clip_ids:
            logger.warning(
                f"[Montage {montage_id}] {len(result.skipped_clip_ids)} clips skipped: "
                f"{result.skipped_clip_ids}"
            )
        return normalized

    async def _normalize_one(
        self,
        montage_id: int,
        position: int,
        candidate: ScoredCandidate,
        work_dir: Path,
    ) -> Optional[Path]:
        """Fetch and normalize one clip. Returns None for a gap in the montage."""
        clip = candidate.clip
        key = self.media_store.key_from_url(clip.source_url)
        if not key:
            logger.warning(f"[Montage {montage_id}] Clip {clip.id} has no resolvable media; skipping")
            return None

        download_path = work_dir / f"{position}_{Path(key).name}"
        formatted_path = work_dir / f"{position}_formatted.ts"
        try:
            await self.media_store.fetch(clip.source_url, download_path)
            await self.transcoder.normalize(download_path, formatted_path, clip.start_sec, clip.end_sec)
        except (MediaNotFoundError, FFmpegError, OSError) as e:
            logger.warning(f"[Montage {montage_id}] Clip {clip.id} skipped: {e}")
            return None
        except Exception as e:
            logger.exception(f"[Montage {montage_id}] Clip {clip.id} skipped after unexpected error: {e}")
            return None

        return formatted_path

    async def _publish(
        self,
        user_id: str,
        week_end_date: date,
        montage_path: Path,
        thumbnail_path: Path,
    ) -> tuple:
        week = week_end_date.isoformat()
        unique_id = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        return await asyncio.gather(
            self.media_store.put_file(
                montage_path, f"montages/{user_id}/{week}/{unique_id}.mp4", "video/mp4"
            ),
            self.media_store.put_file(
                thumbnail_path, f"montages/thumbnails/{user_id}/{week}/{unique_id}.jpg", "image/jpeg"
            ),
        )

    async def _reset_upload_counter(self, montage_id: int, user_id: str):
        """Best-effort: the montage is already complete."""
        try:
            await self.store.reset_upload_counter(user_id)
        except Exception as e:
            logger.error(f"[Montage {montage_id}] Failed to reset weekly upload count for {user_id}: {e}")
        else:
            logger.info(f"[Montage {montage_id}] Reset weekly upload count for {user_id}")

    async def _mark_failed(self, result: MontageRunResult, stage: MontageStage, reason: str):
        """Record the failure. The status write itself is best-effort.

        A montage already persisted as complete stays complete.
        """
        if result.status == MontageStatus.COMPLETE:
            logger.warning(f"[Montage {result.montage_id}] Already complete; not marking {stage.value} failure: {reason}")
            return
        result.status = MontageStatus.FAILED
        result.stage = stage
        result.reason = reason
        try:
            await self.store.update_montage(
                result.montage_id,
                MontageStatus.FAILED,
                error_message=reason,
                completed_at=datetime.utcnow(),
            )
        except Exception as e:
            logger.error(f"[Montage {result.montage_id}] Failed to update status to failed: {e}")

    def _cleanup(self, montage_id: int, work_dir: Path):
        logger.info(f"[Montage {montage_id}] Cleaning up {work_dir}")
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"[Montage {montage_id}] Failed to clean up {work_dir}: {e}")
