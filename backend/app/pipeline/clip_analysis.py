"""Per-upload analysis pipeline.

Turns one uploaded video into a scored Clip record and moves its UploadJob
from ``processing`` to ``completed`` or ``failed``.
"""
import asyncio
import logging
import shutil
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from app.config import settings as default_settings
from app.models.clip import Clip
from app.models.job import UploadJobStatus
from app.services.scorer import MIN_SEGMENT_SECONDS
from app.utils.dates import get_upcoming_sunday

logger = logging.getLogger(__name__)


class ClipAnalysisPipeline:
    """Scores one upload and stores the resulting clip."""

    def __init__(self, store, scorer, transcoder, media_store, config=None):
        self.store = store
        self.scorer = scorer
        self.transcoder = transcoder
        self.media_store = media_store
        self.config = config or default_settings

    async def run(
        self,
        job_id: str,
        user_id: str,
        upload_url: str,
        user_prompt: Optional[str] = None,
        captured_at: Optional[datetime] = None,
    ) -> Optional[Clip]:
        """
        Analyze an uploaded video.

        Returns:
            The stored clip, or None if the job failed
        """
        unique_id = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        work_dir = Path(self.config.work_dir) / f"upload-{user_id}-{unique_id}"
        original_path = work_dir / "original.mp4"
        thumbnail_path = work_dir / "thumb.jpg"
        compressed_path = work_dir / "compressed.mp4"

        try:
            logger.info(f"[Upload {job_id}] Starting background processing for {upload_url}")
            work_dir.mkdir(parents=True, exist_ok=True)

            await self.media_store.fetch(upload_url, original_path)
            duration = await self.transcoder.probe_duration(original_path)

            await asyncio.gather(
                self.transcoder.thumbnail(original_path, thumbnail_path),
                self.transcoder.compress(original_path, compressed_path),
            )

            thumbnail_url, analysis = await asyncio.gather(
                self.media_store.put_file(
                    thumbnail_path, f"thumbnails/{user_id}/{unique_id}.jpg", "image/jpeg"
                ),
                self.scorer.analyze_single_clip(
                    compressed_path,
                    user_prompt or self.config.default_user_prompt,
                    duration,
                ),
            )

            start_sec, end_sec = analysis.start_sec, analysis.end_sec
            if duration:
                # Keep the segment inside the video
                end_sec = min(end_sec, duration)
                start_sec = min(start_sec, max(0.0, end_sec - MIN_SEGMENT_SECONDS))

            clip = await self.store.insert_clip(Clip(
                user_id=user_id,
                source_url=upload_url,
                thumbnail_url=thumbnail_url,
                start_sec=start_sec,
                end_sec=end_sec,
                description=analysis.description,
                relevance=analysis.scores.relevance,
                quality=analysis.scores.quality,
                confidence=analysis.scores.confidence,
                score=analysis.scores.composite,
                captured_at=captured_at or datetime.utcnow(),
                week_end_date=get_upcoming_sunday(),
            ))
            logger.info(f"[Upload {job_id}] Saved clip {clip.id} ({start_sec:.2f}-{end_sec:.2f}s)")

            await self.store.update_upload_job(job_id, UploadJobStatus.COMPLETED, clip_id=clip.id)

            try:
                count = await self.store.increment_upload_counter(user_id)
                logger.info(f"[Upload {job_id}] User {user_id} has {count} uploads this week")
            except Exception as e:
                logger.error(f"[Upload {job_id}] Failed to update user {user_id} profile: {e}")

            return clip

        except asyncio.CancelledError:
            await self._mark_failed(job_id, "Processing cancelled or timed out")
            raise

        except Exception as e:
            logger.exception(f"[Upload {job_id}] Background processing failed: {e}")
            await self._mark_failed(job_id, str(e) or e.__class__.__name__)
            return None

        finally:
            logger.debug(f"[Upload {job_id}] Cleaning up {work_dir}")
            shutil.rmtree(work_dir, ignore_errors=True)

    async def _mark_failed(self, job_id: str, error: str):
        try:
            await self.store.update_upload_job(job_id, UploadJobStatus.FAILED, error=error)
        except Exception as e:
            logger.error(f"[Upload {job_id}] Failed to update status to failed: {e}")
