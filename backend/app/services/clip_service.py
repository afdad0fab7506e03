"""Clip service layer."""
import logging
import re
import time
import uuid
from datetime import date
from pathlib import Path
from typing import List, Optional

from app.models.clip import Clip
from app.models.job import UploadJob, UploadJobStatus
from app.services.clip_store import ClipStore
from app.services.media_store import LocalMediaStore
from app.utils.dates import get_upcoming_sunday, parse_capture_date
from app.workers.job_runner import JobRunner, job_runner

logger = logging.getLogger(__name__)


def safe_filename(filename: Optional[str]) -> str:
    """Reduce a client filename to a safe basename."""
    name = Path(filename or "").name
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or "video.mp4"


class ClipService:
    """Service for clip operations."""

    def __init__(self, store: ClipStore, media_store: LocalMediaStore, runner: JobRunner = None):
        self.store = store
        self.media_store = media_store
        self.runner = runner or job_runner

    async def accept_upload(
        self,
        user_id: str,
        filename: Optional[str],
        data: bytes,
        user_prompt: Optional[str],
        capture_date: Optional[str],
    ) -> UploadJob:
        """
        Store an uploaded video and schedule its analysis.

        The upload job is persisted as processing before analysis is
        scheduled, so the client can poll it immediately.

        Raises:
            ValueError: If the prompt, date or file is missing or invalid
        """
        if not user_prompt or not user_prompt.strip():
            raise ValueError("user_prompt is required.")
        captured_at = parse_capture_date(capture_date)
        if not data:
            raise ValueError("No file was uploaded.")

        week = get_upcoming_sunday().isoformat()
        unique_suffix = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        key = f"clips/{user_id}/{week}/{unique_suffix}-{safe_filename(filename)}"
        upload_url = await self.media_store.put_bytes(data, key, "video/mp4")

        job_id = str(uuid.uuid4())
        job = await self.store.create_upload_job(
            job_id,
            user_id,
            upload_url=upload_url,
            filename=filename,
        )

        started = await self.runner.start_job(
            f"upload:{job_id}",
            "clip_analysis",
            job_id=job_id,
            user_id=user_id,
            upload_url=upload_url,
            user_prompt=user_prompt.strip(),
            captured_at=captured_at,
        )
        if not started:
            job = await self.store.update_upload_job(
                job_id, UploadJobStatus.FAILED, error="could not be scheduled"
            )

        return job

    async def get_upload_status(self, job_id: str) -> Optional[UploadJob]:
        return await self.store.get_upload_job(job_id)

    async def get_clip(self, clip_id: int) -> Optional[Clip]:
        return await self.store.get_clip(clip_id)

    async def list_clips(self, user_id: str, week_end_date: Optional[date] = None) -> List[Clip]:
        """List a user's clips for one week (the current week by default)."""
        return await self.store.list_clips(user_id, week_end_date or get_upcoming_sunday())

    async def delete_clip(self, clip_id: int, user_id: str) -> bool:
        """Delete a user's clip and its media. False if not found or not owned."""
        clip = await self.store.get_clip(clip_id)
        if not clip or clip.user_id != user_id:
            return False

        for url in (clip.source_url, clip.thumbnail_url):
            await self.media_store.delete(url)

        return await self.store.delete_clip(clip_id)
