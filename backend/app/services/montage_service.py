"""Montage service layer."""
import logging
from datetime import date, datetime
from typing import List, Optional

from app.models.montage import Montage, MontageStatus
from app.services.clip_store import ClipStore
from app.services.media_store import LocalMediaStore
from app.utils.dates import get_upcoming_sunday
from app.workers.job_runner import JobRunner, job_runner

logger = logging.getLogger(__name__)


class MontageService:
    """Service for montage operations."""

    def __init__(self, store: ClipStore, media_store: LocalMediaStore, runner: JobRunner = None):
        self.store = store
        self.media_store = media_store
        self.runner = runner or job_runner

    async def run_montage_pipeline(self, user_id: str, week_end_date: Optional[date] = None) -> int:
        """
        Start building a montage for the user's current week.

        The processing record is persisted before the run is scheduled, so
        the returned ID can be polled right away.

        Returns:
            Montage ID
        """
        week_end_date = week_end_date or get_upcoming_sunday()
        montage_id = await self.store.create_montage(user_id, week_end_date)
        logger.info(f"[Montage {montage_id}] Queued for user {user_id}")

        started = await self.runner.start_job(
            f"montage:{montage_id}",
            "montage",
            montage_id=montage_id,
            user_id=user_id,
            week_end_date=week_end_date,
        )
        if not started:
            await self.store.update_montage(
                montage_id,
                MontageStatus.FAILED,
                error_message="could not be scheduled",
                completed_at=datetime.utcnow(),
            )

        return montage_id

    async def get_job_status(self, montage_id: int) -> Optional[Montage]:
        return await self.store.get_montage(montage_id)

    async def list_montages(self, user_id: str) -> List[Montage]:
        return await self.store.list_montages(user_id)

    async def delete_montage(self, montage_id: int, user_id: str) -> bool:
        """Delete a user's montage and its media. False if not found or not owned."""
        montage = await self.store.get_montage(montage_id)
        if not montage or montage.user_id != user_id:
            return False

        for url in (montage.video_url, montage.thumbnail_url):
            await self.media_store.delete(url)

        return await self.store.delete_montage(montage_id)
