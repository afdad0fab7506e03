"""Datastore access for clips, montages, upload jobs and profiles."""
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.clip import Clip
from app.models.job import UploadJob, UploadJobStatus
from app.models.montage import Montage, MontageStatus
from app.models.profile import Profile

logger = logging.getLogger(__name__)


class ClipStore:
    """
    Store adapter used by the background pipelines.

    Every method opens its own short-lived session so callers never hold a
    connection across slow transcoding or scoring work.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    # -------------------------------------------------------------------------
    # Clips
    # -------------------------------------------------------------------------

    async def fetch_clips(self, user_id: str, week_end_date: date) -> List[Clip]:
        """Get a user's clips for one week, highest score first."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(Clip)
                .where(Clip.user_id == user_id, Clip.week_end_date == week_end_date)
                .order_by(Clip.score.desc(), Clip.id)
            )
            return list(result.scalars().all())

    async def list_clips(self, user_id: str, week_end_date: Optional[date] = None) -> List[Clip]:
        """List a user's clips in capture order."""
        query = select(Clip).where(Clip.user_id == user_id)
        if week_end_date is not None:
            query = query.where(Clip.week_end_date == week_end_date)
        async with self.session_maker() as session:
            result = await session.execute(query.order_by(Clip.captured_at, Clip.id))
            return list(result.scalars().all())

    async def get_clip(self, clip_id: int) -> Optional[Clip]:
        async with self.session_maker() as session:
            return await session.get(Clip, clip_id)

    async def insert_clip(self, clip: Clip) -> Clip:
        async with self.session_maker() as session:
            session.add(clip)
            await session.commit()
            await session.refresh(clip)
            return clip

    async def delete_clip(self, clip_id: int) -> bool:
        async with self.session_maker() as session:
            clip = await session.get(Clip, clip_id)
            if not clip:
                return False
            await session.delete(clip)
            await session.commit()
            return True

    # -------------------------------------------------------------------------
    # Montages
    # -------------------------------------------------------------------------

    async def create_montage(self, user_id: str, week_end_date: date) -> int:
        """Create a montage record in the processing state and return its ID."""
        async with self.session_maker() as session:
            montage = Montage(
                user_id=user_id,
                week_end_date=week_end_date,
                status=MontageStatus.PROCESSING,
            )
            session.add(montage)
            await session.commit()
            await session.refresh(montage)
            return montage.id

    async def update_montage(
        self,
        montage_id: int,
        status: MontageStatus,
        video_url: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        clip_count: Optional[int] = None,
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> Montage:
        """
        Update a montage's status and outputs.

        Raises:
            ValueError: If the montage does not exist
        """
        async with self.session_maker() as session:
            montage = await session.get(Montage, montage_id)
            if not montage:
                raise ValueError(f"Montage {montage_id} not found")

            montage.status = status
            if video_url is not None:
                montage.video_url = video_url
            if thumbnail_url is not None:
                montage.thumbnail_url = thumbnail_url
            if clip_count is not None:
                montage.clip_count = clip_count
            if error_message is not None:
                montage.error_message = error_message
            if completed_at is not None:
                montage.completed_at = completed_at

            await session.commit()
            await session.refresh(montage)
            return montage

    async def get_montage(self, montage_id: int) -> Optional[Montage]:
        async with self.session_maker() as session:
            return await session.get(Montage, montage_id)

    async def list_montages(self, user_id: str) -> List[Montage]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Montage)
                .where(Montage.user_id == user_id)
                .order_by(Montage.created_at.desc(), Montage.id.desc())
            )
            return list(result.scalars().all())

    async def delete_montage(self, montage_id: int) -> bool:
        async with self.session_maker() as session:
            montage = await session.get(Montage, montage_id)
            if not montage:
                return False
            await session.delete(montage)
            await session.commit()
            return True

    # -------------------------------------------------------------------------
    # Upload jobs
    # -------------------------------------------------------------------------

    async def create_upload_job(
        self,
        job_id: str,
        user_id: str,
        upload_url: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> UploadJob:
        async with self.session_maker() as session:
            job = UploadJob(
                job_id=job_id,
                user_id=user_id,
                status=UploadJobStatus.PROCESSING,
                upload_url=upload_url,
                filename=filename,
            )
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return job

    async def update_upload_job(
        self,
        job_id: str,
        status: UploadJobStatus,
        clip_id: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Optional[UploadJob]:
        async with self.session_maker() as session:
            job = await session.get(UploadJob, job_id)
            if not job:
                logger.error(f"Upload job {job_id} not found")
                return None

            job.status = status
            if clip_id is not None:
                job.clip_id = clip_id
            if error is not None:
                job.error = error

            await session.commit()
            await session.refresh(job)
            return job

    async def get_upload_job(self, job_id: str) -> Optional[UploadJob]:
        async with self.session_maker() as session:
            return await session.get(UploadJob, job_id)

    async def delete_upload_job(self, job_id: str) -> bool:
        async with self.session_maker() as session:
            job = await session.get(UploadJob, job_id)
            if not job:
                return False
            await session.delete(job)
            await session.commit()
            return True

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def increment_upload_counter(self, user_id: str) -> int:
        """Add one to the user's weekly upload count, creating the profile if needed."""
        async with self.session_maker() as session:
            profile = await session.get(Profile, user_id)
            if not profile:
                profile = Profile(id=user_id, week_vids_count=0)
                session.add(profile)
            profile.week_vids_count = (profile.week_vids_count or 0) + 1
            await session.commit()
            return profile.week_vids_count

    async def reset_upload_counter(self, user_id: str):
        """Reset the user's weekly upload count to zero."""
        async with self.session_maker() as session:
            await session.execute(
                update(Profile)
                .where(Profile.id == user_id)
                .values(week_vids_count=0, updated_at=datetime.utcnow())
            )
            await session.commit()

    async def get_upload_count(self, user_id: str) -> int:
        async with self.session_maker() as session:
            profile = await session.get(Profile, user_id)
            return profile.week_vids_count if profile else 0
