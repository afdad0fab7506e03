"""Job handlers for background pipelines."""
import logging
from datetime import date, datetime
from typing import Optional

from app.config import settings
from app.db.database import async_session_maker
from app.pipeline.clip_analysis import ClipAnalysisPipeline
from app.pipeline.montage import MontagePipeline
from app.services.clip_store import ClipStore
from app.services.media_store import LocalMediaStore
from app.services.scorer import GeminiScorer
from app.utils.ffmpeg import FFmpegTranscoder

logger = logging.getLogger(__name__)


def build_store() -> ClipStore:
    return ClipStore(async_session_maker)


def build_media_store() -> LocalMediaStore:
    return LocalMediaStore(settings.media_dir, settings.media_base_url)


def build_montage_pipeline() -> MontagePipeline:
    """Wire the production adapters into a montage pipeline."""
    return MontagePipeline(
        store=build_store(),
        scorer=GeminiScorer(),
        transcoder=FFmpegTranscoder(),
        media_store=build_media_store(),
    )


def build_clip_analysis_pipeline() -> ClipAnalysisPipeline:
    """Wire the production adapters into an upload analysis pipeline."""
    return ClipAnalysisPipeline(
        store=build_store(),
        scorer=GeminiScorer(),
        transcoder=FFmpegTranscoder(),
        media_store=build_media_store(),
    )


async def handle_montage(
    montage_id: int,
    user_id: str,
    week_end_date: date,
    **kwargs
) -> dict:
    """
    Handle a montage assembly job.

    Args:
        montage_id: ID of the processing montage record
        user_id: Owner of the clips
        week_end_date: Week bucket to assemble

    Returns:
        Result dictionary
    """
    pipeline = build_montage_pipeline()
    result = await pipeline.run(montage_id, user_id, week_end_date)
    return {
        "montage_id": result.montage_id,
        "status": result.status.value,
        "clip_count": result.clip_count,
        "reason": result.reason,
    }


async def handle_clip_analysis(
    job_id: str,
    user_id: str,
    upload_url: str,
    user_prompt: Optional[str] = None,
    captured_at: Optional[datetime] = None,
    **kwargs
) -> dict:
    """
    Handle analysis of one uploaded clip.

    Args:
        job_id: Upload job ID
        user_id: Uploader
        upload_url: Media store URL of the original video
        user_prompt: What the user wants highlighted
        captured_at: When the video was recorded

    Returns:
        Result dictionary
    """
    pipeline = build_clip_analysis_pipeline()
    clip = await pipeline.run(job_id, user_id, upload_url, user_prompt, captured_at)
    return {"job_id": job_id, "clip_id": clip.id if clip else None}
