"""API routes."""
import logging
import shutil
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import FileResponse

from app.config import settings
from app.models.clip import Clip
from app.models.job import UploadJobStatus
from app.models.montage import Montage
from app.services.clip_service import ClipService
from app.services.media_store import MediaNotFoundError
from app.services.montage_service import MontageService
from app.utils.ffmpeg import check_ffmpeg_available, check_ffprobe_available
from app.workers.handlers import build_media_store, build_store
from app.api.schemas import (
    ClipResponse,
    UploadAcceptedResponse,
    UploadJobResponse,
    MontageResponse,
    MontageAcceptedResponse,
    HealthResponse,
    DependencyCheckResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================

async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identify the caller. Token verification happens upstream."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_clip_service() -> ClipService:
    return ClipService(build_store(), build_media_store())


def get_montage_service() -> MontageService:
    return MontageService(build_store(), build_media_store())


def _clip_to_response(clip: Clip) -> ClipResponse:
    return ClipResponse(
        id=clip.id,
        user_id=clip.user_id,
        source_url=clip.source_url,
        thumbnail_url=clip.thumbnail_url,
        start_sec=clip.start_sec,
        end_sec=clip.end_sec,
        duration_sec=clip.duration_sec,
        description=clip.description,
        relevance=clip.relevance,
        quality=clip.quality,
        confidence=clip.confidence,
        score=clip.score,
        captured_at=clip.captured_at,
        week_end_date=clip.week_end_date,
        created_at=clip.created_at,
    )


def _montage_to_response(montage: Montage) -> MontageResponse:
    return MontageResponse(
        id=montage.id,
        user_id=montage.user_id,
        week_end_date=montage.week_end_date,
        status=montage.status.value,
        video_url=montage.video_url,
        thumbnail_url=montage.thumbnail_url,
        clip_count=montage.clip_count,
        error_message=montage.error_message,
        created_at=montage.created_at,
        completed_at=montage.completed_at,
    )


# =============================================================================
# Health & System
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()
    scorer_ok = bool(settings.gemini_api_key)

    all_ok = ffmpeg_ok and ffprobe_ok and scorer_ok

    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        if not scorer_ok:
            missing.append("GEMINI_API_KEY")
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        scorer_configured=scorer_ok,
        message=message
    )


@router.get("/dependencies", response_model=List[DependencyCheckResponse])
async def check_dependencies():
    """Check status of all dependencies."""
    deps = []

    ffmpeg_path = shutil.which(settings.ffmpeg_path)
    deps.append(DependencyCheckResponse(
        name="ffmpeg",
        available=ffmpeg_path is not None,
        path=ffmpeg_path,
        install_command="brew install ffmpeg"
    ))

    ffprobe_path = shutil.which(settings.ffprobe_path)
    deps.append(DependencyCheckResponse(
        name="ffprobe",
        available=ffprobe_path is not None,
        path=ffprobe_path,
        install_command="brew install ffmpeg"
    ))

    return deps


# =============================================================================
# Clips
# =============================================================================

@router.post("/clips", status_code=202, response_model=UploadAcceptedResponse)
async def upload_clip(
    video: UploadFile = File(...),
    user_prompt: Optional[str] = Form(None),
    date: Optional[str] = Form(None),
    user_id: str = Depends(get_current_user_id),
    service: ClipService = Depends(get_clip_service),
):
    """Upload a clip; scoring runs in the background."""
    max_bytes = settings.max_upload_mb * 1024 * 1024
    if video.size is not None and video.size > max_bytes:
        raise HTTPException(status_code=413, detail="File upload failed: file too large.")

    # Never hold more than one byte past the limit in memory
    data = await video.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise HTTPException(status_code=413, detail="File upload failed: file too large.")

    try:
        job = await service.accept_upload(user_id, video.filename, data, user_prompt, date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("Failed to create upload job")
        raise HTTPException(status_code=500, detail="Failed to initialize upload job.")

    return UploadAcceptedResponse(
        message="Video uploaded successfully. Processing has started in the background.",
        job_id=job.job_id,
        upload_url=job.upload_url,
    )


@router.get("/clips", response_model=List[ClipResponse])
async def list_clips(
    user_id: str = Depends(get_current_user_id),
    service: ClipService = Depends(get_clip_service),
):
    """List the caller's clips for the current week."""
    clips = await service.list_clips(user_id)
    return [_clip_to_response(c) for c in clips]


@router.get("/clips/jobs/{job_id}", response_model=UploadJobResponse)
async def get_clip_processing_status(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ClipService = Depends(get_clip_service),
):
    """Poll an upload job."""
    job = await service.get_upload_status(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found.")

    if job.user_id != user_id:
        raise HTTPException(status_code=403, detail="You are not authorized to view this job.")

    response = UploadJobResponse(
        job_id=job.job_id,
        status=job.status.value,
        upload_url=job.upload_url,
        updated_at=job.updated_at,
    )

    if job.status == UploadJobStatus.COMPLETED and job.clip_id:
        clip = await service.get_clip(job.clip_id)
        if clip:
            response.clip = _clip_to_response(clip)

    if job.status == UploadJobStatus.FAILED and job.error:
        response.error = job.error

    return response


@router.delete("/clips/{clip_id}")
async def delete_clip(
    clip_id: int,
    user_id: str = Depends(get_current_user_id),
    service: ClipService = Depends(get_clip_service),
):
    """Delete a clip and its media."""
    if not await service.delete_clip(clip_id, user_id):
        raise HTTPException(
            status_code=404,
            detail="Clip not found or you do not have permission to delete it."
        )
    return {"status": "deleted"}


# =============================================================================
# Montages
# =============================================================================

@router.post("/montages", status_code=202, response_model=MontageAcceptedResponse)
async def create_montage(
    user_id: str = Depends(get_current_user_id),
    service: MontageService = Depends(get_montage_service),
):
    """Start building this week's montage."""
    montage_id = await service.run_montage_pipeline(user_id)
    return MontageAcceptedResponse(
        message="Montage creation process has started. This may take several minutes.",
        montage_id=montage_id,
        status="processing",
    )


@router.get("/montages", response_model=List[MontageResponse])
async def list_montages(
    user_id: str = Depends(get_current_user_id),
    service: MontageService = Depends(get_montage_service),
):
    """List the caller's montages, newest first."""
    montages = await service.list_montages(user_id)
    return [_montage_to_response(m) for m in montages]


@router.get("/montages/{montage_id}", response_model=MontageResponse)
async def get_montage(
    montage_id: int,
    user_id: str = Depends(get_current_user_id),
    service: MontageService = Depends(get_montage_service),
):
    """Poll a montage."""
    montage = await service.get_job_status(montage_id)
    if not montage or montage.user_id != user_id:
        raise HTTPException(status_code=404, detail="Montage not found")
    return _montage_to_response(montage)


@router.delete("/montages/{montage_id}")
async def delete_montage(
    montage_id: int,
    user_id: str = Depends(get_current_user_id),
    service: MontageService = Depends(get_montage_service),
):
    """Delete a montage and its media."""
    if not await service.delete_montage(montage_id, user_id):
        raise HTTPException(
            status_code=404,
            detail="Montage not found or you do not have permission to delete it."
        )
    return {"status": "deleted"}


# =============================================================================
# Static Files
# =============================================================================

@router.get("/media/{key:path}")
async def get_media(key: str):
    """Serve a stored media object."""
    media_store = build_media_store()
    try:
        path = media_store.resolve_path(key)
    except MediaNotFoundError:
        raise HTTPException(status_code=404, detail="Media not found")

    if not path.is_file():
        raise HTTPException(status_code=404, detail="Media not found")

    return FileResponse(path, filename=path.name)
