"""Pydantic schemas for API requests and responses."""
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel


# =============================================================================
# Clip Schemas
# =============================================================================

class ClipResponse(BaseModel):
    """Clip response."""
    id: int
    user_id: str
    source_url: str
    thumbnail_url: Optional[str]
    start_sec: float
    end_sec: float
    duration_sec: float
    description: Optional[str]
    relevance: float
    quality: float
    confidence: float
    score: float
    captured_at: datetime
    week_end_date: date
    created_at: datetime

    class Config:
        from_attributes = True


class UploadAcceptedResponse(BaseModel):
    """Response for an accepted upload."""
    message: str
    job_id: str
    upload_url: Optional[str]


class UploadJobResponse(BaseModel):
    """Upload job status."""
    job_id: str
    status: str
    upload_url: Optional[str]
    updated_at: datetime
    clip: Optional[ClipResponse] = None
    error: Optional[str] = None


# =============================================================================
# Montage Schemas
# =============================================================================

class MontageResponse(BaseModel):
    """Montage response."""
    id: int
    user_id: str
    week_end_date: date
    status: str
    video_url: Optional[str]
    thumbnail_url: Optional[str]
    clip_count: Optional[int]
    error_message: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class MontageAcceptedResponse(BaseModel):
    """Response for a started montage run."""
    message: str
    montage_id: int
    status: str


# =============================================================================
# Health Check
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    scorer_configured: bool
    message: Optional[str] = None


class DependencyCheckResponse(BaseModel):
    """Dependency check response."""
    name: str
    available: bool
    path: Optional[str] = None
    install_command: Optional[str] = None
