"""Application configuration."""
from pathlib import Path
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # App settings
    app_name: str = "WeeklyMontage"
    debug: bool = True

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    frontend_url: str = "http://localhost:5173"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/montage.db"

    # Data directories
    data_dir: Path = Path("./data")
    media_dir: Path = Path("./data/media")  # Local object store root
    work_dir: Path = Path("./data/work")  # Per-run scratch directories

    # Public base URL for media served from media_dir
    media_base_url: str = "http://localhost:8000/api/media"

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Export settings
    export_video_codec: str = "libx264"
    export_video_preset: str = "veryfast"
    export_video_crf: int = 23
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "128k"

    # Montage canvas (vertical)
    output_width: int = 1080
    output_height: int = 1920
    output_fps: int = 30

    # Upload compression (copy sent to the scorer)
    compress_height: int = 720
    compress_crf: int = 28

    # Thumbnail settings
    thumbnail_width: int = 540
    thumbnail_height: int = 960
    thumbnail_offset_sec: float = 1.0  # Skip black lead-in frames

    # Montage selection
    montage_min_duration_sec: float = 30.0
    montage_max_duration_sec: float = 90.0
    long_clip_threshold_sec: float = 12.0
    long_clip_penalty: float = 0.9
    selection_mode: Literal["flat", "per_source"] = "flat"
    per_source_start_threshold: float = 0.8
    per_source_threshold_step: float = 0.1
    per_source_floor_threshold: float = 0.5

    # Scorer (Gemini)
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash-lite"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    scorer_max_attempts: int = 3
    scorer_backoff_base_sec: float = 5.0
    scorer_max_concurrency: int = 2
    scorer_timeout_sec: float = 120.0
    fallback_segment_max_sec: float = 3.0
    default_user_prompt: str = "anything that seems fun and makes my life look enjoyable"

    # Background jobs
    transcode_concurrency: int = 2
    job_timeout_sec: float = 300.0

    # Uploads
    max_upload_mb: int = 500


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.media_dir.mkdir(parents=True, exist_ok=True)
settings.work_dir.mkdir(parents=True, exist_ok=True)
