"""Upload job model for tracking per-clip analysis."""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text

from app.db.database import Base


class UploadJobStatus(str, enum.Enum):
    """Upload job status enumeration."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadJob(Base):
    """Job created as soon as an upload is accepted, polled by the client."""

    __tablename__ = "processing_jobs"

    job_id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)

    status = Column(Enum(UploadJobStatus), default=UploadJobStatus.PROCESSING, nullable=False)

    upload_url = Column(String(2048), nullable=True)
    filename = Column(String(1024), nullable=True)

    # Results/errors
    clip_id = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UploadJob(job_id={self.job_id}, status={self.status})>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "job_id": self.job_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "upload_url": self.upload_url,
            "filename": self.filename,
            "clip_id": self.clip_id,
            "error": self.error,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
