"""Montage model tracking one assembly run."""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Date, Enum, Text

from app.db.database import Base


class MontageStatus(str, enum.Enum):
    """Montage status enumeration."""
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class Montage(Base):
    """Montage model, created as processing before any expensive work."""

    __tablename__ = "montages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    week_end_date = Column(Date, nullable=False)

    status = Column(Enum(MontageStatus), default=MontageStatus.PROCESSING, nullable=False)

    # Output
    video_url = Column(String(2048), nullable=True)
    thumbnail_url = Column(String(2048), nullable=True)
    clip_count = Column(Integer, nullable=True)

    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Montage(id={self.id}, user={self.user_id}, status={self.status})>"

    @property
    def is_terminal(self) -> bool:
        return self.status in (MontageStatus.COMPLETE, MontageStatus.FAILED)

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "week_end_date": self.week_end_date.isoformat() if self.week_end_date else None,
            "status": self.status.value,
            "video_url": self.video_url,
            "thumbnail_url": self.thumbnail_url,
            "clip_count": self.clip_count,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
