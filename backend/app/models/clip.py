"""Clip model."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Date, Float, Text, Index

from app.db.database import Base


# Composite score weights
RELEVANCE_WEIGHT = 0.7
QUALITY_WEIGHT = 0.2
CONFIDENCE_WEIGHT = 0.1


def weighted_score(relevance: float, quality: float, confidence: float) -> float:
    """Blend the three analysis scores into one ranking score."""
    return (
        relevance * RELEVANCE_WEIGHT
        + quality * QUALITY_WEIGHT
        + confidence * CONFIDENCE_WEIGHT
    )


class Clip(Base):
    """A scored segment of one uploaded video."""

    __tablename__ = "clips"
    __table_args__ = (
        Index("ix_clips_user_week", "user_id", "week_end_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)

    # Media references
    source_url = Column(String(2048), nullable=False)
    thumbnail_url = Column(String(2048), nullable=True)

    # Segment bounds within the source, [start_sec, end_sec)
    start_sec = Column(Float, nullable=False)
    end_sec = Column(Float, nullable=False)

    # Analysis output
    description = Column(Text, nullable=True)
    relevance = Column(Float, nullable=False, default=0.0)
    quality = Column(Float, nullable=False, default=0.5)
    confidence = Column(Float, nullable=False, default=0.5)
    score = Column(Float, nullable=False, default=0.0)

    # Timeline
    captured_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    week_end_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Clip(id={self.id}, user={self.user_id}, {self.start_sec}-{self.end_sec})>"

    @property
    def duration_sec(self) -> float:
        """Length of the segment in seconds."""
        return self.end_sec - self.start_sec

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "source_url": self.source_url,
            "thumbnail_url": self.thumbnail_url,
            "start_sec": self.start_sec,
            "end_sec": self.end_sec,
            "duration_sec": self.duration_sec,
            "description": self.description,
            "relevance": self.relevance,
            "quality": self.quality,
            "confidence": self.confidence,
            "score": self.score,
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
            "week_end_date": self.week_end_date.isoformat() if self.week_end_date else None,
        }
