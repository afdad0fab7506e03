"""User profile model."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from app.db.database import Base


class Profile(Base):
    """Per-user counters."""

    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    week_vids_count = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Profile(id={self.id}, week_vids_count={self.week_vids_count})>"
