from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from buildhost.lib.database import Base


class Channel(Base):
    """Named pointer to the build currently distributed on an upload."""
    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    upload_id = Column(Integer, ForeignKey("uploads.id", ondelete="CASCADE"), nullable=False)
    current_build_id = Column(Integer, ForeignKey("builds.id"), nullable=True)

    # Bumped on every pointer write; writers compare-and-swap on it
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    upload = relationship("Upload", back_populates="channels")
    current_build = relationship("Build", foreign_keys=[current_build_id])

    __table_args__ = (
        UniqueConstraint('name', 'upload_id', name='uq_channel_name_upload'),
    )
