from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from buildhost.lib.database import Base

DEFAULT_PLATFORMS = ["windows", "linux", "osx"]


class Upload(Base):
    """One deliverable line of a game. Channels attach to uploads."""
    __tablename__ = "uploads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=True)
    size = Column(BigInteger, nullable=False, default=0)
    storage = Column(String(20), nullable=False, default="hosted")
    type = Column(String(50), nullable=False, default="default")
    platforms = Column(JSON().with_variant(JSONB, "postgresql"), default=lambda: list(DEFAULT_PLATFORMS))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    game = relationship("Game", back_populates="uploads")
    channels = relationship("Channel", back_populates="upload", cascade="all, delete-orphan", order_by="Channel.id")
    builds = relationship("Build", back_populates="upload", cascade="all, delete-orphan", order_by="Build.id")
