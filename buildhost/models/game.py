from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from buildhost.lib.database import Base


class Game(Base):
    __tablename__ = "games"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Always the namespace owner, never the user who happened to push
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    short_text = Column(Text, nullable=True)
    type = Column(String(50), nullable=False, default="default")
    classification = Column(String(50), nullable=False, default="game")
    url = Column(String(1000), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="games")
    uploads = relationship("Upload", back_populates="game", cascade="all, delete-orphan", order_by="Upload.id")

    __table_args__ = (
        UniqueConstraint('user_id', 'title', name='uq_game_owner_title'),
    )
