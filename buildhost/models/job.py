"""Job model for recoverable background work."""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from buildhost.lib.database import Base


class Job(Base):
    """
    Work that ran outside the request's success path and may need a retry.

    Job types:
    - archive: assemble the downloadable zip of a completed build

    Status flow: queued → running → completed/failed
    A failed job is picked up again by ``buildhost-admin retry-archives``.
    """
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_type = Column(String(50), nullable=False)

    # Status tracking
    status = Column(String(20), default="queued")  # queued, running, completed, failed
    attempts = Column(Integer, default=0)
    message = Column(Text, nullable=True)

    # Result data
    result = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    error = Column(Text, nullable=True)
    logs = Column(JSON().with_variant(JSONB, "postgresql"), default=list)

    # Relations
    build_id = Column(Integer, ForeignKey("builds.id", ondelete="CASCADE"), nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    build = relationship("Build", foreign_keys=[build_id])

    __table_args__ = (
        Index('ix_jobs_build', 'build_id'),
        Index('ix_jobs_status', 'status'),
        Index('ix_jobs_type', 'job_type'),
    )

    def to_dict(self):
        """Convert to dictionary for CLI output."""
        return {
            "id": self.id,
            "job_type": self.job_type,
            "status": self.status,
            "attempts": self.attempts,
            "message": self.message,
            "result": self.result,
            "error": self.error,
            "logs": self.logs or [],
            "build_id": self.build_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
