from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from buildhost.lib.database import Base

# Build states only move forward: started -> processing -> completed
BUILD_STARTED = "started"
BUILD_PROCESSING = "processing"
BUILD_COMPLETED = "completed"

FILE_UPLOADING = "uploading"
FILE_UPLOADED = "uploaded"


class Build(Base):
    __tablename__ = "builds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    upload_id = Column(Integer, ForeignKey("uploads.id", ondelete="CASCADE"), nullable=False)
    user_version = Column(String(255), nullable=True)
    # Channel head at creation time, kept for incremental update lineage
    parent_build_id = Column(Integer, ForeignKey("builds.id"), nullable=True)
    state = Column(String(20), nullable=False, default=BUILD_STARTED)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    upload = relationship("Upload", back_populates="builds")
    parent = relationship("Build", remote_side=[id], foreign_keys=[parent_build_id])
    files = relationship("BuildFile", back_populates="build", cascade="all, delete-orphan", order_by="BuildFile.id")

    __table_args__ = (
        Index('ix_builds_upload', 'upload_id'),
        Index('ix_builds_state', 'state'),
    )


class BuildFile(Base):
    __tablename__ = "build_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    build_id = Column(Integer, ForeignKey("builds.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(50), nullable=False)  # archive, signature, patch, manifest, ...
    sub_type = Column(String(50), nullable=False, default="default")
    # Only authoritative once state == uploaded
    size = Column(BigInteger, nullable=False, default=0)
    state = Column(String(20), nullable=False, default=FILE_UPLOADING)
    storage_path = Column(String(500), nullable=True)
    upload_url = Column(String(2000), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    build = relationship("Build", back_populates="files")

    __table_args__ = (
        Index('ix_build_files_build', 'build_id'),
    )
