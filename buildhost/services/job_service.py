"""
Job Service

Manages the lifecycle of recoverable work records.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.models.job import Job

ARCHIVE_JOB = "archive"


class JobService:
    """Service for managing job records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_job(
        self,
        job_type: str,
        build_id: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """
        Create a new job.

        Args:
            job_type: Type of job (archive)
            build_id: Build the job works on
            metadata: Initial job metadata stored in result

        Returns:
            Created Job instance
        """
        job = Job(
            job_type=job_type,
            build_id=build_id,
            status="queued",
            attempts=0,
            message="Job queued",
            result=metadata,
            logs=[],
        )

        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)

        return job

    async def get_job(self, job_id: int) -> Optional[Job]:
        """Get job by ID."""
        result = await self.db.execute(
            select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        build_id: Optional[int] = None,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs with optional filters, oldest first."""
        query = select(Job).order_by(Job.id).limit(limit)

        if build_id is not None:
            query = query.where(Job.build_id == build_id)
        if status:
            query = query.where(Job.status == status)
        if job_type:
            query = query.where(Job.job_type == job_type)

        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def claim_job(self, job_id: int, from_statuses: tuple = ("queued", "failed")) -> bool:
        """
        Atomically move a job to running.

        Returns False when another worker got there first.
        """
        result = await self.db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status.in_(from_statuses))
            .values(
                status="running",
                attempts=Job.attempts + 1,
                started_at=datetime.utcnow(),
                message="Job started",
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def complete_job(
        self,
        job_id: int,
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional[Job]:
        """Mark job as completed with result."""
        job = await self.get_job(job_id)
        if not job:
            return None

        job.status = "completed"
        job.message = "Job completed"
        job.error = None
        job.completed_at = datetime.utcnow()
        if result:
            # Merge with existing metadata
            job.result = {**(job.result or {}), **result}

        self._add_log(job, "Job completed successfully", "info")
        await self.db.commit()
        await self.db.refresh(job)

        return job

    async def fail_job(
        self,
        job_id: int,
        error: str,
    ) -> Optional[Job]:
        """Mark job as failed with error."""
        job = await self.get_job(job_id)
        if not job:
            return None

        job.status = "failed"
        job.error = error
        job.message = f"Job failed: {error}"
        job.completed_at = datetime.utcnow()

        self._add_log(job, f"Job failed: {error}", "error")
        await self.db.commit()
        await self.db.refresh(job)

        return job

    async def fail_stale_jobs(self, job_type: str, started_before: datetime, error: str) -> int:
        """
        Fail jobs of ``job_type`` still running since before ``started_before``.

        Their worker died or was cancelled without recording an outcome.
        Returns how many were failed.
        """
        result = await self.db.execute(
            select(Job.id).where(
                Job.job_type == job_type,
                Job.status == "running",
                Job.started_at < started_before,
            )
        )
        stale_ids = list(result.scalars().all())
        for job_id in stale_ids:
            await self.fail_job(job_id, error)
        return len(stale_ids)

    async def add_log(self, job_id: int, message: str, level: str = "info") -> None:
        """Append a log entry to a job."""
        job = await self.get_job(job_id)
        if not job:
            return

        self._add_log(job, message, level)
        await self.db.commit()

    def _add_log(self, job: Job, message: str, level: str) -> None:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": level,
            "message": message,
        }
        job.logs = (job.logs or []) + [log_entry]
