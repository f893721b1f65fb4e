"""
Archive Job

Runs archive assembly for a build and records the attempt as a job, so a
failed assembly can be retried later without touching the build itself.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.models.build import BUILD_COMPLETED, BUILD_PROCESSING, Build, BuildFile
from buildhost.services.archive_service import ArchiveService
from buildhost.services.job_service import ARCHIVE_JOB, JobService
from buildhost.services.storage_service import StorageService

logger = logging.getLogger(__name__)

# Running jobs and processing builds older than this are considered abandoned
STALE_AFTER = timedelta(minutes=30)


async def run_archive_job(
    db: AsyncSession,
    storage: StorageService,
    build_id: int,
    job_id: Optional[int] = None,
) -> Optional[BuildFile]:
    """
    Assemble the archive of a build.

    Failures are logged and recorded on the job, never raised: the archive
    is a convenience for whole-build downloads and must not block the push.

    Args:
        db: Database session
        storage: Storage service holding the build's files
        build_id: Build to archive
        job_id: Existing job to retry; a new job is created when omitted

    Returns:
        The registered archive BuildFile, or None when assembly failed or
        another worker holds the job
    """
    job_service = JobService(db)

    if job_id is None:
        job = await job_service.create_job(ARCHIVE_JOB, build_id)
        job_id = job.id

    if not await job_service.claim_job(job_id):
        logger.info("Archive job %s for build %s already claimed", job_id, build_id)
        return None

    try:
        archive_file = await ArchiveService(db, storage).assemble(build_id)
    except asyncio.CancelledError:
        logger.warning("Archive job %s for build %s cancelled", job_id, build_id)
        await db.rollback()
        await job_service.fail_job(job_id, "cancelled before the archive was stored")
        raise
    except Exception as e:
        logger.exception("Failed to generate archive for build %s", build_id)
        await db.rollback()
        await job_service.fail_job(job_id, str(e) or e.__class__.__name__)
        return None

    await job_service.complete_job(job_id, {
        "file_id": archive_file.id,
        "size": archive_file.size,
        "storage_path": archive_file.storage_path,
    })
    return archive_file


async def reclaim_stale_work(db: AsyncSession, stale_after: timedelta = STALE_AFTER) -> int:
    """
    Recover work orphaned by a crash or a cancelled request.

    Archive jobs still running after ``stale_after`` are failed. Builds stuck
    in processing are completed; one without any archive job gets a failed
    job so the retry assembles its archive.

    Returns how many jobs and builds were reclaimed.
    """
    cutoff = datetime.utcnow() - stale_after
    job_service = JobService(db)

    reclaimed = await job_service.fail_stale_jobs(ARCHIVE_JOB, cutoff, "abandoned while running")

    result = await db.execute(
        select(Build.id).where(Build.state == BUILD_PROCESSING, Build.updated_at < cutoff)
    )
    for build_id in list(result.scalars().all()):
        moved = await db.execute(
            update(Build)
            .where(Build.id == build_id, Build.state == BUILD_PROCESSING)
            .values(state=BUILD_COMPLETED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if moved.rowcount != 1:
            continue

        reclaimed += 1
        logger.warning("Build %s was left in processing, marked completed", build_id)
        if not await job_service.list_jobs(build_id=build_id, job_type=ARCHIVE_JOB, limit=1):
            job = await job_service.create_job(ARCHIVE_JOB, build_id)
            await job_service.fail_job(job.id, "build left in processing")

    return reclaimed


async def retry_failed_archive_jobs(
    db: AsyncSession,
    storage: StorageService,
    limit: int = 100,
    stale_after: timedelta = STALE_AFTER,
) -> Dict[str, int]:
    """
    Reclaim abandoned work, then re-run every failed archive job.

    A build that already has an archive (from an earlier overlapping retry)
    only gets its job closed.

    Returns counts: {"reclaimed", "retried", "recovered", "failed", "skipped"}
    """
    job_service = JobService(db)
    archive_service = ArchiveService(db, storage)
    counts = {"reclaimed": 0, "retried": 0, "recovered": 0, "failed": 0, "skipped": 0}

    counts["reclaimed"] = await reclaim_stale_work(db, stale_after)

    # A failed attempt rolls back and expires loaded jobs; keep plain ids
    pending = [
        (job.id, job.build_id)
        for job in await job_service.list_jobs(status="failed", job_type=ARCHIVE_JOB, limit=limit)
    ]

    for job_id, build_id in pending:
        existing = await archive_service.get_archive_file(build_id)
        if existing:
            if await job_service.claim_job(job_id, from_statuses=("failed",)):
                await job_service.add_log(job_id, f"Archive file {existing.id} already present")
                await job_service.complete_job(job_id, {"file_id": existing.id, "size": existing.size})
            counts["skipped"] += 1
            continue

        counts["retried"] += 1
        archive_file = await run_archive_job(db, storage, build_id, job_id=job_id)
        if archive_file:
            counts["recovered"] += 1
        else:
            counts["failed"] += 1

    logger.info("Archive retry finished: %s", counts)
    return counts
