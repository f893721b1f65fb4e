import io
import zipfile
from datetime import datetime, timedelta

import pytest
from botocore.exceptions import IncompleteReadError, ReadTimeoutError, ResponseStreamingError
from urllib3.exceptions import ProtocolError
from sqlalchemy import select, update

from buildhost.jobs.archive_job import retry_failed_archive_jobs, run_archive_job
from buildhost.models.build import Build, BuildFile
from buildhost.models.job import Job
from buildhost.services.archive_service import ArchiveService, entry_name
from buildhost.services.build_service import BuildService


@pytest.fixture
def builds(db, storage):
    return BuildService(db, storage)


async def register(builds, adapter, build_id, file_type, data=None):
    build_file, _ = await builds.register_build_file(build_id, file_type, "default")
    if data is not None:
        adapter.upload_to(build_file.upload_url, data)
        await builds.db.execute(
            BuildFile.__table__.update()
            .where(BuildFile.id == build_file.id)
            .values(state="uploaded", size=len(data))
        )
        await builds.db.commit()
    return build_file


def read_zip(adapter, archive_file):
    return zipfile.ZipFile(io.BytesIO(adapter.objects[archive_file.storage_path]))


def test_entry_names():
    assert entry_name(BuildFile(type="archive", sub_type="default")) == "archive_default.zip"
    assert entry_name(BuildFile(type="signature", sub_type="default")) == "signature_default"
    assert entry_name(BuildFile(type="patch", sub_type="optimized")) == "patch_optimized"


async def test_archive_contains_uploaded_files(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    await register(builds, adapter, build.id, "archive", b"A" * 100)
    await register(builds, adapter, build.id, "signature", b"sig")
    await register(builds, adapter, build.id, "patch")  # never uploaded

    archive_file = await ArchiveService(db, storage).assemble(build.id)

    assert archive_file.type == "archive"
    assert archive_file.state == "uploaded"
    assert archive_file.storage_path == f"builds/{build.id}/files/{archive_file.id}"
    assert archive_file.size == len(adapter.objects[archive_file.storage_path])

    zf = read_zip(adapter, archive_file)
    assert sorted(zf.namelist()) == ["archive_default.zip", "signature_default"]
    assert zf.read("archive_default.zip") == b"A" * 100
    assert zf.read("signature_default") == b"sig"


async def test_duplicate_entry_names_do_not_collide(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    first = await register(builds, adapter, build.id, "signature", b"one")
    second = await register(builds, adapter, build.id, "signature", b"two")

    archive_file = await ArchiveService(db, storage).assemble(build.id)

    zf = read_zip(adapter, archive_file)
    assert zf.read("signature_default") == b"one"
    assert zf.read(f"signature_default.{second.id}") == b"two"
    assert first.id != second.id


async def test_placeholder_when_build_has_no_files(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")

    archive_file = await ArchiveService(db, storage).assemble(build.id)

    zf = read_zip(adapter, archive_file)
    assert zf.namelist() == ["README.txt"]
    text = zf.read("README.txt").decode()
    assert f"Build {build.id}" in text
    assert "No files uploaded yet." in text


async def test_unreadable_sources_are_skipped(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    good = await register(builds, adapter, build.id, "signature", b"ok")
    bad = await register(builds, adapter, build.id, "patch", b"broken")
    adapter.unreadable.add(bad.storage_path)

    archive_file = await ArchiveService(db, storage).assemble(build.id)

    zf = read_zip(adapter, archive_file)
    assert zf.namelist() == ["signature_default"]
    assert good.id != bad.id


async def test_only_unreadable_sources_yield_placeholder(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    bad = await register(builds, adapter, build.id, "patch", b"broken")
    adapter.unreadable.add(bad.storage_path)

    archive_file = await ArchiveService(db, storage).assemble(build.id)

    assert read_zip(adapter, archive_file).namelist() == ["README.txt"]


@pytest.mark.parametrize("error", [
    ReadTimeoutError(endpoint_url="https://storage.test"),
    ResponseStreamingError(error="connection reset"),
    IncompleteReadError(actual_bytes=3, expected_bytes=6),
    ProtocolError("Connection broken"),
    ConnectionResetError("reset by peer"),
])
async def test_source_failing_mid_read_is_skipped(db, storage, adapter, builds, users, error):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    build_id = build.id
    good, _ = await builds.register_build_file(build_id, "signature")
    bad, _ = await builds.register_build_file(build_id, "patch")
    good_id, bad_id = good.id, bad.id
    adapter.upload_to(good.upload_url, b"sig")
    adapter.broken_streams[adapter.upload_to(bad.upload_url, b"broken")] = error

    await builds.finalize_build_file(build_id, good_id, None)
    await builds.finalize_build_file(build_id, bad_id, None)

    assert (await builds.get_build(build_id)).state == "completed"
    archive_file = await ArchiveService(db, storage).get_archive_file(build_id)
    assert archive_file is not None
    assert read_zip(adapter, archive_file).namelist() == ["signature_default"]

    job = (await db.execute(select(Job).where(Job.build_id == build_id))).scalar_one()
    assert job.status == "completed"


async def test_failed_assembly_still_completes_build(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    build_file, _ = await builds.register_build_file(build.id, "archive")
    # The failed attempt rolls back the session and expires loaded rows
    build_id, file_id = build.id, build_file.id
    adapter.upload_to(build_file.upload_url, b"payload")

    adapter.fail_put = True
    await builds.finalize_build_file(build_id, file_id, None)

    assert (await builds.get_build(build_id)).state == "completed"
    files = await builds.list_build_files(build_id)
    assert [f.id for f in files] == [file_id]

    job = (await db.execute(select(Job).where(Job.build_id == build_id))).scalar_one()
    assert job.job_type == "archive"
    assert job.status == "failed"
    assert job.attempts == 1
    assert "failed to upload" in job.error
    assert job.logs[-1]["level"] == "error"


async def test_retry_recovers_failed_archive(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    build_file, _ = await builds.register_build_file(build.id, "archive")
    build_id, file_id = build.id, build_file.id
    adapter.upload_to(build_file.upload_url, b"payload")
    adapter.fail_put = True
    await builds.finalize_build_file(build_id, file_id, None)

    adapter.fail_put = False
    counts = await retry_failed_archive_jobs(db, storage)

    assert counts == {"reclaimed": 0, "retried": 1, "recovered": 1, "failed": 0, "skipped": 0}
    job = (await db.execute(
        select(Job).where(Job.build_id == build_id).execution_options(populate_existing=True)
    )).scalar_one()
    assert job.status == "completed"
    assert job.attempts == 2

    archive_file = await ArchiveService(db, storage).get_archive_file(build_id)
    assert archive_file is not None
    assert read_zip(adapter, archive_file).read("archive_default.zip") == b"payload"

    # Nothing left to retry
    assert (await retry_failed_archive_jobs(db, storage))["retried"] == 0


async def test_retry_closes_job_when_archive_exists(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    await ArchiveService(db, storage).assemble(build.id)
    db.add(Job(job_type="archive", build_id=build.id, status="failed", attempts=1, logs=[]))
    await db.commit()

    counts = await retry_failed_archive_jobs(db, storage)

    assert counts["skipped"] == 1
    assert counts["retried"] == 0


async def test_run_archive_job_records_result(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")

    archive_file = await run_archive_job(db, storage, build.id)

    job = (await db.execute(select(Job).where(Job.build_id == build.id))).scalar_one()
    assert job.status == "completed"
    assert job.result["file_id"] == archive_file.id


async def abandon_in_processing(db, builds, adapter, user):
    """A build whose completion died after the move to processing."""
    build = await builds.create_build(user, "alice/demo", "main")
    build_file, _ = await builds.register_build_file(build.id, "archive")
    build_id = build.id
    adapter.upload_to(build_file.upload_url, b"payload")
    an_hour_ago = datetime.utcnow() - timedelta(hours=1)
    await db.execute(
        update(BuildFile).where(BuildFile.id == build_file.id).values(state="uploaded", size=7)
    )
    await db.execute(
        update(Build).where(Build.id == build_id).values(state="processing", updated_at=an_hour_ago)
    )
    await db.commit()
    return build_id, an_hour_ago


async def test_retry_reclaims_abandoned_running_job(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build_id, an_hour_ago = await abandon_in_processing(db, builds, adapter, alice)
    db.add(Job(job_type="archive", build_id=build_id, status="running", attempts=1, logs=[],
               started_at=an_hour_ago))
    await db.commit()

    counts = await retry_failed_archive_jobs(db, storage)

    assert counts == {"reclaimed": 2, "retried": 1, "recovered": 1, "failed": 0, "skipped": 0}
    assert (await builds.get_build(build_id)).state == "completed"
    job = (await db.execute(
        select(Job).where(Job.build_id == build_id).execution_options(populate_existing=True)
    )).scalar_one()
    assert job.status == "completed"
    assert job.attempts == 2
    assert await ArchiveService(db, storage).get_archive_file(build_id) is not None


async def test_retry_reclaims_processing_build_without_job(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build_id, _ = await abandon_in_processing(db, builds, adapter, alice)

    counts = await retry_failed_archive_jobs(db, storage)

    assert counts["reclaimed"] == 1
    assert counts["recovered"] == 1
    assert (await builds.get_build(build_id)).state == "completed"
    assert await ArchiveService(db, storage).get_archive_file(build_id) is not None


async def test_recent_work_is_not_reclaimed(db, storage, adapter, builds, users):
    alice, _ = users["alice"]
    build = await builds.create_build(alice, "alice/demo", "main")
    build_id = build.id
    await db.execute(update(Build).where(Build.id == build_id).values(state="processing"))
    db.add(Job(job_type="archive", build_id=build_id, status="running", attempts=1, logs=[],
               started_at=datetime.utcnow()))
    await db.commit()

    counts = await retry_failed_archive_jobs(db, storage)

    assert counts["reclaimed"] == 0
    assert (await builds.get_build(build_id)).state == "processing"
