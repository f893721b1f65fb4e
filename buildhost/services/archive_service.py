"""
Archive Service

Packs every uploaded file of a build into one zip and registers that zip as
an extra ``archive`` build file, so clients can fetch a whole build at once.
"""
import logging
import shutil
import tempfile
import zipfile
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.lib.errors import StorageError
from buildhost.models.build import FILE_UPLOADED, FILE_UPLOADING, BuildFile
from buildhost.services.storage_service import ARCHIVE_CONTENT_TYPE, StorageService

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "README.txt"

# Archives larger than this spill from memory to disk
SPOOL_MAX_SIZE = 8 * 1024 * 1024


def entry_name(build_file: BuildFile) -> str:
    """``{type}_{sub_type}``, with ``.zip`` kept for nested archives."""
    name = f"{build_file.type}_{build_file.sub_type}"
    if build_file.type == "archive":
        name += ".zip"
    return name


def placeholder_text(build_id: int) -> str:
    return (
        f"Build {build_id}\n"
        f"Generated at {datetime.utcnow().isoformat()}\n"
        "No files uploaded yet.\n"
    )


class ArchiveService:
    def __init__(self, db: AsyncSession, storage: StorageService):
        self.db = db
        self.storage = storage

    async def list_sources(self, build_id: int) -> List[BuildFile]:
        result = await self.db.execute(
            select(BuildFile)
            .where(BuildFile.build_id == build_id)
            .order_by(BuildFile.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_archive_file(self, build_id: int) -> Optional[BuildFile]:
        """The generated archive of a build, if one was registered."""
        result = await self.db.execute(
            select(BuildFile).where(
                BuildFile.build_id == build_id,
                BuildFile.type == "archive",
                BuildFile.state == FILE_UPLOADED,
                BuildFile.storage_path.like(f"builds/{build_id}/files/%"),
            )
        )
        return result.scalars().first()

    async def _write_entries(self, build_id: int, sources: List[BuildFile], archive) -> Tuple[int, int]:
        """
        Copy each uploaded source into the zip.

        Every source is fetched completely before its entry is opened, so a
        read that fails halfway never leaves a truncated entry behind.

        Returns (added, skipped).
        """
        added = skipped = 0
        used_names = set()

        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for source in sources:
                if source.state != FILE_UPLOADED:
                    continue

                name = entry_name(source)
                if name in used_names:
                    name = f"{name}.{source.id}"

                with tempfile.TemporaryFile() as scratch:
                    try:
                        await self.storage.copy_into(source.storage_path, scratch)
                    except (StorageError, FileNotFoundError) as e:
                        logger.warning(
                            "Skipping build file %s of build %s: %s", source.id, build_id, e
                        )
                        skipped += 1
                        continue

                    scratch.seek(0)
                    with zf.open(name, "w", force_zip64=True) as entry:
                        shutil.copyfileobj(scratch, entry)

                used_names.add(name)
                added += 1

            if not added:
                zf.writestr(PLACEHOLDER_NAME, placeholder_text(build_id))

        return added, skipped

    async def assemble(self, build_id: int) -> BuildFile:
        """
        Build and register the archive for ``build_id``.

        Registration is two-phase: the row is inserted first because the
        object path contains its id, then path, size and state are written
        together once the object is stored.
        """
        sources = await self.list_sources(build_id)

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as archive:
            added, skipped = await self._write_entries(build_id, sources, archive)
            size = archive.tell()
            archive.seek(0)

            archive_file = BuildFile(
                build_id=build_id,
                type="archive",
                sub_type="default",
                state=FILE_UPLOADING,
                size=0,
            )
            self.db.add(archive_file)
            await self.db.flush()

            storage_path = self.storage.get_archive_path(build_id, archive_file.id)
            await self.storage.put(storage_path, archive, ARCHIVE_CONTENT_TYPE)

        await self.db.execute(
            update(BuildFile)
            .where(BuildFile.id == archive_file.id)
            .values(storage_path=storage_path, size=size, state=FILE_UPLOADED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(archive_file)

        logger.info(
            "Generated archive file %s for build %s (%d entries, %d skipped, %d bytes)",
            archive_file.id, build_id, added, skipped, size,
        )
        return archive_file
