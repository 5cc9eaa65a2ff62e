"""Air-gapped archive reader."""

import asyncio
import logging
import tarfile
from pathlib import Path
from typing import AsyncIterator, Optional, Union

import aiofiles

from ..core.engine import ContainerEngine
from ..exceptions import ArchiveMalformedError, EngineError
from ..manifest import Manifest, load_manifest
from .models import (
    IMAGES_ENTRY,
    MANIFEST_ENTRY,
    OFFLINE_PACKAGES_DIR,
    OFFLINE_PACKAGES_ENTRY,
    ExtractedArchive,
)

logger = logging.getLogger(__name__)


def _extract_all(archive_path: Path, target: Path) -> None:
    """Extract a tar archive (sync helper)."""
    with tarfile.open(archive_path, "r:*") as tar:
        tar.extractall(target, filter="data")


def find_manifest(root: Path) -> Path:
    """Locate the manifest text file among extracted archive entries.

    ``manifest.txt`` at the root wins; otherwise exactly one ``*.txt`` file
    must exist.

    Raises:
        ArchiveMalformedError: If no manifest or several candidates exist
    """
    preferred = root / MANIFEST_ENTRY
    if preferred.is_file():
        return preferred

    candidates = sorted(p for p in root.rglob("*.txt") if p.is_file())
    if not candidates:
        raise ArchiveMalformedError("The archive does not contain a manifest .txt file.")
    if len(candidates) > 1:
        names = ", ".join(str(p.relative_to(root)) for p in candidates)
        raise ArchiveMalformedError(f"The archive contains several manifest files: {names}")
    return candidates[0]


async def read_chunks(path: Path, chunk_size: int = 1024 * 1024) -> AsyncIterator[bytes]:
    """Yield the content of a file in chunks."""
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            yield chunk


class ArchiveReader:
    """Reads archives produced by :class:`ArchiveWriter`."""

    def __init__(self, archive_path: Union[str, Path]) -> None:
        """Initialize archive reader.

        Args:
            archive_path: Path to the ``.tar.gz`` archive
        """
        self.archive_path = Path(archive_path)

    async def extract(self, workdir: Path) -> ExtractedArchive:
        """Extract the archive into the working area.

        Args:
            workdir: Scoped working directory

        Returns:
            ExtractedArchive with the located entries

        Raises:
            ArchiveMalformedError: If the archive cannot be read or lacks the
                image blob or the manifest
        """
        if not self.archive_path.is_file():
            raise ArchiveMalformedError(f"Archive '{self.archive_path}' not found.")

        logger.info("Extracting '%s'...", self.archive_path)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _extract_all, self.archive_path, workdir)
        except (tarfile.TarError, OSError, EOFError) as e:
            raise ArchiveMalformedError(
                f"Failed to extract '{self.archive_path}'. "
                f"Please ensure it is a valid tar.gz file: {e}"
            ) from e

        images_path = workdir / IMAGES_ENTRY
        if not images_path.is_file():
            raise ArchiveMalformedError(
                f"The archive '{self.archive_path}' does not contain '{IMAGES_ENTRY}'."
            )
        manifest_path = find_manifest(workdir)

        packages = workdir / OFFLINE_PACKAGES_ENTRY
        return ExtractedArchive(
            root=workdir,
            images_path=images_path,
            manifest_path=manifest_path,
            offline_packages_path=packages if packages.is_file() else None,
        )

    @staticmethod
    async def offline_packages_dir(extracted: ExtractedArchive) -> Optional[Path]:
        """Unpack the bundled OS packages, if the archive carries them.

        Returns:
            Directory holding the package repository, or None
        """
        if extracted.offline_packages_path is None:
            return None

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, _extract_all, extracted.offline_packages_path, extracted.root
            )
        except (tarfile.TarError, OSError, EOFError) as e:
            raise ArchiveMalformedError(f"Failed to unpack offline packages: {e}") from e
        return extracted.root / OFFLINE_PACKAGES_DIR

    @staticmethod
    async def load(extracted: ExtractedArchive, engine: ContainerEngine) -> Manifest:
        """Load the image blob into the engine and read the manifest.

        Args:
            extracted: Result of :meth:`extract`
            engine: Container engine receiving the images

        Returns:
            Manifest stored in the archive

        Raises:
            EngineError: If the engine rejects the image blob
            ManifestError: If the stored manifest is empty
        """
        logger.info("Loading images from '%s'...", extracted.images_path)
        try:
            await engine.import_images(read_chunks(extracted.images_path))
        except EngineError as e:
            raise EngineError(f"Failed to load images from the archive: {e}") from e
        logger.info("Images loaded successfully.")

        logger.info("Reading image list from '%s'", extracted.manifest_path)
        return await load_manifest(extracted.manifest_path)


async def read_archive(
    archive_path: Union[str, Path], workdir: Path, engine: ContainerEngine
) -> Manifest:
    """Extract an archive, load its images and return its manifest."""
    reader = ArchiveReader(archive_path)
    extracted = await reader.extract(workdir)
    return await reader.load(extracted, engine)
