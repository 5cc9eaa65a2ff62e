"""Air-gapped archive writer."""

import asyncio
import logging
import tarfile
import zlib
from collections.abc import Sequence
from pathlib import Path
from typing import List, Optional

import aiofiles

from ..core.engine import ContainerEngine
from ..exceptions import ArchiveWriteError, EngineError
from ..manifest import render_manifest
from .models import (
    IMAGES_ENTRY,
    INSTALLER_ENTRY,
    MANIFEST_ENTRY,
    OFFLINE_PACKAGES_DIR,
    OFFLINE_PACKAGES_ENTRY,
    ArchiveContents,
    archive_name,
)

logger = logging.getLogger(__name__)

INSTALLER_SCRIPT = f"""#!/bin/sh
# Install the bundled Docker packages from a local file repository.
set -eu
here=$(cd "$(dirname "$0")" && pwd)
repo="$here/{OFFLINE_PACKAGES_DIR}"
mkdir -p "$repo"
tar -xzf "$here/{OFFLINE_PACKAGES_ENTRY}" -C "$here"
. /etc/os-release
case "$ID" in
    ubuntu|debian)
        echo "deb [trusted=yes] file:$repo ./" > /etc/apt/sources.list.d/docker-offline.list
        apt-get update
        apt-get install -y -qq docker-ce docker-ce-cli containerd.io docker-buildx-plugin docker-compose-plugin
        ;;
    rhel|centos|rocky|almalinux|fedora)
        printf '[docker-offline-repo]\\nname=Docker Offline Repository\\nbaseurl=file://%s\\nenabled=1\\ngpgcheck=0\\n' "$repo" > /etc/yum.repos.d/docker-offline.repo
        dnf --disablerepo="*" --enablerepo="docker-offline-repo" install -y docker-ce docker-ce-cli containerd.io docker-buildx-plugin docker-compose-plugin
        ;;
    sles|opensuse-leap)
        zypper addrepo "file://$repo" docker-offline-repo
        zypper refresh
        zypper --no-refresh install -y docker-ce docker-ce-cli containerd.io docker-buildx-plugin docker-compose-plugin
        ;;
    *)
        echo "Unsupported OS '$ID'" >&2
        exit 1
        ;;
esac
"""


def _pack(target: Path, members: Sequence[tuple[Path, str]]) -> None:
    """Write a gzip tar containing ``members`` (source path, archive name)."""
    with tarfile.open(target, "w:gz") as tar:
        for source, arcname in members:
            tar.add(source, arcname=arcname)


class ArchiveWriter:
    """Builds the portable archive consumed by air-gapped runs."""

    def __init__(self, workdir: Path, output_dir: Path) -> None:
        """Initialize the writer.

        Args:
            workdir: Scoped working directory for staging files
            output_dir: Directory receiving the final archive
        """
        self.workdir = Path(workdir)
        self.output_dir = Path(output_dir)

    async def export_images(
        self, engine: ContainerEngine, references: Sequence[str]
    ) -> Path:
        """Export images from the engine into a gzip-compressed tarball.

        Args:
            engine: Container engine holding the images
            references: Image references to export

        Returns:
            Path of the staged ``images.tar.gz``

        Raises:
            ArchiveWriteError: If exporting or writing fails
        """
        target = self.workdir / IMAGES_ENTRY
        # wbits=31 selects the gzip container
        compressor = zlib.compressobj(level=6, wbits=31)
        written = 0

        logger.info("Saving and compressing %d image(s)...", len(references))
        try:
            async with aiofiles.open(target, "wb") as f:
                async for chunk in engine.export_images(references):
                    await f.write(compressor.compress(chunk))
                    written += len(chunk)
                await f.write(compressor.flush())
        except (EngineError, OSError) as e:
            raise ArchiveWriteError(f"Failed to save images to '{target}': {e}") from e

        if written == 0:
            raise ArchiveWriteError("Image export produced no data")
        logger.debug("Exported %d bytes of image data", written)
        return target

    async def write_manifest(self, references: Sequence[str]) -> Path:
        """Stage the filtered image list as ``manifest.txt``."""
        target = self.workdir / MANIFEST_ENTRY
        try:
            async with aiofiles.open(target, "w", encoding="utf-8") as f:
                await f.write(render_manifest(references))
        except OSError as e:
            raise ArchiveWriteError(f"Failed to write '{target}': {e}") from e
        return target

    async def stage_offline_packages(self, packages_dir: Path) -> List[str]:
        """Bundle a directory of OS packages and its installer helper.

        Args:
            packages_dir: Directory with downloaded packages and repo metadata

        Returns:
            Archive entry names that were staged
        """
        bundle = self.workdir / OFFLINE_PACKAGES_ENTRY
        installer = self.workdir / INSTALLER_ENTRY

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, _pack, bundle, [(Path(packages_dir), OFFLINE_PACKAGES_DIR)]
            )
            async with aiofiles.open(installer, "w", encoding="utf-8") as f:
                await f.write(INSTALLER_SCRIPT)
            installer.chmod(0o755)
        except (tarfile.TarError, OSError) as e:
            raise ArchiveWriteError(f"Failed to bundle offline packages: {e}") from e

        return [OFFLINE_PACKAGES_ENTRY, INSTALLER_ENTRY]

    async def write(
        self,
        engine: ContainerEngine,
        references: Sequence[str],
        packages_dir: Optional[Path] = None,
        name: Optional[str] = None,
    ) -> ArchiveContents:
        """Produce the final archive.

        Args:
            engine: Container engine holding the pulled images
            references: Manifest of the run
            packages_dir: Optional directory of offline OS packages
            name: Archive file name (defaults to a timestamped name)

        Returns:
            ArchiveContents describing the written archive

        Raises:
            ArchiveWriteError: If any part of the archive cannot be written
        """
        await self.export_images(engine, references)
        await self.write_manifest(references)

        entries = [IMAGES_ENTRY, MANIFEST_ENTRY]
        if packages_dir is not None:
            entries.extend(await self.stage_offline_packages(packages_dir))

        target = self.output_dir / (name or archive_name())
        logger.info("Combining %s into final archive '%s'", ", ".join(entries), target)

        loop = asyncio.get_running_loop()
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            await loop.run_in_executor(
                None, _pack, target, [(self.workdir / e, e) for e in entries]
            )
        except (tarfile.TarError, OSError) as e:
            raise ArchiveWriteError(f"Failed to create archive '{target}': {e}") from e

        logger.info("Images and manifest saved to '%s'", target)
        return ArchiveContents(
            path=target,
            references=tuple(references),
            entries=tuple(entries),
            size=target.stat().st_size,
        )


async def write_archive(
    engine: ContainerEngine,
    references: Sequence[str],
    workdir: Path,
    output_dir: Path,
    packages_dir: Optional[Path] = None,
) -> ArchiveContents:
    """Save ``references`` from the engine into an air-gapped archive."""
    writer = ArchiveWriter(workdir, output_dir)
    return await writer.write(engine, references, packages_dir)
