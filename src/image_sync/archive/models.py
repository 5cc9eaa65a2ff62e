"""Data models and fixed entry names for air-gapped archives."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

IMAGES_ENTRY = "images.tar.gz"
MANIFEST_ENTRY = "manifest.txt"
OFFLINE_PACKAGES_ENTRY = "offline-packages.tar.gz"
INSTALLER_ENTRY = "install-offline-packages.sh"
OFFLINE_PACKAGES_DIR = "offline-docker-packages"


def archive_name(now: Optional[datetime] = None) -> str:
    """Return the deliverable file name for an archive created at ``now``."""
    return f"container_images_{(now or datetime.now()):%Y%m%d_%H%M%S}.tar.gz"


@dataclass(frozen=True)
class ArchiveContents:
    """A written air-gapped archive."""

    path: Path
    references: tuple[str, ...]
    entries: tuple[str, ...]
    size: int

    @property
    def has_offline_packages(self) -> bool:
        return OFFLINE_PACKAGES_ENTRY in self.entries


@dataclass(frozen=True)
class ExtractedArchive:
    """An archive unpacked into the working area."""

    root: Path
    images_path: Path
    manifest_path: Path
    offline_packages_path: Optional[Path] = None
