"""Image Sync - pull, save and push container image sets for air-gapped registries."""

__version__ = "0.1.0"

from .archive import ArchiveReader, ArchiveWriter, read_archive, write_archive
from .core.engine import ContainerEngine, DockerEngine
from .core.types import RegistryTarget, RunConfig, StageReport
from .exceptions import (
    ArchiveMalformedError,
    EngineError,
    ImageSyncError,
    ManifestError,
    PreconditionError,
    PullFailedError,
    PushFailedError,
    UsageError,
)
from .manifest import load_manifest, parse_manifest, read_manifest
from .pull import pull_images
from .push import login, push_images
from .runner import Runner, execute
from .utils.reference import restore_reference, rewrite_reference

__all__ = [
    "ArchiveMalformedError",
    "ArchiveReader",
    "ArchiveWriter",
    "ContainerEngine",
    "DockerEngine",
    "EngineError",
    "ImageSyncError",
    "ManifestError",
    "PreconditionError",
    "PullFailedError",
    "PushFailedError",
    "RegistryTarget",
    "RunConfig",
    "Runner",
    "StageReport",
    "UsageError",
    "execute",
    "load_manifest",
    "login",
    "parse_manifest",
    "pull_images",
    "push_images",
    "read_archive",
    "read_manifest",
    "restore_reference",
    "rewrite_reference",
    "write_archive",
]
