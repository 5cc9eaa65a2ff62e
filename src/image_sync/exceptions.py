"""Custom exceptions for the image sync workflow."""

from collections.abc import Sequence


class ImageSyncError(Exception):
    """Base exception for all image sync errors."""

    pass


class UsageError(ImageSyncError):
    """Raised when the command line is missing or has invalid arguments."""

    pass


class PreconditionError(ImageSyncError):
    """Raised when the host is not fit to run (privilege, tooling, OS)."""

    pass


class UnsupportedOSError(PreconditionError):
    """Raised when the operating system family is not supported."""

    pass


class RegistryLoginError(PreconditionError):
    """Raised when authentication against the target registry fails."""

    pass


class ManifestError(ImageSyncError):
    """Raised when the image list cannot be obtained."""

    pass


class ManifestNotFoundError(ManifestError):
    """Raised when the images file does not exist."""

    pass


class EmptyManifestFileError(ManifestError):
    """Raised when the images file has zero bytes."""

    pass


class EmptyManifestError(ManifestError):
    """Raised when no image reference is left after filtering."""

    pass


class ManifestEncodingError(ManifestError):
    """Raised when the images file is not valid UTF-8 text."""

    pass


class ArchiveMalformedError(ManifestError):
    """Raised when an air-gapped archive is unreadable or incomplete."""

    pass


class InvalidReferenceError(ImageSyncError):
    """Raised when an image reference is empty or contains whitespace."""

    pass


class ArchiveWriteError(ImageSyncError):
    """Raised when the air-gapped archive cannot be produced."""

    pass


class EngineError(ImageSyncError):
    """Raised when a container engine operation fails."""

    def __init__(self, message: str, reference: str | None = None) -> None:
        super().__init__(message)
        self.reference = reference


class CommandError(ImageSyncError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed ({returncode}): {' '.join(self.argv)}"
        if stderr.strip():
            message = f"{message}\n{stderr.strip()}"
        super().__init__(message)


class StageFailedError(ImageSyncError):
    """Raised when one or more images failed during a pull or push stage."""

    stage = "stage"

    def __init__(self, failed: Sequence[str]) -> None:
        self.failed = tuple(failed)
        super().__init__(
            f"{len(self.failed)} image(s) failed to {self.stage}: "
            + ", ".join(self.failed)
        )


class PullFailedError(StageFailedError):
    """Raised when at least one image could not be pulled from any source."""

    stage = "pull"


class PushFailedError(StageFailedError):
    """Raised when at least one image could not be tagged or pushed."""

    stage = "push"
