"""Core data types shared by the orchestrators and the run controller."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..exceptions import UsageError

DEFAULT_MIRROR = "mirror.gcr.io"
DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
ARCHIVE_SUFFIXES = (".tar.gz", ".tgz")


@dataclass(frozen=True)
class RegistryTarget:
    """Destination registry for the push stage."""

    host: str
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.host:
            raise UsageError("<registry:port> is required when <push> is specified.")
        if self.username and not self.password:
            raise UsageError("A password is required when a username is specified.")

    @property
    def address(self) -> str:
        """Registry address as used in image references (host[:port])."""
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def authenticated(self) -> bool:
        return bool(self.username)

    @classmethod
    def parse(
        cls,
        address: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> "RegistryTarget":
        """Build a target from a ``registry[:port]`` string.

        Args:
            address: Registry address (e.g., "reg.local:5000")
            username: Optional registry username
            password: Password, required when a username is given

        Returns:
            RegistryTarget

        Raises:
            UsageError: If the address or the credentials are incomplete
        """
        address = address.strip().rstrip("/")
        host, sep, port = address.rpartition(":")
        if sep and port.isdigit() and host:
            return cls(host=host, port=int(port), username=username, password=password)
        if sep and not port.isdigit() and host:
            raise UsageError(f"Invalid registry port in '{address}'.")
        return cls(host=address, username=username, password=password)


@dataclass(frozen=True)
class RunConfig:
    """Immutable run configuration, built once from the command line."""

    images_file: Path
    save: bool = False
    push: bool = False
    keep: bool = False
    registry: Optional[RegistryTarget] = None
    mirror: str = DEFAULT_MIRROR
    output_dir: Path = field(default_factory=Path.cwd)
    docker_host: str = field(
        default_factory=lambda: os.environ.get("DOCKER_HOST", DEFAULT_DOCKER_HOST)
    )
    offline_packages: bool = True

    def __post_init__(self) -> None:
        if self.push and self.registry is None:
            raise UsageError("<registry:port> is required when <push> is specified.")
        if self.registry is not None and not self.push:
            raise UsageError("A registry can only be given together with <push>.")
        if not self.air_gapped and not (self.save or self.push or self.keep):
            raise UsageError("No mode specified. Use 'keep', 'save' or 'push'.")

    @property
    def air_gapped(self) -> bool:
        """True when the input is an archive produced by a previous save."""
        return self.images_file.name.endswith(ARCHIVE_SUFFIXES)


@dataclass(frozen=True)
class ImageOutcome:
    """Result of processing one image reference."""

    reference: str
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class StageReport:
    """Per-image outcomes of a pull or push stage, in manifest order."""

    stage: str
    outcomes: tuple[ImageOutcome, ...] = ()

    @property
    def failed(self) -> tuple[str, ...]:
        return tuple(o.reference for o in self.outcomes if not o.success)

    @property
    def succeeded(self) -> tuple[str, ...]:
        return tuple(o.reference for o in self.outcomes if o.success)

    @property
    def ok(self) -> bool:
        return not self.failed
