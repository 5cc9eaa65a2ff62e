"""Test doubles for the container engine and the host system."""

import gzip
import json
from pathlib import Path

from image_sync.exceptions import EngineError, PreconditionError
from image_sync.host.os_release import OSInfo


class FakeEngine:
    """In-memory container engine.

    ``remote`` holds the references that can be pulled; local images map a
    name to an image id.
    """

    def __init__(
        self,
        remote=(),
        local=None,
        failing_tags=(),
        failing_pushes=(),
        failing_removals=(),
        password="secret",
        installed=True,
    ):
        self.remote = set(remote)
        self.images: dict[str, str] = dict(local or {})
        self.failing_tags = set(failing_tags)
        self.failing_pushes = set(failing_pushes)
        self.failing_removals = set(failing_removals)
        self.password = password
        self.installed = installed
        self.pushed: list[str] = []
        self.calls: list[tuple] = []

    def calls_of(self, name: str) -> list[tuple]:
        return [call[1:] for call in self.calls if call[0] == name]

    async def pull(self, ref: str) -> None:
        self.calls.append(("pull", ref))
        if ref not in self.remote:
            raise EngineError(f"Failed to pull '{ref}': not found", ref)
        self.images[ref] = f"id-{ref.rsplit('/', 1)[-1]}"

    async def tag(self, source: str, target: str) -> None:
        self.calls.append(("tag", source, target))
        if "@" in target:
            raise EngineError(f"Failed to tag '{source}' as '{target}': digest", source)
        if source not in self.images or target in self.failing_tags:
            raise EngineError(f"Failed to tag '{source}'", source)
        self.images[target] = self.images[source]

    async def push(self, ref: str) -> None:
        self.calls.append(("push", ref))
        if "@" in ref:
            raise EngineError(f"Failed to push '{ref}': only tagged references", ref)
        if ref not in self.images or ref in self.failing_pushes:
            raise EngineError(f"Failed to push '{ref}'", ref)
        self.pushed.append(ref)

    async def remove_image(self, ref: str) -> None:
        self.calls.append(("remove_image", ref))
        if ref not in self.images or ref in self.failing_removals:
            raise EngineError(f"Failed to remove '{ref}'", ref)
        del self.images[ref]

    async def export_images(self, refs):
        self.calls.append(("export_images", tuple(refs)))
        data = json.dumps({ref: self.images[ref] for ref in refs}).encode("utf-8")
        half = len(data) // 2
        yield data[:half]
        yield data[half:]

    async def import_images(self, chunks) -> None:
        data = b"".join([chunk async for chunk in chunks])
        self.calls.append(("import_images", len(data)))
        try:
            self.images.update(json.loads(gzip.decompress(data)))
        except (OSError, ValueError) as e:
            raise EngineError(f"Failed to load images: {e}") from e

    async def login(self, registry: str, username: str, password: str) -> None:
        self.calls.append(("login", registry, username))
        if password != self.password:
            raise EngineError("unauthorized", registry)

    async def is_installed(self) -> bool:
        return self.installed


class FakeHost:
    """Host system that records calls instead of touching the machine."""

    def __init__(self, is_root=True, packages=True):
        self.is_root = is_root
        self.packages = packages
        self.calls: list[tuple] = []

    def require_root(self) -> None:
        self.calls.append(("require_root",))
        if not self.is_root:
            raise PreconditionError("This program must be run with sudo or as root.")

    def detect_os(self) -> OSInfo:
        return OSInfo(id="ubuntu", family="debian")

    async def ensure_engine(self, engine, workdir: Path, offline_dir=None) -> None:
        self.calls.append(("ensure_engine", offline_dir))

    async def download_offline_packages(self, dest: Path) -> Path:
        self.calls.append(("download_offline_packages", dest))
        if not self.packages:
            raise PreconditionError("Unsupported OS 'plan9'")
        dest.mkdir(parents=True, exist_ok=True)
        (dest / "Packages").write_text("Package: docker-ce\n")
        (dest / "docker-ce.deb").write_bytes(b"deb")
        return dest

    async def install_registry_certificate(self, registry) -> Path:
        self.calls.append(("install_registry_certificate", registry.address))
        return Path("/tmp") / f"{registry.host}.crt"


def write_manifest(path: Path, *lines: str) -> Path:
    """Write an images file with the given lines."""
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path
