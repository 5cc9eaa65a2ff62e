"""Operating system detection from os-release."""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..exceptions import UnsupportedOSError

OS_FAMILIES = {
    "ubuntu": "debian",
    "debian": "debian",
    "rhel": "rhel",
    "centos": "rhel",
    "rocky": "rhel",
    "almalinux": "rhel",
    "fedora": "rhel",
    "sles": "suse",
    "opensuse-leap": "suse",
}


@dataclass(frozen=True)
class OSInfo:
    """Identity of the host operating system."""

    id: str
    family: Optional[str]

    def require_family(self, purpose: str) -> str:
        """Return the OS family or fail naming what needed it."""
        if self.family is None:
            raise UnsupportedOSError(
                f"Unsupported OS '{self.id}'. Manual {purpose} may be required."
            )
        return self.family


def parse_os_release(text: str) -> dict[str, str]:
    """Parse KEY=value lines of an os-release file."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        parsed = shlex.split(raw)
        values[key] = parsed[0] if parsed else ""
    return values


def detect_os(path: Path = Path("/etc/os-release")) -> OSInfo:
    """Read the host OS identity.

    Raises:
        UnsupportedOSError: If the os-release file is missing, unreadable or
            has no ID
    """
    if not path.is_file():
        raise UnsupportedOSError(f"Unknown or unsupported OS: '{path}' not found.")

    try:
        values = parse_os_release(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise UnsupportedOSError(f"Unknown or unsupported OS: cannot parse '{path}': {e}") from e

    os_id = values.get("ID", "").lower()
    if not os_id:
        raise UnsupportedOSError(f"Unknown or unsupported OS: no ID in '{path}'.")
    return OSInfo(id=os_id, family=OS_FAMILIES.get(os_id))
