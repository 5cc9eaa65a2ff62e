"""Host system collaborators: OS detection, Docker bootstrap, CA trust."""

from .os_release import OSInfo, detect_os
from .packages import OFFLINE_PACKAGES
from .system import HostSystem

__all__ = ["HostSystem", "OFFLINE_PACKAGES", "OSInfo", "detect_os"]
