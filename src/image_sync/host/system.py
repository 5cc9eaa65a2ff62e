"""Host preparation: privilege checks and container engine bootstrap."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional

import aiohttp

from ..core.engine import ContainerEngine
from ..core.process import run_cmd
from ..core.types import RegistryTarget
from ..exceptions import CommandError, PreconditionError
from .certs import install_registry_certificate
from .os_release import OSInfo, detect_os
from .packages import Runner, download_offline_packages, install_offline_packages

logger = logging.getLogger(__name__)

DOCKER_BRIDGE_CIDR = "172.30.0.1/16"
DOCKER_INSTALL_SCRIPT_URL = "https://get.docker.com"


class HostSystem:
    """Operations on the machine running the sync.

    All filesystem locations are resolved under ``root`` so the class can be
    pointed at a scratch directory.
    """

    def __init__(
        self,
        root: Path = Path("/"),
        run: Runner = run_cmd,
        sudo_user: Optional[str] = None,
        engine_wait: float = 30,
    ) -> None:
        self.root = Path(root)
        self.run = run
        self.sudo_user = sudo_user if sudo_user is not None else os.environ.get("SUDO_USER")
        self.engine_wait = engine_wait
        self._os: Optional[OSInfo] = None

    def require_root(self) -> None:
        """Fail unless running with root privileges.

        Raises:
            PreconditionError: If the effective user is not root
        """
        if os.geteuid() != 0:
            raise PreconditionError("This program must be run with sudo or as root.")

    def detect_os(self) -> OSInfo:
        """Detect (once) and return the host OS."""
        if self._os is None:
            self._os = detect_os(self.root / "etc/os-release")
            logger.info("OS type is: %s", self._os.id)
        return self._os

    def write_daemon_config(self) -> Path:
        """Pre-create the Docker daemon config with a fixed bridge subnet.

        Raises:
            PreconditionError: If the file cannot be written
        """
        path = self.root / "etc/docker/daemon.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps({"bip": DOCKER_BRIDGE_CIDR}, indent=2) + "\n")
        except OSError as e:
            raise PreconditionError(f"Failed to write {path}: {e}") from e
        logger.info("Created %s with bip: %s", path, DOCKER_BRIDGE_CIDR)
        return path

    async def _install_online(self, workdir: Path) -> None:
        script = workdir / "get-docker.sh"
        logger.info("Downloading Docker install script from %s...", DOCKER_INSTALL_SCRIPT_URL)
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=300)
            ) as session:
                async with session.get(DOCKER_INSTALL_SCRIPT_URL) as resp:
                    resp.raise_for_status()
                    script.write_bytes(await resp.read())
        except aiohttp.ClientError as e:
            raise PreconditionError(f"Failed to download the Docker install script: {e}") from e
        await self.run(["sh", str(script)])

    async def _wait_for_engine(self, engine: ContainerEngine) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.engine_wait
        while True:
            if await engine.is_installed():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(1)

    async def ensure_engine(
        self,
        engine: ContainerEngine,
        workdir: Path,
        offline_dir: Optional[Path] = None,
    ) -> None:
        """Make sure the container engine is reachable, installing Docker if not.

        Args:
            engine: Container engine client
            workdir: Scoped working directory
            offline_dir: Bundled offline package repository (air-gapped runs)

        Raises:
            PreconditionError: If Docker cannot be installed or started
        """
        if await engine.is_installed():
            logger.info("Docker engine found.")
            return

        logger.warning("Docker engine is not available. Attempting to install it.")
        self.write_daemon_config()
        try:
            if offline_dir is not None:
                family = self.detect_os().require_family("install of Docker")
                await install_offline_packages(family, offline_dir, self.root, self.run)
            else:
                await self._install_online(workdir)
            await self.run(["systemctl", "enable", "--now", "docker"], check=False)
        except CommandError as e:
            raise PreconditionError(f"Docker installation failed: {e}") from e

        if not await self._wait_for_engine(engine):
            raise PreconditionError("Docker installation failed: engine is not reachable.")

        if self.sudo_user:
            await self.run(["usermod", "-aG", "docker", self.sudo_user], check=False)
        logger.info("Docker installed.")

    async def download_offline_packages(self, dest: Path) -> Path:
        """Download the Docker packages for the host OS into ``dest``."""
        family = self.detect_os().require_family(
            "download of Docker packages for air-gapped mode"
        )
        return await download_offline_packages(family, dest, self.run)

    async def install_registry_certificate(self, registry: RegistryTarget) -> Path:
        """Trust the TLS certificate of the target registry."""
        family = self.detect_os().require_family("certificate installation")
        return await install_registry_certificate(registry, family, self.root, self.run)
