"""Offline Docker package download and installation per OS family."""

import logging
import re
import shutil
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from ..core.process import CmdResult, run_cmd
from ..exceptions import CommandError, PreconditionError

logger = logging.getLogger(__name__)

Runner = Callable[..., Awaitable[CmdResult]]

OFFLINE_PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)
OFFLINE_REPO_NAME = "docker-offline-repo"
ZYPP_PACKAGE_CACHE = Path("/var/cache/zypp/packages")

_APT_DEPENDS_FLAGS = (
    "--recurse",
    "--no-recommends",
    "--no-suggests",
    "--no-conflicts",
    "--no-breaks",
    "--no-replaces",
    "--no-enhances",
    "--no-pre-depends",
)


def parse_apt_depends(output: str) -> list[str]:
    """Extract package names from ``apt-cache depends --recurse`` output.

    Dependency lines are indented; package names start at column 0.
    Virtual packages are printed in angle brackets and skipped.
    """
    names = []
    for line in output.splitlines():
        if re.match(r"^\w", line) and line.strip() not in names:
            names.append(line.strip())
    return names


async def _download_debian(dest: Path, run: Runner) -> None:
    await run(
        ["apt-get", "-y", "-qq", "install", "dpkg-dev"],
        env={"DEBIAN_FRONTEND": "noninteractive"},
    )
    result = await run(["apt-cache", "depends", *_APT_DEPENDS_FLAGS, *OFFLINE_PACKAGES])
    packages = parse_apt_depends(result.stdout)
    if not packages:
        raise PreconditionError("Failed to resolve dependencies for Docker packages.")

    await run(["apt-get", "download", *packages], cwd=str(dest))
    scan = await run(["dpkg-scanpackages", "-m", "."], cwd=str(dest))
    (dest / "Packages").write_text(scan.stdout, encoding="utf-8")


async def _download_rhel(dest: Path, run: Runner) -> None:
    await run(["dnf", "install", "-y", "dnf-utils", "createrepo_c"])
    await run(
        ["dnf", "download", "--resolve", f"--downloaddir={dest}", *OFFLINE_PACKAGES]
    )
    await run(["createrepo_c", str(dest)])


async def _download_suse(dest: Path, run: Runner, cache: Path) -> None:
    await run(["zypper", "install", "-y", "createrepo_c"])
    logger.info("Cleaning Zypper cache...")
    shutil.rmtree(cache, ignore_errors=True)
    await run(["zypper", "install", "-y", "--download-only", *OFFLINE_PACKAGES])
    for rpm in cache.rglob("*.rpm"):
        shutil.copy2(rpm, dest)
    await run(["createrepo_c", str(dest)])


async def download_offline_packages(
    family: str,
    dest: Path,
    run: Runner = run_cmd,
    zypp_cache: Path = ZYPP_PACKAGE_CACHE,
) -> Path:
    """Download the Docker packages and their dependencies into a local repo.

    Args:
        family: OS family ("debian", "rhel" or "suse")
        dest: Directory receiving the packages and repository metadata
        run: Command runner
        zypp_cache: Zypper package cache (suse only)

    Returns:
        The populated ``dest`` directory

    Raises:
        PreconditionError: If packages cannot be downloaded
    """
    dest.mkdir(parents=True, exist_ok=True)
    logger.info("Saving offline Docker packages for %s into '%s'...", family, dest)
    try:
        if family == "debian":
            await _download_debian(dest, run)
        elif family == "rhel":
            await _download_rhel(dest, run)
        elif family == "suse":
            await _download_suse(dest, run, zypp_cache)
        else:
            raise PreconditionError(f"Unsupported OS family '{family}'")
    except (CommandError, OSError) as e:
        raise PreconditionError(f"Failed to download offline Docker packages: {e}") from e

    logger.info("Completed creating Docker repository metadata for %s.", family)
    return dest


def _backup(path: Path) -> None:
    if path.exists():
        logger.info("Backing up %s to %s.bak", path, path.name)
        path.rename(path.with_name(path.name + ".bak"))


async def install_offline_packages(
    family: str,
    repo_dir: Path,
    root: Path = Path("/"),
    run: Runner = run_cmd,
    packages: Sequence[str] = OFFLINE_PACKAGES,
) -> None:
    """Install Docker from a bundled local package repository.

    Args:
        family: OS family
        repo_dir: Directory holding the offline repository
        root: Filesystem root for package manager configuration
        run: Command runner
        packages: Packages to install

    Raises:
        CommandError: If a package manager command fails
    """
    logger.info("Installing Docker from offline packages in '%s'...", repo_dir)
    if family == "debian":
        apt_dir = root / "etc/apt"
        _backup(apt_dir / "sources.list")
        _backup(apt_dir / "sources.list.d/ubuntu.sources")
        offline_list = apt_dir / "sources.list.d/docker-offline.list"
        offline_list.parent.mkdir(parents=True, exist_ok=True)
        offline_list.write_text(f"deb [trusted=yes] file:{repo_dir} ./\n", encoding="utf-8")
        await run(["apt-get", "update"])
        await run(["apt-get", "install", "-y", "-qq", *packages])
    elif family == "rhel":
        repo_file = root / "etc/yum.repos.d/docker-offline.repo"
        repo_file.parent.mkdir(parents=True, exist_ok=True)
        repo_file.write_text(
            f"[{OFFLINE_REPO_NAME}]\n"
            "name=Docker Offline Repository\n"
            f"baseurl=file://{repo_dir}\n"
            "enabled=1\n"
            "gpgcheck=0\n",
            encoding="utf-8",
        )
        await run(["dnf", "clean", "all"])
        await run(
            [
                "dnf",
                "--disablerepo=*",
                f"--enablerepo={OFFLINE_REPO_NAME}",
                "install",
                "-y",
                *packages,
            ]
        )
    elif family == "suse":
        await run(["zypper", "addrepo", f"file://{repo_dir}", OFFLINE_REPO_NAME])
        await run(["zypper", "refresh"])
        await run(["zypper", "--no-refresh", "install", "-y", *packages])
    else:
        raise PreconditionError(f"Unsupported OS family '{family}'")
