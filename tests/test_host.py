"""Tests for host preparation: OS detection, packages, certificates, Docker."""

import json

import pytest

from image_sync.core.process import CmdResult
from image_sync.core.types import RegistryTarget
from image_sync.exceptions import CommandError, PreconditionError, UnsupportedOSError
from image_sync.host import OFFLINE_PACKAGES, HostSystem, detect_os
from image_sync.host import certs
from image_sync.host.os_release import OSInfo, parse_os_release
from image_sync.host.packages import (
    OFFLINE_REPO_NAME,
    download_offline_packages,
    install_offline_packages,
    parse_apt_depends,
)
from image_sync.host.system import DOCKER_BRIDGE_CIDR
from tests.helpers import FakeEngine

APT_DEPENDS = """\
docker-ce
  Depends: containerd.io
  Depends: <libc6>
containerd.io
  Depends: libc6
<libc6>
libc6
docker-ce
"""


class FakeRunner:
    """Command runner recording argv lists.

    ``outputs`` maps the first two argv words to stdout; ``failing`` holds
    programs that exit non-zero.
    """

    def __init__(self, outputs=None, failing=(), on_call=None):
        self.outputs = outputs or {}
        self.failing = set(failing)
        self.on_call = on_call
        self.calls = []

    async def __call__(self, argv, *, check=True, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        if self.on_call:
            self.on_call(argv)
        if argv[0] in self.failing and check:
            raise CommandError(argv, 1, f"{argv[0]}: failed")
        stdout = self.outputs.get(tuple(argv[:2]), "")
        return CmdResult(argv, 0, stdout, "")


def write_os_release(root, os_id):
    path = root / "etc/os-release"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f'NAME="Some Linux"\nID={os_id}\nVERSION_ID="22.04"\n')
    return path


# OS detection


def test_parse_os_release():
    text = '# comment\nNAME="Ubuntu"\nID=ubuntu\nID_LIKE=debian\n\nPRETTY_NAME="Ubuntu 22.04 LTS"\n'
    values = parse_os_release(text)

    assert values["ID"] == "ubuntu"
    assert values["NAME"] == "Ubuntu"
    assert values["PRETTY_NAME"] == "Ubuntu 22.04 LTS"


@pytest.mark.parametrize(
    "os_id, family",
    [
        ("ubuntu", "debian"),
        ("debian", "debian"),
        ("rocky", "rhel"),
        ('"almalinux"', "rhel"),
        ("opensuse-leap", "suse"),
        ("arch", None),
    ],
)
def test_detect_os(tmp_path, os_id, family):
    info = detect_os(write_os_release(tmp_path, os_id))

    assert info.id == os_id.strip('"')
    assert info.family == family


def test_detect_os_missing_file(tmp_path):
    with pytest.raises(UnsupportedOSError, match="not found"):
        detect_os(tmp_path / "os-release")


def test_detect_os_unbalanced_quote(tmp_path):
    path = tmp_path / "os-release"
    path.write_text('ID=ubuntu\nPRETTY_NAME="Ubuntu 22.04\n')

    with pytest.raises(UnsupportedOSError, match="cannot parse"):
        detect_os(path)


def test_require_family_unsupported():
    with pytest.raises(UnsupportedOSError, match="Unsupported OS 'arch'"):
        OSInfo(id="arch", family=None).require_family("install of Docker")


# Offline packages


def test_parse_apt_depends():
    assert parse_apt_depends(APT_DEPENDS) == ["docker-ce", "containerd.io", "libc6"]


@pytest.mark.asyncio
async def test_download_offline_packages_debian(tmp_path):
    run = FakeRunner(
        outputs={
            ("apt-cache", "depends"): APT_DEPENDS,
            ("dpkg-scanpackages", "-m"): "Package: docker-ce\n",
        }
    )
    dest = tmp_path / "repo"

    assert await download_offline_packages("debian", dest, run) == dest

    assert ["apt-get", "download", "docker-ce", "containerd.io", "libc6"] in run.calls
    assert (dest / "Packages").read_text() == "Package: docker-ce\n"


@pytest.mark.asyncio
async def test_download_offline_packages_debian_without_dependencies(tmp_path):
    run = FakeRunner()

    with pytest.raises(PreconditionError, match="resolve dependencies"):
        await download_offline_packages("debian", tmp_path / "repo", run)


@pytest.mark.asyncio
async def test_download_offline_packages_rhel(tmp_path):
    run = FakeRunner()
    dest = tmp_path / "repo"

    await download_offline_packages("rhel", dest, run)

    assert run.calls[1] == [
        "dnf",
        "download",
        "--resolve",
        f"--downloaddir={dest}",
        *OFFLINE_PACKAGES,
    ]
    assert run.calls[-1] == ["createrepo_c", str(dest)]


@pytest.mark.asyncio
async def test_download_offline_packages_suse_copies_cache(tmp_path):
    cache = tmp_path / "zypp"

    def fill_cache(argv):
        if "--download-only" in argv:
            (cache / "docker").mkdir(parents=True)
            (cache / "docker" / "docker-ce.rpm").write_bytes(b"rpm")

    run = FakeRunner(on_call=fill_cache)
    dest = tmp_path / "repo"

    await download_offline_packages("suse", dest, run, zypp_cache=cache)

    assert (dest / "docker-ce.rpm").read_bytes() == b"rpm"


@pytest.mark.asyncio
async def test_download_offline_packages_command_failure(tmp_path):
    run = FakeRunner(failing={"dnf"})

    with pytest.raises(PreconditionError, match="Failed to download offline"):
        await download_offline_packages("rhel", tmp_path / "repo", run)


@pytest.mark.asyncio
async def test_download_offline_packages_unknown_family(tmp_path):
    with pytest.raises(PreconditionError, match="Unsupported OS family"):
        await download_offline_packages("plan9", tmp_path / "repo", FakeRunner())


@pytest.mark.asyncio
async def test_install_offline_packages_debian(tmp_path):
    apt = tmp_path / "etc/apt"
    (apt / "sources.list.d").mkdir(parents=True)
    (apt / "sources.list").write_text("deb http://archive.ubuntu.com/ubuntu jammy main\n")
    run = FakeRunner()

    await install_offline_packages("debian", tmp_path / "repo", root=tmp_path, run=run)

    assert not (apt / "sources.list").exists()
    assert (apt / "sources.list.bak").exists()
    assert (apt / "sources.list.d/docker-offline.list").read_text() == (
        f"deb [trusted=yes] file:{tmp_path / 'repo'} ./\n"
    )
    assert run.calls == [
        ["apt-get", "update"],
        ["apt-get", "install", "-y", "-qq", *OFFLINE_PACKAGES],
    ]


@pytest.mark.asyncio
async def test_install_offline_packages_rhel(tmp_path):
    run = FakeRunner()

    await install_offline_packages("rhel", tmp_path / "repo", root=tmp_path, run=run)

    repo = (tmp_path / "etc/yum.repos.d/docker-offline.repo").read_text()
    assert f"[{OFFLINE_REPO_NAME}]" in repo
    assert f"baseurl=file://{tmp_path / 'repo'}" in repo
    assert "gpgcheck=0" in repo
    assert f"--enablerepo={OFFLINE_REPO_NAME}" in run.calls[-1]


# Certificates


@pytest.fixture
def fake_certificate(monkeypatch):
    fetched = []

    async def fetch(host, port, timeout=10):
        fetched.append((host, port))
        return "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"

    monkeypatch.setattr(certs, "fetch_certificate", fetch)
    return fetched


@pytest.mark.asyncio
async def test_install_registry_certificate_debian(tmp_path, fake_certificate):
    run = FakeRunner()
    registry = RegistryTarget.parse("reg.local:5000")

    path = await certs.install_registry_certificate(registry, "debian", tmp_path, run)

    assert path == tmp_path / "usr/local/share/ca-certificates/reg.local.crt"
    assert path.read_text().startswith("-----BEGIN CERTIFICATE-----")
    assert fake_certificate == [("reg.local", 5000)]
    assert run.calls == [["update-ca-certificates"]]


@pytest.mark.asyncio
async def test_install_registry_certificate_default_port(tmp_path, fake_certificate):
    run = FakeRunner()

    path = await certs.install_registry_certificate(
        RegistryTarget.parse("registry.example.com"), "rhel", tmp_path, run
    )

    assert fake_certificate == [("registry.example.com", 443)]
    assert path.parent == tmp_path / "etc/pki/ca-trust/source/anchors"
    assert run.calls == [["update-ca-trust", "extract"]]


@pytest.mark.asyncio
async def test_install_registry_certificate_trust_update_fails(tmp_path, fake_certificate):
    run = FakeRunner(failing={"update-ca-certificates"})

    with pytest.raises(PreconditionError, match="CA trust store"):
        await certs.install_registry_certificate(
            RegistryTarget.parse("reg.local:5000"), "debian", tmp_path, run
        )


@pytest.mark.asyncio
async def test_fetch_certificate_unreachable():
    with pytest.raises(PreconditionError, match="Failed to retrieve certificate"):
        await certs.fetch_certificate("127.0.0.1", 1, timeout=1)


# HostSystem


def test_require_root(monkeypatch):
    monkeypatch.setattr("image_sync.host.system.os.geteuid", lambda: 1000)

    with pytest.raises(PreconditionError, match="sudo or as root"):
        HostSystem().require_root()


def test_detect_os_is_cached(tmp_path):
    write_os_release(tmp_path, "ubuntu")
    host = HostSystem(root=tmp_path)

    first = host.detect_os()
    (tmp_path / "etc/os-release").unlink()

    assert host.detect_os() is first


def test_write_daemon_config(tmp_path):
    path = HostSystem(root=tmp_path).write_daemon_config()

    assert json.loads(path.read_text()) == {"bip": DOCKER_BRIDGE_CIDR}


def test_write_daemon_config_unwritable(tmp_path):
    (tmp_path / "etc").mkdir()
    (tmp_path / "etc/docker").write_text("not a directory")

    with pytest.raises(PreconditionError, match="daemon.json"):
        HostSystem(root=tmp_path).write_daemon_config()


@pytest.mark.asyncio
async def test_ensure_engine_already_installed(tmp_path):
    run = FakeRunner()
    host = HostSystem(root=tmp_path, run=run)

    await host.ensure_engine(FakeEngine(installed=True), tmp_path)

    assert run.calls == []
    assert not (tmp_path / "etc/docker/daemon.json").exists()


@pytest.mark.asyncio
async def test_ensure_engine_installs_offline(tmp_path):
    """Test installing Docker from the bundled repository on an air-gapped host."""
    write_os_release(tmp_path, "ubuntu")
    engine = FakeEngine(installed=False)

    def start_docker(argv):
        if argv[0] == "systemctl":
            engine.installed = True

    run = FakeRunner(on_call=start_docker)
    host = HostSystem(root=tmp_path, run=run, sudo_user="alice", engine_wait=0)

    await host.ensure_engine(engine, tmp_path, offline_dir=tmp_path / "repo")

    assert (tmp_path / "etc/docker/daemon.json").exists()
    assert ["systemctl", "enable", "--now", "docker"] in run.calls
    assert run.calls[-1] == ["usermod", "-aG", "docker", "alice"]


@pytest.mark.asyncio
async def test_ensure_engine_not_reachable_after_install(tmp_path):
    write_os_release(tmp_path, "rocky")
    run = FakeRunner()
    host = HostSystem(root=tmp_path, run=run, sudo_user="", engine_wait=0)

    with pytest.raises(PreconditionError, match="not reachable"):
        await host.ensure_engine(
            FakeEngine(installed=False), tmp_path, offline_dir=tmp_path / "repo"
        )


@pytest.mark.asyncio
async def test_ensure_engine_install_command_fails(tmp_path):
    write_os_release(tmp_path, "ubuntu")
    run = FakeRunner(failing={"apt-get"})
    host = HostSystem(root=tmp_path, run=run, engine_wait=0)

    with pytest.raises(PreconditionError, match="Docker installation failed"):
        await host.ensure_engine(
            FakeEngine(installed=False), tmp_path, offline_dir=tmp_path / "repo"
        )


@pytest.mark.asyncio
async def test_host_download_offline_packages_unsupported_os(tmp_path):
    write_os_release(tmp_path, "arch")
    host = HostSystem(root=tmp_path, run=FakeRunner())

    with pytest.raises(PreconditionError, match="Unsupported OS 'arch'"):
        await host.download_offline_packages(tmp_path / "repo")
