"""Test configuration and fixtures."""

import pytest

from image_sync.core.types import RegistryTarget
from tests.helpers import FakeEngine, FakeHost, write_manifest


@pytest.fixture
def engine():
    """Engine where the usual test images can be pulled from their origin."""
    return FakeEngine(remote={"ubuntu:20.04", "library/nginx", "quay.io/org/app:1"})


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def registry():
    return RegistryTarget.parse("reg.local:5000")


@pytest.fixture
def images_file(tmp_path):
    """Images file with comments, a blank line and three references."""
    return write_manifest(
        tmp_path / "images.txt",
        "# base images",
        "",
        "ubuntu:20.04",
        "library/nginx",
        "quay.io/org/app:1",
    )


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring docker"
    )
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
