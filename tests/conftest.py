"""Pytest configuration and fixtures."""

import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from offline_bundler.adapters import PackageInfo, PackageManagerAdapter
from offline_bundler.config import BuildConfig
from offline_bundler.errors import PackageNotFoundError
from offline_bundler.models import Ecosystem, PackageSpec


# name -> {version: [dependencies]}, versions oldest first
SAMPLE_REPOSITORY = {
    "kubeadm": {
        "1.29.0-1.1": ["conntrack"],
        "1.29.1-1.1": ["conntrack"],
    },
    "kubelet": {
        "1.29.1-1.1": ["iptables"],
    },
    "kubectl": {
        "1.29.1-1.1": [],
    },
    "conntrack": {
        "1:1.4.6-2build2": [],
    },
    "iptables": {
        "1.8.7-1ubuntu5": [],
    },
}


class FakeAdapter(PackageManagerAdapter):
    """In-memory repository standing in for a real package manager."""

    ecosystem = Ecosystem.DEB
    package_glob = "*.deb"
    SUPPORT_PACKAGES = ("conntrack", "iptables")

    def __init__(self, config, repository, fail_downloads=(), on_fetch=None, session=None):
        if session is None:
            session = MagicMock()
            session.head.return_value = MagicMock(ok=True, status_code=200)
        super().__init__(config, session=session)
        self.repository = repository
        self.fail_downloads = set(fail_downloads)
        self.on_fetch = on_fetch
        self.registered: list[str] = []
        self.fetched: list[tuple[str, str]] = []

    def repository_url(self, kubernetes_minor):
        return f"https://repo.example/{kubernetes_minor}/deb/"

    def key_url(self, kubernetes_minor):
        return self.repository_url(kubernetes_minor) + "Release.key"

    def _configure_repository(self, kubernetes_minor):
        self.registered.append(kubernetes_minor)

    def query_package(self, name, version=None):
        versions = self.repository.get(name)
        if not versions:
            raise PackageNotFoundError(name, version)

        pin = PackageSpec(name, version, self.ecosystem)
        matching = [v for v in versions if pin.matches(v)]
        if not matching:
            raise PackageNotFoundError(name, version)

        chosen = matching[-1]
        # a tuple entry is a group of alternatives
        groups = [list(dep) if isinstance(dep, tuple) else [dep] for dep in versions[chosen]]
        return PackageInfo(name, chosen, groups)

    def _fetch(self, spec, work_dir):
        self.fetched.append((spec.name, spec.version))
        if self.on_fetch:
            self.on_fetch(spec)
        if spec.name in self.fail_downloads:
            raise subprocess.CalledProcessError(
                100,
                ["apt-get", "download", str(spec)],
                stderr="E: Version not found",
            )
        filename = f"{spec.name}_{spec.version.replace(':', '%3a')}_amd64.deb"
        (work_dir / filename).write_bytes(f"{spec.name} {spec.version}\n".encode())


@pytest.fixture
def sample_repository():
    """Return a copy of the sample repository state."""
    return {name: dict(versions) for name, versions in SAMPLE_REPOSITORY.items()}


@pytest.fixture
def build_config(tmp_path):
    """Return a configuration for the kubeadm/kubelet example build."""
    return BuildConfig(
        ecosystem=Ecosystem.DEB,
        os_label="ubuntu",
        kubernetes_version="1.29.1",
        output_dir=tmp_path / "artifacts",
        root_packages=("kubeadm", "kubelet"),
        retries=0,
        sysroot=tmp_path / "sysroot",
    )


@pytest.fixture
def fake_adapter(build_config, sample_repository):
    """Return a fake adapter over the sample repository."""
    return FakeAdapter(build_config, sample_repository)


def completed(stdout="", returncode=0, stderr=""):
    """Build a subprocess.run return value."""
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)
