"""Tests for checksum, dependency manifest and build file tools."""

import json
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bundle_manifest.collector import DependencyManifest
from bundle_manifest.signer import ChecksumSigner, compute_sha256
from bundle_manifest.validator import ConfigValidator
from offline_bundler.errors import IntegrityError
from offline_bundler.models import Ecosystem, ResolvedArtifact


@pytest.fixture
def bundle_files(tmp_path):
    archive = tmp_path / "offline_packages_ubuntu_1.29.1.tar.gz"
    installer = tmp_path / "install_ubuntu_1.29.1.sh"
    archive.write_bytes(b"archive bytes")
    installer.write_text("#!/bin/sh\nexit 0\n")
    return archive, installer


class TestComputeSha256:
    """Tests for compute_sha256."""

    def test_known_digest(self, tmp_path):
        test_file = tmp_path / "test.txt"
        test_file.write_text("test content")

        # Known SHA256 of "test content"
        assert compute_sha256(test_file) == "6ae8a75555209fd6c44157c0aed8016e763ff435a19cf186f76863140143ff72"


class TestChecksumSigner:
    """Tests for ChecksumSigner."""

    def test_sign_writes_sha256sum_format(self, tmp_path, bundle_files):
        """Test that the manifest is sha256sum compatible."""
        manifest = tmp_path / "SHA256SUMS_ubuntu_1.29.1"

        entries = ChecksumSigner().sign(list(bundle_files), manifest)

        lines = manifest.read_text().splitlines()
        assert lines == [
            f"{compute_sha256(bundle_files[0])}  offline_packages_ubuntu_1.29.1.tar.gz",
            f"{compute_sha256(bundle_files[1])}  install_ubuntu_1.29.1.sh",
        ]
        assert list(entries) == ["offline_packages_ubuntu_1.29.1.tar.gz", "install_ubuntu_1.29.1.sh"]

    def test_verify_roundtrip(self, tmp_path, bundle_files):
        """Test that an untouched bundle verifies."""
        signer = ChecksumSigner()
        manifest = tmp_path / "SHA256SUMS"
        signer.sign(list(bundle_files), manifest)

        assert len(signer.verify(manifest)) == 2

    def test_verify_detects_tampering(self, tmp_path, bundle_files):
        """Test that a modified archive fails verification."""
        signer = ChecksumSigner()
        manifest = tmp_path / "SHA256SUMS"
        signer.sign(list(bundle_files), manifest)

        bundle_files[0].write_bytes(b"tampered")

        with pytest.raises(IntegrityError) as exc_info:
            signer.verify(manifest)

        assert len(exc_info.value.problems) == 1
        assert "offline_packages_ubuntu_1.29.1.tar.gz" in exc_info.value.problems[0]

    def test_verify_missing_file(self, tmp_path, bundle_files):
        """Test that a deleted installer fails verification."""
        signer = ChecksumSigner()
        manifest = tmp_path / "SHA256SUMS"
        signer.sign(list(bundle_files), manifest)

        bundle_files[1].unlink()

        with pytest.raises(IntegrityError) as exc_info:
            signer.verify(manifest)

        assert exc_info.value.problems == ["install_ubuntu_1.29.1.sh: missing"]

    def test_verify_missing_manifest(self, tmp_path):
        with pytest.raises(IntegrityError):
            ChecksumSigner().verify(tmp_path / "SHA256SUMS")

    def test_verify_empty_manifest(self, tmp_path):
        manifest = tmp_path / "SHA256SUMS"
        manifest.write_text("")

        with pytest.raises(IntegrityError):
            ChecksumSigner().verify(manifest)

    def test_read_binary_marker(self, tmp_path):
        """Test reading lines written by sha256sum -b."""
        manifest = tmp_path / "SHA256SUMS"
        manifest.write_text(f"{'a' * 64}  *bundle.tar.gz\n")

        assert ChecksumSigner().read(manifest) == {"bundle.tar.gz": "a" * 64}

    def test_read_malformed_line(self, tmp_path):
        manifest = tmp_path / "SHA256SUMS"
        manifest.write_text("not a checksum line\n")

        with pytest.raises(IntegrityError):
            ChecksumSigner().read(manifest)


class TestConfigValidator:
    """Tests for ConfigValidator."""

    def test_valid_config(self):
        validator = ConfigValidator()

        assert validator.validate({"kubernetes_version": "1.29.1", "download_workers": 4}) is True
        assert validator.errors == []

    def test_missing_version(self):
        validator = ConfigValidator()

        assert validator.validate({"packages": ["helm"]}) is False
        assert "Missing required field: kubernetes_version" in validator.errors

    def test_float_version(self):
        """Test that an unquoted 1.29 read as a float is rejected."""
        validator = ConfigValidator()

        assert validator.validate({"kubernetes_version": 1.29}) is False
        assert "must be a string" in validator.errors[0]

    def test_bad_version_pattern(self):
        validator = ConfigValidator()

        assert validator.validate({"kubernetes_version": "1.29"}) is False

    def test_invalid_lists(self):
        validator = ConfigValidator()

        valid = validator.validate({
            "kubernetes_version": "1.29.1",
            "packages": "helm",
            "verify_packages": ["conntrack", ""],
        })

        assert valid is False
        assert "packages must be a list" in validator.errors
        assert "verify_packages[1] must be a non-empty string" in validator.errors

    def test_invalid_numbers(self):
        validator = ConfigValidator()

        valid = validator.validate({
            "kubernetes_version": "1.29.1",
            "download_workers": "four",
            "timeout": 0,
            "retries": -1,
        })

        assert valid is False
        assert len(validator.errors) == 3

    def test_warnings(self):
        """Test clamped workers, unusual arch and unknown fields."""
        validator = ConfigValidator()

        valid = validator.validate({
            "kubernetes_version": "1.29.1",
            "download_workers": 16,
            "arch": "riscv64",
            "targets": ["ubuntu"],
        })

        assert valid is True
        assert len(validator.warnings) == 3
        assert "Unknown field: targets" in validator.warnings

    def test_validate_file(self, tmp_path):
        path = tmp_path / "kubeversion.yaml"
        path.write_text('kubernetes_version: "1.29.1"\npackages:\n  - helm\n')

        assert ConfigValidator().validate_file(path) is True

    def test_validate_file_not_found(self, tmp_path):
        validator = ConfigValidator()

        assert validator.validate_file(tmp_path / "missing.yaml") is False
        assert "File not found" in validator.errors[0]

    def test_validate_file_invalid_yaml(self, tmp_path):
        path = tmp_path / "kubeversion.yaml"
        path.write_text("kubernetes_version: [1.29\n")
        validator = ConfigValidator()

        assert validator.validate_file(path) is False
        assert "Invalid YAML" in validator.errors[0]

    def test_get_summary(self):
        validator = ConfigValidator()
        validator.validate({"kubernetes_version": "1.29.1"})

        assert validator.get_summary() == "Build file is valid."


class TestDependencyManifest:
    """Tests for DependencyManifest."""

    def _artifacts(self):
        return [
            ResolvedArtifact("kubelet", "1.29.1-1.1", Ecosystem.DEB, "kubelet=1.29.1-1.1", True,
                             "b" * 64, "kubelet_1.29.1-1.1_amd64.deb"),
            ResolvedArtifact("conntrack", "1:1.4.6-2build2", Ecosystem.DEB, "conntrack=1:1.4.6-2build2",
                             False, "c" * 64, "conntrack_1%3a1.4.6-2build2_amd64.deb"),
        ]

    def test_to_dict(self):
        manifest = DependencyManifest("deb", "ubuntu", "1.29.1")
        assert manifest.add_artifacts(self._artifacts()) == 2
        manifest.add_failures(["iptables=1.8.7-1ubuntu5"])

        data = manifest.to_dict()

        assert data["schema_version"] == "1.0"
        assert data["package_count"] == 2
        assert [p["name"] for p in data["packages"]] == ["conntrack", "kubelet"]
        assert data["failed"] == ["iptables=1.8.7-1ubuntu5"]

    def test_save_and_load(self, tmp_path):
        manifest = DependencyManifest("deb", "ubuntu", "1.29.1")
        manifest.add_artifacts(self._artifacts())

        path = manifest.save(tmp_path / "dependencies_ubuntu_1.29.1.json")
        loaded = DependencyManifest.load(path)

        assert json.loads(path.read_text())["os"] == "ubuntu"
        assert loaded.kubernetes_version == "1.29.1"
        assert loaded.pairs() == [("conntrack", "1:1.4.6-2build2"), ("kubelet", "1.29.1-1.1")]
