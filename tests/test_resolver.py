"""Tests for dependency resolution."""

import json
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import FakeAdapter
from offline_bundler.errors import DependencyResolutionWarning, UnresolvedRootError
from offline_bundler.models import DependencyClosure, Ecosystem, PackageSpec, ResolvedArtifact
from offline_bundler.resolver import DependencyResolver


class TestDependencyResolver:
    """Tests for DependencyResolver."""

    def test_requires_roots(self, fake_adapter):
        """Test that an empty root list is rejected."""
        with pytest.raises(ValueError):
            DependencyResolver(fake_adapter, [])

    def test_example_closure(self, fake_adapter, build_config):
        """Test kubeadm and kubelet pinned to 1.29.1."""
        resolver = DependencyResolver(fake_adapter, build_config.roots)
        closure = resolver.resolve()

        pairs = [(a.name, a.version) for a in closure]
        assert pairs == [
            ("kubeadm", "1.29.1-1.1"),
            ("kubelet", "1.29.1-1.1"),
            ("conntrack", "1:1.4.6-2build2"),
            ("iptables", "1.8.7-1ubuntu5"),
        ]
        assert [a.name for a in closure.roots()] == ["kubeadm", "kubelet"]
        assert resolver.warnings == []

    def test_roots_are_first_class_members(self, fake_adapter, build_config):
        """Test that roots appear in the closure with is_root set."""
        closure = DependencyResolver(fake_adapter, build_config.roots).resolve()

        kubeadm = closure.get("kubeadm", Ecosystem.DEB)
        assert kubeadm.is_root is True
        assert kubeadm.download_ref == "kubeadm=1.29.1-1.1"
        assert closure.get("conntrack", Ecosystem.DEB).is_root is False

    def test_resolution_is_deterministic(self, build_config, sample_repository):
        """Test that repeated resolution yields the same ordered closure."""
        first = DependencyResolver(FakeAdapter(build_config, sample_repository), build_config.roots)
        second = DependencyResolver(FakeAdapter(build_config, sample_repository), build_config.roots)

        assert [a.identity for a in first.resolve()] == [a.identity for a in second.resolve()]

    def test_unpinned_root_takes_latest(self, fake_adapter):
        """Test that a root without a version resolves to the newest candidate."""
        closure = DependencyResolver(fake_adapter, [PackageSpec("kubeadm")]).resolve()

        assert closure.get("kubeadm", Ecosystem.DEB).version == "1.29.1-1.1"

    def test_root_version_wins_over_dependency(self, build_config, sample_repository):
        """Test that a root pin is kept when a dependency wants another version."""
        sample_repository["kubeadm"]["1.30.0-1.1"] = ["conntrack"]
        sample_repository["kubelet"]["1.29.1-1.1"] = ["iptables", "kubeadm"]
        adapter = FakeAdapter(build_config, sample_repository)

        closure = DependencyResolver(adapter, build_config.roots).resolve()

        kubeadm = [a for a in closure if a.name == "kubeadm"]
        assert len(kubeadm) == 1
        assert kubeadm[0].version == "1.29.1-1.1"
        assert kubeadm[0].is_root is True

    def test_root_reached_as_dependency_uses_its_pin(self, build_config, sample_repository):
        """Test that a root pulled in by another root keeps its pinned dependencies."""
        sample_repository["kubeadm"]["1.29.1-1.1"] = ["conntrack", "kubelet"]
        sample_repository["kubelet"]["1.30.0-1.1"] = ["iptables", "newlib"]
        sample_repository["newlib"] = {"2.0-1": []}
        adapter = FakeAdapter(build_config, sample_repository)

        closure = DependencyResolver(adapter, build_config.roots).resolve()

        assert [a.name for a in closure] == ["kubeadm", "kubelet", "conntrack", "iptables"]
        assert closure.edges["kubelet"] == ["iptables"]
        assert closure.edges["kubeadm"] == ["conntrack", "kubelet"]

    def test_unresolved_root_is_fatal(self, fake_adapter):
        """Test that a missing root version raises UnresolvedRootError."""
        roots = [PackageSpec("kubeadm", "9.9.9"), PackageSpec("kubelet", "1.29.1")]

        with pytest.raises(UnresolvedRootError) as exc_info:
            DependencyResolver(fake_adapter, roots).resolve()

        assert exc_info.value.spec.name == "kubeadm"
        assert "kubeadm=9.9.9" in str(exc_info.value)

    def test_unknown_root_is_fatal(self, fake_adapter):
        """Test that an unknown root package raises UnresolvedRootError."""
        with pytest.raises(UnresolvedRootError):
            DependencyResolver(fake_adapter, [PackageSpec("kubefoo")]).resolve()

    def test_missing_dependency_is_a_warning(self, build_config, sample_repository):
        """Test that a missing transitive dependency is recorded, not raised."""
        sample_repository["kubelet"]["1.29.1-1.1"] = ["iptables", "ebtables"]
        adapter = FakeAdapter(build_config, sample_repository)
        resolver = DependencyResolver(adapter, build_config.roots)

        closure = resolver.resolve()

        assert "ebtables" not in closure
        assert "iptables" in closure
        assert len(resolver.warnings) == 1
        warning = resolver.warnings[0]
        assert isinstance(warning, DependencyResolutionWarning)
        assert warning.name == "ebtables"
        assert warning.required_by == "kubelet"

    def test_missing_dependency_warned_once(self, build_config, sample_repository):
        """Test that the same missing dependency warns only once."""
        sample_repository["kubeadm"]["1.29.1-1.1"] = ["conntrack", "ebtables"]
        sample_repository["kubelet"]["1.29.1-1.1"] = ["iptables", "ebtables"]
        resolver = DependencyResolver(FakeAdapter(build_config, sample_repository), build_config.roots)

        resolver.resolve()

        assert [w.name for w in resolver.warnings] == ["ebtables"]

    def test_transitive_dependencies(self, build_config):
        """Test that A -> B -> C pulls in C."""
        repository = {
            "a": {"1.0-1": ["b"]},
            "b": {"1.0-1": ["c"]},
            "c": {"1.0-1": []},
        }
        adapter = FakeAdapter(build_config, repository)

        closure = DependencyResolver(adapter, [PackageSpec("a")]).resolve()

        assert [a.name for a in closure] == ["a", "b", "c"]
        assert closure.edges == {"a": ["b"], "b": ["c"], "c": []}

    def test_dependency_cycle(self, build_config):
        """Test that a dependency cycle terminates."""
        repository = {
            "a": {"1.0-1": ["b"]},
            "b": {"1.0-1": ["a"]},
        }
        adapter = FakeAdapter(build_config, repository)

        closure = DependencyResolver(adapter, [PackageSpec("a")]).resolve()

        assert sorted(a.name for a in closure) == ["a", "b"]
        assert len(closure.install_order()) == 2

    def test_alternatives_first_match_wins(self, build_config):
        """Test that the first resolvable alternative is used."""
        repository = {
            "kubelet": {"1.29.1-1.1": [("iptables-legacy", "iptables", "nftables")]},
            "iptables": {"1.8.7-1": []},
            "nftables": {"1.0.2-1": []},
        }
        resolver = DependencyResolver(FakeAdapter(build_config, repository), [PackageSpec("kubelet")])

        closure = resolver.resolve()

        assert [a.name for a in closure] == ["kubelet", "iptables"]
        assert resolver.warnings == []

    def test_export_resolution(self, fake_adapter, build_config, tmp_path):
        """Test exporting resolution results to JSON."""
        resolver = DependencyResolver(fake_adapter, build_config.roots)
        resolver.resolve()

        output = resolver.export_resolution(tmp_path / "resolution.json")

        data = json.loads(output.read_text())
        assert data["root_count"] == 2
        assert data["resolved_count"] == 4
        assert data["roots"] == ["kubeadm=1.29.1", "kubelet=1.29.1"]
        assert data["edges"]["kubeadm"] == ["conntrack"]


class TestDependencyClosure:
    """Tests for DependencyClosure."""

    def _artifact(self, name, version="1.0", is_root=False):
        return ResolvedArtifact(name, version, Ecosystem.DEB, f"{name}={version}", is_root)

    def test_add_skips_duplicate_names(self):
        """Test that the first artifact with a name is kept."""
        closure = DependencyClosure()

        assert closure.add(self._artifact("kubeadm", "1.29.1-1.1", is_root=True)) is True
        assert closure.add(self._artifact("kubeadm", "1.30.0-1.1")) is False
        assert len(closure) == 1
        assert closure.get("kubeadm", Ecosystem.DEB).version == "1.29.1-1.1"

    def test_replace_keeps_position(self):
        """Test that replace updates an artifact in place."""
        closure = DependencyClosure()
        closure.add(self._artifact("a"))
        closure.add(self._artifact("b"))

        closure.replace(self._artifact("a").with_download("a_1.0.deb", "0" * 64))

        assert [a.name for a in closure] == ["a", "b"]
        assert closure.get("a", Ecosystem.DEB).filename == "a_1.0.deb"

    def test_install_order_puts_dependencies_first(self, fake_adapter, build_config):
        """Test that dependencies precede their dependents."""
        closure = DependencyResolver(fake_adapter, build_config.roots).resolve()

        order = [a.name for a in closure.install_order()]

        assert order == ["conntrack", "kubeadm", "iptables", "kubelet"]


class TestPackageSpec:
    """Tests for PackageSpec version matching."""

    def test_unpinned_matches_anything(self):
        assert PackageSpec("kubeadm").matches("1.29.1-1.1")

    def test_matches_distribution_release(self):
        spec = PackageSpec("kubeadm", "1.29.1")

        assert spec.matches("1.29.1")
        assert spec.matches("1.29.1-1.1")
        assert spec.matches("1.29.1-150500.1.1")
        assert not spec.matches("1.29.10-1.1")

    def test_ignores_epoch(self):
        assert PackageSpec("conntrack", "1.4.6-2build2").matches("1:1.4.6-2build2")
