#!/usr/bin/env python3
"""
Installer emitter for offline Kubernetes bundles.

Builds an ordered install plan from the dependency closure and renders
it to a POSIX shell script that installs the bundle without network
access. Individual package failures are reported, not fatal.
"""

import shlex
import stat
from dataclasses import dataclass, field
from pathlib import Path

from .errors import InstallerExecutionWarning
from .models import PACKAGE_PATTERNS, DependencyClosure, Ecosystem

WARNING_TAG = InstallerExecutionWarning.__name__


@dataclass(frozen=True)
class EcosystemCommands:
    """Shell commands used by the installer for one ecosystem."""
    pattern: str
    install: str
    repair: tuple[str, ...]
    query: str
    listing: str
    # Lines run before the repair commands, without failure handling
    repair_setup: tuple[str, ...] = ()


COMMANDS = {
    Ecosystem.DEB: EcosystemCommands(
        pattern=PACKAGE_PATTERNS[Ecosystem.DEB],
        install="$SUDO env DEBIAN_FRONTEND=noninteractive dpkg -i",
        repair=(
            '$SUDO env DEBIAN_FRONTEND=noninteractive dpkg -i "$PKG_DIR"/*.deb',
            "$SUDO dpkg --configure -a",
            "$SUDO env DEBIAN_FRONTEND=noninteractive apt-get -f install -y --no-download",
        ),
        query="dpkg -s",
        listing="dpkg -l",
    ),
    Ecosystem.RPM: EcosystemCommands(
        pattern=PACKAGE_PATTERNS[Ecosystem.RPM],
        install="$SUDO rpm -Uvh --replacepkgs",
        repair=(
            "$SUDO dnf install -y --disablerepo='*' --cacheonly \"$PKG_DIR\"/*.rpm",
        ),
        query="rpm -q",
        listing="rpm -q",
    ),
    Ecosystem.ZYPPER: EcosystemCommands(
        pattern=PACKAGE_PATTERNS[Ecosystem.ZYPPER],
        install="$SUDO rpm -Uvh --replacepkgs",
        repair=(
            "$SUDO zypper --non-interactive --no-refresh install --allow-unsigned-rpm \"$PKG_DIR\"/*.rpm",
        ),
        query="rpm -q",
        listing="rpm -q",
    ),
    Ecosystem.PACMAN: EcosystemCommands(
        pattern=PACKAGE_PATTERNS[Ecosystem.PACMAN],
        install="$SUDO pacman -U --noconfirm --needed",
        # Collect package files into "$@", leaving out detached signatures
        repair_setup=(
            "set --",
            f'for f in "$PKG_DIR"/{PACKAGE_PATTERNS[Ecosystem.PACMAN]}; do',
            '    case "$f" in *.sig) ;; *) set -- "$@" "$f" ;; esac',
            "done",
        ),
        repair=(
            '$SUDO pacman -U --noconfirm --needed "$@"',
        ),
        query="pacman -Q",
        listing="pacman -Q",
    ),
}


@dataclass(frozen=True)
class InstallAction:
    """One step of the install procedure."""
    kind: str  # check, install, repair or verify
    target: str = ""


@dataclass
class InstallPlan:
    """Ordered, data-only description of an offline install."""
    ecosystem: Ecosystem
    os_label: str
    kubernetes_version: str
    actions: list[InstallAction] = field(default_factory=list)

    @property
    def package_files(self) -> list[str]:
        return [a.target for a in self.actions if a.kind == "install"]

    @property
    def verify_packages(self) -> list[str]:
        return [a.target for a in self.actions if a.kind == "verify"]


class InstallerEmitter:
    """Produce the install procedure shipped next to the archive."""

    def __init__(self, ecosystem: Ecosystem, os_label: str, kubernetes_version: str):
        self.ecosystem = Ecosystem(ecosystem)
        self.os_label = os_label
        self.kubernetes_version = kubernetes_version
        self.commands = COMMANDS[self.ecosystem]

    def plan(
        self,
        closure: DependencyClosure,
        verify_packages: list[str] | None = None,
    ) -> InstallPlan:
        """Build the install plan for the downloaded part of a closure.

        Args:
            closure: Closure whose downloaded artifacts carry filenames.
            verify_packages: Extra package names for the final listing.

        Returns:
            InstallPlan with dependencies installed before dependents.
        """
        plan = InstallPlan(self.ecosystem, self.os_label, self.kubernetes_version)
        plan.actions.append(InstallAction("check", self.commands.pattern))

        for artifact in closure.install_order():
            if artifact.filename:
                plan.actions.append(InstallAction("install", artifact.filename))

        plan.actions.append(InstallAction("repair"))

        names = [a.name for a in closure.roots()]
        for name in verify_packages or []:
            if name not in names:
                names.append(name)
        for name in names:
            plan.actions.append(InstallAction("verify", name))

        return plan

    def render(self, plan: InstallPlan) -> str:
        """Render a plan to a POSIX shell script."""
        commands = COMMANDS[plan.ecosystem]
        lines = [
            "#!/bin/sh",
            f"# Offline Kubernetes {plan.kubernetes_version} installer for "
            f"{plan.os_label} ({plan.ecosystem.value})",
            "# Usage: install.sh [PACKAGE_DIR]",
            "set -u",
            "",
            'SCRIPT_DIR=$(cd "$(dirname "$0")" && pwd)',
            'PKG_DIR="${1:-$SCRIPT_DIR/packages}"',
            "TOTAL=0",
            "FAILED=0",
            'FAILED_PACKAGES=""',
            'SUDO=""',
            'if [ "$(id -u)" -ne 0 ] && command -v sudo >/dev/null 2>&1; then',
            "    SUDO=sudo",
            "fi",
            "",
            f'echo "Installing Kubernetes {plan.kubernetes_version} from $PKG_DIR"',
            "",
        ]

        lines += self._render_install_function(commands)

        for action in plan.actions:
            if action.kind == "check":
                lines += self._render_check(action.target)
            elif action.kind == "install":
                lines.append(f"install_package {shlex.quote(action.target)}")
            elif action.kind == "repair":
                lines += self._render_repair(commands)

        verify = plan.verify_packages
        if verify:
            lines += self._render_verify(commands, verify)

        lines += [
            "",
            'echo "$FAILED of $TOTAL packages failed to install."',
            'if [ -n "$FAILED_PACKAGES" ]; then',
            '    echo "Failed:$FAILED_PACKAGES"',
            "fi",
            "exit 0",
        ]
        return "\n".join(lines) + "\n"

    def _render_check(self, pattern: str) -> list[str]:
        return [
            'if [ ! -d "$PKG_DIR" ]; then',
            '    echo "ERROR: package directory not found: $PKG_DIR" >&2',
            "    exit 1",
            "fi",
            f'if ! ls "$PKG_DIR"/{pattern} >/dev/null 2>&1; then',
            '    echo "ERROR: no package files found in $PKG_DIR" >&2',
            "    exit 1",
            "fi",
            "",
        ]

    def _render_install_function(self, commands: EcosystemCommands) -> list[str]:
        return [
            "install_package() {",
            "    TOTAL=$((TOTAL + 1))",
            '    if [ ! -f "$PKG_DIR/$1" ]; then',
            f'        echo "{WARNING_TAG}: missing package file $1" >&2',
            "        FAILED=$((FAILED + 1))",
            '        FAILED_PACKAGES="$FAILED_PACKAGES $1"',
            "        return 0",
            "    fi",
            '    echo "Installing $1"',
            f'    if ! {commands.install} "$PKG_DIR/$1"; then',
            f'        echo "{WARNING_TAG}: failed to install $1" >&2',
            "        FAILED=$((FAILED + 1))",
            '        FAILED_PACKAGES="$FAILED_PACKAGES $1"',
            "    fi",
            "}",
            "",
        ]

    def _render_repair(self, commands: EcosystemCommands) -> list[str]:
        lines = ["", 'echo "Repairing dependencies from local packages"']
        lines.extend(commands.repair_setup)
        for command in commands.repair:
            lines.append(
                f'{command} || echo "{WARNING_TAG}: local dependency repair reported errors" >&2'
            )
        return lines

    def _render_verify(self, commands: EcosystemCommands, names: list[str]) -> list[str]:
        quoted = " ".join(shlex.quote(n) for n in names)
        return [
            "",
            'echo "Verifying installed packages:"',
            f"for pkg in {quoted}; do",
            f'    if {commands.query} "$pkg" >/dev/null 2>&1; then',
            '        echo "  OK       $pkg"',
            "    else",
            '        echo "  MISSING  $pkg"',
            "    fi",
            "done",
            f"{commands.listing} {quoted} 2>/dev/null || true",
        ]

    def emit(self, plan: InstallPlan, path: str | Path) -> Path:
        """Write the rendered installer and mark it executable."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(plan))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path
