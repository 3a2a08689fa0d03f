"""Static metadata for the package managers the installer can drive."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from capx_compose.config import PackageManagerName


@dataclass(frozen=True)
class PackageManagerDescriptor:
    """Immutable description of one package manager CLI."""

    name: PackageManagerName
    executable: str
    lockfile_name: str
    install_command: tuple[str, ...] = ("install",)
    silent_args: tuple[str, ...] = ()
    production_args: tuple[str, ...] = ()
    spinner_color: str = "cyan"

    def install_args(
        self,
        extra: Sequence[str] = (),
        *,
        silent: bool = False,
        production: bool = False,
    ) -> list[str]:
        """Arguments following the executable for an install run."""
        args = list(self.install_command)
        if silent:
            args.extend(self.silent_args)
        if production:
            args.extend(self.production_args)
        args.extend(extra)
        return args

    def resolve_executable(self) -> str:
        """Absolute path of the executable when found on PATH, else its bare name."""
        return shutil.which(self.executable) or self.executable

    def has_lockfile(self, target_dir: str | Path) -> bool:
        return (Path(target_dir) / self.lockfile_name).is_file()


PACKAGE_MANAGERS: dict[PackageManagerName, PackageManagerDescriptor] = {
    PackageManagerName.NPM: PackageManagerDescriptor(
        name=PackageManagerName.NPM,
        executable="npm",
        lockfile_name="package-lock.json",
        silent_args=("--silent", "--no-audit", "--no-fund"),
        production_args=("--omit=dev",),
        spinner_color="red",
    ),
    PackageManagerName.YARN: PackageManagerDescriptor(
        name=PackageManagerName.YARN,
        executable="yarn",
        lockfile_name="yarn.lock",
        silent_args=("--silent",),
        production_args=("--production",),
        spinner_color="blue",
    ),
    PackageManagerName.PNPM: PackageManagerDescriptor(
        name=PackageManagerName.PNPM,
        executable="pnpm",
        lockfile_name="pnpm-lock.yaml",
        silent_args=("--silent",),
        production_args=("--prod",),
        spinner_color="yellow",
    ),
}

# Lockfile sniffing order.
DETECTION_ORDER: tuple[PackageManagerName, ...] = (
    PackageManagerName.NPM,
    PackageManagerName.YARN,
    PackageManagerName.PNPM,
)


def get_package_manager(name: PackageManagerName | str) -> PackageManagerDescriptor:
    """Look up a descriptor by enum member or name.

    Raises:
        ValueError: If the name is not a supported package manager.
    """
    return PACKAGE_MANAGERS[PackageManagerName(name)]


def detect_package_manager(target_dir: str | Path) -> Optional[PackageManagerDescriptor]:
    """Return the package manager whose lockfile exists in *target_dir*, if any."""
    for name in DETECTION_ORDER:
        descriptor = PACKAGE_MANAGERS[name]
        if descriptor.has_lockfile(target_dir):
            return descriptor
    return None


def select_package_manager(
    target_dir: str | Path,
    explicit: PackageManagerName | str | None = None,
) -> PackageManagerDescriptor:
    """Explicit choice, else lockfile sniffing, else npm."""
    if explicit is not None:
        return get_package_manager(explicit)
    return detect_package_manager(target_dir) or PACKAGE_MANAGERS[PackageManagerName.NPM]
