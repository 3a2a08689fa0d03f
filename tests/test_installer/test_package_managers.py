"""Unit tests for package manager descriptors (capx_compose.installer.package_managers).

Tests cover:
- Install argument construction
- Lookup by name
- Lockfile detection and selection precedence
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from capx_compose.config import PackageManagerName
from capx_compose.installer.package_managers import (
    PACKAGE_MANAGERS,
    detect_package_manager,
    get_package_manager,
    select_package_manager,
)


class TestDescriptor:
    @pytest.mark.unit
    def test_plain_install_args(self):
        npm = PACKAGE_MANAGERS[PackageManagerName.NPM]
        assert npm.install_args() == ["install"]

    @pytest.mark.unit
    def test_silent_and_production_args(self):
        pnpm = PACKAGE_MANAGERS[PackageManagerName.PNPM]
        assert pnpm.install_args(["--frozen-lockfile"], silent=True, production=True) == [
            "install",
            "--silent",
            "--prod",
            "--frozen-lockfile",
        ]

    @pytest.mark.unit
    def test_install_args_returns_fresh_list(self):
        npm = PACKAGE_MANAGERS[PackageManagerName.NPM]
        args = npm.install_args()
        args.append("--legacy-peer-deps")
        assert npm.install_args() == ["install"]

    @pytest.mark.unit
    def test_resolve_executable_falls_back_to_name(self):
        yarn = PACKAGE_MANAGERS[PackageManagerName.YARN]
        with patch("capx_compose.installer.package_managers.shutil.which", return_value=None):
            assert yarn.resolve_executable() == "yarn"
        with patch(
            "capx_compose.installer.package_managers.shutil.which",
            return_value="/usr/local/bin/yarn",
        ):
            assert yarn.resolve_executable() == "/usr/local/bin/yarn"


class TestLookup:
    @pytest.mark.unit
    def test_get_by_string_and_enum(self):
        assert get_package_manager("yarn").lockfile_name == "yarn.lock"
        assert get_package_manager(PackageManagerName.PNPM).executable == "pnpm"

    @pytest.mark.unit
    def test_unknown_name(self):
        with pytest.raises(ValueError):
            get_package_manager("bun")


class TestDetection:
    @pytest.mark.unit
    def test_no_lockfile(self, tmp_project_dir: Path):
        assert detect_package_manager(tmp_project_dir) is None
        assert select_package_manager(tmp_project_dir).name == PackageManagerName.NPM

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "lockfile, expected",
        [
            ("package-lock.json", PackageManagerName.NPM),
            ("yarn.lock", PackageManagerName.YARN),
            ("pnpm-lock.yaml", PackageManagerName.PNPM),
        ],
    )
    def test_detects_from_lockfile(self, tmp_project_dir: Path, lockfile, expected):
        (tmp_project_dir / lockfile).write_text("", encoding="utf-8")
        assert detect_package_manager(tmp_project_dir).name == expected

    @pytest.mark.unit
    def test_npm_lockfile_checked_first(self, tmp_project_dir: Path):
        (tmp_project_dir / "pnpm-lock.yaml").write_text("", encoding="utf-8")
        (tmp_project_dir / "package-lock.json").write_text("{}", encoding="utf-8")
        assert detect_package_manager(tmp_project_dir).name == PackageManagerName.NPM

    @pytest.mark.unit
    def test_explicit_choice_wins(self, tmp_project_dir: Path):
        (tmp_project_dir / "yarn.lock").write_text("", encoding="utf-8")
        assert select_package_manager(tmp_project_dir, "pnpm").name == PackageManagerName.PNPM
