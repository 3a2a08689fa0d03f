"""Unit tests for the capx-install command (capx_compose.cli).

Tests cover:
- Argument parsing and config overrides
- Exit codes for bad arguments, bad template files and bad manifests
- Successful and failed installs end to end with a mocked package manager
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from capx_compose.cli import _build_config, build_parser, main
from capx_compose.config import AnalyzerConfig, Config, InstallConfig, PackageManagerName
from capx_compose.errors import ExitCode


@pytest.fixture
def templates_file(tmp_path: Path) -> Path:
    path = tmp_path / "templates.json"
    path.write_text(
        json.dumps(
            {
                "templates": [
                    {"name": "firebase", "dependencies": {"firebase": "^10.7.0"}},
                    {"name": "zod", "dependencies": {"zod": "^3.22.0"}},
                ]
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def clean_env():
    with patch.dict(os.environ, {"PATH": os.environ.get("PATH", "")}, clear=True):
        yield


def _spawner(fake_process, **kwargs):
    """AsyncMock for create_subprocess_exec building the process inside the loop."""
    async def spawn(*args, **kw):
        return fake_process(**kwargs)

    return AsyncMock(side_effect=spawn)


# ---------------------------------------------------------------------------
# Parsing & configuration
# ---------------------------------------------------------------------------


class TestParser:
    @pytest.mark.unit
    def test_defaults(self):
        args = build_parser().parse_args(["./app"])
        assert args.target == "./app"
        assert args.templates is None
        assert args.package_manager is None
        assert args.additional_args is None

    @pytest.mark.unit
    def test_unknown_package_manager_rejected(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["./app", "--package-manager", "bun"])
        assert exc_info.value.code == 2

    @pytest.mark.unit
    def test_repeatable_pm_arg(self):
        args = build_parser().parse_args(
            ["./app", "--pm-arg=--ignore-scripts", "--pm-arg=--prefer-offline"]
        )
        assert args.additional_args == ["--ignore-scripts", "--prefer-offline"]


class TestBuildConfig:
    @pytest.mark.unit
    def test_overrides_applied(self, clean_env):
        args = build_parser().parse_args(
            [
                "./app",
                "-p", "yarn",
                "--retries", "3",
                "--timeout-ms", "1000",
                "--no-peer-analysis",
                "--no-legacy-peer-deps",
                "--offline-analysis",
                "--pm-arg=--ignore-scripts",
            ]
        )
        config = _build_config(args)
        assert config.install.package_manager == PackageManagerName.YARN
        assert config.install.retry_attempts == 3
        assert config.install.timeout_ms == 1000
        assert config.install.enable_peer_analysis is False
        assert config.install.legacy_peer_deps_fallback is False
        assert config.install.additional_args == ["--ignore-scripts"]
        assert config.analyzer.fetch_metadata is False

    @pytest.mark.unit
    def test_environment_used_as_base(self):
        with patch.dict(os.environ, {"CAPX_RETRY_ATTEMPTS": "5"}, clear=True):
            config = _build_config(build_parser().parse_args(["./app"]))
        assert config.install.retry_attempts == 5

    @pytest.mark.unit
    def test_config_file(self, tmp_path: Path):
        path = Config(
            install=InstallConfig(retry_attempts=4),
            analyzer=AnalyzerConfig(max_concurrency=2),
        ).save(tmp_path / "capx.json")
        config = _build_config(build_parser().parse_args(["./app", "--config", str(path)]))
        assert config.install.retry_attempts == 4
        assert config.analyzer.max_concurrency == 2

    @pytest.mark.unit
    def test_out_of_range_value_rejected(self, clean_env):
        with pytest.raises(ValueError):
            _build_config(build_parser().parse_args(["./app", "--retries", "-1"]))


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


class TestMain:
    @pytest.mark.unit
    def test_invalid_configuration_exit_code(self, clean_env, tmp_project_dir):
        with pytest.raises(SystemExit) as exc_info:
            main([str(tmp_project_dir), "--timeout-ms", "0", "--silent"])
        assert exc_info.value.code == ExitCode.INVALID_ARGUMENTS

    @pytest.mark.unit
    def test_missing_template_file(self, clean_env, tmp_project_dir, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main([str(tmp_project_dir), "-t", str(tmp_path / "missing.json"), "--silent"])
        assert exc_info.value.code == ExitCode.INVALID_ARGUMENTS

    @pytest.mark.unit
    def test_invalid_template_file(self, clean_env, tmp_project_dir, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("templates: [ {name: ", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            main([str(tmp_project_dir), "-t", str(bad), "--silent"])
        assert exc_info.value.code == ExitCode.VALIDATION_ERROR

    @pytest.mark.unit
    def test_malformed_manifest(self, clean_env, tmp_project_dir, templates_file, fake_process):
        (tmp_project_dir / "package.json").write_text("{oops", encoding="utf-8")
        mock_exec = _spawner(fake_process)

        with patch("asyncio.create_subprocess_exec", mock_exec):
            with pytest.raises(SystemExit) as exc_info:
                main([str(tmp_project_dir), "-t", str(templates_file), "--silent"])

        assert exc_info.value.code == ExitCode.VALIDATION_ERROR
        mock_exec.assert_not_awaited()

    @pytest.mark.unit
    def test_successful_install(self, clean_env, tmp_project_dir, templates_file, fake_process):
        mock_exec = _spawner(fake_process, stdout="added 2 packages\n")

        with patch("asyncio.create_subprocess_exec", mock_exec):
            main(
                [
                    str(tmp_project_dir),
                    "-t", str(templates_file),
                    "--silent",
                    "--offline-analysis",
                    "--retry-delay-ms", "0",
                    "--project-name", "cli-app",
                ]
            )

        manifest = json.loads((tmp_project_dir / "package.json").read_text(encoding="utf-8"))
        assert manifest["name"] == "cli-app"
        assert manifest["dependencies"] == {"firebase": "^10.7.0", "zod": "^3.22.0"}
        assert mock_exec.await_count == 1

    @pytest.mark.unit
    def test_include_base_and_verbose_output(
        self, clean_env, tmp_project_dir, templates_file, fake_process, capsys
    ):
        mock_exec = _spawner(fake_process, stdout="added 9 packages\n")

        with patch("asyncio.create_subprocess_exec", mock_exec):
            main(
                [
                    str(tmp_project_dir),
                    "-t", str(templates_file),
                    "--include-base",
                    "--verbose",
                    "--no-peer-analysis",
                    "--retry-delay-ms", "0",
                ]
            )

        out = capsys.readouterr().out
        assert "nextjs-base" in out
        assert "Install options" in out
        assert "Dependencies installed successfully!" in out
        manifest = json.loads((tmp_project_dir / "package.json").read_text(encoding="utf-8"))
        assert "next" in manifest["dependencies"]

    @pytest.mark.unit
    def test_failed_install_exit_code(
        self, clean_env, tmp_project_dir, templates_file, fake_process, capsys
    ):
        mock_exec = _spawner(
            fake_process,
            stderr="npm ERR! code ENOTFOUND\nnpm ERR! getaddrinfo ENOTFOUND registry.npmjs.org\n",
            returncode=1,
        )

        with patch("asyncio.create_subprocess_exec", mock_exec):
            with pytest.raises(SystemExit) as exc_info:
                main(
                    [
                        str(tmp_project_dir),
                        "-t", str(templates_file),
                        "--silent",
                        "--no-peer-analysis",
                        "--retries", "0",
                    ]
                )

        assert exc_info.value.code == ExitCode.NETWORK_ERROR
        err = capsys.readouterr().err
        assert "Installation failed: Network error" in err
        assert "1. Check your network connectivity" in err
        assert not (tmp_project_dir / "package.json").exists()
