"""Shared pytest fixtures for the capx-compose test suite.

Provides reusable fixtures for:
- Temporary project directories and manifests
- Sample template descriptors
- Fake package manager processes with streamed stdout/stderr
- Mocked npm registry transports
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest

from capx_compose.config import AnalyzerConfig, InstallConfig
from capx_compose.resolver.models import TemplateDescriptor


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Temporary directory for generated projects (auto-cleanup)."""
    project_dir = tmp_path / "test-project"
    project_dir.mkdir()
    yield project_dir


@pytest.fixture
def existing_manifest(tmp_project_dir: Path) -> Path:
    """A valid package.json already present in the project directory."""
    path = tmp_project_dir / "package.json"
    path.write_text(
        json.dumps(
            {
                "name": "existing-app",
                "version": "1.2.3",
                "scripts": {"dev": "vite"},
                "dependencies": {"lodash": "^4.17.21"},
            },
            indent=2,
        )
        + "\n",
        encoding="utf-8",
    )
    return path


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@pytest.fixture
def evm_template() -> TemplateDescriptor:
    return TemplateDescriptor(
        name="evm",
        dependencies={"wagmi": "^2.5.0", "viem": "^2.9.0", "@tanstack/react-query": "^5.28.0"},
        files_mapping={"evm/example.tsx": "src/app/evm/page.tsx"},
    )


@pytest.fixture
def firebase_template() -> TemplateDescriptor:
    return TemplateDescriptor(
        name="firebase",
        dependencies={"firebase": "^10.7.0", "react": "^18.2.0"},
        dev_dependencies={"@types/react": "^18.2.0"},
    )


@pytest.fixture
def sample_templates(evm_template, firebase_template) -> list[TemplateDescriptor]:
    return [evm_template, firebase_template]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def fast_install_config() -> InstallConfig:
    """Quiet install options with no retry delay and no peer analysis."""
    return InstallConfig(
        silent=True,
        retry_attempts=1,
        retry_delay_ms=0,
        timeout_ms=5_000,
        enable_peer_analysis=False,
    )


@pytest.fixture
def offline_analyzer_config() -> AnalyzerConfig:
    """Analyzer options that never touch the network."""
    return AnalyzerConfig(fetch_metadata=False)


# ---------------------------------------------------------------------------
# Mock subprocess
# ---------------------------------------------------------------------------

class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process`` with streamed output.

    Must be constructed inside a running event loop.  With ``hang=True`` the
    streams stay open and ``wait()`` blocks until ``kill()`` is called.
    """

    def __init__(
        self,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        hang: bool = False,
    ) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        if stdout:
            self.stdout.feed_data(stdout.encode("utf-8"))
        if stderr:
            self.stderr.feed_data(stderr.encode("utf-8"))
        if not hang:
            self.stdout.feed_eof()
            self.stderr.feed_eof()
        self.hang = hang
        self.pid = 99999
        self.returncode: int | None = None
        self._final_returncode = returncode
        self._killed = asyncio.Event()
        self.kill = MagicMock(side_effect=self._kill)

    def _kill(self) -> None:
        self._killed.set()
        self.stdout.feed_eof()
        self.stderr.feed_eof()

    async def wait(self) -> int:
        if self.hang:
            await self._killed.wait()
            self.returncode = -9
        else:
            self.returncode = self._final_returncode
        return self.returncode


@pytest.fixture
def fake_process():
    """Factory for :class:`FakeProcess` instances.

    Usage:
        async def test_install(fake_process):
            proc = fake_process(stdout="added 3 packages", returncode=0)
            with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        hang: bool = False,
    ) -> FakeProcess:
        return FakeProcess(stdout=stdout, stderr=stderr, returncode=returncode, hang=hang)

    return factory


# ---------------------------------------------------------------------------
# Mock registry
# ---------------------------------------------------------------------------

def make_packument(name: str, versions: dict[str, dict[str, Any]], latest: str) -> dict[str, Any]:
    """Build an abbreviated packument with the given per-version manifests."""
    return {
        "name": name,
        "dist-tags": {"latest": latest},
        "versions": {v: {"name": name, "version": v, **meta} for v, meta in versions.items()},
    }


@pytest.fixture
def registry_transport():
    """Factory for an ``httpx.MockTransport`` serving packuments.

    Returns ``(transport, requests)`` where ``requests`` collects every
    requested path.  Unknown packages answer 404.
    """
    def factory(packuments: dict[str, dict[str, Any]], fail_with: Exception | None = None):
        requests: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request.url.path)
            if fail_with is not None:
                raise fail_with
            name = request.url.path.lstrip("/").replace("%2F", "/").replace("%2f", "/")
            if name in packuments:
                return httpx.Response(200, json=packuments[name])
            return httpx.Response(404, json={"error": "Not found"})

        return httpx.MockTransport(handler), requests

    return factory


@pytest.fixture
def packument():
    """The :func:`make_packument` builder, for tests that assemble registries."""
    return make_packument
