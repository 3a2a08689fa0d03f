"""capx-compose installer configuration.

Typed configuration for dependency installation. All settings use Pydantic v2
models so they are validated at construction time and can be serialised to or
from JSON and environment variables without boiler-plate.

Every option the orchestrator recognises is enumerated here with its default;
callers never pass free-form option dictionaries.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field


class PackageManagerName(str, Enum):
    """Package managers the installer knows how to drive."""

    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"


class InstallConfig(BaseModel):
    """Options for one orchestration run.

    ``retry_attempts`` counts retries, not attempts: ``retry_attempts=1``
    spawns the package manager at most twice.
    """

    package_manager: Optional[PackageManagerName] = Field(
        default=None, description="Explicit package manager; sniffed from lockfiles when unset"
    )
    retry_attempts: int = Field(default=1, ge=0, description="Retries after the first attempt")
    retry_delay_ms: int = Field(default=1000, ge=0, description="Pause between attempts in ms")
    timeout_ms: int = Field(default=300_000, gt=0, description="Per-attempt timeout in ms")
    silent: bool = Field(default=False, description="Suppress console output and pass quiet flags")
    verbose: bool = Field(default=False, description="Echo extra diagnostic lines")
    additional_args: list[str] = Field(
        default_factory=list, description="Extra arguments appended to the install command"
    )
    enable_peer_analysis: bool = Field(default=True, description="Run the peer dependency analyzer")
    production: bool = Field(default=False, description="Skip devDependencies during install")
    legacy_peer_deps_fallback: bool = Field(
        default=True, description="Retry npm with --legacy-peer-deps after ERESOLVE failures"
    )
    apply_peer_resolutions: bool = Field(
        default=True, description="Write analyzer resolutions into the manifest"
    )
    skip_install_when_empty: bool = Field(
        default=True, description="Do not spawn the package manager for an empty dependency set"
    )

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000.0

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class AnalyzerConfig(BaseModel):
    """Configuration for peer dependency analysis and registry lookups."""

    registry_url: str = Field(default="https://registry.npmjs.org")
    timeout: int = Field(default=30, ge=1, description="Per-request timeout in seconds")
    max_concurrency: int = Field(default=5, ge=1, description="Concurrent registry lookups")
    fetch_metadata: bool = Field(
        default=True, description="Query the registry in addition to the built-in peer table"
    )


class Config(BaseModel):
    """Global capx-compose installer configuration.

    Instances are typically created once by the CLI entry point and then
    passed to :class:`~capx_compose.installer.orchestrator.InstallationOrchestrator`.
    """

    install: InstallConfig = Field(default_factory=InstallConfig)
    analyzer: AnalyzerConfig = Field(default_factory=AnalyzerConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file. Parent directories are created.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            CAPX_PACKAGE_MANAGER, CAPX_RETRY_ATTEMPTS, CAPX_RETRY_DELAY_MS,
            CAPX_TIMEOUT_MS, CAPX_SILENT, CAPX_VERBOSE, CAPX_PEER_ANALYSIS,
            CAPX_PRODUCTION, CAPX_REGISTRY_URL, CAPX_REGISTRY_TIMEOUT,
            CAPX_REGISTRY_CONCURRENCY, CAPX_FETCH_METADATA.
        """
        install_kwargs: dict[str, Any] = {}
        if os.environ.get("CAPX_PACKAGE_MANAGER"):
            install_kwargs["package_manager"] = os.environ["CAPX_PACKAGE_MANAGER"]
        if os.environ.get("CAPX_RETRY_ATTEMPTS"):
            install_kwargs["retry_attempts"] = int(os.environ["CAPX_RETRY_ATTEMPTS"])
        if os.environ.get("CAPX_RETRY_DELAY_MS"):
            install_kwargs["retry_delay_ms"] = int(os.environ["CAPX_RETRY_DELAY_MS"])
        if os.environ.get("CAPX_TIMEOUT_MS"):
            install_kwargs["timeout_ms"] = int(os.environ["CAPX_TIMEOUT_MS"])
        for var, key in (
            ("CAPX_SILENT", "silent"),
            ("CAPX_VERBOSE", "verbose"),
            ("CAPX_PEER_ANALYSIS", "enable_peer_analysis"),
            ("CAPX_PRODUCTION", "production"),
        ):
            if os.environ.get(var):
                install_kwargs[key] = _env_flag(os.environ[var])

        analyzer_kwargs: dict[str, Any] = {}
        if os.environ.get("CAPX_REGISTRY_URL"):
            analyzer_kwargs["registry_url"] = os.environ["CAPX_REGISTRY_URL"]
        if os.environ.get("CAPX_REGISTRY_TIMEOUT"):
            analyzer_kwargs["timeout"] = int(os.environ["CAPX_REGISTRY_TIMEOUT"])
        if os.environ.get("CAPX_REGISTRY_CONCURRENCY"):
            analyzer_kwargs["max_concurrency"] = int(os.environ["CAPX_REGISTRY_CONCURRENCY"])
        if os.environ.get("CAPX_FETCH_METADATA"):
            analyzer_kwargs["fetch_metadata"] = _env_flag(os.environ["CAPX_FETCH_METADATA"])

        return cls(
            install=InstallConfig(**install_kwargs),
            analyzer=AnalyzerConfig(**analyzer_kwargs),
        )


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
