"""Top-level coordination of a dependency installation.

Sequence for one :meth:`InstallationOrchestrator.install_dependencies` call:

1. parse any existing ``package.json`` (fail fast if it is malformed),
2. back it up,
3. merge template dependencies and run peer analysis,
4. write the merged manifest,
5. pick a package manager,
6. delegate to a fresh :class:`PackageInstallationExecutor`,
7. restore the backup on failure, discard it on success.

Every call owns its backup, merge output and executor, so concurrent calls
on different directories do not interact.  Concurrent calls on the *same*
directory are not supported.
"""

from __future__ import annotations

import dataclasses
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from rich.console import Console

from capx_compose.config import Config, InstallConfig
from capx_compose.errors import BackupRestoreError
from capx_compose.installer.executor import (
    InstallationResult,
    PackageInstallationExecutor,
    RecoveryStatus,
)
from capx_compose.installer.manifest import (
    MANIFEST_NAME,
    ManifestBackup,
    build_manifest,
    read_manifest,
    write_manifest,
)
from capx_compose.installer.package_managers import (
    PackageManagerDescriptor,
    select_package_manager,
)
from capx_compose.resolver.merger import NEXTJS_BASE_TEMPLATE, DependencyMerger
from capx_compose.resolver.models import AnalysisResult, MergeResult, TemplateDescriptor
from capx_compose.resolver.peers import PeerDependencyAnalyzer

console = Console()

ExecutorFactory = Callable[[PackageManagerDescriptor, InstallConfig], PackageInstallationExecutor]


class InstallationOrchestrator:
    """Merges template manifests and installs the result.

    Attributes:
        config: Global configuration; ``config.install`` supplies default
            options for each call.
        merger: Dependency merger.
        analyzer: Peer dependency analyzer.
    """

    def __init__(
        self,
        config: Config | None = None,
        merger: DependencyMerger | None = None,
        analyzer: PeerDependencyAnalyzer | None = None,
        executor_factory: ExecutorFactory | None = None,
    ) -> None:
        self.config = config or Config()
        self.merger = merger or DependencyMerger()
        self.analyzer = analyzer or PeerDependencyAnalyzer(self.config.analyzer)
        self.executor_factory = executor_factory or PackageInstallationExecutor

    async def install_dependencies(
        self,
        target_dir: str | Path,
        templates: Sequence[TemplateDescriptor],
        options: InstallConfig | None = None,
        project_name: Optional[str] = None,
    ) -> InstallationResult:
        """Merge *templates* into ``target_dir/package.json`` and install.

        Raises:
            ManifestParseError: If an existing manifest cannot be parsed.
                Nothing is written and no process is spawned.
        """
        opts = options or self.config.install
        start_time = time.monotonic()
        target = Path(target_dir)
        manifest_path = target / MANIFEST_NAME

        existing = read_manifest(manifest_path)

        target.mkdir(parents=True, exist_ok=True)
        backup = ManifestBackup(target)
        backup.create()

        warnings: list[str] = []
        try:
            merged = self._merge(templates, warnings)
            analysis = await self._analyze(merged, target, opts, warnings)

            dependencies = dict(merged.dependencies)
            dev_dependencies = dict(merged.dev_dependencies)
            if opts.apply_peer_resolutions and not analysis.skipped:
                dependencies, dev_dependencies = analysis.apply_sections(
                    dependencies, dev_dependencies
                )

            manifest = build_manifest(
                existing, dependencies, dev_dependencies, project_name or target.name
            )
            write_manifest(manifest_path, manifest)

            descriptor = select_package_manager(target, opts.package_manager)

            package_count = len(manifest["dependencies"]) + len(manifest["devDependencies"])
            if opts.skip_install_when_empty and package_count == 0:
                if not opts.silent:
                    console.print("[dim]No dependencies to install; skipping package manager.[/dim]")
                result = InstallationResult(success=True, package_manager=descriptor.name.value)
            else:
                if not opts.silent:
                    console.print(
                        f"[cyan]Installing {package_count} "
                        f"packages with {descriptor.name.value}[/cyan]"
                    )
                executor = self.executor_factory(descriptor, opts)
                result = await executor.execute_installation(target, opts)
        except BaseException:
            self._restore_after_crash(backup)
            raise

        recovery = RecoveryStatus.NOT_NEEDED
        if result.success:
            backup.discard()
        else:
            try:
                backup.restore()
                recovery = RecoveryStatus.SUCCEEDED
            except BackupRestoreError as exc:
                recovery = RecoveryStatus.FAILED
                warnings.append(str(exc))

        return dataclasses.replace(
            result,
            warnings=tuple(warnings) + result.warnings,
            recovery=recovery,
            conflicts=tuple(merged.conflicts) + tuple(analysis.conflicts),
            analysis=analysis,
            duration_seconds=time.monotonic() - start_time,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _merge(
        self, templates: Sequence[TemplateDescriptor], warnings: list[str]
    ) -> MergeResult:
        try:
            merged = self.merger.merge_manifest(templates)
        except Exception as exc:  # noqa: BLE001
            warnings.append(f"Dependency merge failed ({exc}); using last-declared versions")
            deps: dict[str, str] = {}
            dev_deps: dict[str, str] = {}
            for template in templates:
                deps.update(template.dependencies)
                dev_deps.update(template.dev_dependencies)
            return MergeResult(
                dependencies=deps,
                dev_dependencies={k: v for k, v in dev_deps.items() if k not in deps},
            )
        warnings.extend(merged.warnings)
        return merged

    async def _analyze(
        self,
        merged: MergeResult,
        target: Path,
        opts: InstallConfig,
        warnings: list[str],
    ) -> AnalysisResult:
        try:
            analysis = await self.analyzer.analyze(
                merged.dependencies,
                target,
                enable_analysis=opts.enable_peer_analysis,
                dev_dependencies=merged.dev_dependencies,
            )
        except Exception as exc:  # noqa: BLE001
            message = f"Peer dependency analysis failed: {exc}"
            warnings.append(message)
            return AnalysisResult(skipped=True, notes=[message])
        warnings.extend(analysis.notes)
        return analysis

    @staticmethod
    def _restore_after_crash(backup: ManifestBackup) -> None:
        try:
            backup.restore()
        except BackupRestoreError as exc:
            console.print(f"[bold red]{exc.user_message}[/bold red]")


async def install_project_dependencies(
    target_dir: str | Path,
    templates: Sequence[TemplateDescriptor],
    options: InstallConfig | None = None,
    config: Config | None = None,
    include_base: bool = False,
) -> InstallationResult:
    """Install the merged dependencies of *templates* into *target_dir*.

    With ``include_base`` the default Next.js dependency set is merged first.
    """
    selected = list(templates)
    if include_base:
        selected.insert(0, NEXTJS_BASE_TEMPLATE)
    orchestrator = InstallationOrchestrator(config)
    return await orchestrator.install_dependencies(target_dir, selected, options)
