"""Console rendering for conflicts, peer analysis and installation results.

Pure presentation: these functions read result objects and print them with
Rich.  They never change results and accept empty inputs.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from capx_compose.errors import CapxError, InstallationError, get_recovery_suggestions
from capx_compose.installer.executor import InstallationResult, RecoveryStatus
from capx_compose.resolver.models import AnalysisResult, ConflictRecord, ResolutionAction, Severity
from capx_compose.utils import format_duration

console = Console()

SEVERITY_STYLES: dict[Severity, str] = {
    Severity.INFO: "dim",
    Severity.WARNING: "yellow",
    Severity.HIGH_RISK: "bold red",
}

ACTION_STYLES: dict[ResolutionAction, str] = {
    ResolutionAction.ADD: "green",
    ResolutionAction.UPDATE: "cyan",
    ResolutionAction.WARN: "yellow",
}

DOC_LINKS: tuple[str, ...] = (
    "npm documentation: https://docs.npmjs.com/",
    "yarn documentation: https://yarnpkg.com/getting-started",
    "pnpm documentation: https://pnpm.io/",
)


def _conflict_table(conflicts: Sequence[ConflictRecord], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Package", no_wrap=True)
    table.add_column("Requested")
    table.add_column("Resolved")
    table.add_column("Severity")

    for conflict in conflicts:
        requested = "\n".join(
            f"{r.spec} [dim]({r.source})[/dim]"
            for r in sorted(conflict.requested_versions, key=lambda r: (r.source, r.spec))
        )
        style = SEVERITY_STYLES[conflict.severity]
        table.add_row(
            conflict.package,
            requested,
            conflict.resolved_version,
            f"[{style}]{conflict.severity.value}[/{style}]",
        )
    return table


def display_conflicts(
    conflicts: Sequence[ConflictRecord], output: Console | None = None
) -> None:
    """Print merge conflicts as a table (nothing for an empty sequence)."""
    out = output or console
    if not conflicts:
        return
    out.print(_conflict_table(conflicts, "Version conflicts"))


def display_peer_dependency_feedback(
    analysis: Optional[AnalysisResult], output: Console | None = None
) -> None:
    """Print the outcome of peer dependency analysis."""
    out = output or console
    if analysis is None or analysis.skipped:
        out.print("[dim]Peer dependency analysis skipped.[/dim]")
        return

    if not analysis.conflicts and not analysis.resolutions:
        out.print("[green]No peer dependency issues found.[/green]")
    if analysis.conflicts:
        out.print(_conflict_table(analysis.conflicts, "Peer dependency conflicts"))
    if analysis.resolutions:
        table = Table(title="Peer dependency resolutions", show_header=True, header_style="bold cyan")
        table.add_column("Action")
        table.add_column("Package", no_wrap=True)
        table.add_column("Version")
        table.add_column("Reason")
        for resolution in analysis.resolutions:
            style = ACTION_STYLES[resolution.action]
            version = resolution.version or ""
            if resolution.from_version:
                version = f"{resolution.from_version} -> {version}"
            table.add_row(
                f"[{style}]{resolution.action.value}[/{style}]",
                resolution.package,
                version,
                f"{resolution.reason} [dim]({resolution.confidence.value})[/dim]",
            )
        out.print(table)
    for note in analysis.notes:
        out.print(f"[yellow]  ! {escape(note)}[/yellow]")


def format_error_message(
    error: Union[InstallationResult, CapxError, Exception],
    include_docs: bool = True,
) -> str:
    """Render a failure with numbered corrective suggestions.

    Accepts a failed :class:`InstallationResult`, a :class:`CapxError`
    (whose ``user_message`` is used) or any other exception.
    """
    if isinstance(error, InstallationResult):
        message = error.error or "Dependency installation failed"
        suggestions = list(error.suggestions) or get_recovery_suggestions(error.error_kind)
    elif isinstance(error, InstallationError):
        message = error.user_message
        suggestions = error.suggestions
    elif isinstance(error, CapxError):
        message = error.user_message
        suggestions = []
    else:
        message = str(error)
        suggestions = get_recovery_suggestions(None)

    lines = [f"Installation failed: {message}"]
    if suggestions:
        lines.append("")
        lines.append("Suggested solutions:")
        for index, suggestion in enumerate(suggestions, start=1):
            lines.append(f"   {index}. {suggestion}")
    if include_docs:
        lines.append("")
        lines.append("For more help:")
        for link in DOC_LINKS:
            lines.append(f"   - {link}")
    return "\n".join(lines)


def display_installation_result(
    result: InstallationResult,
    output: Console | None = None,
    verbose: bool = False,
) -> None:
    """Print a result panel, warnings and, on failure, the suggestions."""
    out = output or console

    display_conflicts(
        [c for c in result.conflicts if c.section != "peerDependencies"], output=out
    )
    if result.analysis is not None and not result.analysis.skipped:
        display_peer_dependency_feedback(result.analysis, output=out)

    if result.success:
        style = "green"
        title = "Dependencies Installed"
    else:
        style = "red"
        title = "Installation Failed"

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Package Manager", result.package_manager or "-")
    table.add_row("Attempts", str(len(result.attempts)))
    table.add_row("Duration", format_duration(result.duration_seconds))
    table.add_row("Warnings", str(len(result.warnings)))
    if result.error_kind is not None:
        table.add_row("Error Kind", result.error_kind.value)
    if result.recovery != RecoveryStatus.NOT_NEEDED:
        table.add_row("Manifest Recovery", result.recovery.value)

    out.print(Panel(table, title=title, border_style=style))

    shown = result.warnings if verbose else result.warnings[:10]
    for warning in shown:
        out.print(f"[yellow]  ! {escape(warning)}[/yellow]")
    if len(shown) < len(result.warnings):
        out.print(f"[dim]  ... {len(result.warnings) - len(shown)} more warnings[/dim]")

    if not result.success:
        out.print(f"[red]{escape(format_error_message(result))}[/red]", highlight=False)
