"""Package manager process management for dependency installation.

Spawns ``npm``/``yarn``/``pnpm install`` in the target project, streams its
output line by line, retries failed or timed-out attempts, and reports a
structured :class:`InstallationResult`.  Failures are returned, not raised;
only the caller decides whether to call
:meth:`InstallationResult.raise_for_status`.

Each attempt moves through ``SPAWNED -> STREAMING`` and ends in one of
``CLOSED_OK``, ``CLOSED_FAIL`` or ``TIMED_OUT``.  stdout and stderr are read
by two reader tasks that push line events into one bounded queue; a single
consumer drains it in arrival order, feeding the phase classifier and the
warning collector.
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape

from capx_compose.config import InstallConfig, PackageManagerName
from capx_compose.errors import (
    ErrorKind,
    classify_error,
    describe_error,
    error_class_for,
    get_recovery_suggestions,
)
from capx_compose.installer.package_managers import PackageManagerDescriptor
from capx_compose.installer.progress import InstallationProgressUI, Phase
from capx_compose.resolver.models import AnalysisResult, ConflictRecord
from capx_compose.utils import format_duration

console = Console()

LINE_QUEUE_SIZE = 256
STREAM_LIMIT = 1024 * 1024
KILL_GRACE_SECONDS = 10.0

LEGACY_PEER_DEPS_FLAG = "--legacy-peer-deps"


class AttemptState(str, Enum):
    SPAWNED = "spawned"
    STREAMING = "streaming"
    CLOSED_OK = "closed_ok"
    CLOSED_FAIL = "closed_fail"
    TIMED_OUT = "timed_out"


class RecoveryStatus(str, Enum):
    """What happened to the manifest after the install finished."""

    NOT_NEEDED = "not_needed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstallationAttempt:
    """Record of a single package manager spawn."""

    attempt_number: int
    started_at: str
    args: tuple[str, ...] = ()
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    classified_error: Optional[ErrorKind] = None
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def state(self) -> AttemptState:
        if self.timed_out:
            return AttemptState.TIMED_OUT
        if self.exit_code == 0:
            return AttemptState.CLOSED_OK
        return AttemptState.CLOSED_FAIL

    @property
    def succeeded(self) -> bool:
        return self.state == AttemptState.CLOSED_OK


@dataclass(frozen=True)
class InstallationResult:
    """Final outcome of an installation run."""

    success: bool
    attempts: tuple[InstallationAttempt, ...] = ()
    warnings: tuple[str, ...] = ()
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    suggestions: tuple[str, ...] = ()
    package_manager: Optional[str] = None
    recovery: RecoveryStatus = RecoveryStatus.NOT_NEEDED
    conflicts: tuple[ConflictRecord, ...] = ()
    analysis: Optional[AnalysisResult] = None
    duration_seconds: float = 0.0

    def summary(self) -> str:
        """Return a human-readable summary of the result."""
        status = "SUCCESS" if self.success else "FAILED"
        lines = [f"Status: {status}"]
        if self.package_manager:
            lines.append(f"Package manager: {self.package_manager}")
        lines.append(f"Attempts: {len(self.attempts)}")
        lines.append(f"Duration: {format_duration(self.duration_seconds)}")
        if self.conflicts:
            lines.append(f"Version conflicts: {len(self.conflicts)}")
        if self.warnings:
            lines.append(f"Warnings: {len(self.warnings)}")
            for warning in self.warnings[:5]:
                lines.append(f"  - {warning[:200]}")
        if self.error:
            lines.append(f"Error: {self.error}")
            for suggestion in self.suggestions:
                lines.append(f"  * {suggestion}")
        if self.recovery != RecoveryStatus.NOT_NEEDED:
            lines.append(f"Manifest recovery: {self.recovery.value}")
        return "\n".join(lines)

    def raise_for_status(self) -> None:
        """Raise the :class:`~capx_compose.errors.InstallationError` matching a failure."""
        if self.success:
            return
        exc_class = error_class_for(self.error_kind)
        raise exc_class(
            self.error or "Dependency installation failed",
            suggestions=list(self.suggestions),
            result=self,
        )


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------

_WARNING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"deprecated", re.IGNORECASE),
    re.compile(r"peer\s*dep|peerdependenc|unmet peer|incorrect peer", re.IGNORECASE),
    re.compile(r"optional\s+dep|skipping optional|optional dependency", re.IGNORECASE),
    re.compile(r"checkpermissions|permission", re.IGNORECASE),
    re.compile(r"\bWARN\b|^warning\b", re.IGNORECASE),
)

# Lifecycle script and native build output only.
_BUILD_LINE = re.compile(
    r"^>\s+\S+@\S+\s+(?:pre|post)?install\b"
    r"|^gyp\b|node-gyp"
    r"|^(?:building|compiling|linking)\b"
    r"|\bpostinstall\b",
    re.IGNORECASE,
)

_PHASE_KEYWORDS: tuple[tuple[Phase, tuple[str, ...]], ...] = (
    (Phase.DOWNLOADING, ("download", "extract", "tarball")),
    (Phase.RESOLVING, ("resolv", "fetch", "idealtree")),
)

_PEER_CONFLICT_MARKERS: tuple[str, ...] = (
    "eresolve",
    "conflicting peer dependency",
    "could not resolve dependency",
)


def is_warning_line(line: str) -> bool:
    """True if an output line is worth surfacing as a warning."""
    stripped = line.strip()
    if not stripped:
        return False
    return any(pattern.search(stripped) for pattern in _WARNING_PATTERNS)


def extract_warnings(stdout: str, stderr: str) -> list[str]:
    """Collect warning lines from captured output.

    Lines are returned verbatim in order (stdout first).  Only byte-identical
    lines collapse to their first occurrence; lines differing in whitespace
    are kept apart.
    """
    warnings: list[str] = []
    seen: set[str] = set()
    for text in (stdout, stderr):
        for line in text.splitlines():
            if line in seen or not is_warning_line(line):
                continue
            seen.add(line)
            warnings.append(line)
    return warnings


def classify_phase(line: str) -> Optional[Phase]:
    """Map an output line to the installation phase it indicates, if any.

    BUILDING needs a lifecycle script or native build line.  Warning lines
    never signal it.
    """
    stripped = line.strip()
    if not is_warning_line(stripped) and _BUILD_LINE.search(stripped):
        return Phase.BUILDING
    lowered = stripped.lower()
    for phase, keywords in _PHASE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return phase
    return None


def is_peer_conflict(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _PEER_CONFLICT_MARKERS)


def _last_error_line(text: str) -> str:
    for line in reversed(text.splitlines()):
        stripped = line.strip()
        if stripped:
            return stripped[:300]
    return ""


@dataclass
class _StreamState:
    """Mutable per-execution collectors shared by all attempts."""

    warnings: list[str] = field(default_factory=list)
    seen_warnings: set[str] = field(default_factory=set)

    def add_warning(self, line: str) -> None:
        if line not in self.seen_warnings:
            self.seen_warnings.add(line)
            self.warnings.append(line)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class PackageInstallationExecutor:
    """Runs one package manager install to completion, with retries.

    An executor is bound to a single package manager and holds no state
    between :meth:`execute_installation` calls.
    """

    def __init__(
        self,
        package_manager: PackageManagerDescriptor,
        config: InstallConfig | None = None,
        progress: InstallationProgressUI | None = None,
    ) -> None:
        self.package_manager = package_manager
        self.config = config or InstallConfig()
        self._progress = progress

    async def execute_installation(
        self,
        target_dir: str | Path,
        options: InstallConfig | None = None,
    ) -> InstallationResult:
        """Install dependencies in *target_dir*.

        Makes at most ``retry_attempts + 1`` spawns, pausing
        ``retry_delay_ms`` between them.

        Returns:
            InstallationResult describing every attempt.
        """
        opts = options or self.config
        start_time = time.monotonic()
        progress = self._progress or InstallationProgressUI(
            silent=opts.silent,
            label=self.package_manager.name.value,
            color=self.package_manager.spinner_color,
        )
        state = _StreamState()
        attempts: list[InstallationAttempt] = []
        legacy_peer_deps = False
        max_attempts = opts.retry_attempts + 1

        progress.start()
        try:
            for attempt_number in range(1, max_attempts + 1):
                args = self.package_manager.install_args(
                    opts.additional_args, silent=opts.silent, production=opts.production
                )
                if legacy_peer_deps and LEGACY_PEER_DEPS_FLAG not in args:
                    args.append(LEGACY_PEER_DEPS_FLAG)

                if attempt_number > 1:
                    progress.update_message(f"retry {attempt_number - 1}/{opts.retry_attempts}")

                attempt = await self._run_attempt(
                    target_dir, args, attempt_number, opts, progress, state
                )
                attempts.append(attempt)

                if attempt.succeeded:
                    break

                if not opts.silent:
                    console.print(
                        f"[yellow]{self.package_manager.name.value} attempt "
                        f"{attempt_number}/{max_attempts} failed "
                        f"({attempt.classified_error.value if attempt.classified_error else 'error'})[/yellow]"
                    )

                if (
                    not legacy_peer_deps
                    and opts.legacy_peer_deps_fallback
                    and self.package_manager.name == PackageManagerName.NPM
                    and is_peer_conflict(attempt.stderr + "\n" + attempt.stdout)
                ):
                    legacy_peer_deps = True
                    state.add_warning(
                        "Peer dependency conflict reported by npm; "
                        f"retrying with {LEGACY_PEER_DEPS_FLAG}"
                    )

                if attempt_number <= opts.retry_attempts:
                    await asyncio.sleep(opts.retry_delay_seconds)
        finally:
            succeeded = bool(attempts) and attempts[-1].succeeded
            progress.update_phase(Phase.DONE if succeeded else Phase.FAILED)
            progress.stop()

        duration = time.monotonic() - start_time
        final = attempts[-1]
        if final.succeeded:
            return InstallationResult(
                success=True,
                attempts=tuple(attempts),
                warnings=tuple(state.warnings),
                package_manager=self.package_manager.name.value,
                duration_seconds=duration,
            )

        kind = final.classified_error or ErrorKind.UNKNOWN
        error = describe_error(kind, self.package_manager.name.value, len(attempts))
        detail = _last_error_line(final.stderr)
        if detail:
            error = f"{error}: {detail}"
        return InstallationResult(
            success=False,
            attempts=tuple(attempts),
            warnings=tuple(state.warnings),
            error=error,
            error_kind=kind,
            suggestions=tuple(get_recovery_suggestions(kind)),
            package_manager=self.package_manager.name.value,
            duration_seconds=duration,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_attempt(
        self,
        target_dir: str | Path,
        args: list[str],
        attempt_number: int,
        opts: InstallConfig,
        progress: InstallationProgressUI,
        state: _StreamState,
    ) -> InstallationAttempt:
        started_at = datetime.now(timezone.utc).isoformat()
        start_time = time.monotonic()
        cmd = [self.package_manager.resolve_executable(), *args]

        if opts.verbose and not opts.silent:
            console.print(f"[dim]$ {' '.join(cmd)}  (cwd: {target_dir})[/dim]")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(target_dir),
                env={**os.environ, "NO_COLOR": "1", "FORCE_COLOR": "0"},
                limit=STREAM_LIMIT,
            )
        except (FileNotFoundError, PermissionError) as exc:
            return InstallationAttempt(
                attempt_number=attempt_number,
                started_at=started_at,
                args=tuple(args),
                stderr=f"Failed to start {self.package_manager.executable}: {exc}",
                classified_error=ErrorKind.PROCESS,
                duration_seconds=time.monotonic() - start_time,
            )

        queue: asyncio.Queue[Optional[tuple[str, str]]] = asyncio.Queue(maxsize=LINE_QUEUE_SIZE)
        readers = [
            asyncio.create_task(_pump(process.stdout, "stdout", queue)),
            asyncio.create_task(_pump(process.stderr, "stderr", queue)),
        ]
        captured: dict[str, list[str]] = {"stdout": [], "stderr": []}

        async def stream() -> int:
            open_streams = len(readers)
            while open_streams:
                event = await queue.get()
                if event is None:
                    open_streams -= 1
                    continue
                source, line = event
                captured[source].append(line)
                self._handle_line(line, opts, progress, state)
            return await process.wait()

        timed_out = False
        exit_code: Optional[int]
        try:
            exit_code = await asyncio.wait_for(stream(), timeout=opts.timeout_seconds)
        except asyncio.TimeoutError:
            timed_out = True
            exit_code = None
            if not opts.silent:
                console.print(
                    f"[red]{self.package_manager.name.value} timed out after "
                    f"{format_duration(opts.timeout_seconds)}. Killing...[/red]"
                )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
            except asyncio.TimeoutError:
                pass
        finally:
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)

        stdout = "\n".join(captured["stdout"])
        stderr = "\n".join(captured["stderr"])
        return InstallationAttempt(
            attempt_number=attempt_number,
            started_at=started_at,
            args=tuple(args),
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            classified_error=classify_error(exit_code, stderr, timed_out=timed_out),
            timed_out=timed_out,
            duration_seconds=time.monotonic() - start_time,
        )

    def _handle_line(
        self,
        line: str,
        opts: InstallConfig,
        progress: InstallationProgressUI,
        state: _StreamState,
    ) -> None:
        stripped = line.strip()
        if not stripped:
            return
        phase = classify_phase(stripped)
        if phase is not None:
            progress.update_phase(phase)
        if is_warning_line(line):
            state.add_warning(line)
        if opts.verbose and not opts.silent:
            console.print(f"  [dim]{escape(stripped)}[/dim]")


async def _pump(
    stream: asyncio.StreamReader,
    source: str,
    queue: asyncio.Queue,
) -> None:
    """Push decoded lines from *stream* into *queue*, then a ``None`` sentinel."""
    try:
        while True:
            raw = await stream.readline()
            if not raw:
                break
            await queue.put((source, raw.decode("utf-8", errors="replace").rstrip("\r\n")))
    except (ValueError, OSError) as exc:
        await queue.put(("stderr", f"Failed to read {source}: {exc}"))
    await queue.put(None)
