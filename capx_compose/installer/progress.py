"""Installation phase tracking with a Rich live spinner.

The progress UI only observes: the executor pushes phases into it, and it
never raises into or blocks the executor.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Optional

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.spinner import Spinner

from capx_compose.utils import format_duration

console = Console()


class Phase(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    DOWNLOADING = "downloading"
    BUILDING = "building"
    DONE = "done"
    FAILED = "failed"


_ORDER: dict[Phase, int] = {
    Phase.IDLE: 0,
    Phase.RESOLVING: 1,
    Phase.DOWNLOADING: 2,
    Phase.BUILDING: 3,
    Phase.DONE: 4,
}

TERMINAL_PHASES = frozenset({Phase.DONE, Phase.FAILED})

PHASE_LABELS: dict[Phase, str] = {
    Phase.IDLE: "Preparing installation",
    Phase.RESOLVING: "Resolving dependencies",
    Phase.DOWNLOADING: "Downloading packages",
    Phase.BUILDING: "Building native modules",
    Phase.DONE: "Dependencies installed",
    Phase.FAILED: "Installation failed",
}


class InstallationProgressUI:
    """Forward-only phase state machine.

    ``IDLE -> RESOLVING -> DOWNLOADING -> BUILDING -> DONE``; ``FAILED`` can
    be entered from any non-terminal phase.  Skipping ahead is allowed,
    moving backwards is ignored, and re-entering the current phase is a
    no-op.
    """

    def __init__(
        self,
        silent: bool = False,
        label: str = "npm",
        color: str = "cyan",
        output: Console | None = None,
    ) -> None:
        self.silent = silent
        self.label = label
        self.color = color
        self.console = output or console
        self.phase = Phase.IDLE
        self.message: str = ""
        self.history: list[tuple[Phase, float]] = [(Phase.IDLE, 0.0)]
        self._started_at = time.monotonic()
        self._spinner: Optional[Spinner] = None
        self._live: Optional[Live] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._started_at = time.monotonic()
        if self.silent or self._live is not None:
            return
        self._spinner = Spinner("dots", text=self._render_text(), style=self.color)
        self._live = Live(
            self._spinner, console=self.console, refresh_per_second=8, transient=True
        )
        self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None
        if not self.silent and self.phase in TERMINAL_PHASES:
            style = "green" if self.phase == Phase.DONE else "red"
            self.console.print(
                f"[{style}]{PHASE_LABELS[self.phase]}[/{style}] [dim]({format_duration(self.elapsed)})[/dim]"
            )

    def __enter__(self) -> "InstallationProgressUI":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started_at

    def update_phase(self, phase: Phase) -> bool:
        """Move to *phase* if it is a forward transition.

        Returns:
            True if the phase changed.
        """
        if self.phase in TERMINAL_PHASES or phase == self.phase:
            return False
        if phase != Phase.FAILED and _ORDER[phase] < _ORDER[self.phase]:
            return False

        self.phase = phase
        self.history.append((phase, self.elapsed))
        self._refresh()
        return True

    def update_message(self, message: str) -> None:
        """Show a detail line next to the current phase."""
        if self.phase in TERMINAL_PHASES:
            return
        self.message = message.strip()[:80]
        self._refresh()

    def _render_text(self) -> str:
        text = escape(f"[{self.label}] {PHASE_LABELS[self.phase]}... ({format_duration(self.elapsed)})")
        if self.message:
            text += f" [dim]{escape(self.message)}[/dim]"
        return text

    def _refresh(self) -> None:
        if self._spinner is not None:
            self._spinner.update(text=self._render_text())
