"""Peer dependency analysis for a merged manifest.

For every package in the merged map the analyzer collects the peer ranges
that package declares, from a small built-in table and (optionally) from npm
registry metadata, and checks that the version chosen for each peer
satisfies them.

* peer missing from the manifest: an ``add`` resolution plus a note;
* chosen version outside the peer range: a ``ConflictRecord`` (``warning``,
  or ``high-risk`` when the ranges disagree on the major version) plus an
  ``update`` resolution;
* range or version that cannot be interpreted: a ``warn`` resolution.

Each resolution names the manifest section it belongs to.  A missing peer
goes to ``devDependencies`` only when every package that asked for it is a
dev dependency.

Registry failures are recorded as notes and never abort the analysis.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from capx_compose.config import AnalyzerConfig
from capx_compose.resolver.models import (
    AnalysisResult,
    Confidence,
    ConflictRecord,
    DependencyMap,
    Resolution,
    ResolutionAction,
    Severity,
    VersionRequest,
)
from capx_compose.resolver.registry import PeerLookup, RegistryClient
from capx_compose.resolver.versions import (
    is_comparable,
    is_registry_spec,
    is_valid_package_name,
    major_of,
    parse_range,
    satisfies,
)

# (package, major version) -> required peer ranges.
KNOWN_PEER_REQUIREMENTS: dict[tuple[str, int], dict[str, str]] = {
    ("react-dom", 17): {"react": "^17.0.2"},
    ("react-dom", 18): {"react": "^18.3.1"},
    ("react-dom", 19): {"react": "^19.0.0"},
    ("next", 13): {"react": "^18.2.0", "react-dom": "^18.2.0"},
    ("next", 14): {"react": "^18.2.0", "react-dom": "^18.2.0"},
    ("eslint-config-next", 14): {"eslint": "^7.23.0 || ^8.0.0"},
    ("wagmi", 2): {"viem": "2.x", "@tanstack/react-query": ">=5.0.0", "react": ">=18"},
    ("@rainbow-me/rainbowkit", 2): {"viem": "2.x", "wagmi": "^2.9.0", "react": ">=18"},
    ("@solana/wallet-adapter-react", 0): {"@solana/web3.js": "^1.77.3", "react": "*"},
    ("@solana/wallet-adapter-react-ui", 0): {"@solana/web3.js": "^1.77.3", "react": "*"},
    ("@privy-io/react-auth", 1): {"react": "^18 || ^19"},
    ("@tanstack/react-query", 5): {"react": "^18 || ^19"},
}

MANIFEST_SOURCE = "merged manifest"


class PeerDependencyAnalyzer:
    """Checks a merged dependency map against declared peer ranges.

    Each :meth:`analyze` call keeps its own lookup cache; the analyzer object
    holds configuration only and can be shared between orchestrations.
    """

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        client: RegistryClient | None = None,
        known_peers: dict[tuple[str, int], dict[str, str]] | None = None,
    ) -> None:
        self.config = config or AnalyzerConfig()
        self.client = client or RegistryClient(
            base_url=self.config.registry_url, timeout=self.config.timeout
        )
        self.known_peers = KNOWN_PEER_REQUIREMENTS if known_peers is None else known_peers

    async def analyze(
        self,
        merged: DependencyMap,
        target_dir: str | Path | None = None,
        enable_analysis: bool = True,
        dev_dependencies: DependencyMap | None = None,
    ) -> AnalysisResult:
        """Analyze *merged* (plus optional dev dependencies) for peer problems.

        ``target_dir`` is accepted for callers that pass the project location;
        analysis only reads the in-memory maps.
        """
        if not enable_analysis:
            return AnalysisResult(skipped=True)

        installed: DependencyMap = {**(dev_dependencies or {}), **merged}
        result = AnalysisResult()
        if not installed:
            return result

        peer_map = await self._collect_peer_ranges(installed, result.notes)

        resolved: set[str] = set()
        for dependent, peers in peer_map.items():
            for peer, required in peers.items():
                self._check_peer(dependent, peer, required, installed, merged, result, resolved)

        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _collect_peer_ranges(
        self, installed: DependencyMap, notes: list[str]
    ) -> dict[str, dict[str, str]]:
        peer_map: dict[str, dict[str, str]] = {}
        for package, spec in installed.items():
            major = major_of(spec)
            if major is None:
                continue
            known = self.known_peers.get((package, major))
            if known:
                peer_map[package] = dict(known)

        if not self.config.fetch_metadata:
            return peer_map

        cache: dict[tuple[str, str], PeerLookup] = {}
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def lookup(package: str, spec: str) -> PeerLookup:
            key = (package, spec)
            if key not in cache:
                async with semaphore:
                    cache[key] = await self.client.get_peer_dependencies(package, spec)
            return cache[key]

        candidates = [
            (package, spec)
            for package, spec in installed.items()
            if is_valid_package_name(package) and is_registry_spec(spec)
        ]
        lookups = await asyncio.gather(*(lookup(p, s) for p, s in candidates))

        for item in lookups:
            if not item.success:
                notes.append(
                    f"Could not fetch peer metadata for {item.package}@{item.spec}: {item.error}"
                )
                continue
            if item.peer_dependencies:
                peer_map.setdefault(item.package, {}).update(item.peer_dependencies)

        return peer_map

    def _check_peer(
        self,
        dependent: str,
        peer: str,
        required: str,
        installed: DependencyMap,
        runtime: DependencyMap,
        result: AnalysisResult,
        resolved: set[str],
    ) -> None:
        chosen = installed.get(peer)

        if chosen is None:
            if peer in resolved:
                _add_dependent(result, peer, dependent, dependent in runtime)
                return
            resolved.add(peer)
            version = required if _installable(required) else "latest"
            result.resolutions.append(
                Resolution(
                    package=peer,
                    action=ResolutionAction.ADD,
                    version=version,
                    reason=f"Required as peer dependency by {dependent}",
                    confidence=Confidence.HIGH if version == required else Confidence.LOW,
                    section=_section(dependent in runtime),
                    required_by=[dependent],
                )
            )
            result.notes.append(
                f"{dependent} requires peer {peer}@{required} which is not in the manifest"
            )
            return

        compatible = satisfies(chosen, required)
        if compatible is None:
            if peer not in resolved:
                resolved.add(peer)
                result.resolutions.append(
                    Resolution(
                        package=peer,
                        action=ResolutionAction.WARN,
                        version=chosen,
                        reason=f"Could not verify compatibility with {dependent} ({required}); "
                        "proceeding with current version",
                        confidence=Confidence.LOW,
                        section=_section(peer in runtime),
                        required_by=[dependent],
                    )
                )
            return

        if compatible or chosen == required:
            return

        severity = _mismatch_severity(chosen, required)
        result.conflicts.append(
            ConflictRecord(
                package=peer,
                requested_versions=frozenset(
                    {
                        VersionRequest(source=MANIFEST_SOURCE, spec=chosen),
                        VersionRequest(source=f"{dependent} (peer)", spec=required),
                    }
                ),
                resolved_version=required,
                severity=severity,
                section="peerDependencies",
                reason=f"{dependent} requires {peer}@{required} but {chosen} will be installed",
            )
        )
        if peer not in resolved:
            resolved.add(peer)
            result.resolutions.append(
                Resolution(
                    package=peer,
                    action=ResolutionAction.UPDATE,
                    version=required,
                    from_version=chosen,
                    reason=f"Updated to satisfy peer dependency requirement from {dependent}",
                    confidence=Confidence.MEDIUM,
                    section=_section(peer in runtime),
                    required_by=[dependent],
                )
            )


def _mismatch_severity(chosen: str, required: str) -> Severity:
    chosen_major: Optional[int] = major_of(chosen)
    required_major: Optional[int] = major_of(required)
    if chosen_major is not None and required_major is not None and chosen_major != required_major:
        return Severity.HIGH_RISK
    return Severity.WARNING


def _installable(required: str) -> bool:
    """True if a peer range can be written to the manifest as is."""
    if is_comparable(required):
        return True
    return required.strip().startswith("<") and parse_range(required) is not None


def _section(runtime: bool) -> str:
    return "dependencies" if runtime else "devDependencies"


def _add_dependent(result: AnalysisResult, peer: str, dependent: str, runtime: bool) -> None:
    """Record another dependent of a missing peer; a runtime dependent moves it to runtime."""
    for resolution in result.resolutions:
        if resolution.package != peer or resolution.action != ResolutionAction.ADD:
            continue
        if dependent not in resolution.required_by:
            resolution.required_by.append(dependent)
        if runtime:
            resolution.section = "dependencies"
