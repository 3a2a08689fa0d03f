"""Merge dependency maps contributed by several templates.

Templates are authored independently, so two of them may ask for different
versions of the same package.  The merger folds them into one map in
template order and records every disagreement as a
:class:`~capx_compose.resolver.models.ConflictRecord`.

Policy for a package requested with two or more distinct specifiers:

* all specifiers comparable: keep the one with the highest lower-bound
  version (ties keep the first seen); severity is ``info`` when they share a
  major version and ``warning`` otherwise;
* any specifier not comparable (``latest``, ``*``, git URLs, ``workspace:``,
  ``file:``, ``npm:`` aliases, upper-bound-only ranges such as ``<2.0.0``):
  keep the first-seen specifier and mark the conflict ``high-risk``.

Merging does no I/O and is deterministic for a given template order.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from capx_compose.resolver.models import (
    ConflictRecord,
    DependencyMap,
    MergeResult,
    Severity,
    TemplateDescriptor,
    VersionRequest,
)
from capx_compose.resolver.versions import coerce_version, crosses_major

# Base dependencies of a generated Next.js project.  Callers prepend this to
# the selected templates when scaffolding a full application.
NEXTJS_BASE_TEMPLATE = TemplateDescriptor(
    name="nextjs-base",
    dependencies={
        "next": "^14.0.0",
        "react": "^18.0.0",
        "react-dom": "^18.0.0",
    },
    dev_dependencies={
        "@types/node": "^20.0.0",
        "@types/react": "^18.0.0",
        "@types/react-dom": "^18.0.0",
        "typescript": "^5.0.0",
        "eslint": "^8.0.0",
        "eslint-config-next": "^14.0.0",
    },
)


class DependencyMerger:
    """Folds per-template dependency maps into a single manifest."""

    def merge(
        self, templates: Sequence[TemplateDescriptor]
    ) -> tuple[DependencyMap, list[ConflictRecord]]:
        """Merge the runtime ``dependencies`` of *templates* in order."""
        merged, conflicts, _ = self._merge_section(
            ((t.name, t.dependencies) for t in templates), "dependencies"
        )
        return merged, conflicts

    def merge_manifest(self, templates: Sequence[TemplateDescriptor]) -> MergeResult:
        """Merge both runtime and dev dependencies.

        A package that any template lists as a runtime dependency is removed
        from ``devDependencies``.
        """
        deps, conflicts, warnings = self._merge_section(
            ((t.name, t.dependencies) for t in templates), "dependencies"
        )
        dev_deps, dev_conflicts, dev_warnings = self._merge_section(
            ((t.name, t.dev_dependencies) for t in templates), "devDependencies"
        )

        for package in list(dev_deps):
            if package in deps:
                del dev_deps[package]
        dev_conflicts = [c for c in dev_conflicts if c.package not in deps]

        return MergeResult(
            dependencies=deps,
            dev_dependencies=dev_deps,
            conflicts=conflicts + dev_conflicts,
            warnings=warnings + dev_warnings,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _merge_section(
        self,
        sources: Iterable[tuple[str, DependencyMap]],
        section: str,
    ) -> tuple[DependencyMap, list[ConflictRecord], list[str]]:
        requests: dict[str, list[VersionRequest]] = {}
        for source, dependencies in sources:
            for package, spec in dependencies.items():
                requests.setdefault(package, []).append(
                    VersionRequest(source=source, spec=str(spec).strip())
                )

        merged: DependencyMap = {}
        conflicts: list[ConflictRecord] = []
        warnings: list[str] = []

        for package, package_requests in requests.items():
            distinct = _distinct_specs(package_requests)
            if len(distinct) == 1:
                merged[package] = distinct[0]
                continue

            try:
                chosen, severity, reason = self._choose(distinct)
            except Exception as exc:  # noqa: BLE001
                chosen = distinct[0]
                severity = Severity.HIGH_RISK
                reason = f"could not compare specifiers ({exc}); kept first-seen"
                warnings.append(f"Version comparison failed for {package}: {exc}")

            merged[package] = chosen
            conflicts.append(
                ConflictRecord(
                    package=package,
                    requested_versions=frozenset(package_requests),
                    resolved_version=chosen,
                    severity=severity,
                    section=section,
                    reason=reason,
                )
            )

        return merged, conflicts, warnings

    @staticmethod
    def _choose(specs: list[str]) -> tuple[str, Severity, str]:
        """Pick one specifier from two or more distinct ones (first-seen order)."""
        versions = [coerce_version(s) for s in specs]
        if any(v is None for v in versions):
            return (
                specs[0],
                Severity.HIGH_RISK,
                "non-semver specifier present; kept first-seen",
            )

        best_index = 0
        for index, version in enumerate(versions):
            if version > versions[best_index]:
                best_index = index

        if crosses_major(specs):
            return specs[best_index], Severity.WARNING, "crosses a major version; chose highest"
        return specs[best_index], Severity.INFO, "compatible ranges; chose highest"


def _distinct_specs(requests: list[VersionRequest]) -> list[str]:
    seen: list[str] = []
    for request in requests:
        if request.spec not in seen:
            seen.append(request.spec)
    return seen
