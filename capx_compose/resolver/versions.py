"""npm version specifier helpers built on ``semantic_version``.

Template manifests carry npm-style ranges (``^18.0.0``, ``~5.1``, ``>=1 <2``,
``1.x``).  These helpers coerce a specifier to a representative
:class:`semantic_version.Version`, decide whether two specifiers can be
compared at all, and test versions against ranges with
:class:`semantic_version.NpmSpec`.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

import semantic_version

# Specifiers that point somewhere other than a registry version.
NON_REGISTRY_PREFIXES: tuple[str, ...] = (
    "git+",
    "git:",
    "git@",
    "github:",
    "gitlab:",
    "bitbucket:",
    "http:",
    "https:",
    "file:",
    "link:",
    "workspace:",
    "npm:",
    "portal:",
    "patch:",
)

_VERSION_TOKEN = re.compile(r"(\d+)(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(?:-([0-9A-Za-z.-]+))?")

_PACKAGE_NAME = re.compile(r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*$")


def is_valid_package_name(name: str) -> bool:
    """Return True if *name* is a syntactically valid npm package name."""
    return bool(name) and len(name) <= 214 and bool(_PACKAGE_NAME.match(name))


def is_registry_spec(spec: str) -> bool:
    """Return False for git URLs, tarballs, local paths, aliases and workspace refs."""
    s = spec.strip().lower()
    if any(s.startswith(prefix) for prefix in NON_REGISTRY_PREFIXES):
        return False
    if s.startswith((".", "/", "~/")):
        return False
    # GitHub shorthand: "owner/repo" or "owner/repo#ref"
    if "/" in s and not s.startswith("@"):
        return False
    return True


def coerce_version(spec: str) -> Optional[semantic_version.Version]:
    """Coerce the lower bound of a specifier to a full version.

    For a union (``^17 || ^18``) the highest alternative wins.  Wildcard
    components become zero.  Versions behind ``<`` or ``<=`` are upper bounds
    and are ignored, so an alternative such as ``<2.0.0`` has no lower bound.
    Returns ``None`` when no alternative has one (``latest``, ``*``, git URLs,
    ``<2.0.0``).
    """
    if not spec or not is_registry_spec(spec):
        return None

    best: Optional[semantic_version.Version] = None
    for alternative in spec.split("||"):
        match = _lower_bound_token(alternative)
        if not match:
            continue
        major, minor, patch, prerelease = match.groups()
        core = "{}.{}.{}".format(
            int(major),
            int(minor) if minor and minor.isdigit() else 0,
            int(patch) if patch and patch.isdigit() else 0,
        )
        try:
            candidate = semantic_version.Version(f"{core}-{prerelease}" if prerelease else core)
        except ValueError:
            candidate = semantic_version.Version(core)
        if best is None or candidate > best:
            best = candidate
    return best


def _lower_bound_token(alternative: str) -> Optional[re.Match[str]]:
    for match in _VERSION_TOKEN.finditer(alternative):
        prefix = alternative[: match.start()].rstrip()
        if prefix.endswith(("<", "<=")):
            continue
        return match
    return None


def is_comparable(spec: str) -> bool:
    """True when a specifier can be ranked against other specifiers."""
    return coerce_version(spec) is not None


def major_of(spec: str) -> Optional[int]:
    version = coerce_version(spec)
    return version.major if version is not None else None


def crosses_major(specs: Iterable[str]) -> bool:
    """True if the comparable specifiers disagree on the major version."""
    majors = {major_of(s) for s in specs}
    majors.discard(None)
    return len(majors) > 1


def parse_range(spec: str) -> Optional[semantic_version.NpmSpec]:
    """Parse an npm range, returning ``None`` when it cannot be parsed."""
    if not spec or not is_registry_spec(spec):
        return None
    try:
        return semantic_version.NpmSpec(spec.strip())
    except ValueError:
        return None


def satisfies(spec: str, required_range: str) -> Optional[bool]:
    """Check whether *spec* can pick a version that satisfies *required_range*.

    True when the coerced lower bound of *spec* falls inside the required
    range, or when *spec* is itself a range containing the required range's
    lower bound (``^18.0.0`` against ``^18.2.0``).  Returns ``None`` when
    either side cannot be interpreted.
    """
    version = coerce_version(spec)
    npm_range = parse_range(required_range)
    if version is None or npm_range is None:
        return None
    if npm_range.match(version):
        return True

    own_range = parse_range(spec)
    required_floor = coerce_version(required_range)
    if own_range is not None and required_floor is not None:
        return own_range.match(required_floor)
    return False


def max_satisfying(versions: Iterable[str], spec: str) -> Optional[str]:
    """Return the highest non-prerelease version in *versions* matching *spec*."""
    npm_range = parse_range(spec)
    if npm_range is None:
        return None

    matching: list[semantic_version.Version] = []
    for raw in versions:
        try:
            version = semantic_version.Version(raw)
        except ValueError:
            continue
        if version.prerelease:
            continue
        if npm_range.match(version):
            matching.append(version)

    if not matching:
        return None
    return str(max(matching))
