"""Pydantic v2 models for dependency merging and peer analysis.

Defines template descriptors, conflict records, analyzer resolutions and the
aggregate results the merger and analyzer hand to the orchestrator.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DependencyMap = dict[str, str]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    """How risky an automatically chosen version is."""
    INFO = "info"
    WARNING = "warning"
    HIGH_RISK = "high-risk"


class ResolutionAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    WARN = "warn"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

class TemplateDescriptor(BaseModel):
    """A template's contribution to the generated project's manifest.

    ``files_mapping`` is carried through for the file scaffolder and is
    ignored by dependency resolution.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, description="Template name, e.g. 'evm'")
    dependencies: DependencyMap = Field(default_factory=dict)
    dev_dependencies: DependencyMap = Field(default_factory=dict, alias="devDependencies")
    files_mapping: dict[str, str] = Field(default_factory=dict, alias="filesMapping")


def load_templates(path: str | Path) -> list[TemplateDescriptor]:
    """Load template descriptors from a JSON or YAML file.

    The file holds either a list of descriptors or a mapping with a
    ``templates`` key.  YAML is chosen by the ``.yaml``/``.yml`` suffix.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file cannot be parsed or a descriptor is invalid.
    """
    source = Path(path)
    text = source.read_text(encoding="utf-8")
    try:
        if source.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ValueError(f"Cannot parse template file {source}: {exc}") from exc

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("templates", [])
    if not isinstance(data, list):
        raise ValueError(f"Template file {source} must contain a list of templates")

    try:
        return [TemplateDescriptor.model_validate(item) for item in data]
    except ValidationError as exc:
        raise ValueError(f"Invalid template in {source}: {exc}") from exc


# ---------------------------------------------------------------------------
# Conflicts & resolutions
# ---------------------------------------------------------------------------

class VersionRequest(BaseModel):
    """One ``(source, specifier)`` pair requesting a package."""

    model_config = ConfigDict(frozen=True)

    source: str
    spec: str


class ConflictRecord(BaseModel):
    """Two or more distinct specifiers targeting the same package."""

    model_config = ConfigDict(frozen=True)

    package: str
    requested_versions: frozenset[VersionRequest]
    resolved_version: str
    severity: Severity
    section: str = Field(default="dependencies")
    reason: str = Field(default="")

    @field_validator("requested_versions")
    @classmethod
    def _at_least_two(cls, value: frozenset[VersionRequest]) -> frozenset[VersionRequest]:
        if len(value) < 2:
            raise ValueError("a conflict needs at least two requested versions")
        return value

    @property
    def specs(self) -> list[str]:
        """Distinct requested specifiers, sorted for stable display."""
        return sorted({r.spec for r in self.requested_versions})


class Resolution(BaseModel):
    """A change the peer analyzer proposes for the merged manifest."""

    package: str
    action: ResolutionAction
    version: Optional[str] = None
    from_version: Optional[str] = None
    reason: str = ""
    confidence: Confidence = Confidence.MEDIUM
    section: str = Field(default="dependencies")
    required_by: list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Outcome of peer dependency analysis."""

    conflicts: list[ConflictRecord] = Field(default_factory=list)
    resolutions: list[Resolution] = Field(default_factory=list)
    skipped: bool = False
    notes: list[str] = Field(default_factory=list)

    def apply(self, dependencies: DependencyMap) -> DependencyMap:
        """Return a copy of *dependencies* with add/update resolutions applied."""
        updated = dict(dependencies)
        for resolution in self.resolutions:
            if resolution.action == ResolutionAction.WARN or not resolution.version:
                continue
            updated[resolution.package] = resolution.version
        return updated

    def apply_sections(
        self, dependencies: DependencyMap, dev_dependencies: DependencyMap
    ) -> tuple[DependencyMap, DependencyMap]:
        """Apply add/update resolutions, keeping each package in its section.

        A package already present is updated where it is.  A new package goes
        to the section named by its resolution.
        """
        runtime = dict(dependencies)
        dev = dict(dev_dependencies)
        for resolution in self.resolutions:
            if resolution.action == ResolutionAction.WARN or not resolution.version:
                continue
            if resolution.package in runtime:
                runtime[resolution.package] = resolution.version
            elif resolution.package in dev:
                dev[resolution.package] = resolution.version
            elif resolution.section == "devDependencies":
                dev[resolution.package] = resolution.version
            else:
                runtime[resolution.package] = resolution.version
        return runtime, dev


class MergeResult(BaseModel):
    """Merged runtime and dev dependency maps with every conflict found."""

    dependencies: DependencyMap = Field(default_factory=dict)
    dev_dependencies: DependencyMap = Field(default_factory=dict)
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.dependencies and not self.dev_dependencies
