"""capx-compose dependency resolver.

Merges per-template dependency maps and checks the result for peer
dependency problems before anything is installed.

Key classes:
    DependencyMerger        - Folds template manifests into one map, recording conflicts
    PeerDependencyAnalyzer  - Checks chosen versions against declared peer ranges
    RegistryClient          - Async npm registry metadata client
"""

from .merger import NEXTJS_BASE_TEMPLATE, DependencyMerger
from .models import (
    AnalysisResult,
    Confidence,
    ConflictRecord,
    DependencyMap,
    MergeResult,
    Resolution,
    ResolutionAction,
    Severity,
    TemplateDescriptor,
    VersionRequest,
    load_templates,
)
from .peers import KNOWN_PEER_REQUIREMENTS, PeerDependencyAnalyzer
from .registry import PackumentResponse, PeerLookup, RegistryClient

__all__ = [
    # Merging
    "DependencyMerger",
    "NEXTJS_BASE_TEMPLATE",
    # Models
    "AnalysisResult",
    "Confidence",
    "ConflictRecord",
    "DependencyMap",
    "MergeResult",
    "Resolution",
    "ResolutionAction",
    "Severity",
    "TemplateDescriptor",
    "VersionRequest",
    "load_templates",
    # Peer analysis
    "PeerDependencyAnalyzer",
    "KNOWN_PEER_REQUIREMENTS",
    # Registry
    "RegistryClient",
    "PackumentResponse",
    "PeerLookup",
]
