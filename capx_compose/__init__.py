"""capx-compose: merge template dependencies and install them.

Usage::

    from capx_compose import InstallationOrchestrator, TemplateDescriptor

    orchestrator = InstallationOrchestrator()
    result = await orchestrator.install_dependencies("./my-app", templates)
    print(result.summary())
"""

from capx_compose.config import AnalyzerConfig, Config, InstallConfig, PackageManagerName
from capx_compose.errors import CapxError, ErrorKind
from capx_compose.installer import (
    InstallationOrchestrator,
    InstallationResult,
    install_project_dependencies,
)
from capx_compose.resolver import DependencyMerger, PeerDependencyAnalyzer, TemplateDescriptor

__version__ = "0.1.0"

__all__ = [
    "AnalyzerConfig",
    "CapxError",
    "Config",
    "DependencyMerger",
    "ErrorKind",
    "InstallConfig",
    "InstallationOrchestrator",
    "InstallationResult",
    "PackageManagerName",
    "PeerDependencyAnalyzer",
    "TemplateDescriptor",
    "install_project_dependencies",
]
