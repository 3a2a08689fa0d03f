"""capx-compose dependency installer.

Writes the merged manifest and drives the package manager to completion,
restoring the original manifest when installation fails.

Key classes:
    InstallationOrchestrator     - Merge, analyze, write, install, recover
    PackageInstallationExecutor  - Package manager subprocess with retries and timeouts
    InstallationProgressUI       - Phase state machine with a live spinner
    ManifestBackup               - Atomic package.json backup and restore
"""

from .executor import (
    AttemptState,
    InstallationAttempt,
    InstallationResult,
    PackageInstallationExecutor,
    RecoveryStatus,
    classify_phase,
    extract_warnings,
)
from .manifest import ManifestBackup, build_manifest, read_manifest, write_manifest
from .orchestrator import InstallationOrchestrator, install_project_dependencies
from .package_managers import (
    PACKAGE_MANAGERS,
    PackageManagerDescriptor,
    detect_package_manager,
    get_package_manager,
    select_package_manager,
)
from .progress import InstallationProgressUI, Phase

__all__ = [
    # Orchestration
    "InstallationOrchestrator",
    "install_project_dependencies",
    # Executor
    "PackageInstallationExecutor",
    "InstallationAttempt",
    "InstallationResult",
    "AttemptState",
    "RecoveryStatus",
    "classify_phase",
    "extract_warnings",
    # Manifest
    "ManifestBackup",
    "build_manifest",
    "read_manifest",
    "write_manifest",
    # Package managers
    "PACKAGE_MANAGERS",
    "PackageManagerDescriptor",
    "detect_package_manager",
    "get_package_manager",
    "select_package_manager",
    # Progress
    "InstallationProgressUI",
    "Phase",
]
