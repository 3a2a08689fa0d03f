"""Error taxonomy for dependency installation.

Setup problems (an unreadable manifest, a failed restore) are raised as
:class:`CapxError` subclasses.  Package-manager failures are *returned* as
failed :class:`~capx_compose.installer.executor.InstallationResult` values
carrying an :class:`ErrorKind`; ``InstallationResult.raise_for_status()``
converts them into the matching exception when a caller prefers raising.
"""

from __future__ import annotations

from enum import Enum, IntEnum


class ExitCode(IntEnum):
    """Process exit codes used by the ``capx-install`` command."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_ARGUMENTS = 2
    FILE_SYSTEM_ERROR = 3
    NETWORK_ERROR = 4
    PERMISSION_ERROR = 5
    VALIDATION_ERROR = 6
    DEPENDENCY_ERROR = 7


class ErrorKind(str, Enum):
    """Classification of a failed installation attempt."""

    NETWORK = "network"
    PERMISSION = "permission"
    UNKNOWN = "unknown"
    TIMEOUT = "timeout"
    PROCESS = "process"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CapxError(Exception):
    """Base class for all capx-compose errors."""

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(self, message: str, user_message: str | None = None):
        self.user_message = user_message or message
        super().__init__(message)


class ManifestParseError(CapxError):
    """Raised when an existing package.json cannot be read or parsed."""

    exit_code = ExitCode.VALIDATION_ERROR

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Cannot parse manifest {path}: {reason}",
            user_message=f"The existing package.json is not valid JSON ({reason}). "
            "Fix or remove it and run the installation again.",
        )


class InstallationError(CapxError):
    """Raised from a failed installation result."""

    exit_code = ExitCode.DEPENDENCY_ERROR
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, suggestions: list[str] | None = None, result=None):
        self.suggestions = list(suggestions or get_recovery_suggestions(self.kind))
        self.result = result
        super().__init__(message)


class InstallationNetworkError(InstallationError):
    exit_code = ExitCode.NETWORK_ERROR
    kind = ErrorKind.NETWORK


class InstallationPermissionError(InstallationError):
    exit_code = ExitCode.PERMISSION_ERROR
    kind = ErrorKind.PERMISSION


class InstallationUnknownError(InstallationError):
    kind = ErrorKind.UNKNOWN


class InstallationTimeoutError(InstallationError, TimeoutError):
    kind = ErrorKind.TIMEOUT


class InstallationProcessError(InstallationError):
    kind = ErrorKind.PROCESS


class BackupRestoreError(CapxError):
    """Raised when the manifest backup cannot be restored after a failure."""

    exit_code = ExitCode.FILE_SYSTEM_ERROR


class RegistryError(CapxError):
    """Raised when package metadata cannot be fetched from the registry."""

    exit_code = ExitCode.NETWORK_ERROR


_ERROR_CLASSES: dict[ErrorKind, type[InstallationError]] = {
    ErrorKind.NETWORK: InstallationNetworkError,
    ErrorKind.PERMISSION: InstallationPermissionError,
    ErrorKind.UNKNOWN: InstallationUnknownError,
    ErrorKind.TIMEOUT: InstallationTimeoutError,
    ErrorKind.PROCESS: InstallationProcessError,
}


def error_class_for(kind: ErrorKind | None) -> type[InstallationError]:
    """Return the exception class matching an error kind."""
    if kind is None:
        return InstallationUnknownError
    return _ERROR_CLASSES[kind]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

NETWORK_MARKERS: tuple[str, ...] = (
    "enotfound",
    "econnrefused",
    "econnreset",
    "etimedout",
    "eai_again",
    "getaddrinfo",
    "network",
    "socket hang up",
    "unable to resolve host",
)

PERMISSION_MARKERS: tuple[str, ...] = (
    "eacces",
    "eperm",
    "permission denied",
    "access denied",
    "operation not permitted",
)


def classify_error(
    exit_code: int | None,
    stderr: str,
    *,
    timed_out: bool = False,
) -> ErrorKind | None:
    """Classify a finished attempt from its exit code and stderr.

    Returns ``None`` for a clean exit.  Network markers are checked before
    permission markers, so an ``EACCES`` raised while fetching a tarball over
    a broken connection is still reported as a network problem.
    """
    if timed_out:
        return ErrorKind.TIMEOUT
    if exit_code == 0:
        return None

    lowered = stderr.lower()
    if any(marker in lowered for marker in NETWORK_MARKERS):
        return ErrorKind.NETWORK
    if any(marker in lowered for marker in PERMISSION_MARKERS):
        return ErrorKind.PERMISSION
    return ErrorKind.UNKNOWN


# ---------------------------------------------------------------------------
# Recovery suggestions
# ---------------------------------------------------------------------------

RECOVERY_SUGGESTIONS: dict[ErrorKind, list[str]] = {
    ErrorKind.NETWORK: [
        "Check your network connectivity",
        "Try using a different network or VPN",
        "Configure the package manager to use a different registry",
        "Check if a firewall or proxy is blocking the connection",
    ],
    ErrorKind.PERMISSION: [
        "Verify write permissions for the project directory",
        "Check ownership of the package manager cache directory",
        "Avoid running the package manager as root; use a user-owned prefix",
    ],
    ErrorKind.TIMEOUT: [
        "Try again with a longer timeout",
        "Check your internet connection speed",
        "Clear the package manager cache and try again",
    ],
    ErrorKind.PROCESS: [
        "Ensure the package manager is installed",
        "Check that the package manager command is on your PATH",
        "Try a different package manager",
    ],
    ErrorKind.UNKNOWN: [
        "Remove node_modules and the lockfile, then reinstall",
        "Clear the package manager cache",
        "Try a different package manager",
    ],
}


def get_recovery_suggestions(kind: ErrorKind | None) -> list[str]:
    """Return corrective suggestions for an error kind (a fresh list)."""
    return list(RECOVERY_SUGGESTIONS.get(kind or ErrorKind.UNKNOWN, RECOVERY_SUGGESTIONS[ErrorKind.UNKNOWN]))


def describe_error(kind: ErrorKind, package_manager: str, attempts: int) -> str:
    """Build the primary one-line error message for a failed installation."""
    noun = "attempt" if attempts == 1 else "attempts"
    messages = {
        ErrorKind.NETWORK: "Network error while installing dependencies",
        ErrorKind.PERMISSION: "Permission error while installing dependencies",
        ErrorKind.TIMEOUT: "Dependency installation timed out",
        ErrorKind.PROCESS: f"Could not start {package_manager}",
        ErrorKind.UNKNOWN: f"{package_manager} install failed",
    }
    return f"{messages[kind]} after {attempts} {noun}"
