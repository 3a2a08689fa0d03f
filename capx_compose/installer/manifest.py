"""Reading, writing and backing up the project's ``package.json``.

All writes go through :func:`~capx_compose.utils.write_bytes_atomic`, so a
crash never leaves a half-written manifest or backup on disk.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from capx_compose.errors import BackupRestoreError, ManifestParseError
from capx_compose.resolver.models import DependencyMap
from capx_compose.utils import load_json, save_json_atomic, write_bytes_atomic

MANIFEST_NAME = "package.json"
BACKUP_SUFFIX = ".backup"

DEFAULT_SCRIPTS: dict[str, str] = {
    "dev": "next dev",
    "build": "next build",
    "start": "next start",
    "lint": "next lint",
}


def read_manifest(path: str | Path) -> Optional[dict[str, Any]]:
    """Parse an existing manifest.

    Returns:
        The decoded object, or ``None`` if no manifest exists.

    Raises:
        ManifestParseError: If the file exists but is unreadable, is not
            valid JSON, or is not a JSON object.
    """
    manifest = Path(path)
    if not manifest.exists():
        return None
    try:
        data = load_json(manifest)
    except json.JSONDecodeError as exc:
        raise ManifestParseError(str(manifest), f"line {exc.lineno}: {exc.msg}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestParseError(str(manifest), str(exc)) from exc

    if not isinstance(data, dict):
        raise ManifestParseError(str(manifest), "top-level value must be an object")
    for section in ("dependencies", "devDependencies", "scripts"):
        if section in data and not isinstance(data[section], dict):
            raise ManifestParseError(str(manifest), f"'{section}' must be an object")
    return data


def write_manifest(path: str | Path, manifest: dict[str, Any]) -> Path:
    """Atomically write *manifest* as two-space indented JSON."""
    return save_json_atomic(manifest, path)


def build_manifest(
    existing: Optional[dict[str, Any]],
    dependencies: DependencyMap,
    dev_dependencies: DependencyMap,
    project_name: str,
) -> dict[str, Any]:
    """Combine an existing manifest with the merged dependency maps.

    Merged entries override entries already in the manifest; other keys of
    the existing manifest are preserved.  A package ending up in both
    sections stays in ``dependencies`` only.  Missing default scripts are
    filled in.
    """
    manifest: dict[str, Any] = dict(existing) if existing else {
        "name": project_name,
        "version": "0.1.0",
        "private": True,
    }

    deps = {**manifest.get("dependencies", {}), **dependencies}
    dev_deps = {**manifest.get("devDependencies", {}), **dev_dependencies}
    for package in deps:
        dev_deps.pop(package, None)

    scripts = dict(manifest.get("scripts", {}))
    for name, command in DEFAULT_SCRIPTS.items():
        scripts.setdefault(name, command)

    manifest["scripts"] = scripts
    manifest["dependencies"] = dict(sorted(deps.items()))
    manifest["devDependencies"] = dict(sorted(dev_deps.items()))
    return manifest


class ManifestBackup:
    """Byte-for-byte backup of a manifest taken before it is modified.

    When no manifest existed, :meth:`restore` removes the one written since.
    """

    def __init__(self, target_dir: str | Path, manifest_name: str = MANIFEST_NAME) -> None:
        self.manifest_path = Path(target_dir) / manifest_name
        self.backup_path = self.manifest_path.with_name(manifest_name + BACKUP_SUFFIX)
        self.had_manifest = False
        self.created = False

    def create(self) -> None:
        """Snapshot the current manifest, if one exists."""
        self.had_manifest = self.manifest_path.exists()
        if self.had_manifest:
            write_bytes_atomic(self.backup_path, self.manifest_path.read_bytes())
        self.created = True

    def restore(self) -> None:
        """Put the original manifest back and remove the backup.

        Raises:
            BackupRestoreError: If the original state cannot be restored.
        """
        if not self.created:
            return
        try:
            if self.had_manifest:
                write_bytes_atomic(self.manifest_path, self.backup_path.read_bytes())
                self.backup_path.unlink(missing_ok=True)
            else:
                self.manifest_path.unlink(missing_ok=True)
        except OSError as exc:
            raise BackupRestoreError(
                f"Failed to restore {self.manifest_path} from {self.backup_path}: {exc}",
                user_message=f"Could not restore package.json; the original is kept at {self.backup_path}",
            ) from exc

    def discard(self) -> None:
        """Remove the backup after a successful run."""
        self.backup_path.unlink(missing_ok=True)
