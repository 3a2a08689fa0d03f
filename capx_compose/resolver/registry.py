"""Async client for npm registry package metadata.

Fetches abbreviated packuments (``GET /<name>`` with the
``application/vnd.npm.install-v1+json`` accept header) and extracts the peer
dependency ranges of the version a specifier resolves to.  Failures are
returned as structured responses so callers can treat them as notes rather
than abort.

Typical usage::

    client = RegistryClient()
    lookup = await client.get_peer_dependencies("wagmi", "^2.0.0")
    if lookup.success:
        print(lookup.peer_dependencies)
"""

from __future__ import annotations

from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from capx_compose.errors import RegistryError
from capx_compose.resolver.versions import max_satisfying

ABBREVIATED_METADATA = "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8"


class PackumentResponse(BaseModel):
    """Structured response from a packument request."""

    package: str
    data: dict = Field(default_factory=dict, description="Decoded packument JSON")
    success: bool = Field(default=True)
    error: str | None = Field(default=None)

    def raise_for_error(self) -> None:
        if not self.success:
            raise RegistryError(self.error or f"Registry lookup failed for {self.package}")


class PeerLookup(BaseModel):
    """Peer ranges declared by the version a specifier resolves to."""

    package: str
    spec: str
    version: str | None = Field(default=None, description="Resolved concrete version")
    peer_dependencies: dict[str, str] = Field(default_factory=dict)
    success: bool = Field(default=True)
    error: str | None = Field(default=None)


class RegistryClient:
    """Async client for an npm-compatible registry.

    A fresh ``httpx.AsyncClient`` is created per request so one client object
    can be shared by concurrent lookups without lifecycle bookkeeping.
    """

    def __init__(
        self,
        base_url: str = "https://registry.npmjs.org",
        timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` configured with our base URL and timeout."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            headers={"Accept": ABBREVIATED_METADATA},
            transport=self._transport,
        )

    @staticmethod
    def _package_path(name: str) -> str:
        """Registry path for a package; the scope separator is percent-encoded."""
        return "/" + quote(name, safe="@")

    @staticmethod
    def _resolve_version(data: dict, spec: str) -> str | None:
        """Pick the concrete version *spec* resolves to in a packument."""
        dist_tags = data.get("dist-tags", {})
        if spec in dist_tags:
            return dist_tags[spec]
        if spec in ("", "*"):
            return dist_tags.get("latest")
        return max_satisfying(data.get("versions", {}).keys(), spec)

    @staticmethod
    def _required_peers(manifest: dict) -> dict[str, str]:
        """Peer ranges minus those marked optional in ``peerDependenciesMeta``."""
        peers = dict(manifest.get("peerDependencies") or {})
        meta = manifest.get("peerDependenciesMeta") or {}
        for name, flags in meta.items():
            if isinstance(flags, dict) and flags.get("optional"):
                peers.pop(name, None)
        return peers

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_packument(self, name: str) -> PackumentResponse:
        """Fetch the abbreviated packument for *name*."""
        try:
            async with self._client() as client:
                response = await client.get(self._package_path(name))
                response.raise_for_status()
                return PackumentResponse(package=name, data=response.json())
        except httpx.ConnectError:
            return PackumentResponse(
                package=name,
                success=False,
                error=f"Cannot connect to registry at {self.base_url}",
            )
        except httpx.TimeoutException:
            return PackumentResponse(
                package=name,
                success=False,
                error=f"Registry request for {name} timed out after {self.timeout}s",
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            detail = "package not found" if status == 404 else exc.response.text[:200]
            return PackumentResponse(
                package=name,
                success=False,
                error=f"Registry returned HTTP {status} for {name}: {detail}",
            )
        except Exception as exc:  # noqa: BLE001
            return PackumentResponse(
                package=name,
                success=False,
                error=f"Unexpected error fetching {name}: {exc}",
            )

    async def get_peer_dependencies(self, name: str, spec: str) -> PeerLookup:
        """Return the required peer ranges of the version *spec* resolves to."""
        packument = await self.fetch_packument(name)
        try:
            packument.raise_for_error()
        except RegistryError as exc:
            return PeerLookup(package=name, spec=spec, success=False, error=str(exc))

        version = self._resolve_version(packument.data, spec)
        if version is None:
            return PeerLookup(
                package=name,
                spec=spec,
                success=False,
                error=f"No published version of {name} matches '{spec}'",
            )

        manifest = packument.data.get("versions", {}).get(version, {})
        return PeerLookup(
            package=name,
            spec=spec,
            version=version,
            peer_dependencies=self._required_peers(manifest),
        )
