"""Unit tests for RegistryClient (capx_compose.resolver.registry).

Tests cover:
- Packument fetching and error mapping
- Version resolution via dist-tags and ranges
- Optional peer filtering
- Scoped package paths
"""

from __future__ import annotations

import httpx
import pytest

from capx_compose.errors import RegistryError
from capx_compose.resolver.registry import PackumentResponse, RegistryClient


@pytest.fixture
def wagmi_packument(packument):
    return packument(
        "wagmi",
        {
            "2.4.0": {"peerDependencies": {"viem": "2.x", "react": ">=18"}},
            "2.5.7": {
                "peerDependencies": {"viem": "2.x", "react": ">=18", "typescript": ">=5.0.4"},
                "peerDependenciesMeta": {"typescript": {"optional": True}},
            },
            "3.0.0-beta.1": {"peerDependencies": {"viem": "3.x"}},
        },
        latest="2.5.7",
    )


# ---------------------------------------------------------------------------
# fetch_packument
# ---------------------------------------------------------------------------


class TestFetchPackument:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success(self, registry_transport, wagmi_packument):
        transport, requests = registry_transport({"wagmi": wagmi_packument})
        client = RegistryClient(transport=transport)

        response = await client.fetch_packument("wagmi")

        assert response.success is True
        assert response.data["dist-tags"]["latest"] == "2.5.7"
        assert requests == ["/wagmi"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_not_found(self, registry_transport):
        transport, _ = registry_transport({})
        client = RegistryClient(transport=transport)

        response = await client.fetch_packument("missing-pkg")

        assert response.success is False
        assert response.error == "Registry returned HTTP 404 for missing-pkg: package not found"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connect_error(self, registry_transport):
        transport, _ = registry_transport({}, fail_with=httpx.ConnectError("refused"))
        client = RegistryClient(base_url="https://npm.example.com/", transport=transport)

        response = await client.fetch_packument("wagmi")

        assert response.success is False
        assert response.error == "Cannot connect to registry at https://npm.example.com"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout(self, registry_transport):
        transport, _ = registry_transport({}, fail_with=httpx.ReadTimeout("slow"))
        client = RegistryClient(timeout=3, transport=transport)

        response = await client.fetch_packument("wagmi")

        assert response.success is False
        assert "timed out after 3s" in response.error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unexpected_error(self, registry_transport):
        transport, _ = registry_transport({}, fail_with=RuntimeError("kaboom"))
        client = RegistryClient(transport=transport)

        response = await client.fetch_packument("wagmi")

        assert response.success is False
        assert response.error.startswith("Unexpected error fetching wagmi")

    @pytest.mark.unit
    def test_raise_for_error(self):
        PackumentResponse(package="ok").raise_for_error()
        with pytest.raises(RegistryError, match="boom"):
            PackumentResponse(package="bad", success=False, error="boom").raise_for_error()


# ---------------------------------------------------------------------------
# get_peer_dependencies
# ---------------------------------------------------------------------------


class TestPeerLookup:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_range_resolves_highest_stable(self, registry_transport, wagmi_packument):
        transport, _ = registry_transport({"wagmi": wagmi_packument})
        client = RegistryClient(transport=transport)

        lookup = await client.get_peer_dependencies("wagmi", "^2.0.0")

        assert lookup.success is True
        assert lookup.version == "2.5.7"
        assert lookup.peer_dependencies == {"viem": "2.x", "react": ">=18"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dist_tag(self, registry_transport, wagmi_packument):
        transport, _ = registry_transport({"wagmi": wagmi_packument})
        client = RegistryClient(transport=transport)

        lookup = await client.get_peer_dependencies("wagmi", "latest")

        assert lookup.version == "2.5.7"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wildcard_uses_latest(self, registry_transport, wagmi_packument):
        transport, _ = registry_transport({"wagmi": wagmi_packument})
        client = RegistryClient(transport=transport)

        lookup = await client.get_peer_dependencies("wagmi", "*")

        assert lookup.version == "2.5.7"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_matching_version(self, registry_transport, wagmi_packument):
        transport, _ = registry_transport({"wagmi": wagmi_packument})
        client = RegistryClient(transport=transport)

        lookup = await client.get_peer_dependencies("wagmi", "^9.0.0")

        assert lookup.success is False
        assert lookup.error == "No published version of wagmi matches '^9.0.0'"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_failure_propagates_message(self, registry_transport):
        transport, _ = registry_transport({})
        client = RegistryClient(transport=transport)

        lookup = await client.get_peer_dependencies("ghost", "^1.0.0")

        assert lookup.success is False
        assert "HTTP 404" in lookup.error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_scoped_package(self, registry_transport, packument):
        data = packument(
            "@tanstack/react-query",
            {"5.28.0": {"peerDependencies": {"react": "^18 || ^19"}}},
            latest="5.28.0",
        )
        transport, requests = registry_transport({"@tanstack/react-query": data})
        client = RegistryClient(transport=transport)

        lookup = await client.get_peer_dependencies("@tanstack/react-query", "^5.0.0")

        assert lookup.success is True
        assert lookup.peer_dependencies == {"react": "^18 || ^19"}
        assert len(requests) == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    @pytest.mark.unit
    def test_package_path_encodes_scope_separator(self):
        assert RegistryClient._package_path("react") == "/react"
        assert RegistryClient._package_path("@tanstack/react-query") == "/@tanstack%2Freact-query"

    @pytest.mark.unit
    def test_required_peers_without_meta(self):
        assert RegistryClient._required_peers({"peerDependencies": {"react": ">=18"}}) == {
            "react": ">=18"
        }
        assert RegistryClient._required_peers({}) == {}
