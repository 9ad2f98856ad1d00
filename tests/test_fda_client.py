"""Tests for the openFDA API client.

These tests use httpx's MockTransport to simulate openFDA responses, so no
network access is needed.
"""

from __future__ import annotations

import httpx
import pytest

from recovery_agent.fda_client import OpenFDAAPIError, OpenFDAClient


def _make_client(handler: object, **kwargs: object) -> OpenFDAClient:
    """Create a client whose HTTP transport is the given handler."""
    kwargs.setdefault("api_key", "")
    client = OpenFDAClient(base_url="https://fda.test/", **kwargs)  # type: ignore[arg-type]
    client._http = httpx.AsyncClient(transport=httpx.MockTransport(handler))  # type: ignore[arg-type]
    return client


class TestDrugLabel:
    """Tests for get_drug_label."""

    @pytest.mark.asyncio
    async def test_label_found(self) -> None:
        """The first result is returned and the search covers both names."""
        seen: list[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"results": [{"purpose": ["Lowers cholesterol"]}]})

        client = _make_client(handler)
        label = await client.get_drug_label("Lipitor")

        assert label == {"purpose": ["Lowers cholesterol"]}
        request = seen[0]
        assert request.url.path == "/drug/label.json"
        search = request.url.params["search"]
        assert 'openfda.generic_name:"Lipitor"' in search
        assert 'openfda.brand_name:"Lipitor"' in search
        assert request.url.params["limit"] == "1"
        assert "api_key" not in request.url.params

        await client.close()

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self) -> None:
        """openFDA reports 'no match' as a 404."""

        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404, json={"error": {"code": "NOT_FOUND", "message": "No matches found!"}}
            )

        client = _make_client(handler)
        assert await client.get_drug_label("unknownium") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_empty_results_return_none(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"results": []})

        client = _make_client(handler)
        assert await client.get_drug_label("x") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_server_error_raises(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="Internal Server Error")

        client = _make_client(handler)
        with pytest.raises(OpenFDAAPIError, match="500") as exc_info:
            await client.get_drug_label("lisinopril")
        assert exc_info.value.status_code == 500
        await client.close()

    @pytest.mark.asyncio
    async def test_quotes_are_stripped_from_name(self) -> None:
        seen: list[str] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.params["search"])
            return httpx.Response(200, json={"results": []})

        client = _make_client(handler)
        await client.get_drug_label('bad" OR x')
        assert '"bad OR x"' in seen[0]
        await client.close()


class TestGet:
    """Tests for the raw get() helper."""

    @pytest.mark.asyncio
    async def test_api_key_is_sent(self) -> None:
        seen: list[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = _make_client(handler, api_key="secret")
        assert await client.get("/drug/label.json", {"limit": 1}) == {"ok": True}
        assert seen[0].url.params["api_key"] == "secret"
        assert str(seen[0].url).startswith("https://fda.test/drug/label.json")
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_raises_status_zero(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        client = _make_client(handler)
        with pytest.raises(OpenFDAAPIError) as exc_info:
            await client.get("/drug/label.json")
        assert exc_info.value.status_code == 0
        assert "connection refused" in exc_info.value.detail
        await client.close()
