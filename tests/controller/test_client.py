from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from ztadmin.config import AppSettings
from ztadmin.controller.client import (
    ControllerAuthError,
    ControllerNetworkNotFoundError,
    ControllerRequestError,
    ControllerUnreachableError,
    MemberInfo,
    ZeroTierControllerClient,
    create_controller_client,
)

NETWORK_ID = "abcdef0123456789"


def test_list_networks_sends_auth_header_and_returns_ids() -> None:
    seen: list[tuple[str, str | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, request.headers.get("X-ZT1-Auth")))
        return httpx.Response(status_code=200, json=[NETWORK_ID, " ", "0123456789abcdef", 7])

    client = _client(handler)
    network_ids = asyncio.run(client.list_networks())

    assert network_ids == (NETWORK_ID, "0123456789abcdef")
    assert seen == [("/controller/network", "token-controller")]


def test_list_members_maps_revisions() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/controller/network/{NETWORK_ID}/member"
        return httpx.Response(status_code=200, json={"a1b2c3d4e5": 3, "0011223344": "x"})

    members = asyncio.run(_client(handler).list_members(NETWORK_ID))

    assert members == {
        "a1b2c3d4e5": MemberInfo(member_id="a1b2c3d4e5", revision=3),
        "0011223344": MemberInfo(member_id="0011223344", revision=None),
    }


def test_status_reads_service_endpoint_and_planet_fields() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/status"
        return httpx.Response(
            status_code=200,
            json={
                "address": "a1b2c3d4e5",
                "online": True,
                "version": "1.14.0",
                "planetWorldId": 149604618,
                "planetWorldTimestamp": 1567191349589,
            },
        )

    status = asyncio.run(_client(handler).status())

    assert status.address == "a1b2c3d4e5"
    assert status.online is True
    assert status.version == "1.14.0"
    assert status.planet_world_id == 149604618
    assert status.planet_world_timestamp == 1567191349589


def test_network_detail_combines_config_and_members() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/controller/network/{NETWORK_ID}":
            return httpx.Response(status_code=200, json={"id": NETWORK_ID, "name": " lab "})
        if request.url.path == f"/controller/network/{NETWORK_ID}/member":
            return httpx.Response(status_code=200, json={"a1b2c3d4e5": 1, "f0f0f0f0f0": 2})
        raise AssertionError(f"unexpected path {request.url.path}")

    detail = asyncio.run(_client(handler).network_detail(NETWORK_ID))

    assert detail.network_id == NETWORK_ID
    assert detail.name == "lab"
    assert detail.member_count == 2
    assert detail.config["id"] == NETWORK_ID


def test_missing_network_raises_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=404, json={})

    with pytest.raises(ControllerNetworkNotFoundError) as exc_info:
        asyncio.run(_client(handler).list_members(NETWORK_ID))

    assert exc_info.value.status_code == 404


def test_auth_failure_raises_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=401, json={"error": "unauthorized"})

    with pytest.raises(ControllerAuthError):
        asyncio.run(_client(handler).list_networks())


def test_server_error_includes_status_and_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=500, text="controller exploded")

    with pytest.raises(ControllerRequestError) as exc_info:
        asyncio.run(_client(handler).list_networks())

    assert exc_info.value.status_code == 500
    assert "controller exploded" in str(exc_info.value)


def test_non_array_network_list_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, json={"networks": []})

    with pytest.raises(ControllerRequestError):
        asyncio.run(_client(handler).list_networks())


def test_invalid_json_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, text="not json")

    with pytest.raises(ControllerRequestError):
        asyncio.run(_client(handler).status())


def test_transport_failure_raises_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ControllerUnreachableError):
        asyncio.run(_client(handler).list_networks())


def test_create_controller_client_reads_token_from_state_dir(tmp_path: Path) -> None:
    (tmp_path / "authtoken.secret").write_text("state-token\n", encoding="utf-8")
    seen_tokens: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_tokens.append(request.headers.get("X-ZT1-Auth"))
        return httpx.Response(status_code=200, json=[])

    settings = AppSettings(
        app_env="test",
        app_secret_key="secret",
        zt_state_dir=str(tmp_path),
    )
    client = create_controller_client(settings, http_client_factory=_mock_client_factory(handler))
    asyncio.run(client.list_networks())

    assert seen_tokens == ["state-token"]


def test_create_controller_client_requires_a_token(tmp_path: Path) -> None:
    settings = AppSettings(
        app_env="test",
        app_secret_key="secret",
        zt_state_dir=str(tmp_path),
    )

    with pytest.raises(ValueError, match="ZT_CONTROLLER_AUTH_TOKEN"):
        create_controller_client(settings)


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> ZeroTierControllerClient:
    return ZeroTierControllerClient(
        base_url="http://127.0.0.1:9993/controller",
        auth_token="token-controller",
        http_client_factory=_mock_client_factory(handler),
    )


def _mock_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[..., httpx.AsyncClient]:
    def factory(**kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return factory
