"""Async client for the self-hosted ZeroTier controller management API."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from ztadmin.config import AppSettings
from ztadmin.controller.auth import resolve_controller_auth_token

HTTPClientFactory = Callable[..., httpx.AsyncClient]


class ControllerClientError(Exception):
    """Base controller client exception for deterministic failure handling."""

    error_code = "controller_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ControllerUnreachableError(ControllerClientError):
    error_code = "controller_unreachable"


class ControllerRequestError(ControllerClientError):
    error_code = "controller_request_error"


class ControllerAuthError(ControllerRequestError):
    error_code = "controller_auth_error"


class ControllerNetworkNotFoundError(ControllerRequestError):
    error_code = "controller_network_not_found"


@dataclass(frozen=True, slots=True)
class MemberInfo:
    member_id: str
    revision: int | None = None


@dataclass(frozen=True, slots=True)
class ControllerStatus:
    address: str | None
    online: bool
    version: str | None
    planet_world_id: int | None
    planet_world_timestamp: int | None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NetworkDetail:
    network_id: str
    name: str
    config: dict[str, Any]
    members: dict[str, MemberInfo]

    @property
    def member_count(self) -> int:
        return len(self.members)


class ControllerClient(Protocol):
    async def list_networks(self) -> tuple[str, ...]:
        """Return ids of all networks hosted by the controller."""

    async def list_members(self, network_id: str) -> dict[str, MemberInfo]:
        """Return members of a controller network keyed by member id."""

    async def status(self) -> ControllerStatus:
        """Return the controller node status."""

    async def network_detail(self, network_id: str) -> NetworkDetail:
        """Return the network configuration together with its members."""


class ZeroTierControllerClient:
    def __init__(
        self,
        *,
        base_url: str,
        auth_token: str,
        timeout_seconds: float = 10.0,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
    ) -> None:
        normalized_base_url = base_url.strip().rstrip("/")
        if not normalized_base_url:
            raise ValueError("ZT_CONTROLLER_BASE_URL is required")

        self._controller_base_url = normalized_base_url
        self._service_base_url = normalized_base_url.removesuffix("/controller")
        self._auth_token = auth_token
        self._timeout_seconds = timeout_seconds
        self._http_client_factory = http_client_factory

    async def list_networks(self) -> tuple[str, ...]:
        response = await self._request(self._controller_base_url, "/network")
        self._raise_for_status(response, default_message="failed to list controller networks")
        payload = _parse_json(response)
        if not isinstance(payload, list):
            raise ControllerRequestError(
                f"controller network list must be a JSON array (status={response.status_code})",
                status_code=response.status_code,
            )
        return tuple(item.strip() for item in payload if isinstance(item, str) and item.strip())

    async def list_members(self, network_id: str) -> dict[str, MemberInfo]:
        response = await self._request(
            self._controller_base_url,
            f"/network/{network_id}/member",
        )
        self._raise_for_network_status(response, network_id=network_id)
        payload = _parse_json_object(response)
        return {
            member_id: MemberInfo(member_id=member_id, revision=_coerce_optional_int(revision))
            for member_id, revision in payload.items()
        }

    async def status(self) -> ControllerStatus:
        response = await self._request(self._service_base_url, "/status")
        self._raise_for_status(response, default_message="controller status probe failed")
        payload = _parse_json_object(response)
        return ControllerStatus(
            address=_extract_non_empty_str(payload, "address"),
            online=payload.get("online") is True,
            version=_extract_non_empty_str(payload, "version"),
            planet_world_id=_coerce_optional_int(payload.get("planetWorldId")),
            planet_world_timestamp=_coerce_optional_int(payload.get("planetWorldTimestamp")),
            payload=payload,
        )

    async def network_detail(self, network_id: str) -> NetworkDetail:
        config, members = await asyncio.gather(
            self._get_network_config(network_id),
            self.list_members(network_id),
        )
        return NetworkDetail(
            network_id=network_id,
            name=_extract_non_empty_str(config, "name") or "",
            config=config,
            members=members,
        )

    async def _get_network_config(self, network_id: str) -> dict[str, Any]:
        response = await self._request(self._controller_base_url, f"/network/{network_id}")
        self._raise_for_network_status(response, network_id=network_id)
        return _parse_json_object(response)

    async def _request(self, base_url: str, path: str) -> httpx.Response:
        async with self._http_client_factory(
            base_url=base_url,
            headers={"X-ZT1-Auth": self._auth_token},
            timeout=self._timeout_seconds,
        ) as client:
            try:
                return await client.get(path)
            except httpx.TransportError as exc:
                raise ControllerUnreachableError(
                    f"controller unreachable at {base_url}{path}: {exc}"
                ) from exc
            except httpx.HTTPError as exc:
                raise ControllerRequestError(f"controller request failed: {exc}") from exc

    def _raise_for_network_status(self, response: httpx.Response, *, network_id: str) -> None:
        if response.status_code == 404:
            raise ControllerNetworkNotFoundError(
                f"controller network not found: {network_id}",
                status_code=response.status_code,
            )
        self._raise_for_status(
            response,
            default_message=f"failed to read controller network {network_id}",
        )

    def _raise_for_status(self, response: httpx.Response, *, default_message: str) -> None:
        if response.status_code < 400:
            return

        status_code = response.status_code
        if status_code in {401, 403}:
            raise ControllerAuthError(
                f"controller authentication failed with status={status_code}",
                status_code=status_code,
            )

        response_text = response.text.strip()
        detail = f"{default_message}; status={status_code}"
        if response_text:
            detail = f"{detail}; body={response_text[:240]}"
        raise ControllerRequestError(detail, status_code=status_code)


def create_controller_client(
    settings: AppSettings,
    *,
    http_client_factory: HTTPClientFactory = httpx.AsyncClient,
) -> ZeroTierControllerClient:
    return ZeroTierControllerClient(
        base_url=settings.zt_controller_base_url,
        auth_token=resolve_controller_auth_token(settings),
        timeout_seconds=settings.zt_controller_http_timeout_seconds,
        http_client_factory=http_client_factory,
    )


def _parse_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise ControllerRequestError(
            f"controller response was not valid JSON (status={response.status_code})",
            status_code=response.status_code,
        ) from exc


def _parse_json_object(response: httpx.Response) -> dict[str, Any]:
    data = _parse_json(response)
    if not isinstance(data, dict):
        raise ControllerRequestError(
            f"controller response payload must be an object (status={response.status_code})",
            status_code=response.status_code,
        )
    return data


def _extract_non_empty_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
    return None


def _coerce_optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None
