from __future__ import annotations

import base64
import json
import uuid
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from itsdangerous import TimestampSigner
from sqlalchemy.orm import Session, sessionmaker

from tests.world.conftest import (
    FakeGenerator,
    build_manager,
    write_generator_binary,
    write_state_dir,
)
from ztadmin.config import AppSettings
from ztadmin.controller.client import create_controller_client
from ztadmin.db.models import AppUser
from ztadmin.main import create_app
from ztadmin.world.lifecycle import WorldLifecycleManager

NETWORK_A = "aaaaaaaaaaaaaaaa"
NETWORK_B = "bbbbbbbbbbbbbbbb"
NETWORK_C = "cccccccccccccccc"
PUBLIC_IP = "198.51.100.7"


@dataclass(slots=True)
class FakeControllerAPI:
    """In-memory stand-in for the controller HTTP API served over httpx.MockTransport."""

    networks: dict[str, dict[str, Any]] = field(default_factory=dict)
    failing_network_ids: set[str] = field(default_factory=set)
    unreachable: bool = False
    requests: list[str] = field(default_factory=list)

    def add_network(self, network_id: str, *, name: str, members: dict[str, int]) -> None:
        self.networks[network_id] = {"name": name, "members": members}

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if request.headers.get("X-ZT1-Auth") != "test-controller-token":
            return httpx.Response(status_code=401, json={})

        if path == "/status":
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
        if path == "/controller/network":
            return httpx.Response(status_code=200, json=list(self.networks))

        parts = path.removeprefix("/controller/network/").split("/")
        network_id = parts[0]
        if network_id in self.failing_network_ids:
            return httpx.Response(status_code=500, text="controller exploded")
        network = self.networks.get(network_id)
        if network is None:
            return httpx.Response(status_code=404, json={})
        if parts[1:] == ["member"]:
            return httpx.Response(status_code=200, json=network["members"])
        return httpx.Response(status_code=200, json={"id": network_id, "name": network["name"]})


@dataclass(slots=True)
class FakePublicIPService:
    body: str = f"{PUBLIC_IP}\n"
    fail: bool = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            raise httpx.ConnectError("no route to host", request=request)
        return httpx.Response(status_code=200, text=self.body)


def mock_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[..., httpx.AsyncClient]:
    def factory(**kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return factory


@pytest.fixture()
def api_settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        app_env="test",
        app_secret_key="test-secret",
        session_cookie_name="ztadmin_session",
        session_cookie_max_age_seconds=3600,
        session_cookie_secure=False,
        log_level="DEBUG",
        zt_controller_base_url="http://127.0.0.1:9993/controller",
        zt_controller_auth_token="test-controller-token",
        zt_state_dir=str(tmp_path / "zerotier-one"),
        zt_mkworld_bin_path=str(tmp_path / "bin" / "ztmkworld"),
        public_ip_lookup_url="https://ip.example.test/ip",
    )


@pytest.fixture()
def controller_api() -> FakeControllerAPI:
    return FakeControllerAPI()


@pytest.fixture()
def public_ip_service() -> FakePublicIPService:
    return FakePublicIPService()


@pytest.fixture()
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def world_manager(tmp_path: Path, generator: FakeGenerator) -> WorldLifecycleManager:
    write_state_dir(tmp_path / "zerotier-one")
    write_generator_binary(tmp_path / "bin" / "ztmkworld")
    return build_manager(tmp_path, generator=generator)


@pytest.fixture()
def test_app(
    api_settings: AppSettings,
    session_factory: sessionmaker[Session],
    controller_api: FakeControllerAPI,
    public_ip_service: FakePublicIPService,
    world_manager: WorldLifecycleManager,
) -> FastAPI:
    app = create_app(settings=api_settings)
    app.state.session_maker = session_factory
    app.state.controller_client_factory = lambda settings: create_controller_client(
        settings,
        http_client_factory=mock_client_factory(controller_api.handler),
    )
    app.state.world_lifecycle_manager = world_manager
    app.state.public_http_client_factory = mock_client_factory(public_ip_service.handler)
    return app


@pytest.fixture()
def client(test_app: FastAPI) -> Generator[TestClient]:
    with TestClient(test_app) as test_client:
        yield test_client


@pytest.fixture()
def admin_user(db_session: Session) -> AppUser:
    return _create_user(db_session, username="root-admin", is_admin=True)


@pytest.fixture()
def admin_headers(api_settings: AppSettings, admin_user: AppUser) -> dict[str, str]:
    return session_headers(api_settings, user_id=admin_user.id, is_admin=True)


def session_headers(
    settings: AppSettings,
    *,
    user_id: uuid.UUID,
    is_admin: bool,
) -> dict[str, str]:
    """Build a Cookie header carrying a session signed the way SessionMiddleware signs it."""
    payload = json.dumps({"user_id": str(user_id), "is_admin": is_admin}).encode("utf-8")
    signed = TimestampSigner(settings.app_secret_key).sign(base64.b64encode(payload))
    return {"Cookie": f"{settings.session_cookie_name}={signed.decode('utf-8')}"}


def _create_user(db_session: Session, *, username: str, is_admin: bool) -> AppUser:
    user = AppUser(username=username, is_admin=is_admin)
    db_session.add(user)
    db_session.commit()
    return user
