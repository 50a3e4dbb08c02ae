"""Common FastAPI dependencies."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from dataclasses import dataclass
from typing import Annotated, cast

import httpx
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session, sessionmaker

from ztadmin.config import AppSettings
from ztadmin.controller.client import ControllerClient
from ztadmin.world.lifecycle import WorldLifecycleManager

ControllerClientFactory = Callable[[AppSettings], ControllerClient]
PublicHTTPClientFactory = Callable[..., httpx.AsyncClient]


def get_app_settings(request: Request) -> AppSettings:
    return cast(AppSettings, request.app.state.settings)


def get_db_session(request: Request) -> Generator[Session]:
    session_factory = cast(sessionmaker[Session], request.app.state.session_maker)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def get_controller_client(request: Request) -> ControllerClient:
    """Build a controller client for the current settings.

    Raises ``ValueError`` when no controller auth token can be resolved.
    """
    factory = cast(ControllerClientFactory, request.app.state.controller_client_factory)
    return factory(get_app_settings(request))


def get_world_lifecycle_manager(request: Request) -> WorldLifecycleManager:
    return cast(WorldLifecycleManager, request.app.state.world_lifecycle_manager)


def get_public_http_client_factory(request: Request) -> PublicHTTPClientFactory:
    return cast(PublicHTTPClientFactory, request.app.state.public_http_client_factory)


@dataclass(frozen=True, slots=True)
class SessionActor:
    user_id: uuid.UUID
    is_admin: bool


def get_session_actor(request: Request) -> SessionActor:
    raw_user_id = request.session.get("user_id")
    if not isinstance(raw_user_id, str):
        raise HTTPException(status_code=401, detail="authentication required")

    try:
        user_id = uuid.UUID(raw_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="invalid session user") from exc

    is_admin = bool(request.session.get("is_admin", False))
    return SessionActor(user_id=user_id, is_admin=is_admin)


def get_admin_session_actor(
    actor: Annotated[SessionActor, Depends(get_session_actor)],
) -> SessionActor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="admin role required")
    return actor
