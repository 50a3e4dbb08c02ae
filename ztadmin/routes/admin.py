"""Administrative APIs for controller reconciliation and custom planet management."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Annotated, Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from ztadmin.config import AppSettings
from ztadmin.controller.client import (
    ControllerClient,
    ControllerClientError,
    ControllerNetworkNotFoundError,
    ControllerUnreachableError,
)
from ztadmin.controller.reconciliation import (
    UnlinkedNetwork,
    find_unlinked_networks,
    get_controller_stats,
)
from ztadmin.db.models import AuditEvent, GlobalOptions, ZtNetwork
from ztadmin.dependencies import (
    PublicHTTPClientFactory,
    SessionActor,
    get_admin_session_actor,
    get_app_settings,
    get_controller_client,
    get_db_session,
    get_public_http_client_factory,
    get_session_actor,
    get_world_lifecycle_manager,
)
from ztadmin.repositories.audit_events import AuditEventRepository
from ztadmin.repositories.errors import InvalidNetworkIdError, NetworkAlreadyAdoptedError
from ztadmin.repositories.global_options import GlobalOptionsRepository, RootServerConfig
from ztadmin.repositories.networks import NetworkRepository, normalize_network_id
from ztadmin.world.config_builder import WorldConfigValidationError, WorldGenerateRequest
from ztadmin.world.lifecycle import (
    WORLD_TARGET_ID,
    WORLD_TARGET_TYPE,
    GeneratorFailedError,
    NoBackupAvailableError,
    PlanetInstallError,
    RestoreFailedError,
    WorldLifecycleError,
    WorldLifecycleManager,
    WorldStoreUpdateError,
    run_world_generate,
    run_world_reset,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])
DbSessionDep = Annotated[Session, Depends(get_db_session)]
SettingsDep = Annotated[AppSettings, Depends(get_app_settings)]
WorldManagerDep = Annotated[WorldLifecycleManager, Depends(get_world_lifecycle_manager)]
PublicHTTPDep = Annotated[PublicHTTPClientFactory, Depends(get_public_http_client_factory)]

PUBLIC_IP_PLACEHOLDER = "External IP"
LIFECYCLE_ERROR_STATUS: dict[type[WorldLifecycleError], int] = {
    GeneratorFailedError: 502,
    NoBackupAvailableError: 404,
    PlanetInstallError: 500,
    RestoreFailedError: 500,
    WorldStoreUpdateError: 500,
}


class AdoptNetworkPayload(BaseModel):
    name: str = Field(default="", max_length=255)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return value.strip()


class GenerateWorldPayload(BaseModel):
    endpoints: list[str] = Field(default_factory=list)
    pl_id: int | None = None
    pl_birth: int | None = None
    recommend: bool = True
    comment: str | None = None
    identity: str | None = None

    @field_validator("endpoints", mode="before")
    @classmethod
    def _split_endpoints(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.split(",")
        return value

    @field_validator("comment", "identity")
    @classmethod
    def _normalize_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    def to_request(self) -> WorldGenerateRequest:
        return WorldGenerateRequest(
            endpoints=tuple(self.endpoints),
            pl_id=self.pl_id,
            pl_birth=self.pl_birth,
            recommend=self.recommend,
            comment=self.comment,
            identity=self.identity,
        )


class UpdateOptionsPayload(BaseModel):
    enable_registration: bool | None = None
    first_user_registration: bool | None = None
    user_registration_notification: bool | None = None


@router.get("/controller/stats")
async def api_controller_stats(request: Request) -> JSONResponse:
    _, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error

    controller, controller_error = _build_controller_client(request)
    if controller_error is not None:
        return controller_error
    assert controller is not None

    try:
        stats = await get_controller_stats(controller=controller)
    except ControllerClientError as exc:
        return _controller_error_response(exc)

    status = stats.controller_status
    return _success_response(
        {
            "network_count": stats.network_count,
            "total_members": stats.total_members,
            "controller": {
                "address": status.address,
                "online": status.online,
                "version": status.version,
                "planet_world_id": status.planet_world_id,
                "planet_world_timestamp": status.planet_world_timestamp,
            },
        }
    )


@router.get("/networks/unlinked")
async def api_unlinked_networks(
    request: Request,
    db_session: DbSessionDep,
) -> JSONResponse:
    _, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error

    controller, controller_error = _build_controller_client(request)
    if controller_error is not None:
        return controller_error
    assert controller is not None

    network_repo = NetworkRepository(db_session)
    try:
        result = await find_unlinked_networks(
            controller=controller,
            load_persisted_network_ids=network_repo.list_ids,
        )
    except ControllerClientError as exc:
        return _controller_error_response(exc)

    return _success_response(
        {
            "networks": [_serialize_unlinked_network(item) for item in result.networks],
            "failures": [
                {
                    "network_id": failure.network_id,
                    "error_code": failure.error_code,
                    "message": failure.message,
                }
                for failure in result.failures
            ],
            "failure_count": result.failure_count,
        }
    )


@router.post("/networks/{network_id}/adopt")
async def api_adopt_network(
    request: Request,
    network_id: str,
    payload: AdoptNetworkPayload,
    db_session: DbSessionDep,
) -> JSONResponse:
    actor, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error
    assert actor is not None

    try:
        normalized_id = normalize_network_id(network_id)
    except InvalidNetworkIdError:
        return _error_response(
            status_code=400,
            code="invalid_network_id",
            message="Network id must be 16 lowercase hexadecimal characters.",
            details={"field": "network_id", "network_id": network_id},
        )

    network_repo = NetworkRepository(db_session)
    if network_repo.get_by_id(normalized_id) is not None:
        return _already_adopted_response(normalized_id)

    controller, controller_error = _build_controller_client(request)
    if controller_error is not None:
        return controller_error
    assert controller is not None

    try:
        detail = await controller.network_detail(normalized_id)
    except ControllerClientError as exc:
        return _controller_error_response(exc)

    try:
        network = network_repo.adopt(
            network_id=normalized_id,
            name=payload.name or detail.name,
            owner_user_id=actor.user_id,
        )
    except NetworkAlreadyAdoptedError:
        return _already_adopted_response(normalized_id)

    AuditEventRepository(db_session).create_event(
        action="network.adopted",
        target_type="zt_network",
        target_id=network.id,
        actor_user_id=actor.user_id,
        metadata={
            "name": network.name,
            "member_count": detail.member_count,
        },
    )
    db_session.commit()
    return _success_response({"network": _serialize_network(network)}, status_code=201)


@router.get("/world")
def api_world_status(
    request: Request,
    db_session: DbSessionDep,
    manager: WorldManagerDep,
) -> JSONResponse:
    _, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error

    root_server = GlobalOptionsRepository(db_session).get_root_server_config()
    disk_status = manager.describe_world_state()
    last_event = AuditEventRepository(db_session).latest_for_target(
        target_type=WORLD_TARGET_TYPE,
        target_id=WORLD_TARGET_ID,
    )
    return _success_response(
        {
            "root_server": _serialize_root_server_config(root_server),
            "last_operation": _serialize_audit_event(last_event),
            "disk": {
                "state_dir": disk_status.state_dir,
                "planet_present": disk_status.planet_present,
                "identity_present": disk_status.identity_present,
                "generator_present": disk_status.generator_present,
                "staging_present": disk_status.staging_present,
                "backup_dir_present": disk_status.backup_dir_present,
                "backup_entries": list(disk_status.backup_entries),
            },
        }
    )


@router.get("/world/identity")
async def api_world_identity(
    request: Request,
    settings: SettingsDep,
    manager: WorldManagerDep,
    http_client_factory: PublicHTTPDep,
) -> JSONResponse:
    _, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error

    public_ip = await _lookup_public_ip(
        url=settings.public_ip_lookup_url,
        http_client_factory=http_client_factory,
    )
    return _success_response(
        {
            "identity": manager.read_local_identity(),
            "public_ip": public_ip,
        }
    )


@router.post("/world/generate")
def api_world_generate(
    request: Request,
    payload: GenerateWorldPayload,
    db_session: DbSessionDep,
    manager: WorldManagerDep,
) -> JSONResponse:
    actor, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error
    assert actor is not None

    try:
        result = run_world_generate(
            manager=manager,
            db_session=db_session,
            request=payload.to_request(),
            trigger="admin_api",
            actor_user_id=actor.user_id,
        )
    except WorldConfigValidationError as exc:
        return _validation_error_response(exc)
    except WorldLifecycleError as exc:
        return _lifecycle_error_response(exc)

    return _success_response(
        {
            "root_server": _serialize_root_server_config(
                result.config.to_root_server_config(in_use=True)
            ),
            "world_config": result.config.to_document(),
            "backup_path": result.backup_path,
            "world_state": result.world_state.value,
        }
    )


@router.post("/world/reset")
def api_world_reset(
    request: Request,
    db_session: DbSessionDep,
    manager: WorldManagerDep,
) -> JSONResponse:
    actor, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error
    assert actor is not None

    try:
        result = run_world_reset(
            manager=manager,
            db_session=db_session,
            trigger="admin_api",
            actor_user_id=actor.user_id,
        )
    except WorldLifecycleError as exc:
        return _lifecycle_error_response(exc)

    return _success_response(
        {
            "restored_from": result.restored_from,
            "world_state": result.world_state.value,
        }
    )


@router.get("/options")
def api_get_options(
    request: Request,
    db_session: DbSessionDep,
) -> JSONResponse:
    _, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error

    options = GlobalOptionsRepository(db_session).get_or_create()
    db_session.commit()
    return _success_response({"options": _serialize_options(options)})


@router.patch("/options")
def api_update_options(
    request: Request,
    payload: UpdateOptionsPayload,
    db_session: DbSessionDep,
) -> JSONResponse:
    actor, auth_error = _require_admin_actor(request)
    if auth_error is not None:
        return auth_error
    assert actor is not None

    changes = payload.model_dump(exclude_none=True)
    options = GlobalOptionsRepository(db_session).update_options(**changes)
    if changes:
        AuditEventRepository(db_session).create_event(
            action="global_options.updated",
            target_type="global_options",
            target_id=str(options.id),
            actor_user_id=actor.user_id,
            metadata=changes,
        )
    db_session.commit()
    return _success_response({"options": _serialize_options(options)})


def _require_admin_actor(request: Request) -> tuple[SessionActor | None, JSONResponse | None]:
    try:
        actor = get_admin_session_actor(get_session_actor(request))
    except HTTPException as exc:
        if exc.status_code == 401:
            return None, _error_response(
                status_code=401,
                code="unauthenticated",
                message="Authentication required.",
            )
        if exc.status_code == 403:
            return None, _error_response(
                status_code=403,
                code="forbidden",
                message="Admin role required.",
            )
        return None, _error_response(
            status_code=exc.status_code,
            code="request_rejected",
            message=str(exc.detail),
        )
    return actor, None


def _build_controller_client(
    request: Request,
) -> tuple[ControllerClient | None, JSONResponse | None]:
    try:
        return get_controller_client(request), None
    except ValueError as exc:
        return None, _error_response(
            status_code=503,
            code="controller_not_configured",
            message="Controller API access is not configured.",
            details={"reason": str(exc)},
        )


async def _lookup_public_ip(
    *,
    url: str,
    http_client_factory: PublicHTTPClientFactory,
) -> str:
    try:
        async with http_client_factory(timeout=5.0) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("public IP lookup via %s failed: %s", url, exc)
        return PUBLIC_IP_PLACEHOLDER
    return response.text.strip() or PUBLIC_IP_PLACEHOLDER


def _success_response(data: dict[str, Any], *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"data": data})


def _error_response(
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
            }
        },
    )


def _already_adopted_response(network_id: str) -> JSONResponse:
    return _error_response(
        status_code=409,
        code="network_already_adopted",
        message="Network is already linked to this dashboard.",
        details={"network_id": network_id},
    )


def _controller_error_response(exc: ControllerClientError) -> JSONResponse:
    if isinstance(exc, ControllerUnreachableError):
        status_code = 503
    elif isinstance(exc, ControllerNetworkNotFoundError):
        status_code = 404
    else:
        status_code = 502

    details: dict[str, Any] = {}
    if exc.status_code is not None:
        details["status_code"] = exc.status_code
    return _error_response(
        status_code=status_code,
        code=exc.error_code,
        message=str(exc),
        details=details,
    )


def _validation_error_response(exc: WorldConfigValidationError) -> JSONResponse:
    return _error_response(
        status_code=400,
        code=exc.error_code,
        message=exc.reason,
        details={"field": exc.field},
    )


def _lifecycle_error_response(exc: WorldLifecycleError) -> JSONResponse:
    return _error_response(
        status_code=LIFECYCLE_ERROR_STATUS.get(type(exc), 409),
        code=exc.error_code,
        message=str(exc),
        details={"remediation": exc.remediation},
    )


def _serialize_unlinked_network(network: UnlinkedNetwork) -> dict[str, Any]:
    return {
        "network_id": network.network_id,
        "name": network.name,
        "member_count": network.member_count,
        "config": network.config,
        "members": {
            member_id: member.revision for member_id, member in network.members.items()
        },
    }


def _serialize_network(network: ZtNetwork) -> dict[str, Any]:
    return {
        "id": network.id,
        "name": network.name,
        "owner_user_id": _optional_uuid(network.owner_user_id),
        "created_at": _iso_datetime(network.created_at),
    }


def _serialize_root_server_config(config: RootServerConfig) -> dict[str, Any]:
    return {
        "pl_id": config.pl_id,
        "pl_birth": config.pl_birth,
        "recommend": config.recommend,
        "identity": config.identity,
        "endpoints": list(config.endpoints),
        "comment": config.comment,
        "in_use": config.in_use,
        "world_state": config.world_state.value,
    }


def _serialize_audit_event(event: AuditEvent | None) -> dict[str, Any] | None:
    if event is None:
        return None
    return {
        "action": event.action,
        "actor_user_id": _optional_uuid(event.actor_user_id),
        "metadata": event.event_metadata,
        "created_at": _iso_datetime(event.created_at),
    }


def _serialize_options(options: GlobalOptions) -> dict[str, Any]:
    return {
        "enable_registration": options.enable_registration,
        "first_user_registration": options.first_user_registration,
        "user_registration_notification": options.user_registration_notification,
        "world_state": options.world_state.value,
    }


def _optional_uuid(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


def _iso_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC).isoformat()
    return value.astimezone(UTC).isoformat()
