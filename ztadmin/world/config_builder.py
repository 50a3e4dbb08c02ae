"""Validation and document assembly for custom planet (world) generation."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ztadmin.repositories.global_options import RootServerConfig

# World id of the production ZeroTier planet.
OFFICIAL_WORLD_ID = 149604618
# World id ZeroTier reserves for future use.
RESERVED_FUTURE_WORLD_ID = 227883110
RESERVED_WORLD_IDS = frozenset({OFFICIAL_WORLD_ID, RESERVED_FUTURE_WORLD_ID})
OFFICIAL_WORLD_BIRTH = 1567191349589
INT64_MAX = 2**63 - 1

SIGNING_KEY_PAIR = ("previous.c25519", "current.c25519")
GENERATOR_OUTPUT_NAME = "planet.custom"
GENERATOR_CONFIG_NAME = "mkworld.config.json"
DEFAULT_ROOT_COMMENT = "default.domain"


class WorldConfigValidationError(ValueError):
    """Raised when world parameters are malformed or collide with reserved values."""

    error_code = "world_config_invalid"

    def __init__(self, *, field: str, reason: str) -> None:
        super().__init__(reason)
        self.field = field
        self.reason = reason


class MissingWorldParameterError(WorldConfigValidationError):
    error_code = "world_parameter_missing"


class WorldParameterRangeError(WorldConfigValidationError):
    error_code = "world_parameter_out_of_range"


class ReservedIdentifierError(WorldConfigValidationError):
    error_code = "world_reserved_identifier"


class InvalidBirthError(WorldConfigValidationError):
    error_code = "world_invalid_birth"


class MissingEndpointError(WorldConfigValidationError):
    error_code = "world_endpoint_missing"


@dataclass(frozen=True, slots=True)
class WorldGenerateRequest:
    endpoints: tuple[str, ...]
    pl_id: int | None = None
    pl_birth: int | None = None
    recommend: bool = True
    comment: str | None = None
    identity: str | None = None


@dataclass(frozen=True, slots=True)
class RootNodeDescriptor:
    comments: str
    identity: str
    endpoints: tuple[str, ...]

    def to_document(self) -> dict[str, Any]:
        return {
            "comments": self.comments,
            "identity": self.identity,
            "endpoints": list(self.endpoints),
        }


@dataclass(frozen=True, slots=True)
class WorldConfig:
    """Input document of the ``ztmkworld`` generator."""

    root_nodes: tuple[RootNodeDescriptor, ...]
    pl_id: int
    pl_birth: int
    recommend: bool
    signing: tuple[str, str] = SIGNING_KEY_PAIR
    output: str = GENERATOR_OUTPUT_NAME

    def to_document(self) -> dict[str, Any]:
        return {
            "rootNodes": [node.to_document() for node in self.root_nodes],
            "signing": list(self.signing),
            "output": self.output,
            "plID": self.pl_id,
            "plBirth": self.pl_birth,
            "plRecommend": self.recommend,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_document(), indent=2)

    def to_root_server_config(self, *, in_use: bool = True) -> RootServerConfig:
        root_node = self.root_nodes[0]
        return RootServerConfig(
            pl_id=self.pl_id,
            pl_birth=self.pl_birth,
            recommend=self.recommend,
            identity=root_node.identity,
            endpoints=root_node.endpoints,
            comment=root_node.comments,
            in_use=in_use,
        )


def normalize_endpoints(endpoints: Iterable[str]) -> tuple[str, ...]:
    normalized: list[str] = []
    seen: set[str] = set()
    for endpoint in endpoints:
        value = endpoint.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        normalized.append(value)
    return tuple(normalized)


def validate_world_request(request: WorldGenerateRequest) -> None:
    if not request.recommend:
        if request.pl_id is None:
            raise MissingWorldParameterError(
                field="pl_id",
                reason="plID is required when the recommended world parameters are not used",
            )
        if request.pl_birth is None:
            raise MissingWorldParameterError(
                field="pl_birth",
                reason="plBirth is required when the recommended world parameters are not used",
            )

    for field_name, value in (("pl_id", request.pl_id), ("pl_birth", request.pl_birth)):
        if value is not None and not 0 <= value <= INT64_MAX:
            raise WorldParameterRangeError(
                field=field_name,
                reason=f"{field_name} must be a non-negative 64-bit integer (got {value})",
            )

    if request.pl_id in RESERVED_WORLD_IDS:
        raise ReservedIdentifierError(
            field="pl_id",
            reason=(
                f"plID {request.pl_id} is reserved by ZeroTier; "
                "consider using the recommended values"
            ),
        )
    if request.pl_birth == OFFICIAL_WORLD_BIRTH:
        raise ReservedIdentifierError(
            field="pl_birth",
            reason=(
                f"plBirth {OFFICIAL_WORLD_BIRTH} is the production planet timestamp; "
                "consider using the recommended values"
            ),
        )
    if not request.recommend and request.pl_birth is not None:
        if request.pl_birth <= OFFICIAL_WORLD_BIRTH:
            raise InvalidBirthError(
                field="pl_birth",
                reason=(
                    f"plBirth must be greater than {OFFICIAL_WORLD_BIRTH} so nodes prefer "
                    "the custom planet over the default one"
                ),
            )

    if not normalize_endpoints(request.endpoints):
        raise MissingEndpointError(
            field="endpoints",
            reason="at least one root node endpoint is required",
        )


def build_world_config(request: WorldGenerateRequest, *, identity: str) -> WorldConfig:
    validate_world_request(request)

    normalized_identity = identity.strip()
    if not normalized_identity:
        raise MissingWorldParameterError(
            field="identity",
            reason="root node identity cannot be empty",
        )

    comment = (request.comment or "").strip() or DEFAULT_ROOT_COMMENT
    return WorldConfig(
        root_nodes=(
            RootNodeDescriptor(
                comments=comment,
                identity=normalized_identity,
                endpoints=normalize_endpoints(request.endpoints),
            ),
        ),
        pl_id=request.pl_id or 0,
        pl_birth=request.pl_birth or 0,
        recommend=request.recommend,
    )
