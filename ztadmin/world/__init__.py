"""Custom planet (world) generation and restore."""

from ztadmin.world.config_builder import (
    InvalidBirthError,
    MissingEndpointError,
    MissingWorldParameterError,
    ReservedIdentifierError,
    WorldConfig,
    WorldConfigValidationError,
    WorldGenerateRequest,
    WorldParameterRangeError,
    build_world_config,
    validate_world_request,
)
from ztadmin.world.lifecycle import (
    GeneratorFailedError,
    MissingGeneratorError,
    MissingIdentityError,
    NoBackupAvailableError,
    PlanetInstallError,
    RestoreFailedError,
    WorldGenerateResult,
    WorldLifecycleBusyError,
    WorldLifecycleError,
    WorldLifecycleManager,
    WorldPermissionDeniedError,
    WorldResetResult,
    WorldStatusResult,
    WorldStoreUpdateError,
    create_world_lifecycle_manager,
    run_world_generate,
    run_world_reset,
)

__all__ = [
    "GeneratorFailedError",
    "InvalidBirthError",
    "MissingEndpointError",
    "MissingGeneratorError",
    "MissingIdentityError",
    "MissingWorldParameterError",
    "NoBackupAvailableError",
    "PlanetInstallError",
    "ReservedIdentifierError",
    "RestoreFailedError",
    "WorldConfig",
    "WorldConfigValidationError",
    "WorldGenerateRequest",
    "WorldGenerateResult",
    "WorldLifecycleBusyError",
    "WorldLifecycleError",
    "WorldLifecycleManager",
    "WorldParameterRangeError",
    "WorldPermissionDeniedError",
    "WorldResetResult",
    "WorldStatusResult",
    "WorldStoreUpdateError",
    "build_world_config",
    "create_world_lifecycle_manager",
    "run_world_generate",
    "run_world_reset",
]
