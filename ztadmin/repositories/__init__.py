"""Repository layer exports."""

from ztadmin.repositories.audit_events import AuditEventRepository
from ztadmin.repositories.errors import (
    InvalidNetworkIdError,
    NetworkAlreadyAdoptedError,
    RepositoryError,
)
from ztadmin.repositories.global_options import (
    DEFAULT_ROOT_SERVER_CONFIG,
    GlobalOptionsRepository,
    RootServerConfig,
)
from ztadmin.repositories.networks import NetworkRepository, normalize_network_id

__all__ = [
    "AuditEventRepository",
    "DEFAULT_ROOT_SERVER_CONFIG",
    "GlobalOptionsRepository",
    "InvalidNetworkIdError",
    "NetworkAlreadyAdoptedError",
    "NetworkRepository",
    "RepositoryError",
    "RootServerConfig",
    "normalize_network_id",
]
