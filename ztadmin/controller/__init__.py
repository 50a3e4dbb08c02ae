"""ZeroTier controller API access."""

from ztadmin.controller.client import (
    ControllerAuthError,
    ControllerClient,
    ControllerClientError,
    ControllerNetworkNotFoundError,
    ControllerRequestError,
    ControllerStatus,
    ControllerUnreachableError,
    MemberInfo,
    NetworkDetail,
    ZeroTierControllerClient,
    create_controller_client,
)
from ztadmin.controller.reconciliation import (
    ControllerStats,
    UnlinkedNetwork,
    UnlinkedNetworkFailure,
    UnlinkedNetworksResult,
    find_unlinked_networks,
    get_controller_stats,
)

__all__ = [
    "ControllerAuthError",
    "ControllerClient",
    "ControllerClientError",
    "ControllerNetworkNotFoundError",
    "ControllerRequestError",
    "ControllerStatus",
    "ControllerStats",
    "ControllerUnreachableError",
    "MemberInfo",
    "NetworkDetail",
    "UnlinkedNetwork",
    "UnlinkedNetworkFailure",
    "UnlinkedNetworksResult",
    "ZeroTierControllerClient",
    "create_controller_client",
    "find_unlinked_networks",
    "get_controller_stats",
]
