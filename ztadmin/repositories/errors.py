"""Repository-level domain errors."""


class RepositoryError(Exception):
    """Base repository exception."""


class InvalidNetworkIdError(RepositoryError):
    """Raised when a network id is not a 16-char lowercase hex controller id."""

    def __init__(self, network_id: str) -> None:
        super().__init__(f"invalid controller network id: {network_id!r}")
        self.network_id = network_id


class NetworkAlreadyAdoptedError(RepositoryError):
    """Raised when adopting a network that is already persisted."""

    def __init__(self, network_id: str) -> None:
        super().__init__(f"network {network_id} is already linked to this dashboard")
        self.network_id = network_id
