"""Repositories for adopted ZeroTier network rows."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from ztadmin.db.models import AppUser, ZtNetwork
from ztadmin.repositories.errors import InvalidNetworkIdError, NetworkAlreadyAdoptedError

LOWER_HEX_CHARS = frozenset("0123456789abcdef")


class NetworkRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_id(self, network_id: str) -> ZtNetwork | None:
        return self._session.get(ZtNetwork, network_id)

    def list_all(self) -> list[ZtNetwork]:
        statement = select(ZtNetwork).order_by(ZtNetwork.id.asc())
        return list(self._session.execute(statement).scalars())

    def list_ids(self) -> set[str]:
        return set(self._session.execute(select(ZtNetwork.id)).scalars())

    def adopt(
        self,
        *,
        network_id: str,
        name: str,
        owner_user_id: uuid.UUID | None = None,
    ) -> ZtNetwork:
        normalized_id = normalize_network_id(network_id)
        if self.get_by_id(normalized_id) is not None:
            raise NetworkAlreadyAdoptedError(normalized_id)
        if owner_user_id is not None and self._session.get(AppUser, owner_user_id) is None:
            owner_user_id = None

        network = ZtNetwork(
            id=normalized_id,
            name=name.strip(),
            owner_user_id=owner_user_id,
        )
        self._session.add(network)
        self._session.flush()
        return network


def normalize_network_id(network_id: str) -> str:
    normalized = network_id.strip().lower()
    if len(normalized) != 16 or not all(ch in LOWER_HEX_CHARS for ch in normalized):
        raise InvalidNetworkIdError(network_id)
    return normalized
