"""Reconciliation of controller-hosted networks against adopted network rows."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ztadmin.controller.client import (
    ControllerClient,
    ControllerStatus,
    MemberInfo,
    NetworkDetail,
)

logger = logging.getLogger(__name__)

NetworkIdLoader = Callable[[], Iterable[str]]


@dataclass(frozen=True, slots=True)
class UnlinkedNetwork:
    network_id: str
    name: str
    member_count: int
    config: dict[str, Any] = field(default_factory=dict)
    members: dict[str, MemberInfo] = field(default_factory=dict)

    @classmethod
    def from_detail(cls, detail: NetworkDetail) -> UnlinkedNetwork:
        return cls(
            network_id=detail.network_id,
            name=detail.name,
            member_count=detail.member_count,
            config=detail.config,
            members=detail.members,
        )


@dataclass(frozen=True, slots=True)
class UnlinkedNetworkFailure:
    network_id: str
    error_code: str
    message: str


@dataclass(frozen=True, slots=True)
class UnlinkedNetworksResult:
    networks: tuple[UnlinkedNetwork, ...] = ()
    failures: tuple[UnlinkedNetworkFailure, ...] = ()

    @property
    def failure_count(self) -> int:
        return len(self.failures)


@dataclass(frozen=True, slots=True)
class ControllerStats:
    network_count: int
    total_members: int
    controller_status: ControllerStatus


async def find_unlinked_networks(
    *,
    controller: ControllerClient,
    load_persisted_network_ids: NetworkIdLoader,
) -> UnlinkedNetworksResult:
    """Return controller networks that have not been adopted into local storage.

    The persisted id set is read on the calling thread because loaders are
    bound to the caller's database session. A controller failure while listing
    networks propagates since no partial answer is meaningful without the
    baseline. Detail fetches for the unlinked ids are then issued concurrently
    and contained individually: a failed entry is reported in ``failures`` and
    left out of ``networks``.
    """
    persisted_ids = set(load_persisted_network_ids())
    controller_ids = await controller.list_networks()

    unlinked_ids = sorted(set(controller_ids) - persisted_ids)
    if not unlinked_ids:
        return UnlinkedNetworksResult()

    outcomes = await asyncio.gather(
        *(controller.network_detail(network_id) for network_id in unlinked_ids),
        return_exceptions=True,
    )

    networks: list[UnlinkedNetwork] = []
    failures: list[UnlinkedNetworkFailure] = []
    for network_id, outcome in zip(unlinked_ids, outcomes, strict=True):
        if isinstance(outcome, NetworkDetail):
            networks.append(UnlinkedNetwork.from_detail(outcome))
            continue
        if not isinstance(outcome, Exception):
            raise outcome
        failures.append(
            UnlinkedNetworkFailure(
                network_id=network_id,
                error_code=getattr(outcome, "error_code", "controller_detail_error"),
                message=str(outcome),
            )
        )

    if failures:
        logger.warning(
            "unlinked network detail fetch failed for %d of %d networks: %s",
            len(failures),
            len(unlinked_ids),
            ", ".join(failure.network_id for failure in failures),
        )
    return UnlinkedNetworksResult(networks=tuple(networks), failures=tuple(failures))


async def get_controller_stats(*, controller: ControllerClient) -> ControllerStats:
    network_ids = await controller.list_networks()
    controller_status, member_maps = await asyncio.gather(
        controller.status(),
        asyncio.gather(*(controller.list_members(network_id) for network_id in network_ids)),
    )
    return ControllerStats(
        network_count=len(network_ids),
        total_members=sum(len(members) for members in member_maps),
        controller_status=controller_status,
    )
