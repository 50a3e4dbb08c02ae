"""Repository for the singleton global options row.

The row mirrors the root-server (planet) parameters of the world file that is
active on disk. ``world_state`` is the explicit tag for whether a custom world
is in use; the ``pl_*`` columns are only meaningful while it is
``custom_world_active`` and are zeroed whenever it is not.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ztadmin.db.enums import WorldState
from ztadmin.db.models import GLOBAL_OPTIONS_ID, GlobalOptions


@dataclass(frozen=True, slots=True)
class RootServerConfig:
    pl_id: int = 0
    pl_birth: int = 0
    recommend: bool = False
    identity: str = ""
    endpoints: tuple[str, ...] = field(default_factory=tuple)
    comment: str = ""
    in_use: bool = False

    @property
    def world_state(self) -> WorldState:
        if self.in_use:
            return WorldState.CUSTOM_WORLD_ACTIVE
        return WorldState.NO_CUSTOM_WORLD


DEFAULT_ROOT_SERVER_CONFIG = RootServerConfig()


class GlobalOptionsRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self) -> GlobalOptions | None:
        return self._session.get(GlobalOptions, GLOBAL_OPTIONS_ID)

    def get_or_create(self) -> GlobalOptions:
        options = self.get()
        if options is None:
            options = GlobalOptions(id=GLOBAL_OPTIONS_ID, pl_endpoints=[])
            self._session.add(options)
            self._session.flush()
        return options

    def get_root_server_config(self) -> RootServerConfig:
        options = self.get()
        if options is None:
            return DEFAULT_ROOT_SERVER_CONFIG
        return RootServerConfig(
            pl_id=options.pl_id,
            pl_birth=options.pl_birth,
            recommend=options.pl_recommend,
            identity=options.pl_identity,
            endpoints=tuple(options.pl_endpoints or ()),
            comment=options.pl_comment,
            in_use=options.custom_planet_used,
        )

    def save_root_server_config(self, config: RootServerConfig) -> GlobalOptions:
        options = self.get_or_create()
        options.world_state = config.world_state
        options.pl_id = config.pl_id
        options.pl_birth = config.pl_birth
        options.pl_recommend = config.recommend
        options.pl_identity = config.identity
        options.pl_endpoints = list(config.endpoints)
        options.pl_comment = config.comment
        self._session.flush()
        return options

    def reset_root_server_config(self) -> GlobalOptions:
        return self.save_root_server_config(DEFAULT_ROOT_SERVER_CONFIG)

    def update_options(
        self,
        *,
        enable_registration: bool | None = None,
        first_user_registration: bool | None = None,
        user_registration_notification: bool | None = None,
    ) -> GlobalOptions:
        options = self.get_or_create()
        if enable_registration is not None:
            options.enable_registration = enable_registration
        if first_user_registration is not None:
            options.first_user_registration = first_user_registration
        if user_registration_notification is not None:
            options.user_registration_notification = user_registration_notification
        self._session.flush()
        return options
