"""SQLAlchemy ORM models for the controller admin data contracts."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ztadmin.db.base import Base
from ztadmin.db.enums import WorldState

GLOBAL_OPTIONS_ID = 1
WORLD_STATE_ENUM = Enum(
    WorldState,
    name="world_state",
    values_callable=lambda enum_cls: [state.value for state in enum_cls],
)
ENDPOINTS_TYPE = JSONB().with_variant(JSON(), "sqlite")  # type: ignore[no-untyped-call]
AUDIT_METADATA_TYPE = JSONB().with_variant(JSON(), "sqlite")  # type: ignore[no-untyped-call]


class AppUser(Base):
    __tablename__ = "app_user"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(Text)
    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    networks: Mapped[list[ZtNetwork]] = relationship(back_populates="owner")
    audit_events: Mapped[list[AuditEvent]] = relationship(back_populates="actor_user")


class ZtNetwork(Base):
    __tablename__ = "zt_network"
    __table_args__ = (
        CheckConstraint("length(id) = 16", name="zt_network_id_len"),
        Index("idx_zt_network_owner_user_id", "owner_user_id"),
    )

    id: Mapped[str] = mapped_column(String(16), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    owner_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("app_user.id", ondelete="SET NULL"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    owner: Mapped[AppUser | None] = relationship(back_populates="networks")


class GlobalOptions(Base):
    """Singleton row holding feature flags and the active root-server parameters."""

    __tablename__ = "global_options"
    __table_args__ = (CheckConstraint("id = 1", name="global_options_singleton"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=GLOBAL_OPTIONS_ID)
    enable_registration: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    first_user_registration: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    user_registration_notification: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    world_state: Mapped[WorldState] = mapped_column(
        WORLD_STATE_ENUM,
        nullable=False,
        default=WorldState.NO_CUSTOM_WORLD,
        server_default=WorldState.NO_CUSTOM_WORLD.value,
    )
    pl_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    pl_birth: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    pl_recommend: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    pl_identity: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        server_default=text("''"),
    )
    pl_endpoints: Mapped[list[str]] = mapped_column(ENDPOINTS_TYPE, nullable=False, default=list)
    pl_comment: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        server_default=text("''"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def custom_planet_used(self) -> bool:
        return self.world_state is WorldState.CUSTOM_WORLD_ACTIVE


class AuditEvent(Base):
    __tablename__ = "audit_event"
    __table_args__ = (Index("idx_audit_event_created_at", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("app_user.id", ondelete="SET NULL"),
    )
    action: Mapped[str] = mapped_column(Text, nullable=False)
    target_type: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        AUDIT_METADATA_TYPE,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    actor_user: Mapped[AppUser | None] = relationship(back_populates="audit_events")
