"""Repositories for audit events."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ztadmin.db.models import AppUser, AuditEvent


class AuditEventRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_event(
        self,
        *,
        action: str,
        target_type: str,
        target_id: str,
        actor_user_id: uuid.UUID | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        event_metadata = dict(metadata or {})
        # Session actors without a local user row are kept in the metadata only.
        if actor_user_id is not None and self._session.get(AppUser, actor_user_id) is None:
            event_metadata["actor_user_id"] = str(actor_user_id)
            actor_user_id = None

        event = AuditEvent(
            actor_user_id=actor_user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            event_metadata=event_metadata,
        )
        self._session.add(event)
        self._session.flush()
        return event

    def list_for_target(self, *, target_type: str, target_id: str) -> list[AuditEvent]:
        statement = (
            select(AuditEvent)
            .where(AuditEvent.target_type == target_type, AuditEvent.target_id == target_id)
            .order_by(AuditEvent.created_at.asc())
        )
        return list(self._session.execute(statement).scalars())

    def latest_for_target(self, *, target_type: str, target_id: str) -> AuditEvent | None:
        """Return the most recent event for a target, used to surface the last world operation."""
        statement = (
            select(AuditEvent)
            .where(AuditEvent.target_type == target_type, AuditEvent.target_id == target_id)
            .order_by(AuditEvent.created_at.desc())
            .limit(1)
        )
        return self._session.execute(statement).scalar_one_or_none()
