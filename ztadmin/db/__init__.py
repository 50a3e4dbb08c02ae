"""Database layer exports."""

from ztadmin.db.base import Base
from ztadmin.db.enums import WorldState
from ztadmin.db.models import AppUser, AuditEvent, GlobalOptions, ZtNetwork

__all__ = [
    "AppUser",
    "AuditEvent",
    "Base",
    "GlobalOptions",
    "WorldState",
    "ZtNetwork",
]
