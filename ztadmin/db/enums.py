"""Domain enums."""

from enum import StrEnum


class WorldState(StrEnum):
    NO_CUSTOM_WORLD = "no_custom_world"
    CUSTOM_WORLD_ACTIVE = "custom_world_active"
