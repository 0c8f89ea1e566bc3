from __future__ import annotations

import enum
from typing import Any, Iterable, Optional

from .config import BotConfig
from .errors import PermissionDenied


class Tier(enum.IntEnum):
    EVERYONE = 0
    STAFF = 1
    MODERATOR = 2
    ADMIN = 3
    SUPERVISOR = 4
    MANAGEMENT = 5
    OWNER = 6

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


def _role_ids(member: Any) -> set[int]:
    roles: Iterable[Any] = getattr(member, "roles", None) or []
    return {int(getattr(role, "id", role)) for role in roles}


def resolve_tier(member: Any, config: BotConfig) -> Tier:
    if member is None:
        return Tier.EVERYONE
    member_id: Optional[int] = getattr(member, "id", None)
    if config.owner_id is not None and member_id == config.owner_id:
        return Tier.OWNER
    held = _role_ids(member)
    best = Tier.EVERYONE
    for name, role_id in config.role_ids.items():
        tier = Tier[name.upper()]
        if role_id in held and tier > best:
            best = tier
    return best


def has_tier(member: Any, config: BotConfig, required: Tier) -> bool:
    return resolve_tier(member, config) >= required


def require_tier(member: Any, config: BotConfig, required: Tier) -> Tier:
    tier = resolve_tier(member, config)
    if tier < required:
        raise PermissionDenied(
            f"This command requires {required.label} or higher.", required=required
        )
    return tier
