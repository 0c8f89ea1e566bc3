from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, List, Optional, Protocol

from peewee import fn

from .errors import AlreadyExistsError, NotFoundError, ValidationError
from .models import LinkedAccount, database, utcnow_naive
from .profiles import Profile, strip_uuid

LOGGER = logging.getLogger(__name__)

MENTION_RE = re.compile(r"^<@!?(\d+)>$")
SNOWFLAKE_RE = re.compile(r"^\d{17,20}$")


class ProfileLookup(Protocol):
    async def lookup(self, username: str, platform: str = "java") -> Optional[Profile]: ...

    async def lookup_any(self, username: str, platform: str = "java") -> Optional[Profile]: ...


class CooldownStore:
    """Per-key cooldowns, e.g. keyed by ``(guild_id, user_id)``."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._last: Dict[Hashable, float] = {}

    def remaining(self, key: Hashable) -> float:
        last = self._last.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.seconds - (self._clock() - last))

    def hit(self, key: Hashable) -> float:
        """Return seconds left on the cooldown, or record the use and return 0."""
        left = self.remaining(key)
        if left > 0:
            return left
        self._last[key] = self._clock()
        return 0.0

    def reset(self, key: Hashable) -> None:
        self._last.pop(key, None)


def accounts_for(discord_id: int) -> List[LinkedAccount]:
    return list(
        LinkedAccount.select()
        .where(LinkedAccount.discord_id == discord_id)
        .order_by(LinkedAccount.linked_at, LinkedAccount.id)
    )


def account_for_player(name_or_uuid: str) -> Optional[LinkedAccount]:
    value = name_or_uuid.strip()
    uuid = strip_uuid(value)
    return LinkedAccount.get_or_none(
        (LinkedAccount.uuid == uuid)
        | (fn.LOWER(LinkedAccount.minecraft_username) == value.lower())
    )


def discord_id_for_player(name_or_uuid: str) -> Optional[int]:
    account = account_for_player(name_or_uuid)
    return account.discord_id if account else None


def link_account(
    discord_id: int,
    profile: Profile,
    max_accounts: int = 2,
    linked_by: Optional[int] = None,
) -> LinkedAccount:
    uuid = strip_uuid(profile.uuid)
    existing = LinkedAccount.get_or_none(LinkedAccount.uuid == uuid)
    if existing:
        if existing.discord_id == discord_id:
            raise AlreadyExistsError(
                f"Your Discord account is already linked to **{existing.minecraft_username}** ({existing.platform})."
            )
        raise AlreadyExistsError(
            f"The Minecraft account **{profile.name}** is already linked to another Discord account."
        )
    with database.atomic():
        count = (
            LinkedAccount.select().where(LinkedAccount.discord_id == discord_id).count()
        )
        if count >= max_accounts:
            raise ValidationError(
                f"You already have {count} linked accounts, which is the maximum allowed."
            )
        account = LinkedAccount.create(
            discord_id=discord_id,
            minecraft_username=profile.name,
            uuid=uuid,
            platform=profile.platform,
            linked_at=utcnow_naive(),
            linked_by=linked_by,
            verified=linked_by is not None,
            primary=count == 0,
        )
    LOGGER.info(
        "Linked discord=%s to %s (%s, %s) by=%s",
        discord_id,
        profile.name,
        profile.platform,
        uuid,
        linked_by or "self",
    )
    return account


def unlink_account(discord_id: int, username: str) -> LinkedAccount:
    account = LinkedAccount.get_or_none(
        (LinkedAccount.discord_id == discord_id)
        & (fn.LOWER(LinkedAccount.minecraft_username) == username.strip().lower())
    )
    if not account:
        raise NotFoundError(f"No linked account named **{username}** found.")
    with database.atomic():
        account.delete_instance()
        if account.primary:
            successor = (
                LinkedAccount.select()
                .where(LinkedAccount.discord_id == discord_id)
                .order_by(LinkedAccount.linked_at, LinkedAccount.id)
                .first()
            )
            if successor:
                successor.primary = True
                successor.save()
    LOGGER.info("Unlinked %s from discord=%s", account.minecraft_username, discord_id)
    return account


@dataclass
class Target:
    """A punishment target: a Minecraft identity and, when known, its Discord owner."""

    name: str
    uuid: Optional[str] = None
    platform: Optional[str] = None
    discord_id: Optional[int] = None
    accounts: List[LinkedAccount] = field(default_factory=list)

    @property
    def all_uuids(self) -> List[str]:
        uuids = [self.uuid] if self.uuid else []
        for account in self.accounts:
            if account.uuid not in uuids:
                uuids.append(account.uuid)
        return uuids

    @property
    def label(self) -> str:
        if self.discord_id:
            return f"{self.name} (<@{self.discord_id}>)"
        return self.name


def parse_discord_id(text: str) -> Optional[int]:
    value = text.strip()
    match = MENTION_RE.match(value)
    if match:
        return int(match.group(1))
    if SNOWFLAKE_RE.match(value):
        return int(value)
    return None


async def resolve_target(
    text: str,
    profiles: Optional[ProfileLookup] = None,
    platform: str = "java",
) -> Target:
    """Resolve a mention, Discord id or Minecraft name to a :class:`Target`.

    Names are matched against linked accounts first; the profile API is only
    consulted for players who have never linked. A name the API does not know
    still resolves, without a uuid.
    """
    discord_id = parse_discord_id(text)
    if discord_id is not None:
        accounts = accounts_for(discord_id)
        if not accounts:
            raise NotFoundError("This Discord user has no linked Minecraft accounts.")
        primary = next((a for a in accounts if a.primary), accounts[0])
        return Target(
            name=primary.minecraft_username,
            uuid=primary.uuid,
            platform=primary.platform,
            discord_id=discord_id,
            accounts=accounts,
        )

    name = text.strip()
    if not name:
        raise ValidationError("No player given.")
    account = account_for_player(name)
    if account:
        return Target(
            name=account.minecraft_username,
            uuid=account.uuid,
            platform=account.platform,
            discord_id=account.discord_id,
            accounts=accounts_for(account.discord_id),
        )
    profile = await profiles.lookup_any(name, platform) if profiles else None
    if profile:
        return Target(name=profile.name, uuid=profile.uuid, platform=profile.platform)
    return Target(name=name)
