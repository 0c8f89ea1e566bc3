from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import EnforcementError, NotFoundError, PermissionDenied, ValidationError
from .linking import ProfileLookup, Target, resolve_target
from .profiles import parse_duration
from .punishments import (
    Staff,
    issue_ban,
    issue_warning,
    lift_ban,
    pardon_player_warnings,
)
from .rcon_client import RconClient

LOGGER = logging.getLogger(__name__)

CONFIRM_TTL_SECONDS = 60
MAX_TARGETS = 25
ACTION_TYPES = ("warn", "kick", "ban", "unban", "pardon_warnings")
CONFIRM_PREFIX = "bulk_confirm_"
CANCEL_PREFIX = "bulk_cancel_"


@dataclass
class PendingAction:
    action_id: str
    type: str
    targets: List[str]
    initiator_id: int
    initiator_name: str
    expires_at: float
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BulkResult:
    type: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def parse_players(text: str) -> List[str]:
    players = [p.strip() for p in (text or "").split(",")]
    players = [p for p in players if p]
    if not players:
        raise ValidationError("No valid players provided.")
    if len(players) > MAX_TARGETS:
        raise ValidationError(f"Maximum {MAX_TARGETS} players per bulk action.")
    return players


class PendingActionStore:
    """Single-use, owner-bound, time-limited confirmation tokens.

    Expired entries are not swept; they are treated as missing the next time
    someone tries to confirm or cancel them.
    """

    def __init__(
        self,
        ttl: float = CONFIRM_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        token_factory: Callable[[], str] = lambda: secrets.token_hex(4),
    ):
        self.ttl = ttl
        self._clock = clock
        self._token_factory = token_factory
        self._pending: Dict[str, PendingAction] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def create(
        self,
        action_type: str,
        targets: List[str],
        initiator_id: int,
        initiator_name: str = "",
        **params: Any,
    ) -> PendingAction:
        if action_type not in ACTION_TYPES:
            raise ValidationError(f"Unknown bulk action '{action_type}'.")
        action_id = self._token_factory()
        while action_id in self._pending:
            action_id = self._token_factory()
        action = PendingAction(
            action_id=action_id,
            type=action_type,
            targets=list(targets),
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            expires_at=self._clock() + self.ttl,
            params=params,
        )
        self._pending[action_id] = action
        return action

    def _live(self, action_id: str) -> PendingAction:
        action = self._pending.get(action_id)
        if action is None or action.expires_at <= self._clock():
            self._pending.pop(action_id, None)
            raise NotFoundError("This action has expired or was not found.")
        return action

    def _take(self, action_id: str, user_id: int, verb: str) -> PendingAction:
        action = self._live(action_id)
        if action.initiator_id != user_id:
            raise PermissionDenied(f"Only the initiator can {verb} this action.")
        del self._pending[action_id]
        return action

    def confirm(self, action_id: str, user_id: int) -> PendingAction:
        return self._take(action_id, user_id, "confirm")

    def cancel(self, action_id: str, user_id: int) -> PendingAction:
        return self._take(action_id, user_id, "cancel")


class BulkExecutor:
    """Run a confirmed bulk action target by target.

    Each target succeeds or fails on its own; nothing already done is rolled
    back when a later target fails.
    """

    def __init__(self, rcon: Optional[RconClient], profiles: Optional[ProfileLookup] = None):
        self.rcon = rcon
        self.profiles = profiles

    async def _target(self, player: str) -> Target:
        return await resolve_target(player, self.profiles)

    def _require_rcon(self) -> RconClient:
        if self.rcon is None:
            raise EnforcementError("RCON is not configured.")
        return self.rcon

    async def execute(self, action: PendingAction) -> BulkResult:
        result = BulkResult(type=action.type)
        staff = Staff(action.initiator_id, action.initiator_name or str(action.initiator_id))
        handler = getattr(self, f"_{action.type}")
        for player in action.targets:
            try:
                label = await handler(player, staff, action.params)
            except Exception as exc:
                LOGGER.warning("Bulk %s failed for %s: %s", action.type, player, exc)
                result.failed.append(player)
                continue
            result.succeeded.append(label or player)
        LOGGER.info(
            "Bulk %s by %s: %s succeeded, %s failed",
            action.type,
            staff.name,
            len(result.succeeded),
            len(result.failed),
        )
        return result

    async def _warn(self, player: str, staff: Staff, params: Dict[str, Any]) -> None:
        issue_warning(await self._target(player), staff, f"[Bulk] {params['reason']}")

    async def _kick(self, player: str, staff: Staff, params: Dict[str, Any]) -> None:
        outcome = await self._require_rcon().kick_player(player, params["reason"])
        if not outcome.ok:
            raise EnforcementError(outcome.reason)

    async def _ban(self, player: str, staff: Staff, params: Dict[str, Any]) -> None:
        duration = parse_duration(params.get("duration") or "perm")
        if duration is None:
            raise ValidationError(f"Invalid duration '{params.get('duration')}'.")
        await issue_ban(
            self._require_rcon(),
            await self._target(player),
            staff,
            f"[Bulk] {params['reason']}",
            duration,
        )

    async def _unban(self, player: str, staff: Staff, params: Dict[str, Any]) -> None:
        await lift_ban(self._require_rcon(), player, staff, f"[Bulk] {params.get('reason') or 'Bulk unban'}")

    async def _pardon_warnings(self, player: str, staff: Staff, params: Dict[str, Any]) -> str:
        count = pardon_player_warnings(player, staff, "[Bulk] pardon")
        return f"{player} ({count})"


async def send_bulk_message(rcon: RconClient, players: List[str], message: str) -> BulkResult:
    result = BulkResult(type="message")
    if len(players) == 1 and players[0].lower() == "all":
        outcome = await rcon.say(message)
        (result.succeeded if outcome.ok else result.failed).append("all")
        return result
    for player in players:
        outcome = await rcon.tell(player, message)
        (result.succeeded if outcome.ok else result.failed).append(player)
    return result


def format_result(result: BulkResult, initiator: str) -> str:
    title = result.type.replace("_", " ").title()
    lines = [f"Bulk {title} complete."]
    lines.append(f"Successful: {', '.join(result.succeeded) or 'None'}")
    if result.failed:
        lines.append(f"Failed: {', '.join(result.failed)}")
    lines.append(f"Executed by {initiator}")
    return "\n".join(lines)
