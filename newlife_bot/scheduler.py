from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Set

from peewee import fn

from . import guru
from .errors import Failed, Ok, StepResult
from .models import LinkedAccount, utcnow_naive
from .notifications import Messenger
from .rcon_client import RconClient

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

# (seconds left announced, pause before the next step)
RESTART_COUNTDOWN: Sequence[tuple[int, int]] = (
    (30, 10),
    (20, 10),
    (10, 5),
    (5, 3),
    (2, 2),
)
WEEKLY_REPORT_WEEKDAY = 0  # Monday
WEEKLY_REPORT_HOUR = 9
EXPIRY_SWEEP_SECONDS = 60


def next_daily_run(now: datetime, hour: int, minute: int = 0) -> datetime:
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


def next_weekly_run(
    now: datetime,
    weekday: int = WEEKLY_REPORT_WEEKDAY,
    hour: int = WEEKLY_REPORT_HOUR,
    minute: int = 0,
) -> datetime:
    days_ahead = (weekday - now.weekday()) % 7
    target = (now + timedelta(days=days_ahead)).replace(
        hour=hour, minute=minute, second=0, microsecond=0
    )
    if target <= now:
        target += timedelta(days=7)
    return target


def restart_warning(seconds: int) -> str:
    if seconds == 30:
        return "&c[Server] &fRestarting in 30 seconds for scheduled maintenance!"
    return f"&c[Server] &fRestarting in {seconds} seconds!"


async def run_restart_sequence(
    rcon: RconClient, reason: str = "Scheduled maintenance", sleep: Sleep = asyncio.sleep
) -> StepResult:
    """Count down in game, then restart the server.

    A failed broadcast does not stop the countdown; only the final
    ``restart`` decides the outcome.
    """
    LOGGER.info("Starting restart sequence: %s", reason)
    for seconds, pause in RESTART_COUNTDOWN:
        warned = await rcon.broadcast(restart_warning(seconds))
        if not warned.ok:
            LOGGER.warning("Restart broadcast failed: %s", warned.reason)
        await sleep(pause)
    result = await rcon.run("restart")
    if result.ok:
        LOGGER.info("Server restart initiated")
    else:
        LOGGER.error("Server restart failed: %s", result.reason)
    return result


def restart_report(result: StepResult, reason: str, now: Optional[datetime] = None) -> str:
    now = now or utcnow_naive()
    if result.ok:
        return (
            "**Server Restart Successful**\n"
            f"Reason: {reason}\nTime: {now:%Y-%m-%d %H:%M UTC}"
        )
    return (
        "**Server Restart Failed**\n"
        f"Reason: {reason}\nError: ```{result.reason}```"
    )


async def restart_and_report(
    rcon: RconClient,
    messenger: Messenger,
    owner_id: Optional[int],
    reason: str = "Scheduled maintenance",
    sleep: Sleep = asyncio.sleep,
) -> StepResult:
    result = await run_restart_sequence(rcon, reason, sleep=sleep)
    if owner_id:
        sent = await messenger.send_dm(owner_id, restart_report(result, reason))
        if not sent.ok:
            LOGGER.warning("Could not DM restart outcome to owner: %s", sent.reason)
    return result


def _role_ids(member: Any) -> Set[int]:
    return {role.id for role in getattr(member, "roles", [])}


def online_discord_ids(players: Iterable[str]) -> Set[int]:
    names = [name.lower() for name in players]
    if not names:
        return set()
    query = LinkedAccount.select(LinkedAccount.discord_id).where(
        fn.LOWER(LinkedAccount.minecraft_username).in_(names)
    )
    return {row.discord_id for row in query}


class StaffOnlineSync:
    """Keep the "currently moderating" role in line with who is in game."""

    def __init__(self, rcon: RconClient, staff_role_id: int, moderating_role_id: int):
        self.rcon = rcon
        self.staff_role_id = staff_role_id
        self.moderating_role_id = moderating_role_id
        self._running = False

    async def tick(self, guild: Any) -> Optional[tuple[int, int]]:
        """Run one pass; returns ``(added, removed)`` or None when skipped."""
        if self._running:
            LOGGER.debug("Staff online sync still running, skipping tick")
            return None
        self._running = True
        try:
            return await self._sync(guild)
        finally:
            self._running = False

    async def _sync(self, guild: Any) -> Optional[tuple[int, int]]:
        role = guild.get_role(self.moderating_role_id)
        if role is None:
            LOGGER.error("Currently moderating role %s not found", self.moderating_role_id)
            return None
        players = await self.rcon.list_players()
        online = online_discord_ids(players)
        added = removed = 0
        for member in list(guild.members):
            roles = _role_ids(member)
            is_staff = self.staff_role_id in roles
            has_role = self.moderating_role_id in roles
            should_have = is_staff and member.id in online
            try:
                if should_have and not has_role:
                    await member.add_roles(role, reason="Staff online on Minecraft server")
                    added += 1
                elif has_role and not should_have:
                    reason = (
                        "Staff no longer online on Minecraft server"
                        if is_staff
                        else "User is not staff"
                    )
                    await member.remove_roles(role, reason=reason)
                    removed += 1
            except Exception as exc:
                LOGGER.warning("Failed to update moderating role for %s: %s", member.id, exc)
        if added or removed:
            LOGGER.info(
                "Staff online roles updated: +%s -%s, online staff=%s",
                added,
                removed,
                len(online),
            )
        return added, removed


def report_recipients(owner_id: Optional[int], extra: Iterable[int]) -> List[int]:
    recipients: List[int] = []
    for user_id in ([owner_id] if owner_id else []) + list(extra):
        if user_id not in recipients:
            recipients.append(user_id)
    return recipients


async def send_weekly_guru_report(
    messenger: Messenger,
    guild_id: int,
    recipients: Sequence[int],
    now: Optional[datetime] = None,
) -> StepResult:
    now = now or utcnow_naive()
    if not recipients:
        return Failed("no report recipients configured")
    records = guru.last_week_records(guild_id, now)
    if not records:
        LOGGER.info("No guru records for last week")
        return Failed("no records")
    if all(record.report_sent for record in records):
        LOGGER.info("Weekly guru report already sent")
        return Failed("already sent")

    week_start, week_end = guru.week_bounds(now)
    text = guru.build_weekly_report(
        records, week_start - timedelta(days=7), week_end - timedelta(days=7)
    )
    delivered = 0
    for user_id in recipients:
        sent = await messenger.send_dm(user_id, text)
        if sent.ok:
            delivered += 1
            LOGGER.info("Weekly guru report sent to %s", user_id)
        else:
            LOGGER.warning("Failed to send guru report to %s: %s", user_id, sent.reason)

    stamp = utcnow_naive()
    for record in records:
        record.report_sent = True
        record.report_sent_at = stamp
        record.save()
    return Ok(delivered)
