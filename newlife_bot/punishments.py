from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from peewee import fn

from . import models
from .cases import next_case_number
from .errors import (
    AlreadyExistsError,
    EnforcementError,
    NotFoundError,
    ValidationError,
)
from .linking import Target
from .models import Ban, Fine, Infraction, Kick, Mute, utcnow_naive
from .profiles import Duration
from .rcon_client import RconClient

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Staff:
    id: int
    name: str


def _target_fields(target: Target) -> dict:
    return {
        "target_uuid": target.uuid,
        "target_name": target.name,
        "discord_id": target.discord_id,
    }


def _by_player(model, name: str):
    return fn.LOWER(model.target_name) == name.strip().lower()


def issue_warning(
    target: Target,
    staff: Staff,
    reason: str,
    severity: str = "moderate",
    category: str = "other",
    discord_tag: Optional[str] = None,
) -> models.Warning:
    """Persist a warning. Warnings never touch RCON.

    A target with no linked Discord account is still warned; the notifier
    just has nobody to DM.
    """
    if severity not in models.WARNING_SEVERITIES:
        raise ValidationError(f"Unknown severity '{severity}'.")
    if category not in models.WARNING_CATEGORIES:
        raise ValidationError(f"Unknown category '{category}'.")
    warning = models.Warning(
        case_number=next_case_number(),
        platform=target.platform,
        severity=severity,
        category=category,
        discord_tag=discord_tag,
        staff_id=staff.id,
        staff_name=staff.name,
        reason=reason,
        **_target_fields(target),
    )
    warning.uuids = target.all_uuids
    warning.save(force_insert=True)
    LOGGER.info(
        "Warning case=%s issued to %s by %s: %s",
        warning.case_number,
        target.name,
        staff.name,
        reason,
    )
    return warning


def warnings_for(name_or_discord: str | int, include_removed: bool = False) -> List[models.Warning]:
    W = models.Warning
    if isinstance(name_or_discord, int):
        query = W.select().where(W.discord_id == name_or_discord)
    else:
        query = W.select().where(_by_player(W, name_or_discord))
    if not include_removed:
        query = query.where(W.active == True)  # noqa: E712
    return list(query.order_by(W.created_at.desc()))


def pardon_warning(case_number: int, staff: Staff, reason: Optional[str] = None) -> models.Warning:
    warning = models.Warning.get_or_none(models.Warning.case_number == case_number)
    if not warning:
        raise NotFoundError(f"No warning found with case #{case_number}.")
    if not warning.revoke(staff.name, reason):
        raise AlreadyExistsError(f"Warning #{case_number} is already removed.")
    LOGGER.info("Warning case=%s pardoned by %s", case_number, staff.name)
    return warning


def pardon_player_warnings(name: str, staff: Staff, reason: Optional[str] = None) -> int:
    W = models.Warning
    return (
        W.update(
            active=False,
            revoked_by=staff.name,
            revoked_at=utcnow_naive(),
            revoke_reason=reason,
            updated_at=utcnow_naive(),
        )
        .where(_by_player(W, name) & (W.active == True))  # noqa: E712
        .execute()
    )


def active_ban(target: Target, now: Optional[datetime] = None) -> Optional[Ban]:
    clauses = _by_player(Ban, target.name)
    if target.uuid:
        clauses = clauses | (Ban.target_uuid == target.uuid)
    for ban in Ban.select().where(clauses & (Ban.active == True)):  # noqa: E712
        if ban.in_force(now):
            return ban
    return None


async def issue_ban(
    rcon: RconClient,
    target: Target,
    staff: Staff,
    reason: str,
    duration: Duration,
    discord_tag: Optional[str] = None,
) -> Ban:
    """Enforce a ban over RCON, then persist it.

    When the server rejects or never receives the ban, nothing is written.
    """
    existing = active_ban(target)
    if existing:
        raise AlreadyExistsError(
            f"**{target.name}** is already banned (case #{existing.case_number})."
        )
    expires_at = None if duration.is_permanent else utcnow_naive() + duration.delta
    result = await rcon.ban_player(target.name, reason)
    if not result.ok:
        raise EnforcementError(f"Could not ban **{target.name}**: {result.reason}")
    ban = Ban(
        case_number=next_case_number(),
        platform=target.platform,
        duration=duration.display,
        is_permanent=duration.is_permanent,
        expires_at=expires_at,
        discord_tag=discord_tag,
        staff_id=staff.id,
        staff_name=staff.name,
        reason=reason,
        **_target_fields(target),
    )
    ban.uuids = target.all_uuids
    ban.save(force_insert=True)
    LOGGER.info(
        "Ban case=%s issued to %s by %s for %s: %s",
        ban.case_number,
        target.name,
        staff.name,
        duration.display,
        reason,
    )
    return ban


async def lift_ban(
    rcon: RconClient, name: str, staff: Staff, reason: Optional[str] = None
) -> int:
    """Pardon over RCON, then revoke every active ban for the player."""
    result = await rcon.unban_player(name)
    if not result.ok:
        raise EnforcementError(f"Could not unban **{name}**: {result.reason}")
    revoked = 0
    for ban in Ban.select().where(_by_player(Ban, name) & (Ban.active == True)):  # noqa: E712
        if ban.revoke(staff.name, reason):
            revoked += 1
    LOGGER.info("Unbanned %s by %s, revoked %s ban(s)", name, staff.name, revoked)
    return revoked


def bans_for(name: str) -> List[Ban]:
    return list(Ban.select().where(_by_player(Ban, name)).order_by(Ban.created_at.desc()))


async def record_kick(
    rcon: RconClient, target: Target, staff: Staff, reason: str
) -> Kick:
    result = await rcon.kick_player(target.name, reason)
    kick = Kick.create(
        case_number=next_case_number(),
        platform=target.platform,
        staff_id=staff.id,
        staff_name=staff.name,
        reason=reason,
        rcon_executed=result.ok,
        active=False,
        **_target_fields(target),
    )
    LOGGER.info(
        "Kick case=%s for %s by %s (rcon=%s)",
        kick.case_number,
        target.name,
        staff.name,
        result.ok,
    )
    return kick


def issue_mute(
    discord_id: int,
    discord_tag: str,
    staff: Staff,
    reason: str,
    duration: Duration,
    target: Optional[Target] = None,
) -> Mute:
    if duration.is_permanent:
        raise ValidationError("Mutes need a finite duration.")
    existing = active_mute(discord_id)
    if existing:
        raise AlreadyExistsError(f"<@{discord_id}> is already muted (case #{existing.case_number}).")
    mute = Mute.create(
        case_number=next_case_number(),
        discord_id=discord_id,
        discord_tag=discord_tag,
        target_uuid=target.uuid if target else None,
        target_name=target.name if target else None,
        staff_id=staff.id,
        staff_name=staff.name,
        reason=reason,
        duration=duration.display,
        expires_at=utcnow_naive() + duration.delta,
    )
    LOGGER.info("Mute case=%s for %s by %s", mute.case_number, discord_id, staff.name)
    return mute


def active_mute(discord_id: int, now: Optional[datetime] = None) -> Optional[Mute]:
    now = now or utcnow_naive()
    return (
        Mute.select()
        .where(
            (Mute.discord_id == discord_id)
            & (Mute.active == True)  # noqa: E712
            & (Mute.expires_at.is_null() | (Mute.expires_at > now))
        )
        .first()
    )


def lift_mute(discord_id: int, staff: Staff) -> Mute:
    mute = active_mute(discord_id)
    if not mute:
        raise NotFoundError(f"<@{discord_id}> is not muted.")
    mute.revoke(staff.name, "Unmuted")
    return mute


def issue_fine(
    target: Target, staff: Staff, amount: str, due: Optional[Duration] = None
) -> Fine:
    if not amount.strip():
        raise ValidationError("Fine amount is required.")
    fine = Fine.create(
        case_number=next_case_number(),
        staff_id=staff.id,
        staff_name=staff.name,
        amount=amount.strip(),
        reason=f"Fine: {amount.strip()}",
        due_at=utcnow_naive() + due.delta if due and due.delta else None,
        **_target_fields(target),
    )
    LOGGER.info("Fine case=%s issued to %s by %s", fine.case_number, target.name, staff.name)
    return fine


def mark_fine_paid(case: str, staff: Staff) -> Fine:
    fine = Fine.get_or_none(Fine.id == case.strip())
    if fine is None and case.strip().lstrip("#").isdigit():
        fine = Fine.get_or_none(Fine.case_number == int(case.strip().lstrip("#")))
    if fine is None:
        raise NotFoundError(f"No fine found for `{case}`.")
    if not fine.revoke(staff.name, "Paid"):
        raise AlreadyExistsError(f"Fine #{fine.case_number} is already paid.")
    LOGGER.info("Fine case=%s marked paid by %s", fine.case_number, staff.name)
    return fine


def issue_infraction(
    target_id: int,
    target_tag: str,
    staff: Staff,
    infraction_type: str,
    reason: str,
    guild_id: Optional[int] = None,
) -> Infraction:
    if infraction_type not in models.INFRACTION_TYPES:
        raise ValidationError(f"Unknown infraction type '{infraction_type}'.")
    infraction = Infraction.create(
        case_number=next_case_number(),
        discord_id=target_id,
        discord_tag=target_tag,
        target_name=target_tag,
        staff_id=staff.id,
        staff_name=staff.name,
        type=infraction_type,
        reason=reason,
        guild_id=guild_id,
    )
    LOGGER.info(
        "Infraction case=%s (%s) issued to %s by %s",
        infraction.case_number,
        infraction_type,
        target_tag,
        staff.name,
    )
    return infraction


def infractions_for(target_id: int, infraction_type: Optional[str] = None) -> List[Infraction]:
    query = Infraction.select().where(Infraction.discord_id == target_id)
    if infraction_type:
        query = query.where(Infraction.type == infraction_type)
    return list(query.order_by(Infraction.created_at.desc()))


def revoke_infraction(case_number: int, staff: Staff, reason: Optional[str] = None) -> Infraction:
    infraction = Infraction.get_or_none(Infraction.case_number == case_number)
    if not infraction:
        raise NotFoundError(f"No infraction found with case #{case_number}.")
    if not infraction.revoke(staff.name, reason):
        raise AlreadyExistsError(f"Infraction #{case_number} is already revoked.")
    return infraction


def find_case(case_number: int) -> Optional[models.PunishmentModel]:
    for model in models.PUNISHMENT_MODELS:
        record = model.get_or_none(model.case_number == case_number)
        if record:
            return record
    return None


def expire_punishments(now: Optional[datetime] = None) -> Sequence[models.PunishmentModel]:
    """Mark mutes and temporary bans past their expiry as inactive."""
    now = now or utcnow_naive()
    expired: List[models.PunishmentModel] = []
    for model in (Mute, Ban):
        query = model.select().where(
            (model.active == True)  # noqa: E712
            & model.expires_at.is_null(False)
            & (model.expires_at <= now)
        )
        for record in query:
            if record.revoke("System", "Expired"):
                expired.append(record)
    if expired:
        LOGGER.info("Expired %s punishment(s)", len(expired))
    return expired
