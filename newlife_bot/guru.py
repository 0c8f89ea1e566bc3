"""Whitelist guru performance tracking.

Every apply ticket a guru touches becomes a :class:`GuruInteraction` on that
guru's :class:`GuruPerformance` row for the current week (Sunday to Saturday,
UTC). Aggregates, the 0-100 score and the diamond pay recommendation are
recomputed from the interactions after every change.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import GuruInteraction, GuruPerformance, database, utcnow_naive

LOGGER = logging.getLogger(__name__)

GREETING_PATTERNS = [
    re.compile(r"^(hi|hey|hello|welcome|greetings|howdy|hiya|heya)", re.IGNORECASE),
    re.compile(r"good\s*(morning|afternoon|evening|day)", re.IGNORECASE),
    re.compile(r"thanks?\s*for\s*(applying|your\s*application)", re.IGNORECASE),
    re.compile(r"welcome\s*to", re.IGNORECASE),
    re.compile(r"nice\s*to\s*meet", re.IGNORECASE),
    re.compile(r"appreciate\s*(you|your)", re.IGNORECASE),
]

WEIGHTS = {"volume": 0.30, "response": 0.30, "greeting": 0.20, "completion": 0.20}

# (minimum score, pay multiplier), checked top down
MULTIPLIER_TABLE: Sequence[Tuple[int, float]] = (
    (90, 2.0),
    (80, 1.75),
    (70, 1.5),
    (60, 1.25),
    (50, 1.0),
    (40, 0.75),
)
FLOOR_MULTIPLIER = 0.5
DIAMONDS_PER_WHITELIST = 1
GREETING_EXCERPT = 200


def contains_greeting(content: Optional[str]) -> bool:
    if not content or not isinstance(content, str):
        return False
    text = content.strip().lower()
    return any(pattern.search(text) for pattern in GREETING_PATTERNS)


def week_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    now = now or utcnow_naive()
    days_since_sunday = (now.weekday() + 1) % 7
    start = (now - timedelta(days=days_since_sunday)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    end = start + timedelta(days=7) - timedelta(milliseconds=1)
    return start, end


def volume_score(total_whitelisted: int) -> float:
    return min(total_whitelisted * 5, 100)


def response_score(avg_response_ms: float) -> float:
    avg_minutes = avg_response_ms / 60000
    if avg_minutes <= 5:
        return 100
    return max(0.0, 100 - (avg_minutes - 5) * 2)


def pay_multiplier(score: float) -> float:
    for minimum, multiplier in MULTIPLIER_TABLE:
        if score >= minimum:
            return multiplier
    return FLOOR_MULTIPLIER


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ScoreBreakdown:
    volume: float
    response: float
    greeting: float
    completion: float
    score: int
    multiplier: float
    recommended: int
    range_min: int
    range_max: int


def score_breakdown(
    total_whitelisted: int,
    avg_response_ms: float,
    greeting_rate: float,
    completion_rate: float,
) -> ScoreBreakdown:
    """Weighted 0-100 score and diamond pay.

    ``greeting_rate`` and ``completion_rate`` are percentages (0-100).
    """
    volume = volume_score(total_whitelisted)
    response = response_score(avg_response_ms)
    score = _round_half_up(
        volume * WEIGHTS["volume"]
        + response * WEIGHTS["response"]
        + greeting_rate * WEIGHTS["greeting"]
        + completion_rate * WEIGHTS["completion"]
    )
    multiplier = pay_multiplier(score)
    base = total_whitelisted * DIAMONDS_PER_WHITELIST
    recommended = _round_half_up(base * multiplier)
    spread = math.ceil(base * 0.1)
    return ScoreBreakdown(
        volume=volume,
        response=response,
        greeting=greeting_rate,
        completion=completion_rate,
        score=score,
        multiplier=multiplier,
        recommended=recommended,
        range_min=max(0, recommended - spread),
        range_max=recommended + spread,
    )


def recalculate(record: GuruPerformance, interactions: Optional[Iterable[GuruInteraction]] = None) -> ScoreBreakdown:
    items = list(interactions if interactions is not None else record.interactions)
    outcomes = [i.outcome for i in items]
    record.total_tickets_claimed = len(items)
    record.total_whitelisted = outcomes.count("whitelisted")
    record.total_denied = outcomes.count("denied")
    record.total_abandoned = outcomes.count("abandoned")
    record.total_transferred = outcomes.count("transferred")

    response_times = [i.response_time_ms for i in items if i.response_time_ms and i.response_time_ms > 0]
    if response_times:
        record.total_response_time_ms = sum(response_times)
        record.response_count = len(response_times)
        record.avg_response_time_ms = record.total_response_time_ms / len(response_times)
        record.min_response_time_ms = min(response_times)
        record.max_response_time_ms = max(response_times)

    record.greeting_count = sum(1 for i in items if i.did_greet)
    record.greeting_rate = (record.greeting_count / len(items) * 100) if items else 0

    claimed_not_transferred = record.total_tickets_claimed - record.total_transferred
    record.completion_rate = (
        record.total_whitelisted / claimed_not_transferred * 100
        if claimed_not_transferred > 0
        else 0
    )

    breakdown = score_breakdown(
        record.total_whitelisted,
        record.avg_response_time_ms or 0,
        record.greeting_rate,
        record.completion_rate,
    )
    record.performance_score = breakdown.score
    record.recommended_diamonds = breakdown.recommended
    record.diamond_range_min = breakdown.range_min
    record.diamond_range_max = breakdown.range_max
    return breakdown


def performance_for(
    guru_id: int, guru_tag: Optional[str], guild_id: int, now: Optional[datetime] = None
) -> GuruPerformance:
    week_start, week_end = week_bounds(now)
    record, created = GuruPerformance.get_or_create(
        guru_id=guru_id,
        week_start=week_start,
        defaults={"guru_tag": guru_tag, "guild_id": guild_id, "week_end": week_end},
    )
    if not created and guru_tag and record.guru_tag != guru_tag:
        record.guru_tag = guru_tag
        record.save()
    return record


def _interaction(record: GuruPerformance, ticket_id: str) -> Optional[GuruInteraction]:
    return GuruInteraction.get_or_none(
        (GuruInteraction.performance == record) & (GuruInteraction.ticket_id == ticket_id)
    )


def _commit(record: GuruPerformance) -> GuruPerformance:
    recalculate(record)
    record.save()
    return record


def track_response(
    guru_id: int,
    guru_tag: Optional[str],
    guild_id: int,
    ticket_id: str,
    ticket_created_at: datetime,
    content: Optional[str],
    ticket_channel_id: Optional[int] = None,
    applicant_id: Optional[int] = None,
    applicant_tag: Optional[str] = None,
    now: Optional[datetime] = None,
) -> GuruPerformance:
    now = now or utcnow_naive()
    response_ms = max(0, int((now - ticket_created_at).total_seconds() * 1000))
    greeted = contains_greeting(content)
    excerpt = content[:GREETING_EXCERPT] if greeted and content else None
    with database.atomic():
        record = performance_for(guru_id, guru_tag, guild_id, now)
        interaction = _interaction(record, ticket_id)
        if interaction is None:
            GuruInteraction.create(
                performance=record,
                ticket_id=ticket_id,
                ticket_channel_id=ticket_channel_id,
                applicant_id=applicant_id,
                applicant_tag=applicant_tag,
                ticket_created_at=ticket_created_at,
                first_response_at=now,
                response_time_ms=response_ms,
                did_greet=greeted,
                greeting_message=excerpt,
            )
        elif interaction.first_response_at is None:
            interaction.first_response_at = now
            interaction.response_time_ms = response_ms
            interaction.did_greet = interaction.did_greet or greeted
            interaction.greeting_message = interaction.greeting_message or excerpt
            interaction.save()
        elif greeted and not interaction.did_greet:
            interaction.did_greet = True
            interaction.greeting_message = excerpt
            interaction.save()
        else:
            return record
        _commit(record)
    LOGGER.info(
        "Tracked guru response guru=%s ticket=%s response=%s greeted=%s",
        guru_tag or guru_id,
        ticket_id,
        format_response_time(response_ms),
        greeted,
    )
    return record


def track_whitelist(
    guru_id: int,
    guru_tag: Optional[str],
    guild_id: int,
    ticket_id: Optional[str],
    mc_username: str,
    platform: str,
    applicant_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> GuruPerformance:
    now = now or utcnow_naive()
    with database.atomic():
        record = performance_for(guru_id, guru_tag, guild_id, now)
        interaction = _interaction(record, ticket_id) if ticket_id else None
        if interaction:
            interaction.outcome = "whitelisted"
            interaction.whitelisted_at = now
            interaction.mc_username = mc_username
            interaction.platform = platform
            interaction.save()
        else:
            GuruInteraction.create(
                performance=record,
                ticket_id=ticket_id or f"direct-{int(now.timestamp() * 1000)}",
                applicant_id=applicant_id,
                ticket_created_at=now,
                first_response_at=now,
                response_time_ms=0,
                did_greet=True,
                outcome="whitelisted",
                whitelisted_at=now,
                mc_username=mc_username,
                platform=platform,
            )
        _commit(record)
    LOGGER.info("Tracked whitelist by %s: %s (%s)", guru_tag or guru_id, mc_username, platform)
    return record


def _set_outcome(
    guru_id: int,
    guru_tag: Optional[str],
    guild_id: int,
    ticket_id: str,
    outcome: str,
    only_pending: bool = False,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[GuruPerformance]:
    with database.atomic():
        record = performance_for(guru_id, guru_tag, guild_id, now)
        interaction = _interaction(record, ticket_id)
        if interaction is None:
            return None
        if only_pending and interaction.outcome != "pending":
            return record
        interaction.outcome = outcome
        if notes:
            interaction.notes = notes
        interaction.save()
        _commit(record)
    LOGGER.info("Ticket %s for guru %s marked %s", ticket_id, guru_tag or guru_id, outcome)
    return record


def track_denied(guru_id, guru_tag, guild_id, ticket_id, reason=None, now=None):
    return _set_outcome(guru_id, guru_tag, guild_id, ticket_id, "denied", notes=reason, now=now)


def track_abandoned(guru_id, guru_tag, guild_id, ticket_id, now=None):
    return _set_outcome(guru_id, guru_tag, guild_id, ticket_id, "abandoned", only_pending=True, now=now)


def track_transferred(guru_id, guru_tag, guild_id, ticket_id, now=None):
    return _set_outcome(guru_id, guru_tag, guild_id, ticket_id, "transferred", now=now)


def pending_interactions_for_ticket(ticket_id: str) -> List[GuruInteraction]:
    return list(
        GuruInteraction.select(GuruInteraction, GuruPerformance)
        .join(GuruPerformance)
        .where(
            (GuruInteraction.ticket_id == ticket_id)
            & (GuruInteraction.outcome == "pending")
        )
    )


def abandon_ticket(ticket_id: str) -> int:
    """Mark every still-pending interaction for a closed ticket as abandoned."""
    pending = pending_interactions_for_ticket(ticket_id)
    with database.atomic():
        for interaction in pending:
            interaction.outcome = "abandoned"
            interaction.save()
            _commit(interaction.performance)
    if pending:
        LOGGER.info("Ticket %s closed with %s pending interaction(s)", ticket_id, len(pending))
    return len(pending)


def weekly_records(guild_id: int, week_start: Optional[datetime] = None) -> List[GuruPerformance]:
    if week_start is None:
        week_start, _ = week_bounds()
    return list(
        GuruPerformance.select()
        .where(
            (GuruPerformance.guild_id == guild_id)
            & (GuruPerformance.week_start == week_start)
        )
        .order_by(GuruPerformance.performance_score.desc())
    )


def last_week_records(guild_id: int, now: Optional[datetime] = None) -> List[GuruPerformance]:
    week_start, _ = week_bounds(now)
    return weekly_records(guild_id, week_start - timedelta(days=7))


def history_for(guru_id: int, guild_id: int, weeks: int = 4) -> List[GuruPerformance]:
    return list(
        GuruPerformance.select()
        .where(
            (GuruPerformance.guru_id == guru_id)
            & (GuruPerformance.guild_id == guild_id)
        )
        .order_by(GuruPerformance.week_start.desc())
        .limit(max(1, weeks))
    )


def format_response_time(ms: Optional[float]) -> str:
    if not ms or ms < 0:
        return "N/A"
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def performance_rating(score: float) -> str:
    if score >= 90:
        return "Excellent"
    if score >= 80:
        return "Great"
    if score >= 70:
        return "Good"
    if score >= 60:
        return "Satisfactory"
    if score >= 50:
        return "Average"
    return "Needs Improvement"


def response_time_rating(avg_ms: float) -> str:
    minutes = (avg_ms or 0) / 60000
    if minutes <= 5:
        return "Excellent"
    if minutes <= 15:
        return "Great"
    if minutes <= 30:
        return "Good"
    if minutes <= 60:
        return "Needs Work"
    return "Slow"


def _label(record: GuruPerformance) -> str:
    return record.guru_tag or str(record.guru_id)


def build_weekly_report(records: Sequence[GuruPerformance], week_start: datetime, week_end: datetime) -> str:
    total_whitelists = sum(r.total_whitelisted for r in records)
    total_tickets = sum(r.total_tickets_claimed for r in records)
    lines = [
        "**Weekly Guru Performance Report**",
        f"Week: {week_start:%Y-%m-%d} to {week_end:%Y-%m-%d}",
        f"Total Whitelists: {total_whitelists}",
        f"Total Tickets Claimed: {total_tickets}",
        f"Active Gurus: {len(records)}",
    ]
    if not records:
        lines.append("No guru activity recorded this week.")
        return "\n".join(lines)

    ordered = sorted(records, key=lambda r: r.performance_score, reverse=True)
    table = ["```", f"{'GURU':<24}  {'DIAMONDS':>10}", "-" * 36]
    total_diamonds = 0
    for record in ordered:
        table.append(f"{_label(record)[:24]:<24}  {record.recommended_diamonds:>10}")
        total_diamonds += record.recommended_diamonds
    table.append("-" * 36)
    table.append(f"{'TOTAL':<24}  {total_diamonds:>10}")
    table.append("```")
    lines.extend(table)

    for record in ordered[:10]:
        lines.append(
            f"**{_label(record)}** [{performance_rating(record.performance_score)}] "
            f"Score {record.performance_score}/100 | "
            f"Whitelisted {record.total_whitelisted} | Denied {record.total_denied} | "
            f"Avg response {format_response_time(record.avg_response_time_ms)} "
            f"({response_time_rating(record.avg_response_time_ms)}) | "
            f"Greeting {record.greeting_rate:.0f}% | "
            f"Pay {record.recommended_diamonds} diamonds "
            f"({record.diamond_range_min}-{record.diamond_range_max})"
        )
    return "\n".join(lines)


def describe_performance(record: GuruPerformance) -> str:
    interactions = list(
        record.interactions.order_by(GuruInteraction.created_at.desc(), GuruInteraction.id.desc()).limit(5)
    )
    lines = [
        f"**{_label(record)}** - {performance_rating(record.performance_score)}",
        f"Performance Score: {record.performance_score}/100",
        f"Tickets Claimed: {record.total_tickets_claimed} | Whitelisted: {record.total_whitelisted} | "
        f"Denied: {record.total_denied} | Abandoned: {record.total_abandoned}",
        f"Completion Rate: {record.completion_rate:.1f}%",
        f"Avg Response: {format_response_time(record.avg_response_time_ms)} | "
        f"Fastest: {format_response_time(record.min_response_time_ms)} | "
        f"Slowest: {format_response_time(record.max_response_time_ms)}",
        f"Greeting Rate: {record.greeting_rate:.1f}%",
        f"Payment: {record.recommended_diamonds} diamonds "
        f"(range {record.diamond_range_min}-{record.diamond_range_max})",
    ]
    if interactions:
        lines.append("Recent Activity:")
        for item in interactions:
            greet = " [Greeted]" if item.did_greet else ""
            lines.append(
                f"[{item.outcome.title()}] {item.mc_username or 'Unknown'} - "
                f"{format_response_time(item.response_time_ms)}{greet}"
            )
    return "\n".join(lines)
