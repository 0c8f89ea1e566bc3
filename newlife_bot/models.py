from __future__ import annotations

import json
import uuid as uuid_lib
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional

from peewee import (
    AutoField,
    BooleanField,
    CharField,
    DateTimeField,
    FloatField,
    ForeignKeyField,
    IntegerField,
    SqliteDatabase,
    TextField,
)
from playhouse.signals import Model

database = SqliteDatabase(None)

WARNING_SEVERITIES = ("minor", "moderate", "severe")
WARNING_CATEGORIES = ("behavior", "chat", "cheating", "griefing", "other")
INFRACTION_TYPES = ("termination", "warning", "notice", "strike")
PLATFORMS = ("java", "bedrock")
OUTCOMES = ("pending", "whitelisted", "denied", "abandoned", "transferred")
AUDIT_RETENTION = timedelta(days=90)


def utcnow_naive() -> datetime:
    """Return current UTC time without tzinfo for SQLite storage."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_record_id() -> str:
    return uuid_lib.uuid4().hex


class BaseModel(Model):
    created_at = DateTimeField(default=utcnow_naive)
    updated_at = DateTimeField(default=utcnow_naive)

    def save(self, *args, **kwargs):  # type: ignore[override]
        self.updated_at = utcnow_naive()
        return super().save(*args, **kwargs)

    class Meta:
        database = database


class Counter(BaseModel):
    name = CharField(primary_key=True)
    seq = IntegerField(default=0)


class PunishmentModel(BaseModel):
    """Fields shared by every case-numbered punishment record.

    Records are created once and move from active to inactive at most once
    through :meth:`revoke`. They are only deleted by explicit cleanup.
    """

    id = CharField(primary_key=True, default=new_record_id)
    case_number = IntegerField(null=True, index=True)
    target_uuid = CharField(null=True, index=True)
    target_name = CharField(null=True, index=True)
    discord_id = IntegerField(null=True, index=True)
    discord_tag = CharField(null=True)
    staff_id = IntegerField(null=True)
    staff_name = CharField()
    reason = TextField()
    active = BooleanField(default=True, index=True)
    revoked_by = CharField(null=True)
    revoked_at = DateTimeField(null=True)
    revoke_reason = TextField(null=True)

    def revoke(self, by: str, reason: Optional[str] = None) -> bool:
        if not self.active:
            return False
        self.active = False
        self.revoked_by = by
        self.revoked_at = utcnow_naive()
        self.revoke_reason = reason
        self.save()
        return True

    @property
    def kind(self) -> str:
        return type(self).__name__.lower()


def _dump_list(values: Iterable[str]) -> str:
    return json.dumps(sorted(set(values)))


def _load_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        return list(json.loads(raw))
    except (TypeError, ValueError):
        return []


class Warning(PunishmentModel):
    platform = CharField(null=True)
    severity = CharField(default="moderate")
    category = CharField(default="other")
    warned_uuids = TextField(null=True)
    dm_sent = BooleanField(default=False)

    @property
    def uuids(self) -> List[str]:
        return _load_list(self.warned_uuids)

    @uuids.setter
    def uuids(self, values: Iterable[str]) -> None:
        self.warned_uuids = _dump_list(values)


class Ban(PunishmentModel):
    platform = CharField(null=True)
    banned_uuids = TextField(null=True)
    duration = CharField(null=True)
    is_permanent = BooleanField(default=True)
    expires_at = DateTimeField(null=True)
    dm_sent = BooleanField(default=False)

    @property
    def uuids(self) -> List[str]:
        return _load_list(self.banned_uuids)

    @uuids.setter
    def uuids(self, values: Iterable[str]) -> None:
        self.banned_uuids = _dump_list(values)

    def in_force(self, now: Optional[datetime] = None) -> bool:
        if not self.active:
            return False
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utcnow_naive())


class Fine(PunishmentModel):
    amount = CharField()
    due_at = DateTimeField(null=True)

    @property
    def paid(self) -> bool:
        return not self.active


class Infraction(PunishmentModel):
    type = CharField(index=True)
    guild_id = IntegerField(null=True)


class Mute(PunishmentModel):
    duration = CharField(null=True)
    expires_at = DateTimeField(null=True, index=True)


class Kick(PunishmentModel):
    platform = CharField(null=True)
    rcon_executed = BooleanField(default=False)


PUNISHMENT_MODELS = (Warning, Ban, Fine, Infraction, Mute, Kick)


class LinkedAccount(BaseModel):
    id = AutoField()
    discord_id = IntegerField(index=True)
    minecraft_username = CharField(index=True)
    uuid = CharField(index=True)
    platform = CharField()
    linked_at = DateTimeField(default=utcnow_naive)
    linked_by = IntegerField(null=True)
    verified = BooleanField(default=False)
    primary = BooleanField(default=False)

    class Meta:
        table_name = "linked_account"
        indexes = ((("discord_id", "uuid"), True),)


class GuruPerformance(BaseModel):
    id = AutoField()
    guru_id = IntegerField(index=True)
    guru_tag = CharField(null=True)
    guild_id = IntegerField(index=True)
    week_start = DateTimeField(index=True)
    week_end = DateTimeField()

    total_tickets_claimed = IntegerField(default=0)
    total_whitelisted = IntegerField(default=0)
    total_denied = IntegerField(default=0)
    total_abandoned = IntegerField(default=0)
    total_transferred = IntegerField(default=0)

    avg_response_time_ms = FloatField(default=0)
    min_response_time_ms = IntegerField(null=True)
    max_response_time_ms = IntegerField(null=True)
    total_response_time_ms = IntegerField(default=0)
    response_count = IntegerField(default=0)

    greeting_count = IntegerField(default=0)
    greeting_rate = FloatField(default=0)
    completion_rate = FloatField(default=0)
    performance_score = IntegerField(default=0)

    recommended_diamonds = IntegerField(default=0)
    diamond_range_min = IntegerField(default=0)
    diamond_range_max = IntegerField(default=0)

    report_sent = BooleanField(default=False)
    report_sent_at = DateTimeField(null=True)

    class Meta:
        table_name = "guru_performance"
        indexes = ((("guru_id", "week_start"), True),)


class GuruInteraction(BaseModel):
    id = AutoField()
    performance = ForeignKeyField(
        GuruPerformance, backref="interactions", on_delete="CASCADE"
    )
    ticket_id = CharField()
    ticket_channel_id = IntegerField(null=True)
    applicant_id = IntegerField(null=True)
    applicant_tag = CharField(null=True)
    ticket_created_at = DateTimeField()
    first_response_at = DateTimeField(null=True)
    response_time_ms = IntegerField(null=True)
    did_greet = BooleanField(default=False)
    greeting_message = TextField(null=True)
    outcome = CharField(default="pending")
    whitelisted_at = DateTimeField(null=True)
    mc_username = CharField(null=True)
    platform = CharField(null=True)
    notes = TextField(null=True)

    class Meta:
        table_name = "guru_interaction"
        indexes = ((("performance", "ticket_id"), True),)


class Audit(BaseModel):
    id = AutoField()
    actor_discord_id = IntegerField()
    action = CharField()
    payload = TextField(null=True)


ALL_MODELS = [
    Counter,
    *PUNISHMENT_MODELS,
    LinkedAccount,
    GuruPerformance,
    GuruInteraction,
    Audit,
]


def init_db(path: str) -> SqliteDatabase:
    if not database.is_closed():
        database.close()
    database.init(path, pragmas={"foreign_keys": 1})
    database.connect(reuse_if_open=True)
    database.create_tables(ALL_MODELS)
    return database


def record_audit(actor_discord_id: int, action: str, payload: dict[str, Any] | None = None):
    Audit.create(
        actor_discord_id=actor_discord_id,
        action=action,
        payload=json.dumps(payload, default=str) if payload else None,
    )


def purge_audit(now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow_naive()) - AUDIT_RETENTION
    return Audit.delete().where(Audit.created_at < cutoff).execute()
