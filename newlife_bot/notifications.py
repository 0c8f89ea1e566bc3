from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

from playhouse.signals import post_save

from . import models
from .errors import Failed, Ok, StepResult
from .linking import discord_id_for_player

LOGGER = logging.getLogger(__name__)

WATCHED_MODELS = (models.Warning, models.Ban)


class Messenger(Protocol):
    async def send_dm(self, user_id: int, content: str) -> StepResult: ...

    async def post_log(self, content: str) -> StepResult: ...


def describe_warning(warning: models.Warning) -> str:
    return (
        f"**Warning** case #{warning.case_number}\n"
        f"Player: {warning.target_name or 'unknown'}\n"
        f"Severity: {warning.severity} | Category: {warning.category}\n"
        f"Reason: {warning.reason}\n"
        f"Issued by: {warning.staff_name}"
    )


def describe_ban(ban: models.Ban) -> str:
    expires = "Never (Permanent)" if ban.is_permanent or not ban.expires_at else ban.expires_at.strftime("%Y-%m-%d %H:%M UTC")
    return (
        f"**Ban** case #{ban.case_number}\n"
        f"Player: {ban.target_name or 'unknown'}\n"
        f"Duration: {ban.duration or 'Permanent'} | Expires: {expires}\n"
        f"Reason: {ban.reason}\n"
        f"Issued by: {ban.staff_name}"
    )


def dm_text(record: models.PunishmentModel) -> str:
    if isinstance(record, models.Ban):
        return (
            "You have been banned from **NewLife SMP**.\n\n"
            + describe_ban(record)
            + "\n\nIf you believe this was a mistake you may submit an appeal."
        )
    return (
        "You have received a warning on **NewLife SMP**.\n\n"
        + describe_warning(record)
        + "\n\nPlease review the server rules to avoid further action."
    )


def log_text(record: models.PunishmentModel) -> str:
    if isinstance(record, models.Ban):
        return describe_ban(record)
    return describe_warning(record)


class PunishmentNotifier:
    """Reacts to newly inserted warnings and bans.

    Inserts are picked up through peewee's ``post_save`` signal and queued;
    :meth:`run` drains the queue and performs the log-channel post and the DM
    as two independent steps.
    """

    def __init__(self, messenger: Messenger):
        self.messenger = messenger
        self.queue: asyncio.Queue[models.PunishmentModel] = asyncio.Queue()
        self._attached = False

    def _on_save(self, sender: Any, instance: models.PunishmentModel, created: bool):
        if created:
            LOGGER.info("New %s detected: case #%s", instance.kind, instance.case_number)
            self.queue.put_nowait(instance)

    def _receiver_name(self, model: type) -> str:
        return f"notify_{model.__name__.lower()}_{id(self)}"

    def attach(self) -> None:
        if self._attached:
            return
        for model in WATCHED_MODELS:
            post_save.connect(self._on_save, name=self._receiver_name(model), sender=model)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        for model in WATCHED_MODELS:
            post_save.disconnect(name=self._receiver_name(model), sender=model)
        self._attached = False

    async def notify(self, record: models.PunishmentModel) -> dict[str, StepResult]:
        results: dict[str, StepResult] = {}
        results["log"] = await self.messenger.post_log(log_text(record))
        if not results["log"].ok:
            LOGGER.warning(
                "Could not log %s case #%s: %s",
                record.kind,
                record.case_number,
                results["log"].reason,
            )

        discord_id: Optional[int] = record.discord_id
        if discord_id is None and record.target_name:
            discord_id = discord_id_for_player(record.target_name)
        if discord_id is None:
            LOGGER.info(
                "No linked Discord account for player %s; skipping DM for case #%s",
                record.target_name,
                record.case_number,
            )
            results["dm"] = Failed("no linked Discord account")
            return results

        results["dm"] = await self.messenger.send_dm(discord_id, dm_text(record))
        if results["dm"].ok:
            record.dm_sent = True
            record.save()
            LOGGER.info("Sent %s DM to %s for case #%s", record.kind, discord_id, record.case_number)
        else:
            LOGGER.info("Could not DM %s: %s", discord_id, results["dm"].reason)
        return results

    async def run(self) -> None:
        while True:
            record = await self.queue.get()
            try:
                await self.notify(record)
            except Exception as exc:
                LOGGER.exception("Notifier failed for case #%s: %s", record.case_number, exc)
            finally:
                self.queue.task_done()

    async def drain(self) -> None:
        while not self.queue.empty():
            record = self.queue.get_nowait()
            try:
                await self.notify(record)
            finally:
                self.queue.task_done()


class DiscordMessenger:
    """Messenger backed by a discord.py client."""

    def __init__(self, client: Any, log_channel_id: Optional[int]):
        self.client = client
        self.log_channel_id = log_channel_id

    async def send_dm(self, user_id: int, content: str) -> StepResult:
        try:
            user = self.client.get_user(user_id) or await self.client.fetch_user(user_id)
            await user.send(content)
        except Exception as exc:
            return Failed(str(exc))
        return Ok()

    async def post_log(self, content: str) -> StepResult:
        if not self.log_channel_id:
            return Failed("no log channel configured")
        try:
            channel = self.client.get_channel(self.log_channel_id) or await self.client.fetch_channel(self.log_channel_id)
            await channel.send(content)
        except Exception as exc:
            return Failed(str(exc))
        return Ok()
