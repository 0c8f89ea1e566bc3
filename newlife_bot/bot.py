from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import discord
from discord import app_commands
from discord.app_commands import Choice
from discord.ext import commands

from . import guru, punishments, scheduler
from .bulk import (
    CANCEL_PREFIX,
    CONFIRM_PREFIX,
    CONFIRM_TTL_SECONDS,
    BulkExecutor,
    PendingAction,
    PendingActionStore,
    format_result,
    parse_players,
    send_bulk_message,
)
from .config import BotConfig, load_config
from .errors import (
    AlreadyExistsError,
    BotError,
    EnforcementError,
    NotFoundError,
    ValidationError,
)
from .linking import (
    CooldownStore,
    Target,
    accounts_for,
    link_account,
    resolve_target,
    unlink_account,
)
from .models import (
    INFRACTION_TYPES,
    WARNING_CATEGORIES,
    WARNING_SEVERITIES,
    init_db,
    purge_audit,
    record_audit,
    utcnow_naive,
)
from .notifications import DiscordMessenger, PunishmentNotifier
from .permissions import Tier, has_tier, require_tier
from .profiles import Duration, ProfileClient, parse_duration
from .punishments import Staff
from .rcon_client import RconClient

# Default to INFO until the configured level is applied at startup
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s"
)
LOGGER = logging.getLogger(__name__)

MAX_DISCORD_TIMEOUT = timedelta(days=28)
GENERIC_ERROR = "Something went wrong while running this command."

PLATFORM_CHOICES = [Choice(name="Java", value="java"), Choice(name="Bedrock", value="bedrock")]
SEVERITY_CHOICES = [Choice(name=s.title(), value=s) for s in WARNING_SEVERITIES]
CATEGORY_CHOICES = [Choice(name=c.title(), value=c) for c in WARNING_CATEGORIES]
INFRACTION_CHOICES = [Choice(name=t.title(), value=t) for t in INFRACTION_TYPES]


def user_label(user: Any) -> str:
    if user is None:
        return "unknown"
    return f"{user} ({getattr(user, 'id', '?')})"


def staff_from(user: Any) -> Staff:
    return Staff(int(user.id), str(user))


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _role_ids(member: Any) -> set[int]:
    return {role.id for role in getattr(member, "roles", None) or []}


async def reply(interaction: discord.Interaction, content: str, ephemeral: bool = True, **kwargs: Any):
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=ephemeral, **kwargs)
    else:
        await interaction.response.send_message(content, ephemeral=ephemeral, **kwargs)


class NewLifeBot(commands.Bot):
    def __init__(self, config: BotConfig):
        intents = discord.Intents.default()
        intents.members = True
        intents.guilds = True
        intents.message_content = True
        super().__init__(command_prefix="!", intents=intents)
        self.config = config
        init_db(config.database_path)
        self.rcon: Optional[RconClient] = (
            RconClient.from_config(config.rcon) if config.rcon else None
        )
        proxy = RconClient.from_config(config.proxy_rcon) if config.proxy_rcon else None
        self.proxy_rcon: Optional[RconClient] = proxy or self.rcon
        self.profiles = ProfileClient()
        self.pending_actions = PendingActionStore()
        self.link_cooldowns = CooldownStore(config.link_cooldown_seconds)
        self.messenger = DiscordMessenger(self, config.log_channel_id)
        self.notifier = PunishmentNotifier(self.messenger)
        self.staff_sync: Optional[scheduler.StaffOnlineSync] = None
        if (
            self.proxy_rcon
            and config.staff_team_role_id
            and config.currently_moderating_role_id
        ):
            self.staff_sync = scheduler.StaffOnlineSync(
                self.proxy_rcon,
                config.staff_team_role_id,
                config.currently_moderating_role_id,
            )
        self.background_tasks: List[asyncio.Task[None]] = []

    def require_rcon(self) -> RconClient:
        if self.rcon is None:
            raise EnforcementError("RCON is not configured.")
        return self.rcon

    def require_proxy_rcon(self) -> RconClient:
        if self.proxy_rcon is None:
            raise EnforcementError("RCON is not configured.")
        return self.proxy_rcon

    async def setup_hook(self) -> None:
        guild = discord.Object(id=self.config.guild_id)
        self.tree.copy_global_to(guild=guild)
        await self.tree.sync(guild=guild)
        self._start_workers()

    def _start_workers(self):
        if self.background_tasks:
            return
        self.notifier.attach()
        loops = [
            self.notifier.run(),
            self._expiry_loop(),
            self._weekly_report_loop(),
            self._audit_cleanup_loop(),
        ]
        if self.rcon and self.config.restart.enabled:
            loops.append(self._restart_loop())
        if self.staff_sync:
            loops.append(self._staff_online_loop())
        self.background_tasks = [asyncio.create_task(coro) for coro in loops]

    async def close(self) -> None:
        for task in self.background_tasks:
            task.cancel()
        for task in self.background_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.background_tasks = []
        self.notifier.detach()
        await super().close()
        await self.profiles.close()

    async def on_ready(self):
        LOGGER.info("Bot ready as %s", self.user)

    def home_guild(self) -> Optional[discord.Guild]:
        return self.get_guild(self.config.guild_id)

    async def _restart_loop(self):
        await self.wait_until_ready()
        while not self.is_closed():
            now = utcnow_naive()
            target = scheduler.next_daily_run(
                now, self.config.restart.hour, self.config.restart.minute
            )
            await asyncio.sleep((target - now).total_seconds())
            try:
                await scheduler.restart_and_report(
                    self.require_rcon(),
                    self.messenger,
                    self.config.owner_id,
                    "Daily scheduled restart",
                )
            except Exception as exc:
                LOGGER.exception("Scheduled restart failed: %s", exc)

    async def _weekly_report_loop(self):
        await self.wait_until_ready()
        while not self.is_closed():
            now = utcnow_naive()
            target = scheduler.next_weekly_run(now)
            await asyncio.sleep((target - now).total_seconds())
            try:
                await scheduler.send_weekly_guru_report(
                    self.messenger,
                    self.config.guild_id,
                    self.report_recipients(),
                )
            except Exception as exc:
                LOGGER.exception("Weekly guru report failed: %s", exc)

    async def _staff_online_loop(self):
        await self.wait_until_ready()
        while not self.is_closed():
            guild = self.home_guild()
            if guild is not None and self.staff_sync is not None:
                try:
                    await self.staff_sync.tick(guild)
                except Exception as exc:
                    LOGGER.exception("Staff online sync failed: %s", exc)
            await asyncio.sleep(self.config.staff_online_interval)

    async def _expiry_loop(self):
        await self.wait_until_ready()
        while not self.is_closed():
            try:
                punishments.expire_punishments()
            except Exception as exc:
                LOGGER.warning("Expiry sweep failed: %s", exc)
            await asyncio.sleep(scheduler.EXPIRY_SWEEP_SECONDS)

    async def _audit_cleanup_loop(self):
        await self.wait_until_ready()
        while not self.is_closed():
            try:
                purge_audit()
            except Exception as exc:
                LOGGER.warning("Audit cleanup failed: %s", exc)
            await asyncio.sleep(24 * 60 * 60)

    def report_recipients(self) -> List[int]:
        return scheduler.report_recipients(
            self.config.owner_id, self.config.guru_report_recipients
        )

    def is_guru(self, member: Any) -> bool:
        return bool(self.config.guru_role_id) and self.config.guru_role_id in _role_ids(member)

    def is_apply_ticket(self, channel: Any) -> bool:
        name = getattr(channel, "name", None) or ""
        return name.startswith(self.config.apply_ticket_prefix)

    async def track_guru_message(self, message: Any) -> bool:
        """Record a guru's reply in an apply ticket; returns True when tracked."""
        author = message.author
        if getattr(author, "bot", False) or message.guild is None:
            return False
        if not self.is_apply_ticket(message.channel) or not self.is_guru(author):
            return False
        created = getattr(message.channel, "created_at", None) or utcnow_naive()
        guru.track_response(
            guru_id=author.id,
            guru_tag=str(author),
            guild_id=message.guild.id,
            ticket_id=str(message.channel.id),
            ticket_created_at=naive_utc(created),
            content=message.content,
            ticket_channel_id=message.channel.id,
        )
        return True

    def track_ticket_closed(self, channel: Any) -> int:
        if not self.is_apply_ticket(channel):
            return 0
        return guru.abandon_ticket(str(channel.id))

    async def handle_bulk_button(self, interaction: discord.Interaction, custom_id: str):
        confirm = custom_id.startswith(CONFIRM_PREFIX)
        prefix = CONFIRM_PREFIX if confirm else CANCEL_PREFIX
        action_id = custom_id[len(prefix):]
        try:
            if confirm:
                action = self.pending_actions.confirm(action_id, interaction.user.id)
            else:
                action = self.pending_actions.cancel(action_id, interaction.user.id)
        except BotError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        if not confirm:
            LOGGER.info("Bulk %s %s cancelled by %s", action.type, action_id, user_label(interaction.user))
            await interaction.response.edit_message(content="Bulk action cancelled.", view=None)
            return
        await interaction.response.edit_message(
            content=f"Processing bulk {action.type.replace('_', ' ')}...", view=None
        )
        result = await BulkExecutor(self.rcon, self.profiles).execute(action)
        record_audit(
            interaction.user.id,
            f"bulk_{action.type}",
            {"succeeded": result.succeeded, "failed": result.failed},
        )
        await interaction.edit_original_response(
            content=format_result(result, str(interaction.user))
        )


def bulk_confirm_view(action: PendingAction) -> discord.ui.View:
    view = discord.ui.View(timeout=CONFIRM_TTL_SECONDS)
    view.add_item(
        discord.ui.Button(
            style=discord.ButtonStyle.danger,
            label="Confirm",
            custom_id=f"{CONFIRM_PREFIX}{action.action_id}",
        )
    )
    view.add_item(
        discord.ui.Button(
            style=discord.ButtonStyle.secondary,
            label="Cancel",
            custom_id=f"{CANCEL_PREFIX}{action.action_id}",
        )
    )
    return view


def bulk_prompt(action: PendingAction, reason: Optional[str] = None, duration: Optional[str] = None) -> str:
    lines = [
        f"**Confirm Bulk {action.type.replace('_', ' ').title()}**",
        f"Targets ({len(action.targets)}): {', '.join(action.targets)}",
    ]
    if reason:
        lines.append(f"Reason: {reason}")
    if duration:
        lines.append(f"Duration: {duration}")
    lines.append(f"Confirm within {CONFIRM_TTL_SECONDS} seconds.")
    return "\n".join(lines)


def _format_accounts(accounts) -> str:
    if not accounts:
        return "No linked accounts."
    lines = []
    for account in accounts:
        primary = " (primary)" if account.primary else ""
        lines.append(f"- **{account.minecraft_username}** [{account.platform}]{primary}")
    return "\n".join(lines)


def _format_case(record) -> str:
    status = "Active" if record.active else f"Inactive (by {record.revoked_by or 'unknown'})"
    lines = [
        f"**Case #{record.case_number}** ({record.kind})",
        f"Target: {record.target_name or record.discord_tag or 'unknown'}",
        f"Reason: {record.reason}",
        f"Staff: {record.staff_name}",
        f"Date: {record.created_at:%Y-%m-%d %H:%M UTC}",
        f"Status: {status}",
    ]
    if record.revoke_reason:
        lines.append(f"Revoke reason: {record.revoke_reason}")
    return "\n".join(lines)


# Command registrations
async def setup_commands(bot: NewLifeBot):
    tree = bot.tree
    config = bot.config

    def require(interaction: discord.Interaction, tier: Tier) -> Tier:
        return require_tier(interaction.user, config, tier)

    def require_guru_or_staff(interaction: discord.Interaction):
        if not (bot.is_guru(interaction.user) or has_tier(interaction.user, config, Tier.STAFF)):
            require(interaction, Tier.STAFF)

    def guild_id_of(interaction: discord.Interaction) -> int:
        return interaction.guild.id if interaction.guild else config.guild_id

    async def target_for(player: str, platform: str = "java") -> Target:
        return await resolve_target(player, bot.profiles, platform)

    def duration_or_error(text: Optional[str], default: str = "perm") -> Duration:
        duration = parse_duration(text or default)
        if duration is None:
            raise ValidationError(
                "Invalid duration. Use a number with s, m, h or d up to 10 years (e.g. 30m, 7d) or 'perm'."
            )
        return duration

    @bot.listen("on_interaction")
    async def log_app_command(interaction: discord.Interaction):
        if interaction.type != discord.InteractionType.application_command:
            return
        cmd = interaction.command
        data = getattr(interaction, "namespace", None)
        try:
            payload = vars(data) if data else {}
        except TypeError:
            payload = str(data)
        LOGGER.info(
            "Slash command %s by %s with options %s",
            cmd.qualified_name if cmd else "unknown",
            user_label(interaction.user),
            payload,
        )

    @bot.listen("on_interaction")
    async def bulk_buttons(interaction: discord.Interaction):
        if interaction.type != discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")
        if custom_id.startswith(CONFIRM_PREFIX) or custom_id.startswith(CANCEL_PREFIX):
            await bot.handle_bulk_button(interaction, custom_id)

    @bot.listen("on_message")
    async def guru_responses(message: discord.Message):
        try:
            await bot.track_guru_message(message)
        except Exception as exc:
            LOGGER.warning("Guru response tracking failed: %s", exc)

    @bot.listen("on_guild_channel_delete")
    async def ticket_closed(channel: discord.abc.GuildChannel):
        try:
            bot.track_ticket_closed(channel)
        except Exception as exc:
            LOGGER.warning("Guru abandonment tracking failed: %s", exc)

    @tree.error
    async def on_app_command_error(
        interaction: discord.Interaction, error: app_commands.AppCommandError
    ):
        original = getattr(error, "original", error)
        if isinstance(original, BotError):
            message = str(original)
        elif isinstance(error, app_commands.CheckFailure):
            message = "You do not have permission to use this command."
        else:
            LOGGER.exception("App command error: %s", error, exc_info=original)
            message = GENERIC_ERROR
        try:
            await reply(interaction, message)
        except Exception as exc:
            LOGGER.warning("Failed sending error response for command: %s", exc)

    # Linking

    @tree.command(name="linkaccount", description="Link your Minecraft account")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def linkaccount(interaction: discord.Interaction, username: str, platform: str = "java"):
        key = (guild_id_of(interaction), interaction.user.id)
        remaining = bot.link_cooldowns.hit(key)
        if remaining:
            await reply(interaction, f"Please wait {int(remaining) + 1}s before linking again.")
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        profile = await bot.profiles.lookup(username, platform)
        if profile is None:
            raise NotFoundError(f"Could not find {platform} player **{username}**.")
        account = link_account(interaction.user.id, profile, config.max_linked_accounts)
        record_audit(interaction.user.id, "link", {"username": profile.name, "platform": platform})
        suffix = " It is now your primary account." if account.primary else ""
        await reply(interaction, f"Linked **{account.minecraft_username}** ({account.platform}).{suffix}")

    @tree.command(name="myaccounts", description="Show your linked Minecraft accounts")
    async def myaccounts(interaction: discord.Interaction):
        await reply(interaction, _format_accounts(accounts_for(interaction.user.id)))

    @tree.command(name="unlink", description="Unlink a Minecraft account")
    @app_commands.describe(user="(Admin only) unlink another user's account")
    async def unlink(interaction: discord.Interaction, username: str, user: Optional[discord.User] = None):
        owner = interaction.user
        if user is not None and user.id != interaction.user.id:
            require(interaction, Tier.ADMIN)
            owner = user
        account = unlink_account(owner.id, username)
        record_audit(interaction.user.id, "unlink", {"discord_id": owner.id, "username": account.minecraft_username})
        await reply(interaction, f"Unlinked **{account.minecraft_username}**.")

    @tree.command(name="forcelink", description="Link a Minecraft account to a Discord user")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def forcelink(interaction: discord.Interaction, user: discord.User, username: str, platform: str = "java"):
        require(interaction, Tier.ADMIN)
        await interaction.response.defer(ephemeral=True, thinking=True)
        profile = await bot.profiles.lookup(username, platform)
        if profile is None:
            raise NotFoundError(f"Could not find {platform} player **{username}**.")
        account = link_account(user.id, profile, config.max_linked_accounts, linked_by=interaction.user.id)
        record_audit(interaction.user.id, "forcelink", {"discord_id": user.id, "username": profile.name})
        await reply(interaction, f"Linked **{account.minecraft_username}** to <@{user.id}>.")

    @tree.command(name="lookup", description="Look up a player or Discord user")
    async def lookup(interaction: discord.Interaction, player: str):
        require(interaction, Tier.STAFF)
        await interaction.response.defer(ephemeral=True, thinking=True)
        target = await target_for(player)
        ban = punishments.active_ban(target)
        warnings = punishments.warnings_for(target.name)
        lines = [
            f"**{target.name}**",
            f"UUID: `{target.uuid or 'unknown'}`",
            f"Discord: {f'<@{target.discord_id}>' if target.discord_id else 'not linked'}",
            f"Active warnings: {len(warnings)}",
            f"Banned: {f'yes (case #{ban.case_number})' if ban else 'no'}",
        ]
        if target.accounts:
            lines.append("Linked accounts:")
            lines.append(_format_accounts(target.accounts))
        await reply(interaction, "\n".join(lines))

    # Warnings

    @tree.command(name="warn", description="Warn a player")
    @app_commands.choices(severity=SEVERITY_CHOICES, category=CATEGORY_CHOICES)
    async def warn(
        interaction: discord.Interaction,
        player: str,
        reason: str,
        severity: str = "moderate",
        category: str = "other",
    ):
        require(interaction, Tier.STAFF)
        await interaction.response.defer(ephemeral=True, thinking=True)
        target = await target_for(player)
        warning = punishments.issue_warning(
            target, staff_from(interaction.user), reason, severity, category
        )
        await reply(interaction, f"Warned **{target.name}** (case #{warning.case_number}).")

    @tree.command(name="warnings", description="List a player's active warnings")
    async def warnings(interaction: discord.Interaction, player: str):
        require(interaction, Tier.STAFF)
        records = punishments.warnings_for(player)
        if not records:
            await reply(interaction, f"**{player}** has no active warnings.")
            return
        lines = [f"**{player}** has {len(records)} active warning(s):"]
        for record in records[:10]:
            lines.append(
                f"#{record.case_number} [{record.severity}] {record.reason} - {record.staff_name} "
                f"({record.created_at:%Y-%m-%d})"
            )
        await reply(interaction, "\n".join(lines))

    @tree.command(name="removewarn", description="Remove a warning by case number")
    async def removewarn(interaction: discord.Interaction, case_number: int, reason: Optional[str] = None):
        require(interaction, Tier.MODERATOR)
        warning = punishments.pardon_warning(case_number, staff_from(interaction.user), reason)
        await reply(interaction, f"Removed warning #{warning.case_number} for **{warning.target_name}**.")

    # Bans and kicks

    @tree.command(name="ban", description="Ban a player from the server")
    @app_commands.describe(duration="e.g. 30m, 7d or perm")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def ban(
        interaction: discord.Interaction,
        player: str,
        reason: str,
        duration: str = "perm",
        platform: str = "java",
    ):
        require(interaction, Tier.STAFF)
        parsed = duration_or_error(duration)
        rcon = bot.require_rcon()
        await interaction.response.defer(ephemeral=True, thinking=True)
        target = await target_for(player, platform)
        record = await punishments.issue_ban(rcon, target, staff_from(interaction.user), reason, parsed)
        await reply(
            interaction,
            f"Banned **{target.name}** ({parsed.display}) - case #{record.case_number}.",
        )

    @tree.command(name="unban", description="Unban a player")
    async def unban(interaction: discord.Interaction, player: str, reason: Optional[str] = None):
        require(interaction, Tier.STAFF)
        rcon = bot.require_rcon()
        await interaction.response.defer(ephemeral=True, thinking=True)
        revoked = await punishments.lift_ban(rcon, player, staff_from(interaction.user), reason)
        await reply(interaction, f"Unbanned **{player}** ({revoked} ban record(s) closed).")

    @tree.command(name="checkban", description="Check whether a player is banned")
    async def checkban(interaction: discord.Interaction, player: str):
        require(interaction, Tier.STAFF)
        records = punishments.bans_for(player)
        current = next((b for b in records if b.in_force()), None)
        if current is None:
            await reply(interaction, f"**{player}** is not banned. ({len(records)} past ban(s))")
            return
        expires = "never" if current.expires_at is None else f"{current.expires_at:%Y-%m-%d %H:%M UTC}"
        await reply(
            interaction,
            f"**{player}** is banned (case #{current.case_number}).\n"
            f"Reason: {current.reason}\nBy: {current.staff_name}\nExpires: {expires}",
        )

    @tree.command(name="kick", description="Kick a player from the server")
    async def kick(interaction: discord.Interaction, player: str, reason: str):
        require(interaction, Tier.STAFF)
        rcon = bot.require_proxy_rcon()
        await interaction.response.defer(ephemeral=True, thinking=True)
        target = await target_for(player)
        record = await punishments.record_kick(rcon, target, staff_from(interaction.user), reason)
        note = "" if record.rcon_executed else " The server did not confirm the kick."
        await reply(interaction, f"Kicked **{target.name}** (case #{record.case_number}).{note}")

    # Mutes

    @tree.command(name="mute", description="Time out a Discord member")
    @app_commands.describe(duration="e.g. 10m, 2h, 1d")
    async def mute(interaction: discord.Interaction, user: discord.Member, duration: str, reason: str):
        require(interaction, Tier.STAFF)
        parsed = duration_or_error(duration, default="")
        if parsed.is_permanent or parsed.delta > MAX_DISCORD_TIMEOUT:
            raise ValidationError("Mutes must be shorter than 28 days.")
        existing = punishments.active_mute(user.id)
        if existing:
            raise AlreadyExistsError(f"<@{user.id}> is already muted (case #{existing.case_number}).")
        try:
            await user.timeout(parsed.delta, reason=reason)
        except Exception as exc:
            LOGGER.warning("Discord timeout failed for %s: %s", user_label(user), exc)
            raise EnforcementError(f"Could not time out <@{user.id}>: {exc}") from exc
        record = punishments.issue_mute(user.id, str(user), staff_from(interaction.user), reason, parsed)
        await reply(interaction, f"Muted <@{user.id}> for {parsed.display} (case #{record.case_number}).")

    @tree.command(name="unmute", description="Remove a member's timeout")
    async def unmute(interaction: discord.Interaction, user: discord.Member):
        require(interaction, Tier.STAFF)
        record = punishments.lift_mute(user.id, staff_from(interaction.user))
        try:
            await user.timeout(None, reason="Unmuted")
        except Exception as exc:
            LOGGER.warning("Discord timeout removal failed for %s: %s", user_label(user), exc)
        await reply(interaction, f"Unmuted <@{user.id}> (case #{record.case_number}).")

    # Fines

    @tree.command(name="fine", description="Fine a player")
    @app_commands.describe(due="Optional time to pay, e.g. 7d")
    async def fine(interaction: discord.Interaction, player: str, amount: str, due: Optional[str] = None):
        require(interaction, Tier.STAFF)
        due_duration = duration_or_error(due) if due else None
        target = await target_for(player)
        record = punishments.issue_fine(target, staff_from(interaction.user), amount, due_duration)
        await reply(interaction, f"Fined **{target.name}** {record.amount} (case #{record.case_number}).")

    @tree.command(name="paid", description="Mark a fine as paid")
    async def paid(interaction: discord.Interaction, case: str):
        require(interaction, Tier.STAFF)
        record = punishments.mark_fine_paid(case, staff_from(interaction.user))
        await reply(interaction, f"Fine #{record.case_number} for **{record.target_name}** marked as paid.")

    # Staff infractions

    @tree.command(name="infract", description="Record a staff infraction")
    @app_commands.choices(type=INFRACTION_CHOICES)
    async def infract(interaction: discord.Interaction, user: discord.User, type: str, reason: str):
        require(interaction, Tier.MANAGEMENT)
        record = punishments.issue_infraction(
            user.id, str(user), staff_from(interaction.user), type, reason, guild_id_of(interaction)
        )
        sent = await bot.messenger.send_dm(
            user.id,
            f"You have received a staff **{type}** on NewLife SMP (case #{record.case_number}).\nReason: {reason}",
        )
        note = "" if sent.ok else " Could not DM the user."
        await reply(interaction, f"Recorded {type} for <@{user.id}> (case #{record.case_number}).{note}")

    @tree.command(name="infractions", description="List a staff member's infractions")
    @app_commands.choices(type=INFRACTION_CHOICES)
    async def infractions(interaction: discord.Interaction, user: discord.User, type: Optional[str] = None):
        require(interaction, Tier.SUPERVISOR)
        records = punishments.infractions_for(user.id, type)
        if not records:
            await reply(interaction, f"<@{user.id}> has no infractions.")
            return
        lines = [f"<@{user.id}> has {len(records)} infraction(s):"]
        for record in records[:15]:
            state = "" if record.active else " (revoked)"
            lines.append(f"#{record.case_number} [{record.type}] {record.reason} - {record.staff_name}{state}")
        await reply(interaction, "\n".join(lines))

    @tree.command(name="revokeinfraction", description="Revoke a staff infraction")
    async def revokeinfraction(interaction: discord.Interaction, case_number: int, reason: Optional[str] = None):
        require(interaction, Tier.MANAGEMENT)
        record = punishments.revoke_infraction(case_number, staff_from(interaction.user), reason)
        await reply(interaction, f"Revoked infraction #{record.case_number}.")

    @tree.command(name="case", description="Show a case by number")
    async def case(interaction: discord.Interaction, case_number: int):
        require(interaction, Tier.STAFF)
        record = punishments.find_case(case_number)
        if record is None:
            raise NotFoundError(f"No case #{case_number} found.")
        await reply(interaction, _format_case(record))

    # Bulk actions

    async def start_bulk(
        interaction: discord.Interaction,
        action_type: str,
        players: str,
        reason: Optional[str] = None,
        duration: Optional[str] = None,
    ):
        require(interaction, Tier.MANAGEMENT)
        targets = parse_players(players)
        display = None
        if action_type == "ban":
            duration = duration or "perm"
            display = duration_or_error(duration).display
        if action_type in ("kick", "ban", "unban"):
            bot.require_rcon()
        action = bot.pending_actions.create(
            action_type,
            targets,
            interaction.user.id,
            str(interaction.user),
            reason=reason,
            duration=duration,
        )
        LOGGER.info(
            "Bulk %s %s requested by %s for %s",
            action_type,
            action.action_id,
            user_label(interaction.user),
            ", ".join(targets),
        )
        await interaction.response.send_message(
            bulk_prompt(action, reason, display),
            view=bulk_confirm_view(action),
            ephemeral=True,
        )

    @tree.command(name="bulk_warn", description="Warn several players")
    async def bulk_warn(interaction: discord.Interaction, players: str, reason: str):
        await start_bulk(interaction, "warn", players, reason)

    @tree.command(name="bulk_kick", description="Kick several players")
    async def bulk_kick(interaction: discord.Interaction, players: str, reason: str):
        await start_bulk(interaction, "kick", players, reason)

    @tree.command(name="bulk_ban", description="Ban several players")
    async def bulk_ban(interaction: discord.Interaction, players: str, reason: str, duration: str = "perm"):
        await start_bulk(interaction, "ban", players, reason, duration)

    @tree.command(name="bulk_unban", description="Unban several players")
    async def bulk_unban(interaction: discord.Interaction, players: str, reason: Optional[str] = None):
        await start_bulk(interaction, "unban", players, reason)

    @tree.command(name="bulk_pardon_warnings", description="Clear warnings for several players")
    async def bulk_pardon_warnings(interaction: discord.Interaction, players: str):
        await start_bulk(interaction, "pardon_warnings", players)

    @tree.command(name="bulk_message", description="Message several players, or 'all'")
    async def bulk_message(interaction: discord.Interaction, players: str, message: str):
        require(interaction, Tier.MANAGEMENT)
        targets = parse_players(players)
        rcon = bot.require_rcon()
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await send_bulk_message(rcon, targets, message)
        await reply(interaction, format_result(result, str(interaction.user)))

    # Whitelist

    @tree.command(name="whitelist_add", description="Whitelist a player and link their Discord account")
    @app_commands.choices(platform=PLATFORM_CHOICES)
    async def whitelist_add(
        interaction: discord.Interaction,
        platform: str,
        username: str,
        user: discord.User,
    ):
        require_guru_or_staff(interaction)
        rcon = bot.require_rcon()
        await interaction.response.defer(thinking=True)
        profile = await bot.profiles.lookup(username, platform)
        if profile is None:
            raise NotFoundError(f"Could not find {platform} player **{username}**.")
        result = await rcon.whitelist_add(profile.name, platform, profile.uuid)
        if not result.ok:
            raise EnforcementError(f"Failed to send whitelist command: {result.reason}")
        try:
            link_account(user.id, profile, config.max_linked_accounts, linked_by=interaction.user.id)
        except (AlreadyExistsError, ValidationError) as exc:
            LOGGER.info("Whitelist link skipped for %s: %s", profile.name, exc)
        record_audit(interaction.user.id, "whitelist_add", {"username": profile.name, "platform": platform, "discord_id": user.id})
        if bot.is_guru(interaction.user):
            ticket_id = str(interaction.channel.id) if bot.is_apply_ticket(interaction.channel) else None
            guru.track_whitelist(
                interaction.user.id,
                str(interaction.user),
                guild_id_of(interaction),
                ticket_id,
                profile.name,
                platform,
                applicant_id=user.id,
            )
        await reply(
            interaction,
            f"Whitelisted **{profile.name}** ({platform}) and linked to <@{user.id}>.",
            ephemeral=False,
        )

    @tree.command(name="whitelist_deny", description="Deny the application in this ticket")
    async def whitelist_deny(interaction: discord.Interaction, reason: Optional[str] = None):
        require_guru_or_staff(interaction)
        if not bot.is_apply_ticket(interaction.channel):
            raise ValidationError("This command can only be used in an application ticket.")
        record = guru.track_denied(
            interaction.user.id,
            str(interaction.user),
            guild_id_of(interaction),
            str(interaction.channel.id),
            reason,
        )
        if record is None:
            raise NotFoundError("You have not responded in this ticket yet.")
        await reply(interaction, "Application marked as denied.", ephemeral=False)

    # Guru performance

    async def guru_id_from(user: Optional[discord.User], mcname: Optional[str]) -> int:
        if user is not None:
            return user.id
        if mcname:
            target = await resolve_target(mcname)
            if target.discord_id is None:
                raise NotFoundError(f"Could not find a Discord user linked to Minecraft name: **{mcname}**")
            return target.discord_id
        raise ValidationError("Please provide either a Discord user or a Minecraft username.")

    @tree.command(name="guru_stats", description="Current week guru stats")
    async def guru_stats(interaction: discord.Interaction):
        require(interaction, Tier.MANAGEMENT)
        start, end = guru.week_bounds()
        records = guru.weekly_records(guild_id_of(interaction), start)
        if not records:
            await reply(interaction, "No guru activity recorded this week yet.")
            return
        await reply(interaction, guru.build_weekly_report(records, start, end))

    @tree.command(name="guru_performance", description="A guru's performance this week")
    async def guru_performance(
        interaction: discord.Interaction, user: Optional[discord.User] = None, mcname: Optional[str] = None
    ):
        require(interaction, Tier.MANAGEMENT)
        guru_id = await guru_id_from(user, mcname)
        start, _ = guru.week_bounds()
        records = [r for r in guru.history_for(guru_id, guild_id_of(interaction), 1) if r.week_start == start]
        if not records or records[0].total_tickets_claimed == 0:
            await reply(interaction, f"No performance data for <@{guru_id}> this week.")
            return
        await reply(interaction, guru.describe_performance(records[0]))

    @tree.command(name="guru_history", description="A guru's weekly history")
    async def guru_history(
        interaction: discord.Interaction,
        user: Optional[discord.User] = None,
        mcname: Optional[str] = None,
        weeks: app_commands.Range[int, 1, 12] = 4,
    ):
        require(interaction, Tier.MANAGEMENT)
        guru_id = await guru_id_from(user, mcname)
        records = guru.history_for(guru_id, guild_id_of(interaction), weeks)
        if not records:
            await reply(interaction, f"No history for <@{guru_id}>.")
            return
        lines = [f"**Guru history for <@{guru_id}>**"]
        for record in records:
            lines.append(
                f"{record.week_start:%Y-%m-%d}: score {record.performance_score}/100, "
                f"{record.total_whitelisted} whitelisted, {record.recommended_diamonds} diamonds"
            )
        await reply(interaction, "\n".join(lines))

    @tree.command(name="guru_report", description="Send last week's guru report now")
    async def guru_report(interaction: discord.Interaction):
        require(interaction, Tier.OWNER)
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await scheduler.send_weekly_guru_report(
            bot.messenger, guild_id_of(interaction), bot.report_recipients()
        )
        if result.ok:
            await reply(interaction, "Weekly report sent to your DMs.")
        else:
            await reply(interaction, f"Report not sent: {result.reason}.")

    # Server

    @tree.command(name="restart", description="Restart the Minecraft server with a countdown")
    async def restart(interaction: discord.Interaction, reason: str = "Manual restart"):
        require(interaction, Tier.ADMIN)
        rcon = bot.require_rcon()
        record_audit(interaction.user.id, "restart", {"reason": reason})
        task = asyncio.create_task(
            scheduler.restart_and_report(rcon, bot.messenger, config.owner_id, reason)
        )
        bot.background_tasks.append(task)
        task.add_done_callback(bot.background_tasks.remove)
        await reply(interaction, "Restart sequence started. The server restarts in about 30 seconds.")


async def main():
    bot_config = load_config()
    logging.getLogger().setLevel(bot_config.log_level)
    LOGGER.setLevel(bot_config.log_level)
    bot = NewLifeBot(bot_config)
    await setup_commands(bot)
    await bot.start(bot_config.token)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
