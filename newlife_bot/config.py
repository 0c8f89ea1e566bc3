import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

CONFIG_ENV_KEY = "CONFIG_PATH"
DEFAULT_CONFIG_PATH = "config.yml"
TIER_ROLE_KEYS = ("staff", "moderator", "admin", "supervisor", "management", "owner")


@dataclass
class RconConfig:
    host: str
    port: int = 25575
    password: str = ""
    timeout: float = 5.0


@dataclass
class RestartConfig:
    enabled: bool = True
    hour: int = 6
    minute: int = 0


@dataclass
class BotConfig:
    token: str
    log_level: str
    database_path: str
    guild_id: int
    owner_id: Optional[int] = None
    role_ids: Dict[str, int] = field(default_factory=dict)
    guru_role_id: Optional[int] = None
    staff_team_role_id: Optional[int] = None
    currently_moderating_role_id: Optional[int] = None
    log_channel_id: Optional[int] = None
    guru_report_recipients: List[int] = field(default_factory=list)
    apply_ticket_prefix: str = "ticket-apply-"
    rcon: Optional[RconConfig] = None
    proxy_rcon: Optional[RconConfig] = None
    restart: RestartConfig = field(default_factory=RestartConfig)
    staff_online_interval: int = 30
    max_linked_accounts: int = 2
    link_cooldown_seconds: int = 30


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Config '{name}' must be an integer, got {value!r}")


def _optional_int(data: Dict[str, Any], key: str, prefix: str = "") -> Optional[int]:
    value = data.get(key)
    if value in (None, ""):
        return None
    return _as_int(value, f"{prefix}{key}")


def _int_setting(data: Dict[str, Any], key: str, default: int, prefix: str = "") -> int:
    value = _optional_int(data, key, prefix)
    return default if value is None else value


def _float_setting(data: Dict[str, Any], key: str, default: float, prefix: str = "") -> float:
    value = data.get(key)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Config '{prefix}{key}' must be a number, got {value!r}")


def _load_rcon(data: Any, key: str) -> Optional[RconConfig]:
    if not data:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"Config '{key}' must be a mapping")
    host = str(data.get("host") or "").strip()
    if not host:
        raise ValueError(f"Config '{key}.host' is required")
    return RconConfig(
        host=host,
        port=_int_setting(data, "port", 25575, f"{key}."),
        password=str(data.get("password") or ""),
        timeout=_float_setting(data, "timeout", 5.0, f"{key}."),
    )


def load_config(path: str | None = None) -> BotConfig:
    config_path = path or os.environ.get(CONFIG_ENV_KEY, DEFAULT_CONFIG_PATH)
    with open(config_path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    token = str(data.get("token") or "").strip()
    if not token:
        raise ValueError("Config missing 'token'")

    log_level = str(data.get("log_level") or "INFO").upper()
    valid_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
    if log_level not in valid_levels:
        raise ValueError(
            f"Invalid log_level '{log_level}'. Must be one of {sorted(valid_levels)}"
        )

    guild_id = _optional_int(data, "guild_id")
    if guild_id is None:
        raise ValueError("Config missing 'guild_id'")

    roles = data.get("roles") or {}
    role_ids: Dict[str, int] = {}
    for key in TIER_ROLE_KEYS:
        role_id = _optional_int(roles, key, "roles.")
        if role_id is not None:
            role_ids[key] = role_id
    unknown = set(roles) - set(TIER_ROLE_KEYS)
    if unknown:
        raise ValueError(f"Unknown role tiers in 'roles': {sorted(unknown)}")

    restart_data = data.get("restart") or {}
    restart = RestartConfig(
        enabled=bool(restart_data.get("enabled", True)),
        hour=_int_setting(restart_data, "hour", 6, "restart."),
        minute=_int_setting(restart_data, "minute", 0, "restart."),
    )
    if not (0 <= restart.hour < 24 and 0 <= restart.minute < 60):
        raise ValueError("Config 'restart.hour'/'restart.minute' out of range")

    recipients = [
        _as_int(r, "guru_report_recipients") for r in data.get("guru_report_recipients") or []
    ]

    return BotConfig(
        token=token,
        log_level=log_level,
        database_path=str(data.get("database_path") or "newlife.db"),
        guild_id=guild_id,
        owner_id=_optional_int(data, "owner_id"),
        role_ids=role_ids,
        guru_role_id=_optional_int(data, "guru_role_id"),
        staff_team_role_id=_optional_int(data, "staff_team_role_id"),
        currently_moderating_role_id=_optional_int(
            data, "currently_moderating_role_id"
        ),
        log_channel_id=_optional_int(data, "log_channel_id"),
        guru_report_recipients=recipients,
        apply_ticket_prefix=str(data.get("apply_ticket_prefix") or "ticket-apply-"),
        rcon=_load_rcon(data.get("rcon"), "rcon"),
        proxy_rcon=_load_rcon(data.get("proxy_rcon"), "proxy_rcon"),
        restart=restart,
        staff_online_interval=_int_setting(data, "staff_online_interval", 30),
        max_linked_accounts=_int_setting(data, "max_linked_accounts", 2),
        link_cooldown_seconds=_int_setting(data, "link_cooldown_seconds", 30),
    )
