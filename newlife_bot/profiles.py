from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

MCPROFILE_BASE = "https://mcprofile.io/api/v1"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=10)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Profile:
    uuid: str
    name: str
    platform: str


def strip_uuid(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.replace("-", "").lower()


def format_uuid(value: Optional[str]) -> Optional[str]:
    clean = strip_uuid(value)
    if not clean or len(clean) != 32:
        return value
    return f"{clean[:8]}-{clean[8:12]}-{clean[12:16]}-{clean[16:20]}-{clean[20:]}"


class ProfileClient:
    """Minecraft profile lookups against mcprofile.io.

    Lookups never raise: a missing account, an HTTP error or a network
    failure all come back as ``None``.
    """

    def __init__(self, session: aiohttp.ClientSession | None = None):
        self._session = session
        self._owns_session = session is None

    async def close(self):
        if self._owns_session and self._session:
            await self._session.close()

    async def _get_json(self, path: str) -> Optional[Dict[str, Any]]:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=REQUEST_TIMEOUT)
        url = f"{MCPROFILE_BASE}{path}"
        try:
            async with self._session.get(url) as resp:
                if resp.status == 404:
                    return None
                resp.raise_for_status()
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            LOGGER.warning("Profile lookup %s failed: %s", url, exc)
            return None
        return data if isinstance(data, dict) else None

    async def lookup(self, username: str, platform: str = "java") -> Optional[Profile]:
        name = quote(username.strip())
        if platform == "bedrock":
            data = await self._get_json(f"/bedrock/gamertag/{name}")
        else:
            data = await self._get_json(f"/java/username/{name}")
        if not data:
            return None
        if platform == "bedrock":
            raw_uuid = (
                data.get("fuuid")
                or data.get("floodgateuid")
                or data.get("id")
                or data.get("uuid")
            )
        else:
            raw_uuid = data.get("uuid") or data.get("id")
        uuid = strip_uuid(raw_uuid)
        if not uuid:
            return None
        return Profile(
            uuid=uuid,
            name=data.get("name") or data.get("username") or data.get("gamertag") or username,
            platform=platform,
        )

    async def lookup_any(self, username: str, platform: str = "java") -> Optional[Profile]:
        """Look up on the requested platform, then fall back from java to bedrock."""
        profile = await self.lookup(username, platform)
        if profile is None and platform == "java":
            profile = await self.lookup(username, "bedrock")
        return profile


@dataclass(frozen=True)
class Duration:
    delta: Optional[timedelta]
    display: str

    @property
    def is_permanent(self) -> bool:
        return self.delta is None


# anything longer should be issued as permanent
MAX_DURATION = timedelta(days=3650)

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_UNITS = {
    "s": ("second", timedelta(seconds=1)),
    "m": ("minute", timedelta(minutes=1)),
    "h": ("hour", timedelta(hours=1)),
    "d": ("day", timedelta(days=1)),
}


def parse_duration(text: Optional[str]) -> Optional[Duration]:
    if not text:
        return None
    lower = text.strip().lower()
    if lower in ("perm", "permanent", "forever"):
        return Duration(None, "Permanent")
    match = _DURATION_RE.match(lower)
    if not match:
        return None
    value = int(match.group(1))
    if value <= 0:
        return None
    unit_name, unit = _UNITS[match.group(2)]
    if value > MAX_DURATION // unit:
        return None
    suffix = "" if value == 1 else "s"
    return Duration(unit * value, f"{value} {unit_name}{suffix}")
