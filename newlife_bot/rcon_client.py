from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, List, Optional

from rcon.source import rcon as source_rcon

from .config import RconConfig
from .errors import Failed, Ok, StepResult

LOGGER = logging.getLogger(__name__)

# Substrings that mark a textual RCON reply as a logical failure. This is a
# heuristic: a legitimate reply containing one of these words is misread.
FAILURE_KEYWORDS = (
    "error",
    "failed",
    "not found",
    "no such",
    "could not",
    "no player",
    "exception",
    "permission",
    "unable",
)

Transport = Callable[[str], Awaitable[str]]


class RconError(Exception):
    pass


def looks_like_failure(response: Optional[str], echoed: Optional[str] = None) -> bool:
    text = str(response or "").lower()
    if echoed:
        # vanilla servers echo the reason in the reply
        text = text.replace(echoed.lower(), "")
    return any(keyword in text for keyword in FAILURE_KEYWORDS)


class RconClient:
    """Send text commands to a Minecraft server or proxy console.

    Each call opens one session, sends one command and returns the reply.
    Nothing is retried; callers decide what a failure means for them.
    """

    def __init__(
        self,
        host: str,
        port: int = 25575,
        password: str = "",
        timeout: float = 5.0,
        transport: Optional[Transport] = None,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self._transport = transport or self._source_transport

    @classmethod
    def from_config(cls, config: RconConfig) -> "RconClient":
        return cls(config.host, config.port, config.password, config.timeout)

    async def _source_transport(self, command: str) -> str:
        return await source_rcon(
            command, host=self.host, port=self.port, passwd=self.password
        )

    async def send(self, command: str) -> str:
        try:
            response = await asyncio.wait_for(
                self._transport(command), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise RconError(f"RCON timed out after {self.timeout}s") from exc
        except RconError:
            raise
        except Exception as exc:
            raise RconError(f"RCON error: {exc}") from exc
        return response or ""

    async def run(
        self, command: str, check_response: bool = False, echoed: Optional[str] = None
    ) -> StepResult:
        try:
            response = await self.send(command)
        except RconError as exc:
            LOGGER.warning("RCON command %r failed: %s", command, exc)
            return Failed(str(exc))
        if check_response and looks_like_failure(response, echoed):
            LOGGER.warning("RCON command %r rejected by server: %s", command, response)
            return Failed(f"RCON failure: {response}")
        return Ok(response)

    async def ban_player(self, name: str, reason: str) -> StepResult:
        return await self.run(f"ban {name} {reason}", check_response=True, echoed=reason)

    async def unban_player(self, name: str) -> StepResult:
        return await self.run(f"pardon {name}")

    async def kick_player(self, name: str, reason: str) -> StepResult:
        return await self.run(f"kick {name} {reason}")

    async def whitelist_add(self, name: str, platform: str, uuid: str | None = None) -> StepResult:
        if platform == "bedrock" and uuid:
            return await self.run(f"fwhitelist add {uuid}")
        return await self.run(f"whitelist add {name}")

    async def broadcast(self, message: str) -> StepResult:
        return await self.run(f"broadcast {message}")

    async def say(self, message: str) -> StepResult:
        return await self.run(f"say {message}")

    async def tell(self, name: str, message: str) -> StepResult:
        return await self.run(f"tell {name} {message}")

    async def list_players(self) -> List[str]:
        result = await self.run("glist")
        if not result.ok or not getattr(result, "value", ""):
            LOGGER.info("glist failed, falling back to list")
            result = await self.run("list")
        if not result.ok:
            return []
        return parse_online_players(result.value)


_SERVER_LINE = re.compile(r"\[.+?\]\s*\(\d+\):\s*(.+)")
_LIST_LINE = re.compile(r"players online:\s*(.*)$", re.IGNORECASE)


def _valid_name(name: str) -> bool:
    return 0 < len(name) <= 16 and "[" not in name and "(" not in name


def parse_online_players(response: Optional[str]) -> List[str]:
    """Extract player names from ``glist`` or vanilla ``list`` output."""
    if not response:
        return []
    players: List[str] = []
    for raw in response.splitlines():
        line = raw.strip()
        if not line:
            continue
        vanilla = _LIST_LINE.search(line)
        if vanilla:
            line = vanilla.group(1).strip()
            if not line:
                continue
        elif "There are" in line or "players online" in line:
            continue
        server = _SERVER_LINE.match(line)
        if server:
            line = server.group(1)
        for part in line.split(","):
            name = part.strip()
            if _valid_name(name):
                players.append(name)
    seen: set[str] = set()
    unique = []
    for name in players:
        if name not in seen:
            seen.add(name)
            unique.append(name)
    return unique
