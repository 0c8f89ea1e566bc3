from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from newlife_bot.errors import Failed, Ok
from newlife_bot.profiles import Profile
from newlife_bot.rcon_client import RconClient


class FakeTransport:
    """Stands in for the network; replies by command verb."""

    def __init__(self, responses=None, fail_on=()):
        self.responses: Dict[str, Any] = responses or {}
        self.fail_on = tuple(fail_on)
        self.commands: List[str] = []

    async def __call__(self, command: str) -> str:
        self.commands.append(command)
        if any(marker in command for marker in self.fail_on):
            raise ConnectionRefusedError("connection refused")
        reply = self.responses.get(command.split(" ", 1)[0], "")
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_rcon(responses=None, fail_on=()) -> Tuple[RconClient, FakeTransport]:
    transport = FakeTransport(responses, fail_on)
    return RconClient("mc.test", transport=transport, timeout=1), transport


class FakeProfiles:
    def __init__(self, profiles: Optional[List[Profile]] = None):
        self.profiles = {(p.name.lower(), p.platform): p for p in profiles or []}
        self.lookups: List[Tuple[str, str]] = []

    async def lookup(self, username: str, platform: str = "java") -> Optional[Profile]:
        self.lookups.append((username, platform))
        return self.profiles.get((username.lower(), platform))

    async def lookup_any(self, username: str, platform: str = "java") -> Optional[Profile]:
        profile = await self.lookup(username, platform)
        if profile is None and platform == "java":
            profile = await self.lookup(username, "bedrock")
        return profile

    async def close(self):
        return None


class FakeMessenger:
    def __init__(self, fail_dm=False, fail_log=False):
        self.fail_dm = fail_dm
        self.fail_log = fail_log
        self.dms: List[Tuple[int, str]] = []
        self.logs: List[str] = []

    async def send_dm(self, user_id: int, content: str):
        if self.fail_dm:
            return Failed("Cannot send messages to this user")
        self.dms.append((user_id, content))
        return Ok()

    async def post_log(self, content: str):
        if self.fail_log:
            return Failed("Missing Access")
        self.logs.append(content)
        return Ok()


@dataclass(eq=False)
class FakeRole:
    id: int
    name: str = "role"


@dataclass(eq=False)
class FakeMember:
    id: int
    name: str = "member"
    roles: List[FakeRole] = field(default_factory=list)
    bot: bool = False
    added_roles: List[int] = field(default_factory=list)
    removed_roles: List[int] = field(default_factory=list)
    timeouts: List[Any] = field(default_factory=list)

    def __str__(self):
        return self.name

    async def add_roles(self, *roles: FakeRole, reason: Optional[str] = None):
        for role in roles:
            if role not in self.roles:
                self.roles.append(role)
            self.added_roles.append(role.id)

    async def remove_roles(self, *roles: FakeRole, reason: Optional[str] = None):
        for role in roles:
            if role in self.roles:
                self.roles.remove(role)
            self.removed_roles.append(role.id)

    async def timeout(self, until, reason: Optional[str] = None):
        self.timeouts.append(until)


@dataclass
class FakeGuild:
    id: int
    roles: List[FakeRole] = field(default_factory=list)
    members: List[FakeMember] = field(default_factory=list)
    name: str = "NewLife SMP"

    def get_role(self, role_id: int) -> Optional[FakeRole]:
        return next((r for r in self.roles if r.id == role_id), None)

    def get_member(self, member_id: int) -> Optional[FakeMember]:
        return next((m for m in self.members if m.id == member_id), None)


@dataclass
class FakeChannel:
    id: int
    name: str = "general"
    created_at: Optional[datetime] = None
    sent: List[str] = field(default_factory=list)

    async def send(self, content=None, **kwargs):
        self.sent.append(content)


@dataclass
class FakeMessage:
    author: FakeMember
    channel: FakeChannel
    guild: Optional[FakeGuild]
    content: str = ""
