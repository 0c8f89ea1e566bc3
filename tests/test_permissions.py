import pytest

from newlife_bot.config import BotConfig
from newlife_bot.errors import PermissionDenied
from newlife_bot.permissions import Tier, has_tier, require_tier, resolve_tier
from tests.fakes import FakeMember, FakeRole

ROLE_IDS = {"staff": 1, "moderator": 2, "admin": 3, "supervisor": 4, "management": 5, "owner": 6}


def make_config(**kwargs):
    return BotConfig(
        token="t",
        log_level="INFO",
        database_path=":memory:",
        guild_id=1,
        owner_id=kwargs.pop("owner_id", 999),
        role_ids=kwargs.pop("role_ids", ROLE_IDS),
        **kwargs,
    )


def test_tier_order():
    assert Tier.OWNER > Tier.MANAGEMENT > Tier.SUPERVISOR > Tier.ADMIN > Tier.MODERATOR > Tier.STAFF > Tier.EVERYONE


def test_highest_role_wins():
    member = FakeMember(10, roles=[FakeRole(1), FakeRole(4), FakeRole(77)])
    assert resolve_tier(member, make_config()) == Tier.SUPERVISOR


def test_owner_id_overrides_roles():
    assert resolve_tier(FakeMember(999), make_config()) == Tier.OWNER


def test_member_without_roles_or_user_object():
    config = make_config()
    assert resolve_tier(FakeMember(10), config) == Tier.EVERYONE
    assert resolve_tier(None, config) == Tier.EVERYONE


def test_unconfigured_tiers_are_unreachable():
    config = make_config(role_ids={"staff": 1})
    member = FakeMember(10, roles=[FakeRole(5)])
    assert not has_tier(member, config, Tier.STAFF)


def test_require_tier_raises_with_required_level():
    member = FakeMember(10, roles=[FakeRole(2)])
    assert require_tier(member, make_config(), Tier.STAFF) == Tier.MODERATOR
    with pytest.raises(PermissionDenied, match="Management or higher") as excinfo:
        require_tier(member, make_config(), Tier.MANAGEMENT)
    assert excinfo.value.required == Tier.MANAGEMENT
