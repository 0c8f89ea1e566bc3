import asyncio

import pytest

from newlife_bot.bulk import (
    BulkExecutor,
    PendingActionStore,
    format_result,
    parse_players,
    send_bulk_message,
)
from newlife_bot.errors import NotFoundError, PermissionDenied, ValidationError
from newlife_bot.models import Ban, Warning
from newlife_bot.profiles import Profile
from tests.fakes import FakeProfiles, make_rcon


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_store(clock=None):
    return PendingActionStore(clock=clock or FakeClock())


def test_confirmed_action_cannot_be_confirmed_again():
    store = make_store()
    action = store.create("warn", ["alice"], initiator_id=1, reason="spam")

    assert store.confirm(action.action_id, 1).targets == ["alice"]
    with pytest.raises(NotFoundError, match="expired or was not found"):
        store.confirm(action.action_id, 1)


def test_only_initiator_can_confirm_or_cancel():
    store = make_store()
    action = store.create("ban", ["alice", "bob"], initiator_id=1, reason="x-ray")

    with pytest.raises(PermissionDenied):
        store.confirm(action.action_id, 2)
    with pytest.raises(PermissionDenied):
        store.cancel(action.action_id, 2)

    assert len(store) == 1
    assert store.cancel(action.action_id, 1) is action
    assert len(store) == 0


def test_action_expires_after_ttl():
    clock = FakeClock()
    store = make_store(clock)
    action = store.create("kick", ["alice"], initiator_id=1, reason="afk")

    clock.now += 59
    store._live(action.action_id)
    clock.now += 1
    with pytest.raises(NotFoundError):
        store.confirm(action.action_id, 1)
    assert len(store) == 0


def test_unknown_action_type_is_rejected():
    with pytest.raises(ValidationError):
        make_store().create("explode", ["alice"], initiator_id=1)


def test_parse_players_trims_and_limits():
    assert parse_players(" alice, bob ,,carol ") == ["alice", "bob", "carol"]
    with pytest.raises(ValidationError):
        parse_players(" , ")
    with pytest.raises(ValidationError):
        parse_players(",".join(f"p{i}" for i in range(26)))


def test_bulk_ban_records_only_successful_enforcements(db):
    rcon, transport = make_rcon(fail_on=("ban alice",))
    store = make_store()
    action = store.create(
        "ban", ["alice", "bob"], initiator_id=1, initiator_name="Mod", reason="griefing", duration="perm"
    )

    result = asyncio.run(BulkExecutor(rcon).execute(store.confirm(action.action_id, 1)))

    assert result.succeeded == ["bob"]
    assert result.failed == ["alice"]
    assert Ban.select().count() == 1
    record = Ban.get()
    assert record.target_name == "bob"
    assert record.reason == "[Bulk] griefing"
    assert record.is_permanent
    assert transport.commands == ["ban alice [Bulk] griefing", "ban bob [Bulk] griefing"]


def test_bulk_ban_looks_up_unlinked_players(db):
    rcon, _ = make_rcon()
    profiles = FakeProfiles([Profile("069a79f444e94726a5befca90e38aaf5", "Steve", "java")])
    store = make_store()
    action = store.create("ban", ["steve"], initiator_id=1, reason="xray", duration="7d")

    result = asyncio.run(BulkExecutor(rcon, profiles).execute(store.confirm(action.action_id, 1)))

    assert result.succeeded == ["steve"]
    record = Ban.get()
    assert record.target_name == "Steve"
    assert record.target_uuid == "069a79f444e94726a5befca90e38aaf5"
    assert record.expires_at is not None


def test_bulk_ban_with_unusable_duration_never_reaches_the_server(db):
    rcon, transport = make_rcon()
    store = make_store()
    action = store.create("ban", ["bob"], initiator_id=1, reason="x", duration="3000000d")

    result = asyncio.run(BulkExecutor(rcon).execute(store.confirm(action.action_id, 1)))

    assert result.failed == ["bob"]
    assert transport.commands == []
    assert Ban.select().count() == 0


def test_bulk_ban_treats_failure_text_as_failure(db):
    rcon, _ = make_rcon(responses={"ban": "Error: no player was found"})
    store = make_store()
    action = store.create("ban", ["ghost"], initiator_id=1, reason="x", duration="7d")

    result = asyncio.run(BulkExecutor(rcon).execute(store.confirm(action.action_id, 1)))

    assert result.failed == ["ghost"]
    assert Ban.select().count() == 0


def test_bulk_warn_and_pardon(db):
    store = make_store()
    executor = BulkExecutor(None)
    warn = store.create("warn", ["alice", "bob"], initiator_id=1, initiator_name="Mod", reason="spam")
    warned = asyncio.run(executor.execute(store.confirm(warn.action_id, 1)))
    assert warned.succeeded == ["alice", "bob"]
    assert Warning.select().where(Warning.active == True).count() == 2  # noqa: E712

    pardon = store.create("pardon_warnings", ["alice"], initiator_id=1)
    pardoned = asyncio.run(executor.execute(store.confirm(pardon.action_id, 1)))
    assert pardoned.succeeded == ["alice (1)"]
    assert Warning.select().where(Warning.active == True).count() == 1  # noqa: E712


def test_bulk_kick_without_rcon_fails_every_target(db):
    store = make_store()
    action = store.create("kick", ["alice"], initiator_id=1, reason="afk")
    result = asyncio.run(BulkExecutor(None).execute(store.confirm(action.action_id, 1)))
    assert result.failed == ["alice"]


def test_bulk_message_to_everyone_uses_say():
    rcon, transport = make_rcon()
    result = asyncio.run(send_bulk_message(rcon, ["all"], "restart soon"))
    assert result.succeeded == ["all"]
    assert transport.commands == ["say restart soon"]


def test_bulk_message_to_players_uses_tell():
    rcon, transport = make_rcon(fail_on=("tell bob",))
    result = asyncio.run(send_bulk_message(rcon, ["alice", "bob"], "hi"))
    assert result.succeeded == ["alice"]
    assert result.failed == ["bob"]
    assert transport.commands == ["tell alice hi", "tell bob hi"]


def test_format_result_lists_failures():
    rcon, _ = make_rcon(fail_on=("tell bob",))
    result = asyncio.run(send_bulk_message(rcon, ["alice", "bob"], "hi"))
    text = format_result(result, "Mod")
    assert "Successful: alice" in text
    assert "Failed: bob" in text
    assert text.endswith("Executed by Mod")
