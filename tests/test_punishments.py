import asyncio
from datetime import timedelta

import pytest

from newlife_bot import punishments
from newlife_bot.errors import AlreadyExistsError, EnforcementError, NotFoundError, ValidationError
from newlife_bot.linking import Target
from newlife_bot.models import Ban, Kick, Mute, Warning, utcnow_naive
from newlife_bot.profiles import parse_duration
from newlife_bot.punishments import Staff
from tests.fakes import make_rcon

MOD = Staff(1, "Mod")


def test_warning_without_linked_account_still_persists(db):
    warning = punishments.issue_warning(Target(name="Notch"), MOD, "spam", "minor", "chat")

    stored = Warning.get_by_id(warning.id)
    assert stored.case_number == 1
    assert stored.discord_id is None
    assert stored.active
    assert stored.severity == "minor"


def test_warning_rejects_unknown_severity(db):
    with pytest.raises(ValidationError):
        punishments.issue_warning(Target(name="Notch"), MOD, "spam", severity="apocalyptic")
    assert Warning.select().count() == 0


def test_case_numbers_are_shared_across_record_kinds(db):
    first = punishments.issue_warning(Target(name="a"), MOD, "one")
    fine = punishments.issue_fine(Target(name="a"), MOD, "10 diamonds")
    infraction = punishments.issue_infraction(5, "staffer", MOD, "notice", "late")
    assert [first.case_number, fine.case_number, infraction.case_number] == [1, 2, 3]
    assert punishments.find_case(2).kind == "fine"
    assert punishments.find_case(99) is None


def test_pardon_warning_is_a_single_transition(db):
    warning = punishments.issue_warning(Target(name="a"), MOD, "one")
    punishments.pardon_warning(warning.case_number, MOD, "appeal")
    with pytest.raises(AlreadyExistsError):
        punishments.pardon_warning(warning.case_number, MOD)
    with pytest.raises(NotFoundError):
        punishments.pardon_warning(404, MOD)
    assert punishments.warnings_for("A") == []
    assert len(punishments.warnings_for("a", include_removed=True)) == 1


def test_ban_is_not_persisted_when_rcon_fails(db):
    rcon, _ = make_rcon(fail_on=("ban",))
    with pytest.raises(EnforcementError):
        asyncio.run(
            punishments.issue_ban(rcon, Target(name="griefer"), MOD, "tnt", parse_duration("perm"))
        )
    assert Ban.select().count() == 0


def test_temporary_ban_sets_expiry_and_blocks_duplicates(db):
    rcon, transport = make_rcon()
    target = Target(name="griefer", uuid="abc")
    ban = asyncio.run(punishments.issue_ban(rcon, target, MOD, "tnt", parse_duration("7d")))

    assert not ban.is_permanent
    assert ban.duration == "7 days"
    assert ban.expires_at > utcnow_naive() + timedelta(days=6)
    assert ban.uuids == ["abc"]
    assert transport.commands == ["ban griefer tnt"]

    with pytest.raises(AlreadyExistsError):
        asyncio.run(punishments.issue_ban(rcon, target, MOD, "again", parse_duration("perm")))


def test_lift_ban_revokes_records_only_after_pardon(db):
    rcon, _ = make_rcon()
    asyncio.run(punishments.issue_ban(rcon, Target(name="griefer"), MOD, "tnt", parse_duration("perm")))

    failing, _ = make_rcon(fail_on=("pardon",))
    with pytest.raises(EnforcementError):
        asyncio.run(punishments.lift_ban(failing, "griefer", MOD))
    assert Ban.get().active

    assert asyncio.run(punishments.lift_ban(rcon, "Griefer", MOD, "appeal")) == 1
    assert not Ban.get().active


def test_kick_is_recorded_even_if_rcon_fails(db):
    rcon, _ = make_rcon(fail_on=("kick",))
    kick = asyncio.run(punishments.record_kick(rcon, Target(name="afk"), MOD, "afk"))
    assert not kick.rcon_executed
    assert not Kick.get().active


def test_mutes_need_a_finite_duration_and_can_be_lifted(db):
    with pytest.raises(ValidationError):
        punishments.issue_mute(7, "user", MOD, "spam", parse_duration("perm"))

    mute = punishments.issue_mute(7, "user", MOD, "spam", parse_duration("10m"))
    with pytest.raises(AlreadyExistsError):
        punishments.issue_mute(7, "user", MOD, "spam", parse_duration("10m"))

    assert punishments.active_mute(7).id == mute.id
    punishments.lift_mute(7, MOD)
    assert punishments.active_mute(7) is None
    with pytest.raises(NotFoundError):
        punishments.lift_mute(7, MOD)


def test_fine_paid_by_case_number(db):
    fine = punishments.issue_fine(Target(name="a"), MOD, "5 diamonds", parse_duration("7d"))
    assert fine.due_at is not None
    paid = punishments.mark_fine_paid(f"#{fine.case_number}", MOD)
    assert paid.paid
    with pytest.raises(AlreadyExistsError):
        punishments.mark_fine_paid(fine.id, MOD)


def test_infractions_filter_and_revoke(db):
    punishments.issue_infraction(5, "staffer", MOD, "notice", "late")
    strike = punishments.issue_infraction(5, "staffer", MOD, "strike", "rude")
    with pytest.raises(ValidationError):
        punishments.issue_infraction(5, "staffer", MOD, "medal", "nice")

    assert len(punishments.infractions_for(5)) == 2
    assert [i.type for i in punishments.infractions_for(5, "strike")] == ["strike"]
    punishments.revoke_infraction(strike.case_number, MOD, "overturned")
    with pytest.raises(AlreadyExistsError):
        punishments.revoke_infraction(strike.case_number, MOD)


def test_expire_punishments_closes_lapsed_records(db):
    mute = punishments.issue_mute(7, "user", MOD, "spam", parse_duration("10m"))
    later = utcnow_naive() + timedelta(minutes=11)

    expired = punishments.expire_punishments(later)

    assert [r.id for r in expired] == [mute.id]
    assert Mute.get_by_id(mute.id).revoked_by == "System"
