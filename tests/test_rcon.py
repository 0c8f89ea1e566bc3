import asyncio

from newlife_bot.rcon_client import RconClient, looks_like_failure, parse_online_players
from tests.fakes import make_rcon


def test_transport_errors_become_failed_results():
    rcon, _ = make_rcon(fail_on=("kick",))
    result = asyncio.run(rcon.kick_player("Steve", "afk"))
    assert not result.ok
    assert "connection refused" in result.reason


def test_timeouts_become_failed_results():
    async def slow(command):
        await asyncio.sleep(5)
        return ""

    rcon = RconClient("mc.test", transport=slow, timeout=0.01)
    result = asyncio.run(rcon.run("list"))
    assert not result.ok
    assert "timed out" in result.reason


def test_failure_keywords_only_checked_when_asked():
    rcon, _ = make_rcon(responses={"pardon": "Could not unban: player is not banned", "ban": "Error"})
    assert asyncio.run(rcon.unban_player("Steve")).ok
    assert not asyncio.run(rcon.ban_player("Steve", "x")).ok


def test_looks_like_failure():
    assert looks_like_failure("That player does not exist. Error.")
    assert looks_like_failure("No player was found")
    assert not looks_like_failure("Banned Steve: griefing")
    assert not looks_like_failure(None)


def test_whitelist_commands_per_platform():
    rcon, transport = make_rcon()
    asyncio.run(rcon.whitelist_add("Steve", "java", "abc"))
    asyncio.run(rcon.whitelist_add(".Alex", "bedrock", "00000000000000000009000000000001"))
    assert transport.commands == [
        "whitelist add Steve",
        "fwhitelist add 00000000000000000009000000000001",
    ]


def test_list_players_falls_back_to_vanilla_list():
    rcon, transport = make_rcon(
        responses={"list": "There are 2 of a max of 20 players online: Steve, Alex"},
        fail_on=("glist",),
    )
    assert asyncio.run(rcon.list_players()) == ["Steve", "Alex"]
    assert transport.commands == ["glist", "list"]


def test_parse_glist_output():
    response = (
        "[survival] (2): Steve, Alex\n"
        "[lobby] (1): Steve\n"
        "There are 3 players online."
    )
    assert parse_online_players(response) == ["Steve", "Alex"]


def test_parse_single_name_lines():
    assert parse_online_players("Notch\n\n[hub] (0): ") == ["Notch"]
    assert parse_online_players("") == []


def test_ban_reason_echoed_by_server_is_not_a_failure():
    rcon, _ = make_rcon(responses={"ban": "Banned bob: Exploiting permission bug"})
    assert asyncio.run(rcon.ban_player("bob", "Exploiting permission bug")).ok
    assert looks_like_failure("Error: bob is already banned", echoed="griefing")
