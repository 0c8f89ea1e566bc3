from datetime import datetime, timedelta

import pytest

from newlife_bot import guru
from newlife_bot.models import GuruInteraction, GuruPerformance

GUILD = 500
NOW = datetime(2026, 10, 14, 12, 0, 0)  # a Wednesday


def test_score_example_from_ten_quick_whitelists():
    breakdown = guru.score_breakdown(
        total_whitelisted=10,
        avg_response_ms=3 * 60 * 1000,
        greeting_rate=100,
        completion_rate=100,
    )
    assert breakdown.volume == 50
    assert breakdown.response == 100
    assert breakdown.score == 85
    assert breakdown.multiplier == 1.75
    assert breakdown.recommended == 18
    assert (breakdown.range_min, breakdown.range_max) == (17, 19)


@pytest.mark.parametrize(
    "score,multiplier",
    [(95, 2.0), (90, 2.0), (85, 1.75), (70, 1.5), (60, 1.25), (50, 1.0), (45, 0.75), (10, 0.5)],
)
def test_pay_multiplier_tiers(score, multiplier):
    assert guru.pay_multiplier(score) == multiplier


def test_response_score_decays_after_five_minutes():
    assert guru.response_score(5 * 60000) == 100
    assert guru.response_score(15 * 60000) == 80
    assert guru.response_score(120 * 60000) == 0


def test_range_min_is_clamped_at_zero():
    breakdown = guru.score_breakdown(0, 0, 0, 0)
    assert breakdown.recommended == 0
    assert breakdown.range_min == 0


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Hey there, thanks for applying!", True),
        ("good morning", True),
        ("Welcome to NewLife", True),
        ("I appreciate your patience", True),
        ("what is your age?", False),
        ("", False),
        (None, False),
    ],
)
def test_contains_greeting(text, expected):
    assert guru.contains_greeting(text) is expected


def test_week_bounds_run_sunday_to_saturday():
    start, end = guru.week_bounds(NOW)
    assert start == datetime(2026, 10, 11)
    assert start.weekday() == 6
    assert end == datetime(2026, 10, 17, 23, 59, 59, 999000)

    sunday_start, _ = guru.week_bounds(datetime(2026, 10, 11, 0, 0, 1))
    assert sunday_start == start


def test_response_then_whitelist_updates_aggregates(db):
    opened = NOW - timedelta(minutes=3)
    guru.track_response(1, "guru#1", GUILD, "t1", opened, "Hello! Thanks for applying", now=NOW)
    record = guru.track_whitelist(1, "guru#1", GUILD, "t1", "Steve", "java", now=NOW)

    assert record.total_tickets_claimed == 1
    assert record.total_whitelisted == 1
    assert record.avg_response_time_ms == 180000
    assert record.greeting_rate == 100
    assert record.completion_rate == 100
    assert GuruInteraction.get().outcome == "whitelisted"


def test_only_first_response_sets_response_time(db):
    opened = NOW - timedelta(minutes=10)
    guru.track_response(1, "g", GUILD, "t1", opened, "what's your username?", now=NOW - timedelta(minutes=5))
    record = guru.track_response(1, "g", GUILD, "t1", opened, "hello again", now=NOW)

    interaction = GuruInteraction.get()
    assert interaction.response_time_ms == 5 * 60000
    assert interaction.did_greet
    assert record.greeting_count == 1


def test_denied_and_abandoned_tickets(db):
    opened = NOW - timedelta(minutes=1)
    guru.track_response(1, "g", GUILD, "t1", opened, "hi", now=NOW)
    guru.track_response(1, "g", GUILD, "t2", opened, "hi", now=NOW)
    guru.track_denied(1, "g", GUILD, "t1", "underage", now=NOW)

    assert guru.abandon_ticket("t2") == 1
    assert guru.abandon_ticket("t1") == 0

    record = GuruPerformance.get()
    assert record.total_denied == 1
    assert record.total_abandoned == 1
    assert record.completion_rate == 0


def test_abandon_does_not_override_final_outcome(db):
    opened = NOW - timedelta(minutes=1)
    guru.track_response(1, "g", GUILD, "t1", opened, "hi", now=NOW)
    guru.track_whitelist(1, "g", GUILD, "t1", "Alex", "bedrock", now=NOW)
    guru.track_abandoned(1, "g", GUILD, "t1", now=NOW)
    assert GuruInteraction.get().outcome == "whitelisted"


def test_direct_whitelist_without_ticket(db):
    record = guru.track_whitelist(1, "g", GUILD, None, "Alex", "java", now=NOW)
    assert record.total_whitelisted == 1
    assert GuruInteraction.get().ticket_id.startswith("direct-")


def test_transferred_tickets_leave_completion_denominator(db):
    opened = NOW - timedelta(minutes=1)
    guru.track_response(1, "g", GUILD, "t1", opened, "hi", now=NOW)
    guru.track_response(1, "g", GUILD, "t2", opened, "hi", now=NOW)
    guru.track_whitelist(1, "g", GUILD, "t1", "Alex", "java", now=NOW)
    record = guru.track_transferred(1, "g", GUILD, "t2", now=NOW)
    assert record.completion_rate == 100


def test_last_week_records_and_report(db):
    last_week = NOW - timedelta(days=7)
    guru.track_whitelist(1, "alpha", GUILD, None, "A", "java", now=last_week)
    guru.track_whitelist(2, "beta", GUILD, None, "B", "java", now=NOW)

    records = guru.last_week_records(GUILD, NOW)
    assert [r.guru_tag for r in records] == ["alpha"]

    start, end = guru.week_bounds(last_week)
    report = guru.build_weekly_report(records, start, end)
    assert "Week: 2026-10-04 to 2026-10-10" in report
    assert "alpha" in report
    assert "beta" not in report


def test_empty_report_says_so():
    start, end = guru.week_bounds(NOW)
    assert "No guru activity" in guru.build_weekly_report([], start, end)


def test_formatting_helpers():
    assert guru.format_response_time(None) == "N/A"
    assert guru.format_response_time(45000) == "45s"
    assert guru.format_response_time(185000) == "3m 5s"
    assert guru.format_response_time(3 * 3600000 + 60000) == "3h 1m"
    assert guru.performance_rating(85) == "Great"
    assert guru.performance_rating(20) == "Needs Improvement"
    assert guru.response_time_rating(4 * 60000) == "Excellent"
    assert guru.response_time_rating(90 * 60000) == "Slow"
