"""Tests for cross-conversation aggregation."""

from __future__ import annotations

import random
from datetime import date, datetime, timedelta, timezone

import pytest

from claude_costs.analyzer import (
    build_report,
    command_usage,
    conversations_with_costs,
    daily_cost_on,
    daily_costs,
    error_stats,
    filter_conversations,
    hourly_costs,
    model_usage,
    project_stats,
    session_stats,
    token_burn_stats,
    tool_usage,
    total_stats,
)
from claude_costs.ingest import load_conversations
from claude_costs.models import Conversation, UsageTokens

UTC = timezone.utc


@pytest.fixture
def conversations(projects_dir, pricing):
    return load_conversations(projects_dir, pricing, workers=1).conversations


def _conv(conv_id, project, cost, start=None, duration=0.0):
    return Conversation(
        conversation_id=conv_id,
        project_name=project,
        total_cost=cost,
        total_tokens=UsageTokens(input=100),
        start_time=start,
        duration=duration,
    )


class TestTotals:
    def test_fixture_totals(self, conversations):
        totals = total_stats(conversations)
        assert totals.conversation_count == 2
        assert totals.total_cost == pytest.approx(3.09175)
        assert totals.total_tokens == 16600 + 1_001_000
        assert totals.total_messages == 5
        assert totals.total_duration == 16
        assert totals.average_cost == pytest.approx(3.09175 / 2)

    def test_empty(self):
        totals = total_stats([])
        assert totals.conversation_count == 0
        assert totals.average_cost == 0.0

    def test_zero_cost_excluded(self):
        totals = total_stats([_conv("a", "p", 0.0), _conv("b", "p", 1.0)])
        assert totals.conversation_count == 1

    def test_order_insensitive(self):
        convs = [_conv(f"c{i}", f"p{i % 3}", 0.1 * (i + 1) / 3) for i in range(30)]
        shuffled = list(convs)
        random.Random(7).shuffle(shuffled)
        assert total_stats(convs) == total_stats(shuffled)
        assert build_report(convs, UTC).projects == build_report(shuffled, UTC).projects

    def test_idempotent(self, conversations):
        assert build_report(conversations, UTC) == build_report(conversations, UTC)


def test_conversations_with_costs(conversations):
    ranked = conversations_with_costs(conversations)
    assert [c.conversation_id for c in ranked] == ["conv-002", "conv-001"]


class TestTimeBuckets:
    def test_daily(self, conversations):
        daily = daily_costs(conversations, UTC)
        assert [b.date for b in daily] == [date(2026, 3, 1), date(2026, 3, 2)]
        assert daily[0].total_cost == pytest.approx(0.08775)
        assert daily[0].conversation_ids == ["conv-001"]
        assert daily[1].total_tokens == 1_001_000

    def test_daily_respects_timezone(self, conversations):
        plus_two = timezone(timedelta(hours=2))
        daily = daily_costs(conversations, plus_two)
        # 23:30 UTC on the 2nd is the 3rd at UTC+2
        assert [b.date for b in daily] == [date(2026, 3, 1), date(2026, 3, 3)]

    def test_daily_cost_on(self, conversations):
        assert daily_cost_on(conversations, date(2026, 3, 2), UTC) == pytest.approx(3.004)
        assert daily_cost_on(conversations, date(2026, 3, 5), UTC) == 0.0

    def test_hourly_has_24_buckets(self, conversations):
        hourly = hourly_costs(conversations, UTC)
        assert [b.hour for b in hourly] == list(range(24))
        assert hourly[10].total_cost == pytest.approx(0.08775)
        assert hourly[23].total_cost == pytest.approx(3.004)
        assert hourly[12].conversation_count == 0

    def test_hourly_empty(self):
        hourly = hourly_costs([], UTC)
        assert len(hourly) == 24
        assert all(b.total_cost == 0 for b in hourly)

    def test_missing_start_time_skipped(self):
        assert daily_costs([_conv("a", "p", 1.0)], UTC) == []


class TestBreakdowns:
    def test_tools(self, conversations):
        tools = tool_usage(conversations)
        assert [t.name for t in tools] == ["Read", "Write", "unknown"]
        read = tools[0]
        assert read.total_cost == pytest.approx(0.021)
        assert read.total_errors == 1
        assert read.conversations == 1

    def test_models(self, conversations):
        models = model_usage(conversations)
        assert models[0].model == "mystery-model"
        assert models[0].total_cost == pytest.approx(3.0)
        sonnet = next(m for m in models if m.model == "claude-sonnet-4-20250514")
        assert sonnet.total_count == 2
        assert sonnet.total_tokens.total == 4500

    def test_commands(self, conversations):
        commands = command_usage(conversations)
        assert [(c.command, c.count, c.conversation_count) for c in commands] == [
            ("help", 1, 1),
            ("review", 1, 1),
        ]

    def test_errors(self, conversations):
        errors = error_stats(conversations)
        assert errors.total_errors == 1
        assert errors.conversations_with_errors == 1
        assert errors.error_rate == pytest.approx(1 / 3)
        assert errors.errors_by_tool == {"Read": 1}

    def test_errors_empty(self):
        assert error_stats([]).error_rate == 0.0

    def test_projects(self, conversations):
        projects = project_stats(conversations)
        assert [p.name for p in projects] == ["other-project", "my-project"]
        mine = projects[1]
        assert mine.conversation_count == 2
        assert mine.total_cost == pytest.approx(0.08775)
        assert mine.tool_usage["Read"].cost == pytest.approx(0.021)
        assert mine.models["claude-opus-4-20250514"].count == 1


class TestSessions:
    def test_fixture_sessions(self, conversations):
        sessions = session_stats(conversations)
        assert sessions.total_sessions == 2
        assert sessions.average_duration == 8
        assert sessions.longest_session.conversation_id == "conv-001"
        assert sessions.shortest_session.conversation_id == "conv-002"

    def test_idle_gaps(self, conversations):
        idle = session_stats(conversations).idle_time_analysis
        assert [g.conversation_id for g in idle] == ["conv-001"]
        assert idle[0].max_gap == 10
        assert idle[0].average_gap == pytest.approx(2.6)
        assert idle[0].idle_percentage == pytest.approx(10 / 13 * 100)

    def test_no_sessions(self):
        sessions = session_stats([_conv("a", "p", 1.0)])
        assert sessions.total_sessions == 0
        assert sessions.longest_session is None


class TestTokenBurn:
    def test_fixture_burn(self, conversations):
        burn = token_burn_stats(conversations)
        assert burn.max_burn_rate == 1500
        assert burn.average_burn_rate == pytest.approx((1500 + 1210 + 500) / 3)
        assert [m.rate for m in burn.high_burn_moments] == [1500, 1210, 500]
        assert burn.high_burn_moments[0].conversation_title == "Parser bug hunt"

    def test_no_samples(self):
        burn = token_burn_stats([])
        assert burn.max_burn_rate == 0.0
        assert burn.high_burn_moments == []


class TestFilter:
    NOW = datetime(2026, 3, 10, tzinfo=UTC)

    def test_project_substring(self, conversations):
        kept = filter_conversations(conversations, project="other")
        assert [c.conversation_id for c in kept] == ["conv-002"]

    def test_days_window(self, conversations):
        kept = filter_conversations(conversations, days=8, now=self.NOW)
        assert [c.conversation_id for c in kept] == ["conv-002"]

    def test_wide_window_keeps_everything(self, conversations):
        assert len(filter_conversations(conversations, days=365, now=self.NOW)) == 3

    def test_no_start_time_dropped_by_window(self):
        assert filter_conversations([_conv("a", "p", 1.0)], days=1, now=self.NOW) == []


def test_report_conversations_exclude_zero_cost(conversations):
    report = build_report(conversations, UTC)
    assert "conv-003" not in [c.conversation_id for c in report.conversations]
    assert len(report.hourly) == 24
