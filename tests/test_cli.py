"""Tests for the claude-costs CLI."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from claude_costs.analyzer import filter_conversations
from claude_costs.cli import cli, format_duration, format_number


def _recent_session(
    write_jsonl, log_dir, name="conv.jsonl", project="proj", tokens=1000, start=None,
):
    if start is None:
        start = datetime.now(timezone.utc) - timedelta(hours=1)
    stamp = lambda minutes: (start + timedelta(minutes=minutes)).isoformat()  # noqa: E731
    write_jsonl(log_dir / project / name, [
        {"type": "user", "sessionId": "s-1", "timestamp": stamp(0), "text": "/review the diff"},
        {"type": "tool_use", "parentUUID": "a-1", "timestamp": stamp(1),
         "tool_use": {"id": "toolu_1", "name": "Bash"}},
        {"type": "assistant", "uuid": "a-1", "parentUUID": "toolu_1", "sessionId": "s-1",
         "timestamp": stamp(2),
         "message": {"model": "claude-sonnet-4-20250514", "usage": {"input_tokens": tokens}}},
        "garbage",
    ])


class TestAnalyze:
    def test_report(self, config, write_jsonl):
        _recent_session(write_jsonl, config.log_dir)

        runner = CliRunner()
        with patch("claude_costs.cli.load_config", return_value=config):
            result = runner.invoke(cli, ["analyze"])

        assert result.exit_code == 0, result.output
        assert "=== Claude Conversation Cost Analysis ===" in result.output
        assert "Total Cost: $0.0030" in result.output
        assert "Total Conversations: 1" in result.output
        assert "claude-sonnet-4-20250514: $0.0030 (1 conversations)" in result.output
        assert "Bash: 1 uses, $0.0030" in result.output
        assert "1. /review the diff" in result.output
        assert "Ignored 1 unparsable log lines." in result.output
        assert "ALERTS" not in result.output

    @pytest.mark.skipif(not hasattr(time, "tzset"), reason="needs time.tzset")
    def test_date_shown_in_local_zone(self, config, write_jsonl, monkeypatch):
        day = (datetime.now(timezone.utc) - timedelta(days=2)).date()
        start = datetime(day.year, day.month, day.day, 23, 0, tzinfo=timezone.utc)
        _recent_session(write_jsonl, config.log_dir, start=start)

        # POSIX sign is inverted: this is UTC+2, so 23:00 UTC is the next local day
        monkeypatch.setenv("TZ", "XYZ-2")
        time.tzset()
        try:
            runner = CliRunner()
            with patch("claude_costs.cli.load_config", return_value=config):
                result = runner.invoke(cli, ["analyze"])
        finally:
            monkeypatch.undo()
            time.tzset()

        assert result.exit_code == 0, result.output
        assert f"Date: {(day + timedelta(days=1)).isoformat()}" in result.output

    def test_alerts_section(self, config, write_jsonl):
        # 1M input tokens on sonnet costs $3, above the session threshold
        _recent_session(write_jsonl, config.log_dir, tokens=1_000_000)

        runner = CliRunner()
        with patch("claude_costs.cli.load_config", return_value=config):
            result = runner.invoke(cli, ["analyze"])

        assert result.exit_code == 0, result.output
        assert "=== ALERTS ===" in result.output
        assert "WARNING: Session cost ($3.00) exceeds threshold ($2.00)" in result.output

    def test_project_filter(self, config, write_jsonl):
        _recent_session(write_jsonl, config.log_dir, project="alpha")
        _recent_session(write_jsonl, config.log_dir, project="beta", tokens=2000)

        runner = CliRunner()
        with patch("claude_costs.cli.load_config", return_value=config):
            result = runner.invoke(cli, ["analyze", "--project", "beta"])

        assert result.exit_code == 0, result.output
        assert "Total Conversations: 1" in result.output
        assert "Project: beta" in result.output
        assert "Project: alpha" not in result.output

    def test_old_conversations_filtered_by_days(self, config, fixtures_dir):
        # Fixture conversations are dated March 2026
        config.log_dir = fixtures_dir / "projects"
        runner = CliRunner()
        with patch("claude_costs.cli.load_config", return_value=config), \
                patch("claude_costs.cli.filter_conversations", wraps=filter_conversations) as spy:
            result = runner.invoke(cli, ["analyze", "--days", "7"])

        assert result.exit_code == 0, result.output
        assert spy.call_args.kwargs["days"] == 7

    def test_missing_log_dir(self, config):
        runner = CliRunner()
        with patch("claude_costs.cli.load_config", return_value=config):
            result = runner.invoke(cli, ["analyze"])

        assert result.exit_code == 0
        assert f"Log directory not found: {config.log_dir}" in result.output
        assert "No conversations found." in result.output

    def test_invalid_days(self, config):
        runner = CliRunner()
        with patch("claude_costs.cli.load_config", return_value=config):
            result = runner.invoke(cli, ["analyze", "--days", "0"])
        assert result.exit_code != 0

    def test_config_file_option(self, tmp_path, write_jsonl):
        log_dir = tmp_path / "logs"
        _recent_session(write_jsonl, log_dir)
        config_file = tmp_path / "config.yaml"
        config_file.write_text(f"log_dir: '{log_dir}'\n")

        result = CliRunner().invoke(cli, ["--config", str(config_file), "analyze"])

        assert result.exit_code == 0, result.output
        assert "Total Conversations: 1" in result.output


class TestMonitor:
    def test_missing_log_dir(self, config):
        runner = CliRunner()
        with patch("claude_costs.cli.load_config", return_value=config):
            result = runner.invoke(cli, ["monitor"])

        assert result.exit_code == 0
        assert f"Log directory not found: {config.log_dir}" in result.output

    def test_stops_watcher_on_interrupt(self, config):
        config.log_dir.mkdir(parents=True)
        runner = CliRunner()
        with patch("claude_costs.cli.load_config", return_value=config), \
                patch("claude_costs.monitor.watcher.LiveTailWatcher") as watcher_cls, \
                patch("claude_costs.cli.threading.Event") as event_cls:
            watcher_cls.return_value.start.return_value = True
            event_cls.return_value.wait.side_effect = KeyboardInterrupt
            result = runner.invoke(cli, ["monitor"])

        assert result.exit_code == 0, result.output
        assert "Stopping monitor..." in result.output
        watcher_cls.return_value.stop.assert_called_once()


class TestFormatting:
    def test_format_number(self):
        assert format_number(999) == "999"
        assert format_number(1500) == "1.5K"
        assert format_number(2_500_000) == "2.5M"

    def test_format_duration(self):
        assert format_duration(45) == "45 minutes"
        assert format_duration(90) == "1.5 hours"
        assert format_duration(2880) == "2.0 days"
