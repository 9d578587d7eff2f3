"""Tests for CLI commands."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from rehab_progress.cli.commands import app
from rehab_progress.observability import EngineEventLogger, EventType
from rehab_progress.plans.errors import PlanNotFound

runner = CliRunner()


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "rehab-progress v0.1.0" in result.stdout


class TestSeries:
    def test_daily_table(self):
        result = runner.invoke(
            app,
            ["series", "2026-03-01T10:00:00+00:00", "2026-03-03", "2026-03-03", "-s", "2026-03-01", "-e", "2026-03-03", "--tz", "UTC"],
        )

        assert result.exit_code == 0, result.stdout
        assert "Day series 2026-03-01 to 2026-03-03" in result.stdout
        assert "Total: 3" in result.stdout
        assert "Average: 1.00" in result.stdout

    def test_json_output(self):
        result = runner.invoke(
            app,
            ["series", "2026-03-02", "--start", "2026-03-01", "--end", "2026-03-02", "--tz", "UTC", "--json"],
        )

        assert result.exit_code == 0
        body = json.loads(result.stdout)
        assert body["granularity"] == "day"
        assert [b["count"] for b in body["buckets"]] == [0, 1]

    def test_reads_timestamps_from_file(self, tmp_path):
        input_file = tmp_path / "timestamps.json"
        input_file.write_text(json.dumps(["2026-01-15", "2026-03-02"]))

        result = runner.invoke(
            app,
            ["series", "-f", str(input_file), "-s", "2026-01-01", "-e", "2026-03-31", "--tz", "UTC", "--json"],
        )

        assert result.exit_code == 0
        body = json.loads(result.stdout)
        assert body["granularity"] == "month"
        assert [b["count"] for b in body["buckets"]] == [1, 0, 1]

    def test_missing_file(self, tmp_path):
        result = runner.invoke(
            app, ["series", "-f", str(tmp_path / "nope.json"), "-s", "2026-03-01", "-e", "2026-03-02"]
        )
        assert result.exit_code == 1
        assert "File not found" in result.stdout

    def test_end_before_start(self):
        result = runner.invoke(app, ["series", "-s", "2026-03-05", "-e", "2026-03-01", "--tz", "UTC"])

        assert result.exit_code == 1
        assert "before start" in result.stdout

    def test_bad_timestamp(self):
        result = runner.invoke(app, ["series", "yesterday", "-s", "2026-03-01", "-e", "2026-03-02"])
        assert result.exit_code != 0


class TestProgress:
    def test_unknown_plan_exits_with_error(self):
        service = MagicMock()
        service.get_progress = AsyncMock(side_effect=PlanNotFound("Plan nope not found", plan_id="nope"))
        service.close = AsyncMock()

        with patch("rehab_progress.plans.service.PlanService", return_value=service), \
             patch("rehab_progress.core.database.get_session_factory"), \
             patch("rehab_progress.core.database.dispose_engine", new=AsyncMock()):
            result = runner.invoke(app, ["progress", "nope"])

        assert result.exit_code == 1
        assert "Plan nope not found" in result.stdout
        service.close.assert_awaited_once()


class TestEvents:
    @pytest.fixture
    def event_logger(self, tmp_path):
        return EngineEventLogger(log_dir=tmp_path / "logs", enabled=True)

    def test_no_events(self, event_logger):
        with patch("rehab_progress.observability.get_event_logger", return_value=event_logger):
            result = runner.invoke(app, ["events", "alerts"])

        assert result.exit_code == 0
        assert "No alerts events logged yet." in result.stdout

    def test_lists_recent_events(self, event_logger):
        event_logger.log_plan_event(EventType.PLAN_CREATED, "plan-1", case_id="case-1")
        event_logger.log_day_locked("plan-1", "2026-03-03")

        with patch("rehab_progress.observability.get_event_logger", return_value=event_logger):
            result = runner.invoke(app, ["events", "plans", "-n", "5"])

        assert result.exit_code == 0
        assert "Total: 2" in result.stdout
        assert "plan_created" in result.stdout
        assert "day_locked" in result.stdout
