"""Tests for CLI commands."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from therapy_progress.cli.commands import app
from therapy_progress.tracking.exceptions import InvalidStateError, NotFoundError
from therapy_progress.tracking.models import (
    AcceptanceResult,
    CollaborationRequest,
    GoalProgressEntry,
    GoalStatus,
    MasteryStatus,
    ProgressReport,
    ProgressSnapshot,
    ReportPeriod,
    RequestStatus,
    TherapistPatientRelationship,
    Trend,
)

runner = CliRunner()


@pytest.fixture
def progress_report():
    """A small stored report."""
    return ProgressReport(
        id="report_1",
        patient_id="patient-1",
        therapist_id="therapist-1",
        period=ReportPeriod(
            start_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
            end_date=datetime(2026, 3, 31, tzinfo=timezone.utc),
        ),
        goals=(
            GoalProgressEntry(
                goal_id="goal_1",
                progress=50.0,
                mastery_status=MasteryStatus.IN_PROGRESS,
                data_points=4,
                trend=Trend.IMPROVING,
            ),
        ),
        summary="Steady gains this month.",
        recommendations=("Keep going",),
        next_steps=("Follow up",),
    )


class TestVersionCommand:
    def test_version_command(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "therapy-progress" in result.stdout
        assert "0.1.0" in result.stdout


class TestReportCommand:
    def test_report_displays_summary(self, progress_report):
        generate = AsyncMock(return_value=progress_report)
        with patch("therapy_progress.cli.commands._generate_report", generate):
            result = runner.invoke(
                app, ["report", "patient-1", "therapist-1", "--start", "2026-03-01", "--end", "2026-03-31"]
            )

        assert result.exit_code == 0
        assert "Steady gains this month." in result.stdout
        assert "goal_1" in result.stdout
        assert "Keep going" in result.stdout
        assert "Follow up" in result.stdout

    def test_bare_end_date_covers_whole_day(self, progress_report):
        generate = AsyncMock(return_value=progress_report)
        with patch("therapy_progress.cli.commands._generate_report", generate):
            runner.invoke(
                app, ["report", "patient-1", "therapist-1", "-s", "2026-03-01", "-e", "2026-03-31"]
            )

        _, _, start, end = generate.call_args.args
        assert start == datetime(2026, 3, 1)
        assert end == datetime(2026, 3, 31, 23, 59, 59, 999999)

    def test_report_json(self, progress_report):
        generate = AsyncMock(return_value=progress_report)
        with patch("therapy_progress.cli.commands._generate_report", generate):
            result = runner.invoke(
                app,
                ["report", "patient-1", "therapist-1", "-s", "2026-03-01", "-e", "2026-03-31", "--json"],
            )

        assert result.exit_code == 0
        assert '"id": "report_1"' in result.stdout
        assert '"mastery_status": "in_progress"' in result.stdout

    def test_engine_error_exits_non_zero(self):
        generate = AsyncMock(side_effect=NotFoundError("Patient", "patient-x"))
        with patch("therapy_progress.cli.commands._generate_report", generate):
            result = runner.invoke(
                app, ["report", "patient-x", "therapist-1", "-s", "2026-03-01", "-e", "2026-03-31"]
            )

        assert result.exit_code == 1
        assert "not_found" in result.stdout


class TestGoalCommand:
    def test_goal_shows_progress(self, make_goal):
        goal = make_goal(current_progress=ProgressSnapshot(frequency=5, accuracy=60))
        with patch("therapy_progress.cli.commands._show_goal", AsyncMock(return_value=(goal, 50.0))):
            result = runner.invoke(app, ["goal", goal.id])

        assert result.exit_code == 0
        assert GoalStatus.ACTIVE.value in result.stdout
        assert "50.0%" in result.stdout


class TestRequestCommands:
    def test_accept(self):
        request = CollaborationRequest(
            id="request_1", patient_id="patient-1", therapist_id="therapist-1",
            status=RequestStatus.ACCEPTED,
        )
        relationship = TherapistPatientRelationship(
            id="rel_1", therapist_id="therapist-1", patient_id="patient-1"
        )
        accept = AsyncMock(return_value=AcceptanceResult(request=request, relationship=relationship))
        with patch("therapy_progress.cli.commands._accept_request", accept):
            result = runner.invoke(app, ["accept", "request_1"])

        assert result.exit_code == 0
        assert "Accepted request_1" in result.stdout
        accept.assert_awaited_once_with("request_1")

    def test_accept_non_pending(self):
        accept = AsyncMock(side_effect=InvalidStateError("Request", "request_1", "declined", "accepted"))
        with patch("therapy_progress.cli.commands._accept_request", accept):
            result = runner.invoke(app, ["accept", "request_1"])

        assert result.exit_code == 1
        assert "invalid_state" in result.stdout

    def test_decline(self):
        request = CollaborationRequest(
            id="request_2", patient_id="patient-1", therapist_id="therapist-1",
            status=RequestStatus.DECLINED,
        )
        with patch("therapy_progress.cli.commands._decline_request", AsyncMock(return_value=request)):
            result = runner.invoke(app, ["decline", "request_2"])

        assert result.exit_code == 0
        assert "Declined request_2" in result.stdout


def test_init_db_creates_schema():
    init = AsyncMock()
    with patch("therapy_progress.core.database.init_db", init):
        result = runner.invoke(app, ["init-db"])

    assert result.exit_code == 0
    init.assert_awaited_once()
