"""Tests for progress report generation."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from therapy_progress.tracking.exceptions import InvalidRangeError
from therapy_progress.tracking.goals import GoalTracker
from therapy_progress.tracking.models import (
    MasteryStatus,
    SessionActivity,
    TherapySession,
    Trend,
)
from therapy_progress.tracking.reports import (
    NEXT_STEPS,
    ProgressReportGenerator,
    calculate_trend,
    session_score,
)

MARCH_1 = datetime(2026, 3, 1, tzinfo=timezone.utc)
MARCH_31 = datetime(2026, 3, 31, 23, 59, tzinfo=timezone.utc)


def _session(goal_id: str, day: int, accuracy: float, independence: float, **overrides) -> TherapySession:
    data = dict(
        patient_id="patient-1",
        therapist_id="therapist-1",
        session_date=datetime(2026, 3, day, 10, 0, tzinfo=timezone.utc),
        duration=45,
        goal_ids=(goal_id,),
        activities=(
            SessionActivity(
                goal_id=goal_id,
                attempts=10,
                successes=int(accuracy // 10),
                prompts=2,
                accuracy=accuracy,
                independence=independence,
            ),
        ),
    )
    data.update(overrides)
    return TherapySession(**data)


@pytest.fixture
def generator(store) -> ProgressReportGenerator:
    return ProgressReportGenerator(store, trend_delta_threshold=5.0, not_started_threshold=10.0)


@pytest.fixture
def goals(store) -> GoalTracker:
    return GoalTracker(store, require_streak=False)


# ------------------------------------------------------------ trend

class TestCalculateTrend:
    def test_improving(self):
        sessions = [_session("g", d, a, a) for d, a in [(1, 40), (3, 45), (5, 70), (7, 80)]]
        assert calculate_trend(sessions, "g", 5.0) == Trend.IMPROVING

    def test_declining_regardless_of_input_order(self):
        sessions = [_session("g", d, a, a) for d, a in [(7, 40), (1, 80), (5, 50), (3, 75)]]
        assert calculate_trend(sessions, "g", 5.0) == Trend.DECLINING

    def test_stable_within_threshold(self):
        sessions = [_session("g", d, a, a) for d, a in [(1, 60), (3, 62), (5, 61), (7, 63)]]
        assert calculate_trend(sessions, "g", 5.0) == Trend.STABLE

    def test_no_sessions_is_stable(self):
        assert calculate_trend([], "g", 5.0) == Trend.STABLE

    def test_single_scored_session_is_stable(self):
        assert calculate_trend([_session("g", 1, 90, 90)], "g", 5.0) == Trend.STABLE

    def test_activities_for_other_goals_ignored(self):
        sessions = [_session("other", d, a, a, goal_ids=("g", "other")) for d, a in [(1, 10), (3, 90)]]
        assert calculate_trend(sessions, "g", 5.0) == Trend.STABLE

    def test_session_score_averages_accuracy_and_independence(self):
        assert session_score(_session("g", 1, 80, 60), "g") == 70
        assert session_score(_session("g", 1, 80, 60), "other") is None


# ------------------------------------------------------------ generate

class TestGenerate:
    async def test_end_before_start(self, generator):
        with pytest.raises(InvalidRangeError):
            await generator.generate("patient-1", "therapist-1", MARCH_31, MARCH_1)

    async def test_no_goals_yields_empty_report(self, generator):
        report = await generator.generate("patient-1", "therapist-1", MARCH_1, MARCH_31)

        assert report.goals == ()
        assert "no therapy goals" in report.summary
        assert len(report.recommendations) == 1
        assert report.next_steps == NEXT_STEPS

        stored = await generator.list_reports("patient-1")
        assert [r.id for r in stored] == [report.id]

    async def test_goal_without_sessions(self, generator, goals, make_goal):
        goal = await goals.create_goal(make_goal())

        report = await generator.generate("patient-1", "therapist-1", MARCH_1, MARCH_31)

        entry = report.entry_for(goal.id)
        assert entry.data_points == 0
        assert entry.trend == Trend.STABLE
        assert entry.mastery_status == MasteryStatus.NOT_STARTED
        assert entry.progress == 0

    async def test_sessions_filtered_by_window_and_goal(self, generator, goals, store, make_goal):
        goal = await goals.create_goal(make_goal())
        other = await goals.create_goal(make_goal())
        for day in (1, 5, 10, 20):
            await store.create_session(_session(goal.id, day, 70, 70))
        await store.create_session(_session(other.id, 6, 70, 70))

        report = await generator.generate(
            "patient-1",
            "therapist-1",
            datetime(2026, 3, 3, tzinfo=timezone.utc),
            datetime(2026, 3, 15, tzinfo=timezone.utc),
        )

        assert report.entry_for(goal.id).data_points == 2
        assert report.entry_for(other.id).data_points == 1

    async def test_window_bounds_are_inclusive(self, generator, goals, store, make_goal):
        goal = await goals.create_goal(make_goal())
        await store.create_session(_session(goal.id, 5, 70, 70))

        at = datetime(2026, 3, 5, 10, 0, tzinfo=timezone.utc)
        report = await generator.generate("patient-1", "therapist-1", at, at)

        assert report.entry_for(goal.id).data_points == 1

    async def test_improving_goal_in_progress(self, generator, goals, store, make_goal):
        goal = await goals.create_goal(make_goal())
        await goals.apply_measurement(goal.id, {"frequency": 5, "accuracy": 70, "independence": 60})
        for day, score in [(2, 40), (4, 50), (6, 70), (8, 80)]:
            await store.create_session(_session(goal.id, day, score, score))

        report = await generator.generate("patient-1", "therapist-1", MARCH_1, MARCH_31)

        entry = report.entry_for(goal.id)
        assert entry.progress == 50
        assert entry.trend == Trend.IMPROVING
        assert entry.mastery_status == MasteryStatus.IN_PROGRESS
        assert entry.data_points == 4
        assert "Continue current intervention strategies for goals showing progress" in report.recommendations

    async def test_mastered_goal(self, generator, goals, make_goal):
        goal = await goals.create_goal(make_goal())
        await goals.apply_measurement(goal.id, {"frequency": 10, "accuracy": 85, "independence": 75})

        report = await generator.generate("patient-1", "therapist-1", MARCH_1, MARCH_31)

        assert report.entry_for(goal.id).mastery_status == MasteryStatus.MASTERED
        assert report.entry_for(goal.id).progress == 100
        assert report.summary.startswith("Patient has mastered 1 out of 1 goals")
        assert (
            "Increase practice frequency for mastered skills to maintain proficiency"
            in report.recommendations
        )

    async def test_summary_average(self, generator, goals, make_goal):
        a = await goals.create_goal(make_goal())
        b = await goals.create_goal(make_goal())
        await goals.apply_measurement(a.id, {"frequency": 10})
        await goals.apply_measurement(b.id, {"frequency": 5})

        report = await generator.generate("patient-1", "therapist-1", MARCH_1, MARCH_31)

        assert report.summary == (
            "Patient has mastered 0 out of 2 goals with an average progress of 75.0%."
        )
        assert "Consider adjusting approach for goals with limited progress" in report.recommendations

    async def test_regression_against_previous_report(self, store, goals, make_goal):
        goal = await goals.create_goal(make_goal())
        await goals.apply_measurement(goal.id, {"frequency": 6})
        first = await ProgressReportGenerator(
            store, clock=lambda: datetime(2026, 3, 1, tzinfo=timezone.utc)
        ).generate("patient-1", "therapist-1", MARCH_1, MARCH_31)
        assert first.entry_for(goal.id).progress == 60

        await goals.apply_measurement(goal.id, {"frequency": 3})
        for day, score in [(10, 80), (12, 75), (14, 50), (16, 40)]:
            await store.create_session(_session(goal.id, day, score, score))

        second = await ProgressReportGenerator(
            store, clock=lambda: datetime(2026, 4, 1, tzinfo=timezone.utc)
        ).generate("patient-1", "therapist-1", MARCH_1, MARCH_31)

        entry = second.entry_for(goal.id)
        assert entry.trend == Trend.DECLINING
        assert entry.mastery_status == MasteryStatus.REGRESSED
        assert any("regressed" in r for r in second.recommendations)

    async def test_declining_without_history_is_not_regressed(self, generator, goals, store, make_goal):
        goal = await goals.create_goal(make_goal())
        await goals.apply_measurement(goal.id, {"frequency": 3})
        for day, score in [(10, 80), (12, 75), (14, 50), (16, 40)]:
            await store.create_session(_session(goal.id, day, score, score))

        report = await generator.generate("patient-1", "therapist-1", MARCH_1, MARCH_31)

        entry = report.entry_for(goal.id)
        assert entry.trend == Trend.DECLINING
        assert entry.mastery_status == MasteryStatus.IN_PROGRESS

    async def test_only_most_recent_sessions_considered(self, store, goals, make_goal):
        goal = await goals.create_goal(make_goal())
        for day in (2, 4, 6, 8):
            await store.create_session(_session(goal.id, day, 70, 70))

        report = await ProgressReportGenerator(store, session_limit=2).generate(
            "patient-1", "therapist-1", MARCH_1, MARCH_31
        )

        assert report.entry_for(goal.id).data_points == 2

    async def test_report_is_immutable(self, generator):
        report = await generator.generate("patient-1", "therapist-1", MARCH_1, MARCH_31)
        with pytest.raises(PydanticValidationError):
            report.summary = "edited"

    async def test_report_round_trips_through_store(self, generator, goals, make_goal):
        goal = await goals.create_goal(make_goal())
        report = await generator.generate("patient-1", "therapist-1", MARCH_1, MARCH_31)

        [stored] = await generator.list_reports("patient-1")

        assert stored.entry_for(goal.id) == report.entry_for(goal.id)
        assert stored.period == report.period
        assert stored.recommendations == report.recommendations
