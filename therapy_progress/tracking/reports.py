"""Progress report generation.

A report covers one patient over a closed ``[start, end]`` window. For every
goal it records the baseline-to-target progress percentage, the number of
sessions in the window that addressed the goal, a trend and a mastery status.

The trend compares the mean session score of the older half of the window
against the newer half, where a session's score is the average of accuracy
and independence over the activities recorded for that goal. It is a simple
heuristic, not a fitted model.
"""

import logging
from datetime import datetime
from statistics import fmean
from typing import Callable, Optional, Sequence

from therapy_progress.config import get_settings
from therapy_progress.tracking.exceptions import InvalidRangeError
from therapy_progress.tracking.goals import progress_percentage
from therapy_progress.tracking.models import (
    GoalProgressEntry,
    GoalStatus,
    MasteryStatus,
    ProgressReport,
    ReportPeriod,
    TherapyGoal,
    TherapySession,
    Trend,
    ensure_utc,
    utcnow,
)
from therapy_progress.tracking.store import TherapyStore, record_audit

logger = logging.getLogger(__name__)

NEXT_STEPS = (
    "Schedule follow-up session within 2 weeks",
    "Review and update goals based on current progress",
    "Consider introducing new goals for mastered skills",
)


def session_score(session: TherapySession, goal_id: str) -> Optional[float]:
    """Mean of accuracy and independence across the goal's activities."""
    activities = [a for a in session.activities if a.goal_id == goal_id]
    if not activities:
        return None
    return fmean((a.accuracy + a.independence) / 2 for a in activities)


def calculate_trend(
    sessions: Sequence[TherapySession], goal_id: str, delta_threshold: float
) -> Trend:
    """Compare first-half and second-half average scores, oldest first.

    Fewer than two scored sessions is reported as stable.
    """
    ordered = sorted(sessions, key=lambda s: s.session_date)
    scores = [session_score(s, goal_id) for s in ordered]
    scores = [s for s in scores if s is not None]
    if len(scores) < 2:
        return Trend.STABLE

    mid = len(scores) // 2
    # odd counts put the middle session in the newer half
    delta = fmean(scores[mid:]) - fmean(scores[:mid])
    if delta > delta_threshold:
        return Trend.IMPROVING
    if delta < -delta_threshold:
        return Trend.DECLINING
    return Trend.STABLE


def determine_mastery_status(
    goal: TherapyGoal,
    progress: float,
    trend: Trend,
    previous_progress: Optional[float],
    not_started_threshold: float,
) -> MasteryStatus:
    if goal.status == GoalStatus.MASTERED:
        return MasteryStatus.MASTERED
    if (
        trend == Trend.DECLINING
        and previous_progress is not None
        and progress < previous_progress
    ):
        return MasteryStatus.REGRESSED
    if progress < not_started_threshold:
        return MasteryStatus.NOT_STARTED
    return MasteryStatus.IN_PROGRESS


def build_summary(entries: Sequence[GoalProgressEntry]) -> str:
    total = len(entries)
    if total == 0:
        return "Patient has no therapy goals recorded for this period."
    mastered = sum(1 for e in entries if e.mastery_status == MasteryStatus.MASTERED)
    average = fmean(e.progress for e in entries)
    return (
        f"Patient has mastered {mastered} out of {total} goals "
        f"with an average progress of {average:.1f}%."
    )


def build_recommendations(entries: Sequence[GoalProgressEntry]) -> list[str]:
    if not entries:
        return ["Establish baseline measurements and assign initial therapy goals"]

    recommendations: list[str] = []
    if any(e.trend == Trend.IMPROVING for e in entries):
        recommendations.append(
            "Continue current intervention strategies for goals showing progress"
        )
    stalled = [
        e
        for e in entries
        if e.mastery_status != MasteryStatus.MASTERED
        and (e.trend != Trend.IMPROVING or e.mastery_status == MasteryStatus.NOT_STARTED)
    ]
    if stalled:
        recommendations.append("Consider adjusting approach for goals with limited progress")
    if any(e.mastery_status == MasteryStatus.REGRESSED for e in entries):
        recommendations.append(
            "Review recent sessions for regressed goals and reintroduce supports"
        )
    if any(e.mastery_status == MasteryStatus.MASTERED for e in entries):
        recommendations.append(
            "Increase practice frequency for mastered skills to maintain proficiency"
        )
    return recommendations


class ProgressReportGenerator:
    """Builds and persists progress reports from goals and sessions."""

    def __init__(
        self,
        store: TherapyStore,
        session_limit: Optional[int] = None,
        trend_delta_threshold: Optional[float] = None,
        not_started_threshold: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.session_limit = session_limit or settings.report_session_limit
        self.trend_delta_threshold = (
            trend_delta_threshold
            if trend_delta_threshold is not None
            else settings.trend_delta_threshold
        )
        self.not_started_threshold = (
            not_started_threshold
            if not_started_threshold is not None
            else settings.not_started_threshold
        )
        self._clock = clock

    async def generate(
        self,
        patient_id: str,
        therapist_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> ProgressReport:
        start_date = ensure_utc(start_date)
        end_date = ensure_utc(end_date)
        if end_date < start_date:
            raise InvalidRangeError(
                f"Report end date {end_date.isoformat()} precedes start date {start_date.isoformat()}"
            )

        goals = await self.store.list_goals_by_patient(patient_id)
        sessions = await self.store.list_sessions_by_patient(patient_id, limit=self.session_limit)
        previous = await self._previous_report(patient_id)

        in_window = [s for s in sessions if start_date <= s.session_date <= end_date]

        entries: list[GoalProgressEntry] = []
        for goal in goals:
            goal_sessions = [s for s in in_window if goal.id in s.goal_ids]
            progress = progress_percentage(goal)
            trend = calculate_trend(goal_sessions, goal.id, self.trend_delta_threshold)

            previous_entry = previous.entry_for(goal.id) if previous else None
            status = determine_mastery_status(
                goal,
                progress,
                trend,
                previous_entry.progress if previous_entry else None,
                self.not_started_threshold,
            )
            entries.append(
                GoalProgressEntry(
                    goal_id=goal.id,
                    progress=round(progress, 2),
                    mastery_status=status,
                    data_points=len(goal_sessions),
                    trend=trend,
                )
            )

        report = ProgressReport(
            patient_id=patient_id,
            therapist_id=therapist_id,
            period=ReportPeriod(start_date=start_date, end_date=end_date),
            goals=tuple(entries),
            summary=build_summary(entries),
            recommendations=tuple(build_recommendations(entries)),
            next_steps=NEXT_STEPS,
            created_at=self._clock(),
        )

        saved = await self.store.create_progress_report(report)
        logger.info(
            "Generated progress report %s for patient %s (%d goals, %d sessions in window)",
            saved.id,
            patient_id,
            len(entries),
            len(in_window),
        )
        await record_audit(
            self.store, "generate", "progress_report", saved.id,
            user_id=therapist_id, details={"patient_id": patient_id},
        )
        return saved

    async def list_reports(self, patient_id: str) -> Sequence[ProgressReport]:
        return await self.store.list_progress_reports(patient_id)

    async def _previous_report(self, patient_id: str) -> Optional[ProgressReport]:
        reports = await self.store.list_progress_reports(patient_id, limit=1)
        return reports[0] if reports else None
