"""Lesson progress tracking service layer.

Business logic for:
- Lesson events (status updates, quiz attempts, coding submissions)
- Append-only submission history with a latest-wins score
- Propagation of completed lessons into the enrollment aggregate
- Course progress and dashboard aggregation

The progress save and the enrollment propagation are independent writes.
Propagation runs again on every event that leaves the lesson completed, so a
failed propagation is repaired by the next one.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid1

import structlog

from src.core.exceptions import ValidationError
from src.courses.service import CourseNotFoundError
from src.enrollments.models import EnrollmentStatus, percent_of

from .models import (
    LessonProgress,
    LessonProgressStatus,
    Submission,
    SubmissionKind,
    seconds_to_minutes,
)
from .schemas import CodingEvent, LessonEvent, QuizEvent


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from src.courses.service import CourseService
    from src.enrollments.models import Enrollment
    from src.enrollments.service import EnrollmentService

    from .runner import CodeRunnerClient

logger = structlog.get_logger(__name__)

# Number of courses listed in dashboard recent activity
RECENT_ACTIVITY_LIMIT = 5


@dataclass
class LessonUpdate:
    """Outcome of one lesson event, as persisted."""

    progress: LessonProgress
    enrollment: "Enrollment | None"


@dataclass
class CourseProgress:
    course_id: UUID
    course_title: str
    total_lessons: int
    completed_lessons: int
    overall_percentage: int
    total_time_spent: int
    estimated_time_remaining: int
    current_lesson: str | None
    last_accessed: datetime | None
    lessons: list[LessonProgress]


@dataclass
class DashboardStats:
    total_courses: int
    completed_courses: int
    active_courses: int
    total_time_spent: int
    average_progress: int
    recent_activity: list[dict]


class ProgressService:
    """Service for lesson progress tracking."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        enrollment_service: "EnrollmentService",
        course_service: "CourseService",
        code_runner: "CodeRunnerClient",
    ):
        self.session = session
        self.keyspace = keyspace
        self.enrollments = enrollment_service
        self.courses = course_service
        self.code_runner = code_runner
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        # Lesson Progress. Every write to a row is conditional so Paxos orders them.
        self._create_lesson_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_progress
            (user_id, course_id, lesson_id, status, started_at, last_accessed_at)
            VALUES (?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)
        self._get_lesson_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
        """)
        self._get_course_lesson_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND course_id = ?
        """)
        self._update_lesson_status = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET status = ?, last_accessed_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF EXISTS
        """)
        self._set_completed_at = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET completed_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF completed_at = null
        """)
        self._set_latest_score = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET score = ?, max_score = ?, latest_submission_id = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF EXISTS
        """)

        # Time counters
        self._add_lesson_time = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_time
            SET time_spent_seconds = time_spent_seconds + ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
        """)
        self._get_course_time = self.session.prepare(f"""
            SELECT lesson_id, time_spent_seconds FROM {self.keyspace}.lesson_time
            WHERE user_id = ? AND course_id = ?
        """)

        # Submission history
        self._append_submission = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_submissions
            (user_id, course_id, lesson_id, submission_id, kind, status, score,
             max_score, time_spent, payload, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._get_latest_submission = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_submissions
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            LIMIT 1
        """)
        self._get_lesson_submissions = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_submissions
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
        """)
        self._get_course_submissions = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_submissions
            WHERE user_id = ? AND course_id = ?
        """)

    # ==========================================================================
    # Lesson events
    # ==========================================================================

    async def record_lesson_progress(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        event: LessonEvent,
    ) -> LessonUpdate:
        """Apply one lesson event.

        Args:
            user_id: Learner UUID
            course_id: Course UUID
            lesson_id: Lesson id; not checked against the live structure
            event: Status update, quiz attempt or coding submission

        Returns:
            LessonUpdate with the lesson and enrollment state after the writes

        Raises:
            ValidationError: Empty lesson id or coding event without test cases
            PermissionDeniedError: No active or completed enrollment
            DependencyError: Code runner failed (nothing is written)
        """
        lesson_id = (lesson_id or "").strip()
        if not lesson_id:
            raise ValidationError("lesson_id is required", "missing_lesson_id")
        if isinstance(event, CodingEvent) and not event.test_cases:
            raise ValidationError("At least one test case is required", "no_test_cases")

        await self.enrollments.require_active_enrollment(user_id, course_id)

        submission = None
        if isinstance(event, CodingEvent):
            submission = await self._run_coding_submission(
                user_id, course_id, lesson_id, event
            )
            status = submission.status
        elif isinstance(event, QuizEvent):
            submission = self._quiz_submission(user_id, course_id, lesson_id, event)
            status = event.status.value
        else:
            status = event.status.value

        now = datetime.now(UTC)
        await self.session.aexecute(
            self._create_lesson_progress,
            [
                user_id,
                course_id,
                lesson_id,
                LessonProgressStatus.NOT_STARTED.value,
                now,
                now,
            ],
        )

        if event.time_spent:
            await self.session.aexecute(
                self._add_lesson_time, [event.time_spent, user_id, course_id, lesson_id]
            )

        if submission is not None:
            await self._append(submission)

        await self.session.aexecute(
            self._update_lesson_status, [status, now, user_id, course_id, lesson_id]
        )

        if status == LessonProgressStatus.COMPLETED.value:
            result = await self.session.aexecute(
                self._set_completed_at, [now, user_id, course_id, lesson_id]
            )
            if result.was_applied:
                logger.info(
                    "lesson_completed",
                    user_id=str(user_id),
                    course_id=str(course_id),
                    lesson_id=lesson_id,
                )

        enrollment = await self._propagate(
            user_id,
            course_id,
            lesson_id,
            completed=status == LessonProgressStatus.COMPLETED.value,
            accessed_at=now,
        )

        progress = await self.get_lesson_progress(user_id, course_id, lesson_id)
        logger.info(
            "lesson_progress_recorded",
            user_id=str(user_id),
            course_id=str(course_id),
            lesson_id=lesson_id,
            event_type=event.type,
            status=status,
        )
        return LessonUpdate(progress=progress, enrollment=enrollment)

    def _quiz_submission(
        self, user_id: UUID, course_id: UUID, lesson_id: str, event: QuizEvent
    ) -> Submission:
        return Submission(
            user_id=user_id,
            course_id=course_id,
            lesson_id=lesson_id,
            submission_id=uuid1(),
            kind=SubmissionKind.QUIZ.value,
            status=event.status.value,
            score=event.score,
            max_score=event.max_score,
            time_spent=event.time_spent,
            payload={"answers": [a.model_dump() for a in event.answers]},
        )

    async def _run_coding_submission(
        self, user_id: UUID, course_id: UUID, lesson_id: str, event: CodingEvent
    ) -> Submission:
        results = await self.code_runner.run(
            code=event.code,
            language=event.language,
            test_cases=[tc.model_dump() for tc in event.test_cases],
        )
        tests_passed = sum(1 for r in results if r.passed)
        total_tests = len(results)
        percentage = percent_of(tests_passed, total_tests)

        return Submission(
            user_id=user_id,
            course_id=course_id,
            lesson_id=lesson_id,
            submission_id=uuid1(),
            kind=SubmissionKind.CODING.value,
            status=(
                LessonProgressStatus.COMPLETED.value
                if percentage == 100
                else LessonProgressStatus.IN_PROGRESS.value
            ),
            score=percentage,
            max_score=100,
            time_spent=event.time_spent,
            payload={
                "problem_id": event.problem_id,
                "code": event.code,
                "language": event.language,
                "tests_passed": tests_passed,
                "total_tests": total_tests,
                "percentage": percentage,
                "test_results": [
                    {"passed": r.passed, "actual_output": r.actual_output}
                    for r in results
                ],
            },
        )

    async def _append(self, submission: Submission) -> None:
        """Append to history, then re-derive the lesson's score from its head."""
        await self.session.aexecute(
            self._append_submission,
            [
                submission.user_id,
                submission.course_id,
                submission.lesson_id,
                submission.submission_id,
                submission.kind,
                submission.status,
                submission.score,
                submission.max_score,
                submission.time_spent,
                submission.payload_json(),
                submission.submitted_at,
            ],
        )

        key = [submission.user_id, submission.course_id, submission.lesson_id]
        result = await self.session.aexecute(self._get_latest_submission, key)
        row = result.one()
        latest = Submission.from_row(row) if row else submission
        await self.session.aexecute(
            self._set_latest_score,
            [latest.score, latest.max_score, latest.submission_id, *key],
        )

    async def _propagate(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        completed: bool,
        accessed_at: datetime,
    ) -> "Enrollment | None":
        """Push the lesson outcome into the enrollment. Failures are logged."""
        try:
            if completed:
                applied = await self.enrollments.add_completed_lesson(
                    user_id, course_id, lesson_id
                )
                if applied:
                    structure = await self.courses.get_structure(course_id)
                    enrollment = await self.enrollments.recompute_total_progress(
                        user_id, course_id, structure.total_lessons
                    )
                    if (
                        enrollment is not None
                        and enrollment.total_progress >= 100
                        and enrollment.status == EnrollmentStatus.ACTIVE.value
                    ):
                        await self.enrollments.mark_completed(user_id, course_id)

            time_spent = sum((await self._course_time(user_id, course_id)).values())
            await self.enrollments.touch(
                user_id, course_id, lesson_id, time_spent, accessed_at
            )
        except Exception as e:
            logger.exception(
                "lesson_progress_propagation_failed",
                user_id=str(user_id),
                course_id=str(course_id),
                lesson_id=lesson_id,
                error=str(e),
            )

        return await self.enrollments.get_enrollment(user_id, course_id)

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get_lesson_progress(
        self, user_id: UUID, course_id: UUID, lesson_id: str
    ) -> LessonProgress:
        """One lesson with its full history. Not-started if never touched."""
        result = await self.session.aexecute(
            self._get_lesson_progress, [user_id, course_id, lesson_id]
        )
        row = result.one()
        time_spent = (await self._course_time(user_id, course_id)).get(lesson_id, 0)
        if row is None:
            return LessonProgress(
                user_id=user_id, course_id=course_id, lesson_id=lesson_id
            )

        progress = LessonProgress.from_row(row, time_spent=time_spent)
        rows = await self.session.aexecute(
            self._get_lesson_submissions, [user_id, course_id, lesson_id]
        )
        progress.apply_history([Submission.from_row(r) for r in rows])
        return progress

    async def get_course_progress(self, user_id: UUID, course_id: UUID) -> CourseProgress:
        """Aggregate progress over a course plus every lesson row.

        Raises:
            PermissionDeniedError: No active or completed enrollment
            CourseNotFoundError: The course was deleted
        """
        enrollment = await self.enrollments.require_active_enrollment(user_id, course_id)
        course = await self.courses.get_course(course_id)
        if course is None:
            raise CourseNotFoundError
        structure = await self.courses.get_structure(course_id)

        times = await self._course_time(user_id, course_id)
        history: dict[str, list[Submission]] = defaultdict(list)
        for row in await self.session.aexecute(
            self._get_course_submissions, [user_id, course_id]
        ):
            submission = Submission.from_row(row)
            history[submission.lesson_id].append(submission)

        lessons = []
        for row in await self.session.aexecute(
            self._get_course_lesson_progress, [user_id, course_id]
        ):
            progress = LessonProgress.from_row(row, time_spent=times.get(row.lesson_id, 0))
            progress.apply_history(history.get(row.lesson_id, []))
            lessons.append(progress)

        completed = len(enrollment.completed_lessons)
        minutes = seconds_to_minutes(sum(times.values()))
        return CourseProgress(
            course_id=course_id,
            course_title=course.title,
            total_lessons=structure.total_lessons,
            completed_lessons=completed,
            overall_percentage=min(100, percent_of(completed, structure.total_lessons)),
            total_time_spent=minutes,
            estimated_time_remaining=max(0, structure.total_duration_minutes - minutes),
            current_lesson=enrollment.current_lesson or structure.first_lesson_id,
            last_accessed=enrollment.last_accessed,
            lessons=lessons,
        )

    async def get_dashboard_stats(self, user_id: UUID) -> DashboardStats:
        """Aggregate the learner's active and completed enrollments."""
        enrollments = [
            e
            for e in await self.enrollments.get_user_enrollments(user_id)
            if e.is_counted
        ]
        completed = sum(
            1 for e in enrollments if e.status == EnrollmentStatus.COMPLETED.value
        )
        average = (
            percent_of(sum(e.total_progress for e in enrollments), 100 * len(enrollments))
            if enrollments
            else 0
        )

        recent = sorted(enrollments, key=lambda e: e.last_accessed, reverse=True)
        recent_activity = []
        for enrollment in recent[:RECENT_ACTIVITY_LIMIT]:
            course = await self.courses.get_course(enrollment.course_id)
            recent_activity.append(
                {
                    "course_id": enrollment.course_id,
                    "course_title": course.title if course else None,
                    "thumbnail_url": course.thumbnail_url if course else None,
                    "progress": enrollment.total_progress,
                    "last_accessed": enrollment.last_accessed,
                }
            )

        return DashboardStats(
            total_courses=len(enrollments),
            completed_courses=completed,
            active_courses=len(enrollments) - completed,
            total_time_spent=seconds_to_minutes(sum(e.time_spent for e in enrollments)),
            average_progress=average,
            recent_activity=recent_activity,
        )

    async def _course_time(self, user_id: UUID, course_id: UUID) -> dict[str, int]:
        rows = await self.session.aexecute(self._get_course_time, [user_id, course_id])
        return {row.lesson_id: row.time_spent_seconds or 0 for row in rows}
