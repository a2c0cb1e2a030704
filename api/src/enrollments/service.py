"""Enrollment service layer.

Business logic for:
- Idempotent enrollment (duplicate payments, retries, webhooks)
- Withdrawal and status transitions
- Course-membership mirror and enrollment counter upkeep
- Reconciliation of both from live enrollment rows

The primary row is written with ``INSERT ... IF NOT EXISTS``; losing that
race is the idempotent path, never an error. Mirror and counter updates run
after the primary write and are best-effort: their failure is logged and left
for reconciliation, the call itself still succeeds.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog

from src.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from .models import (
    COUNTED_STATUSES,
    AccessLevel,
    Enrollment,
    EnrollmentStatus,
    PaymentStatus,
    percent_of,
)
from .schemas import PaymentInfo


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from src.auth.service import UserService
    from src.courses.models import Course
    from src.courses.service import CourseService

logger = structlog.get_logger(__name__)

# Compare-and-set attempts when recomputing aggregate progress
MAX_PROGRESS_CAS_ATTEMPTS = 5


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class EnrollmentNotFoundError(NotFoundError):
    def __init__(self, message: str = "Enrollment not found"):
        super().__init__(message, "enrollment_not_found")


class NotEnrollmentOwnerError(PermissionDeniedError):
    def __init__(self, message: str = "Enrollment belongs to another user"):
        super().__init__(message, "not_enrollment_owner")


class AlreadyEnrolledError(ConflictError):
    """Raised internally when the insert-if-absent loses."""

    def __init__(self, message: str = "Already enrolled"):
        super().__init__(message, "already_enrolled")


class InvalidTransitionError(ValidationError):
    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot change enrollment from {current} to {target}",
            "invalid_status_transition",
        )


# Allowed manual/admin transitions: target -> statuses it may come from.
# active -> completed is automatic and handled by mark_completed.
TRANSITIONS: dict[str, frozenset[str]] = {
    EnrollmentStatus.DROPPED.value: frozenset(
        {EnrollmentStatus.ACTIVE.value, EnrollmentStatus.COMPLETED.value}
    ),
    EnrollmentStatus.SUSPENDED.value: frozenset(
        {
            EnrollmentStatus.ACTIVE.value,
            EnrollmentStatus.COMPLETED.value,
            EnrollmentStatus.DROPPED.value,
        }
    ),
    EnrollmentStatus.ACTIVE.value: frozenset({EnrollmentStatus.SUSPENDED.value}),
}


@dataclass(frozen=True)
class EnrollOutcome:
    enrollment: Enrollment
    created: bool


@dataclass(frozen=True)
class EnrollmentWithCourse:
    enrollment: Enrollment
    course: "Course | None"


class EnrollmentService:
    """Service for the user-course binding."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        course_service: "CourseService",
        user_service: "UserService",
    ):
        self.session = session
        self.keyspace = keyspace
        self.courses = course_service
        self.users = user_service
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        self._insert_enrollment = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrollments
            (user_id, course_id, enrollment_id, status, payment_status,
             payment_method, payment_id, order_id, amount_paid, currency,
             access_level, current_lesson, total_progress, time_spent,
             last_accessed, enrolled_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)
        self._get_enrollment = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments
            WHERE user_id = ? AND course_id = ?
        """)
        self._get_user_enrollments = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.enrollments WHERE user_id = ?"
        )
        self._delete_enrollment = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.enrollments
            WHERE user_id = ? AND course_id = ?
            IF EXISTS
        """)
        self._transition_status = self.session.prepare(f"""
            UPDATE {self.keyspace}.enrollments
            SET status = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ?
            IF status = ?
        """)
        self._complete_enrollment = self.session.prepare(f"""
            UPDATE {self.keyspace}.enrollments
            SET status = ?, completed_at = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ?
            IF status = ?
        """)

        # Progress summary
        self._add_completed_lesson = self.session.prepare(f"""
            UPDATE {self.keyspace}.enrollments
            SET completed_lessons = completed_lessons + ?, updated_at = ?
            WHERE user_id = ? AND course_id = ?
            IF EXISTS
        """)
        self._set_total_progress = self.session.prepare(f"""
            UPDATE {self.keyspace}.enrollments
            SET total_progress = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ?
            IF total_progress = ?
        """)
        self._touch_enrollment = self.session.prepare(f"""
            UPDATE {self.keyspace}.enrollments
            SET current_lesson = ?, last_accessed = ?, time_spent = ?
            WHERE user_id = ? AND course_id = ?
            IF EXISTS
        """)

        # Lookups
        self._insert_by_id = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrollments_by_id
            (enrollment_id, user_id, course_id)
            VALUES (?, ?, ?)
        """)
        self._get_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.enrollments_by_id WHERE enrollment_id = ?"
        )
        self._delete_by_id = self.session.prepare(
            f"DELETE FROM {self.keyspace}.enrollments_by_id WHERE enrollment_id = ?"
        )
        self._upsert_by_course = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrollments_by_course
            (course_id, user_id, status, enrolled_at)
            VALUES (?, ?, ?, ?)
        """)
        self._get_by_course = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.enrollments_by_course WHERE course_id = ?"
        )
        self._delete_by_course = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.enrollments_by_course
            WHERE course_id = ? AND user_id = ?
        """)

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get_enrollment(self, user_id: UUID, course_id: UUID) -> Enrollment | None:
        """Get enrollment by user and course."""
        result = await self.session.aexecute(self._get_enrollment, [user_id, course_id])
        row = result.one()
        return Enrollment.from_row(row) if row else None

    async def get_enrollment_by_id(self, enrollment_id: UUID) -> Enrollment | None:
        result = await self.session.aexecute(self._get_by_id, [enrollment_id])
        row = result.one()
        if row is None:
            return None
        return await self.get_enrollment(row.user_id, row.course_id)

    async def require_active_enrollment(
        self, user_id: UUID, course_id: UUID
    ) -> Enrollment:
        """Get an enrollment that grants access, or raise PermissionDeniedError."""
        enrollment = await self.get_enrollment(user_id, course_id)
        if enrollment is None or not enrollment.is_counted:
            raise PermissionDeniedError("Not enrolled in this course", "not_enrolled")
        return enrollment

    async def get_user_enrollments(self, user_id: UUID) -> list[Enrollment]:
        """All enrollment rows of a user, whatever their status."""
        rows = await self.session.aexecute(self._get_user_enrollments, [user_id])
        return [Enrollment.from_row(row) for row in rows]

    async def list_my_enrollments(self, user_id: UUID) -> list[EnrollmentWithCourse]:
        """Active and completed enrollments with their course, newest first.

        A course deleted after enrollment is reported as ``course=None``.
        Missing mirror entries are repaired on the way.
        """
        enrollments = [
            e for e in await self.get_user_enrollments(user_id) if e.is_counted
        ]
        enrollments.sort(key=lambda e: e.enrolled_at, reverse=True)

        items = []
        for enrollment in enrollments:
            course = await self.courses.get_course(enrollment.course_id)
            if course is None:
                logger.warning(
                    "enrollment_course_missing",
                    user_id=str(user_id),
                    course_id=str(enrollment.course_id),
                )
            items.append(EnrollmentWithCourse(enrollment=enrollment, course=course))

        await self._heal_mirror(user_id, {e.course_id for e in enrollments})
        return items

    # ==========================================================================
    # Enroll
    # ==========================================================================

    async def enroll(
        self,
        user_id: UUID,
        course_id: UUID,
        payment: PaymentInfo | None = None,
    ) -> EnrollOutcome:
        """Create the enrollment for (user, course), or return the existing one.

        Args:
            user_id: User UUID
            course_id: Course UUID
            payment: Payment facts. Without one the course price is recorded.

        Returns:
            EnrollOutcome with ``created=False`` on the idempotent path

        Raises:
            CourseNotFoundError: If the course does not exist
            UserNotFoundError: If the user does not exist
        """
        course = await self.courses.require_course(course_id)
        # Mirror updates would otherwise create a bare users row
        await self.users.require_user(user_id)
        existing = await self.get_enrollment(user_id, course_id)

        if existing is None:
            try:
                enrollment = await self._insert(user_id, course, payment)
            except AlreadyEnrolledError:
                existing = await self.get_enrollment(user_id, course_id)
                if existing is None:
                    raise
            else:
                await self._after_insert(enrollment)
                return EnrollOutcome(enrollment=enrollment, created=True)

        logger.info(
            "enrollment_already_exists",
            user_id=str(user_id),
            course_id=str(course_id),
            status=existing.status,
            payment_id=payment.payment_id if payment else None,
        )
        if existing.is_counted:
            await self._heal_mirror(user_id, {course_id})
        return EnrollOutcome(enrollment=existing, created=False)

    async def _insert(
        self,
        user_id: UUID,
        course: "Course",
        payment: PaymentInfo | None,
    ) -> Enrollment:
        structure = await self.courses.get_structure(course.id)
        now = datetime.now(UTC)

        amount = payment.amount if payment and payment.amount is not None else None
        enrollment = Enrollment(
            user_id=user_id,
            course_id=course.id,
            status=EnrollmentStatus.ACTIVE.value,
            payment_status=PaymentStatus.PAID.value,
            payment_method=payment.payment_method if payment else None,
            payment_id=payment.payment_id if payment else None,
            order_id=payment.order_id if payment else None,
            amount_paid=amount if amount is not None else course.price,
            currency=(payment.currency if payment else None) or course.currency,
            access_level=AccessLevel.FULL.value,
            current_lesson=structure.first_lesson_id,
            enrolled_at=now,
            updated_at=now,
        )

        # Same deterministic id for every writer, so this write is harmless on a lost race
        await self.session.aexecute(
            self._insert_by_id, [enrollment.id, user_id, course.id]
        )
        # Candidate for counter reconciliation, which confirms it against the primary row
        await self._write_by_course(enrollment)

        result = await self.session.aexecute(
            self._insert_enrollment,
            [
                enrollment.user_id,
                enrollment.course_id,
                enrollment.id,
                enrollment.status,
                enrollment.payment_status,
                enrollment.payment_method,
                enrollment.payment_id,
                enrollment.order_id,
                enrollment.amount_paid,
                enrollment.currency,
                enrollment.access_level,
                enrollment.current_lesson,
                enrollment.total_progress,
                enrollment.time_spent,
                enrollment.last_accessed,
                enrollment.enrolled_at,
                enrollment.updated_at,
            ],
        )
        if not result.was_applied:
            raise AlreadyEnrolledError

        logger.info(
            "enrollment_created",
            enrollment_id=str(enrollment.id),
            user_id=str(user_id),
            course_id=str(course.id),
            amount_paid=str(enrollment.amount_paid),
            payment_id=enrollment.payment_id,
        )
        return enrollment

    async def _after_insert(self, enrollment: Enrollment) -> None:
        """Secondary writes for a new enrollment. Failures are only logged."""
        await self._best_effort(
            "enrollment_mirror_add_failed",
            self.users.add_enrolled_courses(enrollment.user_id, {enrollment.course_id}),
            enrollment,
        )
        await self._best_effort(
            "enrollment_counter_increment_failed",
            self.courses.increment_enrollments(enrollment.course_id),
            enrollment,
        )

    # ==========================================================================
    # Withdraw and status transitions
    # ==========================================================================

    async def unenroll(self, enrollment_id: UUID, requester_id: UUID) -> Enrollment:
        """Delete an enrollment owned by the requester.

        Raises:
            EnrollmentNotFoundError: Unknown id
            NotEnrollmentOwnerError: Requester is not the owner (nothing changes)
        """
        enrollment = await self._require_owned(enrollment_id, requester_id)

        result = await self.session.aexecute(
            self._delete_enrollment, [enrollment.user_id, enrollment.course_id]
        )
        if not result.was_applied:
            # Concurrent withdrawal already removed it
            raise EnrollmentNotFoundError

        logger.info(
            "enrollment_deleted",
            enrollment_id=str(enrollment.id),
            user_id=str(enrollment.user_id),
            course_id=str(enrollment.course_id),
            status=enrollment.status,
        )

        await self._best_effort(
            "enrollment_mirror_remove_failed",
            self.users.remove_enrolled_courses(
                enrollment.user_id, {enrollment.course_id}
            ),
            enrollment,
        )
        if enrollment.is_counted:
            await self._best_effort(
                "enrollment_counter_decrement_failed",
                self.courses.decrement_enrollments(enrollment.course_id),
                enrollment,
            )
        await self._best_effort(
            "enrollment_lookup_delete_failed",
            self._delete_lookups(enrollment),
            enrollment,
        )
        return enrollment

    async def drop(self, enrollment_id: UUID, requester_id: UUID) -> Enrollment:
        """Learner withdraws without deleting history (terminal)."""
        enrollment = await self._require_owned(enrollment_id, requester_id)
        return await self._transition(enrollment, EnrollmentStatus.DROPPED.value)

    async def suspend(self, enrollment_id: UUID) -> Enrollment:
        """Admin suspension, from any other status."""
        enrollment = await self._require_by_id(enrollment_id)
        return await self._transition(enrollment, EnrollmentStatus.SUSPENDED.value)

    async def restore(self, enrollment_id: UUID) -> Enrollment:
        """Admin restore of a suspended enrollment back to active."""
        enrollment = await self._require_by_id(enrollment_id)
        return await self._transition(enrollment, EnrollmentStatus.ACTIVE.value)

    async def mark_completed(self, user_id: UUID, course_id: UUID) -> bool:
        """Move an active enrollment to completed. Returns True if this call did it."""
        now = datetime.now(UTC)
        result = await self.session.aexecute(
            self._complete_enrollment,
            [
                EnrollmentStatus.COMPLETED.value,
                now,
                now,
                user_id,
                course_id,
                EnrollmentStatus.ACTIVE.value,
            ],
        )
        if result.was_applied:
            logger.info(
                "enrollment_completed", user_id=str(user_id), course_id=str(course_id)
            )
            await self._best_effort(
                "enrollment_by_course_write_failed",
                self._write_by_course_status(
                    user_id, course_id, EnrollmentStatus.COMPLETED.value
                ),
            )
        return result.was_applied

    async def _transition(self, enrollment: Enrollment, target: str) -> Enrollment:
        allowed_from = TRANSITIONS.get(target, frozenset())
        if enrollment.status not in allowed_from:
            raise InvalidTransitionError(enrollment.status, target)

        previous = enrollment.status
        result = await self.session.aexecute(
            self._transition_status,
            [
                target,
                datetime.now(UTC),
                enrollment.user_id,
                enrollment.course_id,
                previous,
            ],
        )
        if not result.was_applied:
            raise ValidationError(
                "Enrollment status changed concurrently, retry",
                "status_changed",
            )

        enrollment.status = target
        logger.info(
            "enrollment_status_changed",
            enrollment_id=str(enrollment.id),
            previous=previous,
            status=target,
        )

        was_counted = previous in COUNTED_STATUSES
        if was_counted and not enrollment.is_counted:
            await self._best_effort(
                "enrollment_counter_decrement_failed",
                self.courses.decrement_enrollments(enrollment.course_id),
                enrollment,
            )
            await self._best_effort(
                "enrollment_mirror_remove_failed",
                self.users.remove_enrolled_courses(
                    enrollment.user_id, {enrollment.course_id}
                ),
                enrollment,
            )
        elif enrollment.is_counted and not was_counted:
            await self._best_effort(
                "enrollment_counter_increment_failed",
                self.courses.increment_enrollments(enrollment.course_id),
                enrollment,
            )
            await self._best_effort(
                "enrollment_mirror_add_failed",
                self.users.add_enrolled_courses(
                    enrollment.user_id, {enrollment.course_id}
                ),
                enrollment,
            )
        await self._best_effort(
            "enrollment_by_course_write_failed",
            self._write_by_course(enrollment),
            enrollment,
        )
        return enrollment

    # ==========================================================================
    # Progress summary (written by the progress tracker)
    # ==========================================================================

    async def add_completed_lesson(
        self, user_id: UUID, course_id: UUID, lesson_id: str
    ) -> bool:
        """Union a lesson into ``completed_lessons``. False if the enrollment is gone."""
        result = await self.session.aexecute(
            self._add_completed_lesson,
            [{lesson_id}, datetime.now(UTC), user_id, course_id],
        )
        return result.was_applied

    async def recompute_total_progress(
        self, user_id: UUID, course_id: UUID, total_lessons: int
    ) -> Enrollment | None:
        """Recompute ``total_progress`` from the completed set and live lesson count.

        Uses compare-and-set on the previous value, so a writer that computed
        from a stale set loses and recomputes from the fresh one.
        """
        for _ in range(MAX_PROGRESS_CAS_ATTEMPTS):
            enrollment = await self.get_enrollment(user_id, course_id)
            if enrollment is None:
                return None

            target = calculate_total_progress(
                len(enrollment.completed_lessons), total_lessons
            )
            if target == enrollment.total_progress:
                return enrollment

            result = await self.session.aexecute(
                self._set_total_progress,
                [target, datetime.now(UTC), user_id, course_id, enrollment.total_progress],
            )
            if result.was_applied:
                enrollment.total_progress = target
                return enrollment

        logger.warning(
            "enrollment_progress_cas_exhausted",
            user_id=str(user_id),
            course_id=str(course_id),
        )
        return await self.get_enrollment(user_id, course_id)

    async def touch(
        self,
        user_id: UUID,
        course_id: UUID,
        current_lesson: str,
        time_spent: int,
        accessed_at: datetime,
    ) -> bool:
        """Refresh current lesson, last access and total time spent."""
        result = await self.session.aexecute(
            self._touch_enrollment,
            [current_lesson, accessed_at, time_spent, user_id, course_id],
        )
        return result.was_applied

    # ==========================================================================
    # Reconciliation
    # ==========================================================================

    async def reconcile_user_mirror(
        self, user_id: UUID
    ) -> tuple[set[UUID], set[UUID]]:
        """Make the user's mirror equal the courses of their counted enrollments.

        Returns:
            (added, removed) course ids
        """
        await self.users.require_user(user_id)
        expected = {
            e.course_id for e in await self.get_user_enrollments(user_id) if e.is_counted
        }
        actual = await self.users.get_enrolled_courses(user_id)

        added = expected - actual
        removed = actual - expected
        await self.users.add_enrolled_courses(user_id, added)
        await self.users.remove_enrolled_courses(user_id, removed)

        logger.info(
            "user_mirror_reconciled",
            user_id=str(user_id),
            added=len(added),
            removed=len(removed),
        )
        return added, removed

    async def reconcile_course_counter(self, course_id: UUID) -> tuple[int, int]:
        """Reset a course's counter to the live count of counted enrollments.

        The course replica only lists candidates; each is confirmed against
        the primary row, and stale replica rows are repaired.

        Returns:
            (previous counter value, actual count)
        """
        actual = 0
        rows = await self.session.aexecute(self._get_by_course, [course_id])
        for row in list(rows):
            enrollment = await self.get_enrollment(row.user_id, course_id)
            if enrollment is None:
                await self.session.aexecute(self._delete_by_course, [course_id, row.user_id])
                continue
            if enrollment.status != row.status:
                await self._write_by_course(enrollment)
            if enrollment.is_counted:
                actual += 1

        previous = await self.courses.get_enrollment_count(course_id)
        await self.courses.set_enrollment_count(course_id, actual)

        logger.info(
            "course_counter_reconciled",
            course_id=str(course_id),
            previous=previous,
            actual=actual,
        )
        return previous, actual

    # ==========================================================================
    # Helpers
    # ==========================================================================

    async def _require_by_id(self, enrollment_id: UUID) -> Enrollment:
        enrollment = await self.get_enrollment_by_id(enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFoundError
        return enrollment

    async def _require_owned(self, enrollment_id: UUID, requester_id: UUID) -> Enrollment:
        enrollment = await self._require_by_id(enrollment_id)
        if enrollment.user_id != requester_id:
            logger.warning(
                "enrollment_access_denied",
                enrollment_id=str(enrollment_id),
                requester_id=str(requester_id),
            )
            raise NotEnrollmentOwnerError
        return enrollment

    async def _heal_mirror(self, user_id: UUID, course_ids: set[UUID]) -> None:
        """Add any of ``course_ids`` missing from the mirror. Never raises."""
        try:
            missing = course_ids - await self.users.get_enrolled_courses(user_id)
            if missing:
                await self.users.add_enrolled_courses(user_id, missing)
                logger.info(
                    "user_mirror_healed",
                    user_id=str(user_id),
                    course_ids=[str(c) for c in missing],
                )
        except Exception as e:
            logger.exception("user_mirror_heal_failed", user_id=str(user_id), error=str(e))

    async def _write_by_course(self, enrollment: Enrollment) -> None:
        await self.session.aexecute(
            self._upsert_by_course,
            [
                enrollment.course_id,
                enrollment.user_id,
                enrollment.status,
                enrollment.enrolled_at,
            ],
        )

    async def _write_by_course_status(
        self, user_id: UUID, course_id: UUID, status: str
    ) -> None:
        enrollment = await self.get_enrollment(user_id, course_id)
        if enrollment is not None:
            enrollment.status = status
            await self._write_by_course(enrollment)

    async def _delete_lookups(self, enrollment: Enrollment) -> None:
        await self.session.aexecute(
            self._delete_by_course, [enrollment.course_id, enrollment.user_id]
        )
        await self.session.aexecute(
            self._delete_by_id, [enrollment.id]
        )

    async def _best_effort(
        self, event: str, operation: Any, enrollment: Enrollment | None = None
    ) -> None:
        """Await a secondary write, logging instead of raising on failure."""
        try:
            await operation
        except Exception as e:
            context: dict[str, Any] = {"error": str(e)}
            if enrollment is not None:
                context.update(
                    user_id=str(enrollment.user_id),
                    course_id=str(enrollment.course_id),
                )
            logger.exception(event, **context)


def calculate_total_progress(completed: int, total_lessons: int) -> int:
    """Whole percent of lessons completed, capped at 100; 0 for an empty course."""
    if total_lessons <= 0:
        return 0
    return min(100, percent_of(completed, total_lessons))
