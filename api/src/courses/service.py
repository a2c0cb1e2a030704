"""Course service layer.

Read access to courses and their live lesson structure, plus the per-course
enrollment counter. The counter is a Cassandra COUNTER column: increments and
decrements from concurrent requests never lose updates, but it can drift from
the real enrollment count when a secondary write fails, so it can also be
reset to a recomputed value.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from src.core.exceptions import NotFoundError
from src.core.logging import get_logger
from src.courses.models import Course, CourseLesson, CourseStructure
from src.courses.schemas import CreateCourseRequest


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


class CourseNotFoundError(NotFoundError):
    def __init__(self, message: str = "Course not found"):
        super().__init__(message, "course_not_found")


class CourseService:
    """Service for course reads and the enrollment counter."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        self._get_course_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.courses WHERE id = ?"
        )
        self._insert_course = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.courses
            (id, title, slug, description, thumbnail_url, status, instructor_id,
             price, currency, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._delete_course = self.session.prepare(
            f"DELETE FROM {self.keyspace}.courses WHERE id = ?"
        )

        # Lesson structure
        self._get_course_lessons = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.course_lessons WHERE course_id = ?"
        )
        self._insert_course_lesson = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.course_lessons
            (course_id, unit_position, lesson_position, lesson_id, unit_title,
             title, lesson_type, duration_minutes)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)

        # Enrollment counter
        self._get_enrollment_count = self.session.prepare(f"""
            SELECT total_enrollments FROM {self.keyspace}.course_enrollment_counters
            WHERE course_id = ?
        """)
        self._increment_enrollments = self.session.prepare(f"""
            UPDATE {self.keyspace}.course_enrollment_counters
            SET total_enrollments = total_enrollments + ?
            WHERE course_id = ?
        """)
        self._decrement_enrollments = self.session.prepare(f"""
            UPDATE {self.keyspace}.course_enrollment_counters
            SET total_enrollments = total_enrollments - ?
            WHERE course_id = ?
        """)

    # ==========================================================================
    # Courses
    # ==========================================================================

    async def get_course(self, course_id: UUID) -> Course | None:
        result = await self.session.aexecute(self._get_course_by_id, [course_id])
        row = result.one()
        return Course.from_row(row) if row else None

    async def require_course(self, course_id: UUID) -> Course:
        """Get a course or raise CourseNotFoundError."""
        course = await self.get_course(course_id)
        if course is None:
            raise CourseNotFoundError
        return course

    async def create_course(
        self,
        data: CreateCourseRequest,
        instructor_id: UUID | None = None,
        course_id: UUID | None = None,
    ) -> Course:
        """Create a course together with its lesson structure."""
        course = Course(
            id=course_id,
            title=data.title,
            description=data.description,
            thumbnail_url=data.thumbnail_url,
            instructor_id=instructor_id,
            price=data.price,
            currency=data.currency.upper(),
        )
        await self.session.aexecute(
            self._insert_course,
            [
                course.id,
                course.title,
                course.slug,
                course.description,
                course.thumbnail_url,
                course.status,
                course.instructor_id,
                course.price,
                course.currency,
                course.created_at,
                datetime.now(UTC),
            ],
        )

        for unit_position, unit in enumerate(data.units):
            for lesson_position, lesson in enumerate(unit.lessons):
                await self.add_lesson(
                    CourseLesson(
                        course_id=course.id,
                        unit_position=unit_position,
                        lesson_position=lesson_position,
                        lesson_id=lesson.lesson_id,
                        title=lesson.title,
                        unit_title=unit.title,
                        lesson_type=lesson.lesson_type,
                        duration_minutes=lesson.duration_minutes,
                    )
                )

        logger.info(
            "course_created",
            course_id=str(course.id),
            units=len(data.units),
        )
        return course

    async def delete_course(self, course_id: UUID) -> None:
        """Delete the course record. Enrollments keep the dangling id."""
        await self.session.aexecute(self._delete_course, [course_id])
        logger.info("course_deleted", course_id=str(course_id))

    # ==========================================================================
    # Lesson structure
    # ==========================================================================

    async def add_lesson(self, lesson: CourseLesson) -> None:
        await self.session.aexecute(
            self._insert_course_lesson,
            [
                lesson.course_id,
                lesson.unit_position,
                lesson.lesson_position,
                lesson.lesson_id,
                lesson.unit_title,
                lesson.title,
                lesson.lesson_type,
                lesson.duration_minutes,
            ],
        )

    async def get_lessons(self, course_id: UUID) -> list[CourseLesson]:
        """Lessons in course order (unit, then position within the unit)."""
        rows = await self.session.aexecute(self._get_course_lessons, [course_id])
        return [CourseLesson.from_row(row) for row in rows]

    async def get_structure(self, course_id: UUID) -> CourseStructure:
        """Count lessons and minutes from the current structure."""
        lessons = await self.get_lessons(course_id)
        return CourseStructure(
            total_lessons=len(lessons),
            total_duration_minutes=sum(lesson.duration_minutes for lesson in lessons),
            first_lesson_id=lessons[0].lesson_id if lessons else None,
        )

    # ==========================================================================
    # Enrollment counter
    # ==========================================================================

    async def get_enrollment_count(self, course_id: UUID) -> int:
        result = await self.session.aexecute(self._get_enrollment_count, [course_id])
        row = result.one()
        if row is None or row.total_enrollments is None:
            return 0
        return row.total_enrollments

    async def increment_enrollments(self, course_id: UUID, by: int = 1) -> None:
        await self.session.aexecute(self._increment_enrollments, [by, course_id])

    async def decrement_enrollments(self, course_id: UUID, by: int = 1) -> int:
        """Decrement the counter, floored at zero.

        Counters cannot be conditionally updated, so a result below zero is
        pulled back up with a compensating increment. Each call only undoes
        its own overshoot (at most ``by``), since concurrent decrements each see
        the combined negative value. Racing decrements can still leave a small
        surplus; ``reconcile_course_counter`` removes it.
        """
        await self.session.aexecute(self._decrement_enrollments, [by, course_id])
        value = await self.get_enrollment_count(course_id)
        if value < 0:
            await self.session.aexecute(
                self._increment_enrollments, [min(-value, by), course_id]
            )
            logger.warning(
                "enrollment_counter_floored",
                course_id=str(course_id),
                observed=value,
            )
            return 0
        return value

    async def set_enrollment_count(self, course_id: UUID, target: int) -> int:
        """Move the counter to ``target`` by applying the difference.

        This is read-then-write: an increment or decrement landing between the
        read and the write is lost from the result. Run it when enrollments
        for the course are quiet, or run it again.
        """
        current = await self.get_enrollment_count(course_id)
        delta = target - current
        if delta > 0:
            await self.session.aexecute(self._increment_enrollments, [delta, course_id])
        elif delta < 0:
            await self.session.aexecute(self._decrement_enrollments, [-delta, course_id])
        return delta
