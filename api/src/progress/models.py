"""Database models for lesson progress tracking.

Cassandra table definitions for:
- Lesson progress: derived per-lesson state, created lazily on first event
- Lesson time: cumulative seconds per lesson (COUNTER, additive under races)
- Lesson submissions: append-only quiz attempts and coding submissions

Submissions are clustered by a time-based UUID, newest first, so the head of
a lesson's partition slice is always its latest attempt.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

import orjson


class LessonProgressStatus(str, Enum):
    """Lesson progress status."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class SubmissionKind(str, Enum):
    QUIZ = "quiz"
    CODING = "coding"


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def seconds_to_minutes(seconds: int) -> int:
    """Whole minutes, halves rounded up."""
    return (max(seconds, 0) * 2 + 60) // 120


def timeuuid_sort_key(value: UUID) -> tuple[int, bytes]:
    """Order time-based UUIDs the way Cassandra orders TIMEUUID."""
    return value.time, value.bytes


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Partition key: (user_id, course_id) to read a whole course's progress at once
LESSON_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_progress (
    user_id UUID,
    course_id UUID,
    lesson_id TEXT,
    status TEXT,
    score INT,
    max_score INT,
    latest_submission_id TIMEUUID,
    started_at TIMESTAMP,
    completed_at TIMESTAMP,
    last_accessed_at TIMESTAMP,
    PRIMARY KEY ((user_id, course_id), lesson_id)
) WITH CLUSTERING ORDER BY (lesson_id ASC)
"""

LESSON_TIME_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_time (
    user_id UUID,
    course_id UUID,
    lesson_id TEXT,
    time_spent_seconds COUNTER,
    PRIMARY KEY ((user_id, course_id), lesson_id)
) WITH CLUSTERING ORDER BY (lesson_id ASC)
"""

# Rows are only ever inserted
LESSON_SUBMISSIONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_submissions (
    user_id UUID,
    course_id UUID,
    lesson_id TEXT,
    submission_id TIMEUUID,
    kind TEXT,
    status TEXT,
    score INT,
    max_score INT,
    time_spent INT,
    payload TEXT,
    submitted_at TIMESTAMP,
    PRIMARY KEY ((user_id, course_id), lesson_id, submission_id)
) WITH CLUSTERING ORDER BY (lesson_id ASC, submission_id DESC)
"""

PROGRESS_TABLES_CQL = [
    LESSON_PROGRESS_TABLE_CQL,
    LESSON_TIME_TABLE_CQL,
    LESSON_SUBMISSIONS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Submission:
    """An immutable quiz attempt or coding submission.

    ``payload`` holds the kind-specific body: quiz answers, or the code with
    its per-test results.
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        submission_id: UUID,
        kind: str,
        status: str,
        score: int,
        max_score: int | None = None,
        time_spent: int = 0,
        payload: dict[str, Any] | None = None,
        submitted_at: datetime | None = None,
    ):
        self.user_id = user_id
        self.course_id = course_id
        self.lesson_id = lesson_id
        self.submission_id = submission_id
        self.kind = kind
        self.status = status
        self.score = score
        self.max_score = max_score
        self.time_spent = time_spent
        self.payload = payload or {}
        self.submitted_at = ensure_utc_aware(submitted_at) or datetime.now(UTC)

    @classmethod
    def from_row(cls, row: Any) -> "Submission":
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            lesson_id=row.lesson_id,
            submission_id=row.submission_id,
            kind=row.kind,
            status=row.status,
            score=row.score or 0,
            max_score=row.max_score,
            time_spent=row.time_spent or 0,
            payload=orjson.loads(row.payload) if row.payload else {},
            submitted_at=row.submitted_at,
        )

    def payload_json(self) -> str:
        return orjson.dumps(self.payload).decode()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.submission_id,
            "kind": self.kind,
            "status": self.status,
            "score": self.score,
            "max_score": self.max_score,
            "time_spent": self.time_spent,
            "submitted_at": self.submitted_at,
            **self.payload,
        }


class LessonProgress:
    """Derived state of one lesson for one learner.

    Attributes:
        status: Current lesson status
        time_spent: Cumulative seconds, read from the lesson_time counter
        started_at: First interaction
        completed_at: First transition into completed, never reset
        score: Score of the most recent submission (latest wins)
        history: Submissions, newest first (only populated on detailed reads)
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        status: str = LessonProgressStatus.NOT_STARTED.value,
        score: int | None = None,
        max_score: int | None = None,
        latest_submission_id: UUID | None = None,
        time_spent: int = 0,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        last_accessed_at: datetime | None = None,
        history: list[Submission] | None = None,
    ):
        self.user_id = user_id
        self.course_id = course_id
        self.lesson_id = lesson_id
        self.status = status
        self.score = score
        self.max_score = max_score
        self.latest_submission_id = latest_submission_id
        self.time_spent = time_spent
        self.started_at = ensure_utc_aware(started_at)
        self.completed_at = ensure_utc_aware(completed_at)
        self.last_accessed_at = ensure_utc_aware(last_accessed_at)
        self.history = history or []

    @classmethod
    def from_row(cls, row: Any, time_spent: int = 0) -> "LessonProgress":
        """Create LessonProgress instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            lesson_id=row.lesson_id,
            status=row.status or LessonProgressStatus.NOT_STARTED.value,
            score=row.score,
            max_score=row.max_score,
            latest_submission_id=row.latest_submission_id,
            time_spent=time_spent,
            started_at=row.started_at,
            completed_at=row.completed_at,
            last_accessed_at=row.last_accessed_at,
        )

    def apply_history(self, history: list[Submission]) -> None:
        """Attach history and derive score from its most recent entry."""
        self.history = sorted(
            history, key=lambda s: timeuuid_sort_key(s.submission_id), reverse=True
        )
        if self.history:
            latest = self.history[0]
            self.score = latest.score
            self.max_score = latest.max_score
            self.latest_submission_id = latest.submission_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_id": self.lesson_id,
            "course_id": self.course_id,
            "status": self.status,
            "score": self.score,
            "max_score": self.max_score,
            "time_spent": self.time_spent,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "last_accessed_at": self.last_accessed_at,
            "attempts": len(self.history),
            "history": [s.to_dict() for s in self.history],
        }
