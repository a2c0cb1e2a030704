"""Pydantic schemas for lesson progress tracking.

Lesson events are a tagged union on ``type``:
- ``status``: plain status update (reading, video)
- ``quiz``: quiz attempt with its score
- ``coding``: code to run against test cases
"""

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from src.enrollments.schemas import EnrollmentProgressSummary

from .models import LessonProgressStatus


# ==============================================================================
# Lesson Events
# ==============================================================================


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    status: LessonProgressStatus = LessonProgressStatus.COMPLETED
    time_spent: int = Field(default=0, ge=0, description="Seconds since last event")


class QuizAnswer(BaseModel):
    question_id: str
    answer: str
    is_correct: bool | None = None
    points: int | None = None


class QuizEvent(BaseModel):
    type: Literal["quiz"] = "quiz"
    answers: list[QuizAnswer] = Field(default_factory=list)
    score: int = Field(default=0, ge=0)
    max_score: int | None = Field(default=None, ge=0)
    status: LessonProgressStatus = LessonProgressStatus.COMPLETED
    time_spent: int = Field(default=0, ge=0)


class CodeTestCase(BaseModel):
    input: str = ""
    expected_output: str


class CodingEvent(BaseModel):
    type: Literal["coding"] = "coding"
    problem_id: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., max_length=100_000)
    language: str = Field(..., min_length=1, max_length=30)
    test_cases: list[CodeTestCase] = Field(default_factory=list)
    time_spent: int = Field(default=0, ge=0)


LessonEvent = Annotated[StatusEvent | QuizEvent | CodingEvent, Field(discriminator="type")]


class RecordProgressRequest(BaseModel):
    """Request body for a lesson event."""

    course_id: UUID
    event: LessonEvent


# ==============================================================================
# Responses
# ==============================================================================


class SubmissionResponse(BaseModel):
    model_config = {"extra": "allow"}

    id: UUID
    kind: str
    status: str
    score: int
    max_score: int | None = None
    time_spent: int = 0
    submitted_at: datetime


class LessonProgressResponse(BaseModel):
    """Lesson progress response."""

    lesson_id: str
    course_id: UUID
    status: LessonProgressStatus
    score: int | None = None
    max_score: int | None = None
    time_spent: int = Field(default=0, description="Seconds")
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_accessed_at: datetime | None = None
    attempts: int = 0
    history: list[SubmissionResponse] = Field(default_factory=list)


class RecordProgressResponse(BaseModel):
    lesson: LessonProgressResponse
    enrollment: EnrollmentProgressSummary | None = None
    enrollment_status: str | None = None


class CourseProgressResponse(BaseModel):
    course_id: UUID
    course_title: str
    total_lessons: int
    completed_lessons: int
    overall_percentage: int
    total_time_spent: int = Field(description="Minutes")
    estimated_time_remaining: int = Field(description="Minutes")
    current_lesson: str | None = None
    last_accessed: datetime | None = None
    lessons: list[LessonProgressResponse]


class RecentActivity(BaseModel):
    course_id: UUID
    course_title: str | None = None
    thumbnail_url: str | None = None
    progress: int
    last_accessed: datetime


class DashboardStatsResponse(BaseModel):
    total_courses: int
    completed_courses: int
    active_courses: int
    total_time_spent: int = Field(description="Minutes")
    average_progress: int
    recent_activity: list[RecentActivity]


def lesson_response(data: dict[str, Any]) -> LessonProgressResponse:
    return LessonProgressResponse.model_validate(data)
