"""Student progress tracking API endpoints.

Provides routes for:
- Lesson events (status, quiz, coding)
- Course progress with per-lesson detail
- Dashboard statistics
"""

from uuid import UUID

from fastapi import APIRouter

from src.auth.dependencies import CurrentUser
from src.enrollments.schemas import ApiResponse, EnrollmentProgressSummary

from .dependencies import ProgressServiceDep
from .schemas import (
    CourseProgressResponse,
    DashboardStatsResponse,
    RecentActivity,
    RecordProgressRequest,
    RecordProgressResponse,
    lesson_response,
)


router = APIRouter(prefix="/v1/progress", tags=["progress"])


@router.post(
    "/lessons/{lesson_id}",
    response_model=ApiResponse[RecordProgressResponse],
    summary="Record a lesson event",
)
async def record_lesson_progress(
    lesson_id: str,
    data: RecordProgressRequest,
    service: ProgressServiceDep,
    user: CurrentUser,
) -> ApiResponse[RecordProgressResponse]:
    """Record a status update, quiz attempt or coding submission.

    Coding submissions are executed against their test cases before anything
    is saved; the lesson is completed only when every test passes.
    """
    update = await service.record_lesson_progress(
        user_id=user.id,
        course_id=data.course_id,
        lesson_id=lesson_id,
        event=data.event,
    )

    enrollment = None
    enrollment_status = None
    if update.enrollment is not None:
        enrollment = EnrollmentProgressSummary.model_validate(
            update.enrollment.to_dict()["progress"]
        )
        enrollment_status = update.enrollment.status

    return ApiResponse(
        message="Progress updated",
        data=RecordProgressResponse(
            lesson=lesson_response(update.progress.to_dict()),
            enrollment=enrollment,
            enrollment_status=enrollment_status,
        ),
    )


@router.get(
    "/courses/{course_id}",
    response_model=ApiResponse[CourseProgressResponse],
    summary="Get course progress",
)
async def get_course_progress(
    course_id: UUID,
    service: ProgressServiceDep,
    user: CurrentUser,
) -> ApiResponse[CourseProgressResponse]:
    progress = await service.get_course_progress(user.id, course_id)
    return ApiResponse(
        message="Course progress",
        data=CourseProgressResponse(
            course_id=progress.course_id,
            course_title=progress.course_title,
            total_lessons=progress.total_lessons,
            completed_lessons=progress.completed_lessons,
            overall_percentage=progress.overall_percentage,
            total_time_spent=progress.total_time_spent,
            estimated_time_remaining=progress.estimated_time_remaining,
            current_lesson=progress.current_lesson,
            last_accessed=progress.last_accessed,
            lessons=[lesson_response(lesson.to_dict()) for lesson in progress.lessons],
        ),
    )


@router.get(
    "/dashboard",
    response_model=ApiResponse[DashboardStatsResponse],
    summary="Get dashboard statistics",
)
async def get_dashboard_stats(
    service: ProgressServiceDep,
    user: CurrentUser,
) -> ApiResponse[DashboardStatsResponse]:
    stats = await service.get_dashboard_stats(user.id)
    return ApiResponse(
        message="Dashboard statistics",
        data=DashboardStatsResponse(
            total_courses=stats.total_courses,
            completed_courses=stats.completed_courses,
            active_courses=stats.active_courses,
            total_time_spent=stats.total_time_spent,
            average_progress=stats.average_progress,
            recent_activity=[RecentActivity(**item) for item in stats.recent_activity],
        ),
    )
