"""Enrollment API endpoints.

Provides routes for:
- Explicit enrollment (idempotent)
- Listing the caller's enrollments
- Withdrawal (delete) and drop
- Admin status changes and reconciliation
"""

from uuid import UUID

from fastapi import APIRouter, status

from src.auth.dependencies import AdminUser, CurrentUser
from src.courses.schemas import CourseSummary

from .dependencies import EnrollmentServiceDep
from .schemas import (
    ApiResponse,
    CounterReconcileResponse,
    EnrollmentResponse,
    EnrollRequest,
    EnrollResult,
    MirrorReconcileResponse,
    MyEnrollmentResponse,
)
from .service import EnrollmentWithCourse


router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])
admin_router = APIRouter(prefix="/v1/admin", tags=["admin-enrollments"])


def _my_enrollment(item: EnrollmentWithCourse) -> MyEnrollmentResponse:
    course = (
        CourseSummary.model_validate(item.course.to_summary())
        if item.course is not None
        else item.enrollment.course_id
    )
    return MyEnrollmentResponse.model_validate(
        {**item.enrollment.to_dict(), "course": course}
    )


@router.post(
    "",
    response_model=ApiResponse[EnrollResult],
    status_code=status.HTTP_200_OK,
    summary="Enroll in a course",
)
async def enroll(
    data: EnrollRequest,
    service: EnrollmentServiceDep,
    user: CurrentUser,
) -> ApiResponse[EnrollResult]:
    """Enroll the caller. Repeating the call returns the existing enrollment."""
    outcome = await service.enroll(user_id=user.id, course_id=data.course_id)
    return ApiResponse(
        message="Enrolled successfully" if outcome.created else "Already enrolled",
        data=EnrollResult(
            enrollment=EnrollmentResponse.from_entity(outcome.enrollment),
            created=outcome.created,
        ),
    )


@router.get(
    "/my",
    response_model=ApiResponse[list[MyEnrollmentResponse]],
    summary="List my enrollments",
)
async def list_my_enrollments(
    service: EnrollmentServiceDep,
    user: CurrentUser,
) -> ApiResponse[list[MyEnrollmentResponse]]:
    items = await service.list_my_enrollments(user.id)
    return ApiResponse(
        message=f"{len(items)} enrollment(s)",
        data=[_my_enrollment(item) for item in items],
    )


@router.delete(
    "/{enrollment_id}",
    response_model=ApiResponse[EnrollmentResponse],
    summary="Withdraw from a course",
)
async def unenroll(
    enrollment_id: UUID,
    service: EnrollmentServiceDep,
    user: CurrentUser,
) -> ApiResponse[EnrollmentResponse]:
    """Delete the caller's enrollment. Returns the state it had before deletion."""
    enrollment = await service.unenroll(enrollment_id, requester_id=user.id)
    return ApiResponse(
        message="Unenrolled successfully",
        data=EnrollmentResponse.from_entity(enrollment),
    )


@router.post(
    "/{enrollment_id}/drop",
    response_model=ApiResponse[EnrollmentResponse],
    summary="Drop a course",
)
async def drop(
    enrollment_id: UUID,
    service: EnrollmentServiceDep,
    user: CurrentUser,
) -> ApiResponse[EnrollmentResponse]:
    enrollment = await service.drop(enrollment_id, requester_id=user.id)
    return ApiResponse(
        message="Course dropped",
        data=EnrollmentResponse.from_entity(enrollment),
    )


# ==============================================================================
# Admin
# ==============================================================================


@admin_router.post(
    "/enrollments/{enrollment_id}/suspend",
    response_model=ApiResponse[EnrollmentResponse],
    summary="Suspend an enrollment",
)
async def suspend(
    enrollment_id: UUID,
    service: EnrollmentServiceDep,
    _admin: AdminUser,
) -> ApiResponse[EnrollmentResponse]:
    enrollment = await service.suspend(enrollment_id)
    return ApiResponse(
        message="Enrollment suspended",
        data=EnrollmentResponse.from_entity(enrollment),
    )


@admin_router.post(
    "/enrollments/{enrollment_id}/restore",
    response_model=ApiResponse[EnrollmentResponse],
    summary="Restore a suspended enrollment",
)
async def restore(
    enrollment_id: UUID,
    service: EnrollmentServiceDep,
    _admin: AdminUser,
) -> ApiResponse[EnrollmentResponse]:
    enrollment = await service.restore(enrollment_id)
    return ApiResponse(
        message="Enrollment restored",
        data=EnrollmentResponse.from_entity(enrollment),
    )


@admin_router.post(
    "/reconcile/users/{user_id}",
    response_model=ApiResponse[MirrorReconcileResponse],
    summary="Rebuild a user's course mirror",
)
async def reconcile_user(
    user_id: UUID,
    service: EnrollmentServiceDep,
    _admin: AdminUser,
) -> ApiResponse[MirrorReconcileResponse]:
    added, removed = await service.reconcile_user_mirror(user_id)
    return ApiResponse(
        message="User mirror reconciled",
        data=MirrorReconcileResponse(
            user_id=user_id,
            added=sorted(added, key=str),
            removed=sorted(removed, key=str),
        ),
    )


@admin_router.post(
    "/reconcile/courses/{course_id}",
    response_model=ApiResponse[CounterReconcileResponse],
    summary="Recount a course's enrollments",
)
async def reconcile_course(
    course_id: UUID,
    service: EnrollmentServiceDep,
    _admin: AdminUser,
) -> ApiResponse[CounterReconcileResponse]:
    previous, actual = await service.reconcile_course_counter(course_id)
    return ApiResponse(
        message="Course counter reconciled",
        data=CounterReconcileResponse(
            course_id=course_id, previous=previous, actual=actual
        ),
    )
