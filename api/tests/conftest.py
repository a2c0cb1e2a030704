"""Shared fixtures.

Settings are read once and cached, so the test environment is exported
before anything from ``src`` is imported.
"""

import os


os.environ["ENVIRONMENT"] = "testing"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["PAYMENT_KEY_ID"] = "rzp_test_key"
os.environ["PAYMENT_KEY_SECRET"] = "test-key-secret"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["FRONTEND_URL"] = "http://frontend.test"

from collections.abc import Awaitable, Callable  # noqa: E402
from decimal import Decimal  # noqa: E402
from unittest.mock import AsyncMock, Mock  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.auth.models import User  # noqa: E402
from src.auth.service import UserService  # noqa: E402
from src.courses.models import Course  # noqa: E402
from src.courses.schemas import (  # noqa: E402
    CreateCourseRequest,
    CreateLessonRequest,
    CreateUnitRequest,
)
from src.courses.service import CourseService  # noqa: E402
from src.enrollments.service import EnrollmentService  # noqa: E402
from src.notifications import NotificationDispatcher  # noqa: E402
from src.progress.runner import CaseResult, CodeRunnerClient  # noqa: E402
from src.progress.service import ProgressService  # noqa: E402

from fakes import FakeCassandraSession, FakeRedis  # noqa: E402


KEYSPACE = "test_ks"


# ==============================================================================
# Storage and services
# ==============================================================================


@pytest.fixture
def session() -> FakeCassandraSession:
    return FakeCassandraSession()


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def user_service(session: FakeCassandraSession) -> UserService:
    return UserService(session=session, keyspace=KEYSPACE)


@pytest.fixture
def course_service(session: FakeCassandraSession) -> CourseService:
    return CourseService(session=session, keyspace=KEYSPACE)


@pytest.fixture
def enrollment_service(
    session: FakeCassandraSession,
    course_service: CourseService,
    user_service: UserService,
) -> EnrollmentService:
    return EnrollmentService(
        session=session,
        keyspace=KEYSPACE,
        course_service=course_service,
        user_service=user_service,
    )


@pytest.fixture
def code_runner() -> Mock:
    """Code runner whose ``run`` returns every case as passed unless overridden."""
    runner = Mock(spec=CodeRunnerClient)

    async def run_all_passing(code, language, test_cases):
        return [CaseResult(passed=True, actual_output="ok") for _ in test_cases]

    runner.run = AsyncMock(side_effect=run_all_passing)
    return runner


@pytest.fixture
def progress_service(
    session: FakeCassandraSession,
    enrollment_service: EnrollmentService,
    course_service: CourseService,
    code_runner: Mock,
) -> ProgressService:
    return ProgressService(
        session=session,
        keyspace=KEYSPACE,
        enrollment_service=enrollment_service,
        course_service=course_service,
        code_runner=code_runner,
    )


@pytest.fixture
def dispatcher() -> Mock:
    return Mock(spec=NotificationDispatcher)


# ==============================================================================
# Factories
# ==============================================================================


@pytest_asyncio.fixture
async def make_user(user_service: UserService) -> Callable[..., Awaitable[User]]:
    counter = 0

    async def factory(name: str = "Asha Learner", role: str = "student") -> User:
        nonlocal counter
        counter += 1
        return await user_service.create_user(
            email=f"learner{counter}@example.com", name=name, role=role
        )

    return factory


@pytest_asyncio.fixture
async def make_course(course_service: CourseService) -> Callable[..., Awaitable[Course]]:
    """Create a course with one unit holding ``lessons`` (ids), 10 minutes each."""

    async def factory(
        lessons: list[str] | None = None,
        title: str = "Python Foundations",
        price: Decimal = Decimal("499.00"),
        course_id: UUID | None = None,
    ) -> Course:
        lessons = ["l1", "l2"] if lessons is None else lessons
        data = CreateCourseRequest(
            title=title,
            price=price,
            units=[
                CreateUnitRequest(
                    title="Unit 1",
                    lessons=[
                        CreateLessonRequest(
                            lesson_id=lesson_id,
                            title=f"Lesson {lesson_id}",
                            duration_minutes=10,
                        )
                        for lesson_id in lessons
                    ],
                )
            ],
        )
        return await course_service.create_course(data, course_id=course_id)

    return factory


# ==============================================================================
# HTTP
# ==============================================================================


@pytest.fixture
def client() -> TestClient:
    """App without storage (lifespan not started)."""
    from src.main import create_app

    return TestClient(create_app())
