"""Seed courses and their lesson structure for local development.

Courses come from a JSON file holding a list of course definitions (see
``courses.example.json``). A course whose ``id`` already exists is skipped,
so the script can be run repeatedly.

Usage:
    cd api && uv run python -m scripts.seed_courses scripts/courses.example.json
"""

import asyncio
import sys
from pathlib import Path
from uuid import UUID

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import orjson
import structlog
from pydantic import ValidationError

from src.config.settings import get_settings
from src.core.context import RequestContext
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog
from src.courses.schemas import CreateCourseRequest
from src.courses.service import CourseService


logger = structlog.get_logger(__name__)


def load_definitions(path: Path) -> list[tuple[UUID | None, CreateCourseRequest]]:
    """Parse and validate every course in ``path``.

    Raises:
        ValueError: If the file is not a list or a course is invalid
    """
    raw = orjson.loads(path.read_bytes())
    if not isinstance(raw, list):
        msg = f"{path} must contain a list of courses"
        raise ValueError(msg)

    definitions = []
    for position, item in enumerate(raw):
        try:
            course_id = UUID(item["id"]) if item.get("id") else None
            definitions.append((course_id, CreateCourseRequest.model_validate(item)))
        except (ValidationError, ValueError, TypeError, AttributeError) as e:
            msg = f"Course #{position} in {path} is invalid: {e}"
            raise ValueError(msg) from e
    return definitions


async def seed(
    service: CourseService, definitions: list[tuple[UUID | None, CreateCourseRequest]]
) -> tuple[int, int]:
    """Create the courses that do not exist yet.

    Returns:
        Tuple of (created_count, skipped_count)
    """
    created = 0
    skipped = 0
    for course_id, data in definitions:
        if course_id is not None and await service.get_course(course_id) is not None:
            logger.info("seed_course_skipped_exists", course_id=str(course_id))
            skipped += 1
            continue
        course = await service.create_course(data, course_id=course_id)
        logger.info("seed_course_created", course_id=str(course.id), title=course.title)
        created += 1
    return created, skipped


async def run_seed(path: Path) -> None:
    settings = get_settings()
    configure_structlog(settings, to_files=False)
    definitions = load_definitions(path)

    logger.info(
        "seed_starting",
        source=str(path),
        courses=len(definitions),
        keyspace=settings.cassandra_keyspace,
    )

    session = await init_async_cassandra()
    try:
        with RequestContext(correlation_id=f"seed:{path.name}"):
            created, skipped = await seed(
                CourseService(session=session, keyspace=settings.cassandra_keyspace),
                definitions,
            )
            logger.info("seed_completed", created=created, skipped=skipped)
    finally:
        await shutdown_async_cassandra()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python -m scripts.seed_courses <courses.json>")  # noqa: T201
        sys.exit(2)
    asyncio.run(run_seed(Path(sys.argv[1])))
