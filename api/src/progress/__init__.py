"""Student progress tracking module.

Provides:
- Lesson events: status updates, quiz attempts, coding submissions
- Append-only submission history with latest-wins scoring
- Course progress and dashboard aggregation
"""

from .models import (
    PROGRESS_TABLES_CQL,
    LessonProgress,
    LessonProgressStatus,
    Submission,
)


__all__ = [
    "PROGRESS_TABLES_CQL",
    "LessonProgress",
    "LessonProgressStatus",
    "Submission",
]
