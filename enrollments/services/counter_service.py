"""
Course enrollment counter. Course.total_enrollments is changed only here,
and only as a single atomic UPDATE so concurrent writers never lose increments.
"""
import logging

from django.db.models import F

from courses.models import Course
from enrollments.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def increment_enrollments(course_id: int) -> None:
    """
    UPDATE courses_course SET total_enrollments = total_enrollments + 1.
    Called once per newly created Enrollment, inside the ledger's transaction.
    Raises NotFoundError if the course row no longer exists.
    """
    updated = Course.objects.filter(pk=course_id).update(
        total_enrollments=F("total_enrollments") + 1
    )
    if not updated:
        raise NotFoundError("Course not found.")
    logger.info("increment_enrollments: course=%s total_enrollments incremented", course_id)
