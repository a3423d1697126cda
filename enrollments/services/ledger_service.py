"""
Enrollment ledger. The only writer of Enrollment rows.

Duplicate prevention relies on the (student, course) unique constraint, not on
a read-before-write: confirmations may race from several processes. A losing
insert is turned into a read of the winning row.
"""
import logging

from django.db import IntegrityError, transaction

from enrollments.models import Enrollment
from enrollments.services.counter_service import increment_enrollments

logger = logging.getLogger(__name__)


def create_if_absent(
    student_id: int,
    course_id: int,
    payment_reference: str,
    *,
    amount_cents: int | None = None,
    currency: str = "usd",
) -> tuple[Enrollment, bool]:
    """
    Insert the Enrollment for (student_id, course_id) or return the existing one.

    On first insertion the course counter is incremented in the same atomic
    block; if the increment fails the insert is rolled back with it.

    Returns:
        (enrollment, created)
    """
    try:
        with transaction.atomic():
            enrollment = Enrollment.objects.create(
                student_id=student_id,
                course_id=course_id,
                payment_reference=payment_reference,
                amount_cents=amount_cents,
                currency=currency,
            )
            increment_enrollments(course_id)
    except IntegrityError:
        existing = get_enrollment(student_id, course_id)
        if existing is None:
            # Not the uniqueness constraint (e.g. a foreign key); let it surface
            raise
        logger.info(
            "create_if_absent: student=%s course=%s already enrolled (enrollment=%s ref=%s)",
            student_id, course_id, existing.id, payment_reference,
        )
        return existing, False

    logger.info(
        "create_if_absent: created enrollment=%s student=%s course=%s ref=%s",
        enrollment.id, student_id, course_id, payment_reference,
    )
    return enrollment, True


def get_enrollment(student_id: int, course_id: int) -> Enrollment | None:
    return Enrollment.objects.filter(student_id=student_id, course_id=course_id).first()


def is_enrolled(student_id: int, course_id: int) -> bool:
    return Enrollment.objects.filter(student_id=student_id, course_id=course_id).exists()


def list_student_enrollments(student_id: int):
    """Newest first, with course and mentor loaded for display."""
    return (
        Enrollment.objects.filter(student_id=student_id, course__isnull=False)
        .select_related("course", "course__mentor")
        .order_by("-purchase_date")
    )
