"""
Enrollment models. Stripe is the source of truth for payments; no pending
payment rows are stored. An Enrollment exists only after a confirmed payment.
"""
from django.db import models
from django.utils import timezone


class Enrollment(models.Model):
    """One row per (student, course). Written only by ledger_service.create_if_absent; never updated."""

    student = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.CASCADE,
        related_name="enrollments",
    )
    course = models.ForeignKey(
        "courses.Course",
        on_delete=models.CASCADE,
        related_name="enrollments",
    )

    # Checkout Session id (cs_...) or PaymentIntent id (pi_...) that was confirmed first
    payment_reference = models.CharField(max_length=255, db_index=True)

    amount_cents = models.IntegerField(null=True, blank=True)
    currency = models.CharField(max_length=10, default="usd")

    purchase_date = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = "Enrollment"
        verbose_name_plural = "Enrollments"
        ordering = ["-purchase_date"]
        constraints = [
            models.UniqueConstraint(
                fields=["student", "course"],
                name="unique_enrollment_per_student_course",
            ),
        ]

    def __str__(self):
        return f"Enrollment student={self.student_id} course={self.course_id} ({self.payment_reference})"
