"""
Catalog models. Only the fields the enrollment flow reads are modelled here;
total_enrollments is written exclusively by enrollments.services.counter_service.
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class Course(models.Model):
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
    )
    category = models.CharField(max_length=100, blank=True)
    mentor = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.CASCADE,
        related_name="courses",
    )
    total_enrollments = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Course"
        verbose_name_plural = "Courses"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.title} (${self.price})"
