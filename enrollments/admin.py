from django.contrib import admin
from .models import Enrollment


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ("id", "student", "course", "payment_reference", "amount_cents", "currency", "purchase_date")
    list_filter = ("currency",)
    search_fields = ("payment_reference", "student__email", "course__title")
    readonly_fields = ("student", "course", "payment_reference", "amount_cents", "currency", "purchase_date")

    # Enrollments are created by payment confirmation only and are immutable
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
