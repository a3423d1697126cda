from django.contrib import admin
from .models import Course


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ("title", "mentor", "price", "category", "total_enrollments", "created_at")
    list_filter = ("category",)
    search_fields = ("title", "mentor__email")
    # Maintained by the enrollment ledger only
    readonly_fields = ("total_enrollments", "created_at")
