from django.contrib import admin
from django.http import JsonResponse
from django.urls import path, include


def api_root(request):
    return JsonResponse({"message": "Course Selling Platform API is running"})


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/enrollments/", include("enrollments.urls", namespace="enrollments")),
    path("", api_root, name="api_root"),
]
