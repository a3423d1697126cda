from django.http import HttpResponse
from django.test import RequestFactory, TestCase
from django.contrib.auth.models import AnonymousUser

from accounts.decorators import role_required, student_required
from accounts.models import CustomUser


@student_required
def _student_view(request):
    return HttpResponse("ok")


class CustomUserTests(TestCase):
    def test_email_is_lowercased(self):
        user = CustomUser.objects.create_user(email="  Sam@Example.COM ", password="secret-pass-1")
        self.assertEqual(user.email, "sam@example.com")
        self.assertTrue(user.is_student)

    def test_display_name_falls_back_to_email(self):
        user = CustomUser.objects.create_user(email="sam@example.com", password="secret-pass-1")
        self.assertEqual(user.display_name, "sam")
        user.name = "Sam Student"
        self.assertEqual(user.display_name, "Sam Student")

    def test_superuser_is_admin(self):
        admin = CustomUser.objects.create_superuser(email="root@example.com", password="secret-pass-1")
        self.assertEqual(admin.role, CustomUser.ROLE_ADMIN)
        self.assertTrue(admin.is_staff)


class RoleRequiredTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()

    def test_anonymous_gets_401(self):
        request = self.factory.get("/")
        request.user = AnonymousUser()
        self.assertEqual(_student_view(request).status_code, 401)

    def test_wrong_role_gets_403(self):
        request = self.factory.get("/")
        request.user = CustomUser.objects.create_user(
            email="mentor@example.com", password="secret-pass-1", role=CustomUser.ROLE_MENTOR
        )
        self.assertEqual(_student_view(request).status_code, 403)

    def test_any_listed_role_passes(self):
        view = role_required(CustomUser.ROLE_STUDENT, CustomUser.ROLE_MENTOR)(lambda request: HttpResponse("ok"))
        request = self.factory.get("/")
        request.user = CustomUser.objects.create_user(
            email="mentor@example.com", password="secret-pass-1", role=CustomUser.ROLE_MENTOR
        )
        self.assertEqual(view(request).status_code, 200)
