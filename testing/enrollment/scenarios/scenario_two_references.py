from enrollments.models import Enrollment
from enrollments.services.checkout_service import start_payment_intent
from enrollments.services.verification_service import confirm_payment_intent
from testing.enrollment.base import (
    cleanup_scenario_data,
    create_scenario_course,
    ensure_test_users,
    pay_payment_intent,
)


def run():
    print("Running: scenario_two_references")
    cleanup_scenario_data("scenario_two_references")
    _, student = ensure_test_users()
    course = create_scenario_course(scenario_name="scenario_two_references")
    # Both attempts start before either is confirmed, so the advisory check passes twice
    first = start_payment_intent(student, course.id, attempt_id="first")
    second = start_payment_intent(student, course.id, attempt_id="second")
    pay_payment_intent(first["payment_intent_id"])
    pay_payment_intent(second["payment_intent_id"])
    enrollment_a, _ = confirm_payment_intent(second["payment_intent_id"])
    enrollment_b, _ = confirm_payment_intent(first["payment_intent_id"])
    course.refresh_from_db()
    if enrollment_a.id != enrollment_b.id:
        raise Exception("Expected both references to resolve to one enrollment.")
    if Enrollment.objects.filter(student=student, course=course).count() != 1:
        raise Exception("Expected exactly one enrollment row.")
    if course.total_enrollments != 1:
        raise Exception(f"Expected total_enrollments=1, got {course.total_enrollments}")
    cleanup_scenario_data("scenario_two_references")
    print("✓ Passed")
