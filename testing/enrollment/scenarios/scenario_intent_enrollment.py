from enrollments.services.checkout_service import start_payment_intent
from enrollments.services.verification_service import confirm_payment_intent
from testing.enrollment.base import (
    cleanup_scenario_data,
    create_scenario_course,
    ensure_test_users,
    pay_payment_intent,
)


def run():
    print("Running: scenario_intent_enrollment")
    cleanup_scenario_data("scenario_intent_enrollment")
    _, student = ensure_test_users()
    course = create_scenario_course(scenario_name="scenario_intent_enrollment")
    started = start_payment_intent(student, course.id)
    if started["amount_cents"] != 4999:
        raise Exception(f"Expected 4999 cents, got {started['amount_cents']}")
    pay_payment_intent(started["payment_intent_id"])
    enrollment, created = confirm_payment_intent(started["payment_intent_id"])
    course.refresh_from_db()
    if not created:
        raise Exception("Expected a new enrollment.")
    if enrollment.student_id != student.id or enrollment.course_id != course.id:
        raise Exception("Enrollment does not match the paying student/course.")
    if course.total_enrollments != 1:
        raise Exception(f"Expected total_enrollments=1, got {course.total_enrollments}")
    cleanup_scenario_data("scenario_intent_enrollment")
    print("✓ Passed")
