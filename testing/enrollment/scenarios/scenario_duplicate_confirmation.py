from enrollments.services.checkout_service import start_payment_intent
from enrollments.services.verification_service import confirm_payment
from testing.enrollment.base import (
    cleanup_scenario_data,
    create_scenario_course,
    ensure_test_users,
    pay_payment_intent,
)


def run():
    print("Running: scenario_duplicate_confirmation")
    cleanup_scenario_data("scenario_duplicate_confirmation")
    _, student = ensure_test_users()
    course = create_scenario_course(scenario_name="scenario_duplicate_confirmation")
    started = start_payment_intent(student, course.id)
    pay_payment_intent(started["payment_intent_id"])
    results = [confirm_payment(started["payment_intent_id"]) for _ in range(3)]
    course.refresh_from_db()
    if len({enrollment.id for enrollment, _ in results}) != 1:
        raise Exception("Expected every confirmation to return the same enrollment.")
    if [created for _, created in results] != [True, False, False]:
        raise Exception("Expected only the first confirmation to create the enrollment.")
    if course.total_enrollments != 1:
        raise Exception(f"Expected total_enrollments=1, got {course.total_enrollments}")
    cleanup_scenario_data("scenario_duplicate_confirmation")
    print("✓ Passed")
