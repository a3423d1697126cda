from enrollments.exceptions import PaymentIncompleteError
from enrollments.models import Enrollment
from enrollments.services.checkout_service import start_checkout_session, start_payment_intent
from enrollments.services.verification_service import confirm_payment
from testing.enrollment.base import cleanup_scenario_data, create_scenario_course, ensure_test_users


def _expect_incomplete(reference, expected_status):
    try:
        confirm_payment(reference)
    except PaymentIncompleteError as e:
        if e.provider_status != expected_status:
            raise Exception(f"Expected status {expected_status}, got {e.provider_status}")
        return
    raise Exception(f"Expected PaymentIncompleteError for {reference}")


def run():
    print("Running: scenario_incomplete_payment")
    cleanup_scenario_data("scenario_incomplete_payment")
    _, student = ensure_test_users()
    course = create_scenario_course(scenario_name="scenario_incomplete_payment")
    intent = start_payment_intent(student, course.id)
    session = start_checkout_session(student, course.id)
    _expect_incomplete(intent["payment_intent_id"], "requires_payment_method")
    _expect_incomplete(session["session_id"], "unpaid")
    course.refresh_from_db()
    if Enrollment.objects.filter(course=course).exists():
        raise Exception("No enrollment may exist for an unpaid course.")
    if course.total_enrollments != 0:
        raise Exception(f"Expected total_enrollments=0, got {course.total_enrollments}")
    cleanup_scenario_data("scenario_incomplete_payment")
    print("✓ Passed")
