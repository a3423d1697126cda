from decimal import Decimal

from django.conf import settings
from django.db import transaction

from accounts.models import CustomUser
from courses.models import Course
from enrollments.services.stripe_service import get_client

SCENARIO_TAG_PREFIX = "[enrollment_scenario]"


def ensure_test_users():
    mentor_user, _ = CustomUser.objects.get_or_create(
        email="test_mentor@local.test",
        defaults={"name": "Test Mentor", "role": CustomUser.ROLE_MENTOR, "is_active": True},
    )
    student_user, _ = CustomUser.objects.get_or_create(
        email="test_student@local.test",
        defaults={"name": "Test Student", "role": CustomUser.ROLE_STUDENT, "is_active": True},
    )
    return mentor_user, student_user


def assert_scenarios_enabled():
    if not settings.ALLOW_TEST_SCENARIOS:
        raise Exception("Test scenarios disabled in this environment.")
    if not settings.STRIPE_SECRET_KEY.startswith("sk_test_"):
        raise Exception("Scenarios need a Stripe test-mode key (sk_test_...).")


@transaction.atomic()
def cleanup_scenario_data(scenario_name):
    """Deleting the course cascades to its enrollments, like an admin course deletion."""
    marker = f"{SCENARIO_TAG_PREFIX}:{scenario_name}"
    Course.objects.filter(description__icontains=marker).delete()


def create_scenario_course(*, scenario_name, price=Decimal("49.99")):
    mentor_user, _ = ensure_test_users()
    return Course.objects.create(
        title=f"Scenario course {scenario_name}",
        description=f"{SCENARIO_TAG_PREFIX}:{scenario_name}",
        price=price,
        mentor=mentor_user,
    )


def pay_payment_intent(payment_intent_id):
    """Complete a PaymentIntent with Stripe's test card, as the frontend would."""
    stripe = get_client()
    intent = stripe.PaymentIntent.confirm(payment_intent_id, payment_method="pm_card_visa")
    if intent.status != "succeeded":
        raise Exception(f"Stripe intent not succeeded: {intent.status}")
    return intent.id
