"""
Payment confirmation: turn a Stripe reference into exactly one Enrollment.

Stripe is the only source of truth for both the payment status and the
purchase context (carried in metadata since initiation). The caller's word on
status is never used. Safe to call any number of times, from the client
(verify-session / confirm-payment) and from the webhook, in any order.
"""
import logging
from functools import partial

from django.db import transaction

from accounts.models import CustomUser
from courses.models import Course
from enrollments import config
from enrollments.exceptions import InvalidInputError, NotFoundError, PaymentIncompleteError
from enrollments.services import stripe_service
from enrollments.services.ledger_service import create_if_absent
from enrollments.services.notification_service import notify_purchase

logger = logging.getLogger(__name__)


def extract_purchase_context(metadata: dict) -> dict:
    """
    Read the five metadata keys written at initiation.

    Returns:
        {"student_id": int, "course_id": int, "student_name", "student_email", "course_title"}

    Raises:
        InvalidInputError: if a key is missing or an id is not an integer.
    """
    metadata = metadata or {}
    missing = [key for key in ("student_id", "course_id") if not metadata.get(key)]
    if missing:
        raise InvalidInputError(f"Payment is missing enrollment details: {', '.join(missing)}")
    try:
        student_id = int(metadata["student_id"])
        course_id = int(metadata["course_id"])
    except (TypeError, ValueError):
        raise InvalidInputError("Payment enrollment details are malformed.")
    return {
        "student_id": student_id,
        "course_id": course_id,
        "student_name": metadata.get("student_name") or "",
        "student_email": metadata.get("student_email") or "",
        "course_title": metadata.get("course_title") or "",
    }


def _reconcile(reference: str, payment: dict, expected_student_id=None):
    context = extract_purchase_context(payment.get("metadata"))

    if expected_student_id is not None and str(context["student_id"]) != str(expected_student_id):
        logger.warning(
            "confirm_payment: ref=%s belongs to student=%s, not caller=%s",
            reference, context["student_id"], expected_student_id,
        )
        raise NotFoundError("Payment not found for this account.")

    # Only for a clear NotFoundError; duplicates are still decided by the ledger's insert
    if not CustomUser.objects.filter(pk=context["student_id"]).exists():
        raise NotFoundError("Student account not found.")
    if not Course.objects.filter(pk=context["course_id"]).exists():
        raise NotFoundError("Course not found.")

    enrollment, created = create_if_absent(
        context["student_id"],
        context["course_id"],
        reference,
        amount_cents=payment.get("amount_cents"),
        currency=(payment.get("currency") or "usd").lower()[:10],
    )

    if created:
        # Runs after the enrollment is committed; never blocks or fails the confirmation
        transaction.on_commit(
            partial(
                notify_purchase,
                context["student_email"],
                context["student_name"],
                context["course_title"],
            ),
            robust=True,
        )
    return enrollment, created


def confirm_checkout_session(session_id: str, *, expected_student_id=None):
    """
    Confirm a redirect-flow payment by Checkout Session id.

    Returns:
        (enrollment, created)

    Raises:
        PaymentIncompleteError: when payment_status is not "paid".
    """
    if not session_id:
        raise InvalidInputError("Session ID is required")
    session = stripe_service.retrieve_checkout_session(session_id)
    if session.get("payment_status") != config.CHECKOUT_PAID_STATUS:
        logger.info(
            "confirm_checkout_session: session=%s not paid (payment_status=%s)",
            session_id, session.get("payment_status"),
        )
        raise PaymentIncompleteError("Payment not completed", session.get("payment_status"))
    return _reconcile(session_id, session, expected_student_id)


def confirm_payment_intent(payment_intent_id: str, *, expected_student_id=None):
    """
    Confirm an on-page payment by PaymentIntent id.

    Returns:
        (enrollment, created)

    Raises:
        PaymentIncompleteError: when status is not "succeeded".
    """
    if not payment_intent_id:
        raise InvalidInputError("Please provide payment intent ID")
    intent = stripe_service.retrieve_payment_intent(payment_intent_id)
    if intent.get("status") != config.INTENT_SUCCEEDED_STATUS:
        logger.info(
            "confirm_payment_intent: pi=%s not succeeded (status=%s)",
            payment_intent_id, intent.get("status"),
        )
        raise PaymentIncompleteError("Payment not completed", intent.get("status"))
    return _reconcile(payment_intent_id, intent, expected_student_id)


def confirm_payment(reference: str, *, expected_student_id=None):
    """Confirm by any Stripe reference: cs_... (Checkout Session) or pi_... (PaymentIntent)."""
    reference = (reference or "").strip()
    if reference.startswith(config.CHECKOUT_SESSION_PREFIX):
        return confirm_checkout_session(reference, expected_student_id=expected_student_id)
    if reference.startswith(config.PAYMENT_INTENT_PREFIX):
        return confirm_payment_intent(reference, expected_student_id=expected_student_id)
    raise InvalidInputError("Unrecognized payment reference.")
