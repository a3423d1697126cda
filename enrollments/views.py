"""
Enrollment API views. JSON in, JSON out; all payment logic lives in services.
"""
import json
import logging

import stripe
from django.conf import settings
from django.contrib.admin.views.decorators import staff_member_required
from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from accounts.decorators import student_required
from enrollments import config
from enrollments.exceptions import (
    EnrollmentError,
    InvalidInputError,
    PaymentIncompleteError,
    ProviderUnavailableError,
)
from enrollments.services.checkout_service import initiate_payment
from enrollments.services.ledger_service import is_enrolled, list_student_enrollments
from enrollments.services.stripe_service import check_api_ok, is_configured
from enrollments.services.verification_service import (
    confirm_checkout_session,
    confirm_payment_intent,
    confirm_payment,
)

logger = logging.getLogger(__name__)


def _error_response(error: EnrollmentError) -> JsonResponse:
    body = {"error": error.kind, "message": error.message}
    if isinstance(error, PaymentIncompleteError):
        body["status"] = error.provider_status
    return JsonResponse(body, status=error.status_code)


def _json_body(request) -> dict:
    try:
        data = json.loads(request.body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidInputError("Invalid JSON")
    if not isinstance(data, dict):
        raise InvalidInputError("Invalid JSON")
    return data


def serialize_enrollment(enrollment) -> dict:
    data = {
        "id": enrollment.id,
        "student_id": enrollment.student_id,
        "course_id": enrollment.course_id,
        "payment_reference": enrollment.payment_reference,
        "amount_cents": enrollment.amount_cents,
        "currency": enrollment.currency,
        "purchase_date": enrollment.purchase_date.isoformat(),
    }
    course = enrollment.course
    if course is not None:
        data["course"] = {
            "id": course.id,
            "title": course.title,
            "price": str(course.price),
            "mentor": {"name": course.mentor.name, "email": course.mentor.email},
        }
    return data


def _confirmation_response(enrollment, created) -> JsonResponse:
    return JsonResponse({
        "message": "Enrollment successful" if created else "Already enrolled",
        "enrollment": serialize_enrollment(enrollment),
    })


def _initiate(request, mode):
    try:
        data = _json_body(request)
        result = initiate_payment(request.user, data.get("course_id"), mode, attempt_id=data.get("attempt_id"))
    except EnrollmentError as e:
        return _error_response(e)
    return JsonResponse(result)


@require_POST
@student_required
def create_checkout_session(request):
    """
    POST /api/enrollments/checkout/
    Body: {"course_id": int, "attempt_id": optional str}. Returns {"session_id", "url", ...}.
    """
    return _initiate(request, config.MODE_REDIRECT)


@require_POST
@student_required
def create_payment_intent(request):
    """
    POST /api/enrollments/create-payment-intent/
    Body: {"course_id": int, "attempt_id": optional str}. Returns {"payment_intent_id", "client_secret", ...}.
    """
    return _initiate(request, config.MODE_INTENT)


@require_POST
@student_required
def verify_session(request):
    """POST /api/enrollments/verify-session/ with {"session_id"}; idempotent."""
    try:
        data = _json_body(request)
        enrollment, created = confirm_checkout_session(
            data.get("session_id"), expected_student_id=request.user.id
        )
    except EnrollmentError as e:
        return _error_response(e)
    return _confirmation_response(enrollment, created)


@require_POST
@student_required
def confirm_payment_view(request):
    """POST /api/enrollments/confirm-payment/ with {"payment_intent_id"}; idempotent."""
    try:
        data = _json_body(request)
        enrollment, created = confirm_payment_intent(
            data.get("payment_intent_id"), expected_student_id=request.user.id
        )
    except EnrollmentError as e:
        return _error_response(e)
    return _confirmation_response(enrollment, created)


@require_GET
@student_required
def my_enrollments(request):
    """GET /api/enrollments/my-courses/"""
    enrollments = [serialize_enrollment(e) for e in list_student_enrollments(request.user.id)]
    return JsonResponse({"count": len(enrollments), "enrollments": enrollments})


@require_GET
@student_required
def check_enrollment(request, course_id):
    """GET /api/enrollments/check/<course_id>/"""
    return JsonResponse({"is_enrolled": is_enrolled(request.user.id, course_id)})


@staff_member_required
def stripe_status(request):
    """
    GET /api/enrollments/stripe-status/
    Staff-only. Returns JSON: stripe_configured, api_ok (optional Stripe API check).
    """
    return JsonResponse({
        "stripe_configured": is_configured(),
        "api_ok": check_api_ok() if is_configured() else False,
    })


# Events that mean "money collected" for a Checkout Session or PaymentIntent
WEBHOOK_CONFIRM_EVENTS = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "payment_intent.succeeded",
)


@csrf_exempt
@require_POST
def stripe_webhook(request):
    """
    POST /api/enrollments/webhook/
    Stripe webhook endpoint. Verifies signature, then confirms the referenced
    payment through the same path as the client. The event payload itself is
    only used for the reference id; status is re-read from Stripe.
    """
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    webhook_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "") or ""

    if not webhook_secret or not sig_header:
        logger.warning("stripe_webhook: missing STRIPE_WEBHOOK_SECRET or Stripe-Signature header")
        return HttpResponse(status=400)

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except ValueError as e:
        logger.warning("stripe_webhook: invalid payload %s", e)
        return HttpResponse(status=400)
    except stripe.SignatureVerificationError as e:
        logger.warning("stripe_webhook: signature verification failed %s", e)
        return HttpResponse(status=400)

    if event.type not in WEBHOOK_CONFIRM_EVENTS:
        return HttpResponse(status=200)  # ignore other events

    reference = getattr(event.data.object, "id", None)
    try:
        enrollment, created = confirm_payment(reference)
    except ProviderUnavailableError as e:
        logger.warning("stripe_webhook: %s ref=%s provider unavailable: %s", event.type, reference, e)
        return HttpResponse(status=503)
    except EnrollmentError as e:
        logger.warning("stripe_webhook: %s ref=%s not enrolled: %s %s", event.type, reference, e.kind, e)
        return HttpResponse(status=200)

    logger.info(
        "stripe_webhook: %s ref=%s enrollment=%s created=%s",
        event.type, reference, enrollment.id, created,
    )
    return HttpResponse(status=200)
