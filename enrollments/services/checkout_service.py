"""
Course purchase initiation: create a Stripe Checkout Session (redirect) or a
PaymentIntent (on-page) for one course.

Nothing is stored locally. Everything needed to build the Enrollment later is
put in provider metadata, and the amount is fixed here from the current price.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings

from courses.models import Course
from enrollments import config
from enrollments.exceptions import AlreadyEnrolledError, InvalidInputError, NotFoundError
from enrollments.services import stripe_service
from enrollments.services.ledger_service import is_enrolled

logger = logging.getLogger(__name__)


def course_price_cents(price) -> int:
    """Course price in cents, rounded half up (49.99 -> 4999, 19.995 -> 2000)."""
    if price is None:
        return 0
    amount = Decimal(str(price)) * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_payment_metadata(student, course) -> dict:
    """The metadata bag round-tripped through Stripe. Values are strings."""
    limit = config.METADATA_VALUE_MAX_LENGTH
    return {
        "student_id": str(student.id),
        "course_id": str(course.id),
        "student_name": student.display_name[:limit],
        "student_email": (student.email or "")[:limit],
        "course_title": (course.title or "")[:limit],
    }


def get_purchasable_course(course_id) -> Course:
    if course_id in (None, ""):
        raise InvalidInputError("Please provide course_id")
    try:
        course_pk = int(course_id)
    except (TypeError, ValueError):
        raise InvalidInputError("course_id must be an integer")
    course = Course.objects.filter(pk=course_pk).first()
    if course is None:
        raise NotFoundError("Course not found")
    return course


def _prepare(student, course_id):
    course = get_purchasable_course(course_id)
    # UX hint only; the ledger's unique constraint is what prevents duplicates
    if is_enrolled(student.id, course.id):
        raise AlreadyEnrolledError("You are already enrolled in this course")
    amount_cents = course_price_cents(course.price)
    if amount_cents <= 0:
        raise InvalidInputError("This course cannot be purchased online.")
    return course, amount_cents


def _idempotency_key(prefix: str, student, course, attempt_id: str | None) -> str | None:
    """Unique per attempt (one open of the payment UI); None when the client sent no attempt_id."""
    safe_attempt = (attempt_id or "").strip()[:64]
    if not safe_attempt:
        return None
    return f"{prefix}:{student.id}:{course.id}:{safe_attempt}"


def start_checkout_session(student, course_id, *, attempt_id: str | None = None) -> dict:
    """
    Redirect flow: create a hosted Checkout Session.

    Returns:
        {"mode": "redirect", "session_id", "url", "amount_cents", "currency"}
    """
    course, amount_cents = _prepare(student, course_id)
    currency = settings.PAYMENT_CURRENCY
    frontend_url = settings.FRONTEND_URL.rstrip("/")
    session = stripe_service.create_checkout_session(
        amount_cents=amount_cents,
        currency=currency,
        line_item_name=course.title,
        line_item_description=course.description or None,
        success_url=frontend_url + config.CHECKOUT_SUCCESS_PATH,
        cancel_url=frontend_url + config.CHECKOUT_CANCEL_PATH.format(course_id=course.id),
        metadata=build_payment_metadata(student, course),
        idempotency_key=_idempotency_key("checkout", student, course, attempt_id),
    )
    logger.info(
        "start_checkout_session: session=%s student=%s course=%s amount_cents=%s",
        session["id"], student.id, course.id, amount_cents,
    )
    return {
        "mode": config.MODE_REDIRECT,
        "session_id": session["id"],
        "url": session["url"],
        "amount_cents": amount_cents,
        "currency": currency,
    }


def start_payment_intent(student, course_id, *, attempt_id: str | None = None) -> dict:
    """
    On-page flow: create a PaymentIntent the frontend confirms with Stripe Elements.

    Returns:
        {"mode": "intent", "payment_intent_id", "client_secret", "amount_cents", "currency"}
    """
    course, amount_cents = _prepare(student, course_id)
    currency = settings.PAYMENT_CURRENCY
    intent = stripe_service.create_payment_intent(
        amount_cents=amount_cents,
        currency=currency,
        metadata=build_payment_metadata(student, course),
        description=course.title,
        idempotency_key=_idempotency_key("intent", student, course, attempt_id),
    )
    logger.info(
        "start_payment_intent: pi=%s student=%s course=%s amount_cents=%s",
        intent["id"], student.id, course.id, amount_cents,
    )
    return {
        "mode": config.MODE_INTENT,
        "payment_intent_id": intent["id"],
        "client_secret": intent["client_secret"],
        "amount_cents": amount_cents,
        "currency": currency,
    }


def initiate_payment(student, course_id, mode: str, *, attempt_id: str | None = None) -> dict:
    """Start a payment attempt in either mode; both share one confirmation path."""
    if mode == config.MODE_REDIRECT:
        return start_checkout_session(student, course_id, attempt_id=attempt_id)
    if mode == config.MODE_INTENT:
        return start_payment_intent(student, course_id, attempt_id=attempt_id)
    raise InvalidInputError(f"mode must be one of: {', '.join(config.PAYMENT_MODES)}")
