"""
Reusable Stripe service: initializes the SDK from settings and exposes the
four provider calls the enrollment flow needs.

Use this module for all server-side Stripe operations; do not put Stripe logic in views.
Secret key is never exposed; only backend code uses this.
Results are returned as plain dicts so callers never depend on StripeObject.
"""
import logging

import stripe
from django.conf import settings

from enrollments.exceptions import (
    InvalidInputError,
    NotFoundError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    """Return True if Stripe secret key is set and non-empty."""
    key = getattr(settings, "STRIPE_SECRET_KEY", None) or ""
    return bool(key.strip())


def get_client():
    """
    Return the Stripe SDK module (stripe) with API key and network retries set.
    Use for Stripe API calls, e.g. stripe_service.get_client().Balance.retrieve()
    """
    if not is_configured():
        raise ProviderUnavailableError("Payment is not configured. Please try again later.")
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.max_network_retries = getattr(settings, "STRIPE_MAX_NETWORK_RETRIES", 2)
    return stripe


def check_api_ok() -> bool:
    """
    Perform a minimal Stripe API call to verify the key works.
    Returns True if the request succeeds, False otherwise (e.g. invalid key, network error).
    """
    if not is_configured():
        return False
    try:
        get_client().Balance.retrieve()
        return True
    except stripe.StripeError as e:
        logger.warning("check_api_ok: Stripe API check failed: %s", e)
        return False


def _translate_error(e, fallback_message: str):
    """Map a StripeError to the enrollment error taxonomy."""
    if isinstance(e, stripe.InvalidRequestError):
        if getattr(e, "code", None) == "resource_missing":
            return NotFoundError("Payment reference not found.")
        msg = getattr(e, "user_message", None) or fallback_message
        return InvalidInputError(msg)
    logger.warning("stripe_service: provider error %s: %s", type(e).__name__, e)
    return ProviderUnavailableError(fallback_message)


def _metadata_dict(metadata) -> dict:
    """StripeObject is not a dict (stripe 13+); convert before iterating."""
    if metadata is None:
        return {}
    if isinstance(metadata, stripe.StripeObject):
        metadata = metadata.to_dict()
    return {str(key): str(value) for key, value in metadata.items()}


def _expandable_id(value):
    """Stripe fields like session.payment_intent are an id or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.id


def create_checkout_session(
    *,
    amount_cents: int,
    currency: str,
    line_item_name: str,
    line_item_description: str | None,
    success_url: str,
    cancel_url: str,
    metadata: dict,
    idempotency_key: str | None = None,
) -> dict:
    """
    Create a hosted Stripe Checkout Session for a single item.

    The same metadata is attached to the underlying PaymentIntent, so a
    payment_intent.succeeded webhook for this checkout can be reconciled too.

    Returns:
        {"id": "cs_xxx", "url": "https://checkout.stripe.com/..."}
    """
    client = get_client()
    product_data = {"name": line_item_name}
    if line_item_description:
        product_data["description"] = line_item_description
    create_kwargs = dict(
        mode="payment",
        payment_method_types=["card"],
        line_items=[
            {
                "price_data": {
                    "currency": currency,
                    "product_data": product_data,
                    "unit_amount": amount_cents,
                },
                "quantity": 1,
            }
        ],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata,
        payment_intent_data={"metadata": metadata},
    )
    if idempotency_key:
        create_kwargs["idempotency_key"] = idempotency_key
    try:
        session = client.checkout.Session.create(**create_kwargs)
    except stripe.StripeError as e:
        raise _translate_error(e, "Checkout could not be started. Please try again.")
    return {"id": session.id, "url": session.url}


def create_payment_intent(
    *,
    amount_cents: int,
    currency: str,
    metadata: dict,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> dict:
    """
    Create a Stripe PaymentIntent only (do not confirm).
    The frontend completes it with confirmCardPayment(client_secret, ...).

    Returns:
        {"id": "pi_xxx", "client_secret": "pi_xxx_secret_xxx"}
    """
    client = get_client()
    create_kwargs = dict(
        amount=amount_cents,
        currency=currency,
        confirm=False,
        capture_method="automatic",
        description=description or "Course purchase",
        metadata=metadata,
        payment_method_types=["card"],
    )
    if idempotency_key:
        create_kwargs["idempotency_key"] = idempotency_key
    try:
        intent = client.PaymentIntent.create(**create_kwargs)
    except stripe.StripeError as e:
        raise _translate_error(e, "Payment could not be set up. Please try again.")
    return {"id": intent.id, "client_secret": intent.client_secret}


def retrieve_checkout_session(session_id: str) -> dict:
    """
    Fetch a Checkout Session from Stripe.

    Returns:
        {"id", "payment_status", "payment_intent_id", "amount_cents", "currency", "metadata"}
    """
    client = get_client()
    try:
        session = client.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        raise _translate_error(e, "Payment could not be verified. Please try again.")
    return {
        "id": session.id,
        "payment_status": getattr(session, "payment_status", None),
        "payment_intent_id": _expandable_id(getattr(session, "payment_intent", None)),
        "amount_cents": getattr(session, "amount_total", None),
        "currency": getattr(session, "currency", None),
        "metadata": _metadata_dict(getattr(session, "metadata", None)),
    }


def retrieve_payment_intent(payment_intent_id: str) -> dict:
    """
    Fetch a PaymentIntent from Stripe.

    Returns:
        {"id", "status", "amount_cents", "currency", "metadata"}
    """
    client = get_client()
    try:
        intent = client.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        raise _translate_error(e, "Payment could not be verified. Please try again.")
    return {
        "id": intent.id,
        "status": getattr(intent, "status", None),
        "amount_cents": getattr(intent, "amount", None),
        "currency": getattr(intent, "currency", None),
        "metadata": _metadata_dict(getattr(intent, "metadata", None)),
    }
