"""
Purchase confirmation messaging. Fire-and-forget: a failed email is logged
and dropped, it never reaches the enrollment caller.
"""
import logging
import threading

from django.conf import settings

from general.email_service import EmailService

logger = logging.getLogger(__name__)


def _deliver_purchase_email(email: str, name: str, course_title: str) -> None:
    try:
        EmailService.send_purchase_confirmation_email(email, name, course_title)
    except Exception as e:
        logger.warning("notify_purchase: purchase email to %s failed: %s", email, e)
        return
    logger.info("notify_purchase: purchase email sent to %s course=%r", email, course_title)


def notify_purchase(email: str, name: str, course_title: str) -> None:
    """
    Send the purchase confirmation email on a background thread
    (or inline when PURCHASE_EMAIL_ASYNC is False). Never raises.
    """
    if not email:
        logger.warning("notify_purchase: no recipient email, skipping course=%r", course_title)
        return

    if not getattr(settings, "PURCHASE_EMAIL_ASYNC", True):
        _deliver_purchase_email(email, name, course_title)
        return

    try:
        threading.Thread(
            target=_deliver_purchase_email,
            args=(email, name, course_title),
            name="purchase-email",
            daemon=True,
        ).start()
    except RuntimeError as e:
        logger.warning("notify_purchase: could not start email thread for %s: %s", email, e)
