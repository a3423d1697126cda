"""
Errors raised by the enrollment services. Messages are safe to show to users.

Views turn them into {"error": kind, "message": message} with status_code.
"""


class EnrollmentError(Exception):
    kind = "enrollment_error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInputError(EnrollmentError):
    """Missing or malformed input. Raised before any side effect."""

    kind = "validation_error"
    status_code = 400


class NotFoundError(EnrollmentError):
    """Unknown course, student or payment reference."""

    kind = "not_found"
    status_code = 404


class AlreadyEnrolledError(EnrollmentError):
    """Advisory duplicate check at initiation. The ledger does not rely on it."""

    kind = "conflict"
    status_code = 409


class PaymentIncompleteError(EnrollmentError):
    """Provider reports a status other than success; nothing was written."""

    kind = "payment_incomplete"
    status_code = 400

    def __init__(self, message: str, provider_status: str = None):
        self.provider_status = provider_status
        super().__init__(message)


class ProviderUnavailableError(EnrollmentError):
    """Stripe unreachable, misconfigured or failing. Safe to retry."""

    kind = "provider_unavailable"
    status_code = 503
