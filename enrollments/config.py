"""
Enrollment payment configuration: provider status values, metadata contract
and checkout URLs. All monetary amounts are in cents (integer).
"""

# Provider states that mean "the money has been collected"
CHECKOUT_PAID_STATUS = "paid"
INTENT_SUCCEEDED_STATUS = "succeeded"

# Reference prefixes used by Stripe ids
CHECKOUT_SESSION_PREFIX = "cs_"
PAYMENT_INTENT_PREFIX = "pi_"

# Initiation modes
MODE_REDIRECT = "redirect"
MODE_INTENT = "intent"
PAYMENT_MODES = (MODE_REDIRECT, MODE_INTENT)

# Keys carried in provider metadata from initiation to confirmation.
# This bag is the only state shared between the two steps.
METADATA_KEYS = (
    "student_id",
    "course_id",
    "student_name",
    "student_email",
    "course_title",
)

# Stripe limits metadata values to 500 characters
METADATA_VALUE_MAX_LENGTH = 500

# Relative to settings.FRONTEND_URL
CHECKOUT_SUCCESS_PATH = "/payment-success?session_id={CHECKOUT_SESSION_ID}"
CHECKOUT_CANCEL_PATH = "/courses/{course_id}"
