from django.urls import path
from . import views

app_name = "enrollments"

urlpatterns = [
    # Checkout Session (redirect to Stripe)
    path("checkout/", views.create_checkout_session, name="checkout"),
    path("verify-session/", views.verify_session, name="verify_session"),
    # Payment Intent (on-site payment)
    path("create-payment-intent/", views.create_payment_intent, name="create_payment_intent"),
    path("confirm-payment/", views.confirm_payment_view, name="confirm_payment"),
    path("my-courses/", views.my_enrollments, name="my_courses"),
    path("check/<int:course_id>/", views.check_enrollment, name="check_enrollment"),
    path("webhook/", views.stripe_webhook, name="stripe_webhook"),
    path("stripe-status/", views.stripe_status, name="stripe_status"),
]
