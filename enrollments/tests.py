import json
import threading
from datetime import timedelta
from decimal import Decimal
from smtplib import SMTPException
from unittest import skipIf
from unittest.mock import Mock, patch

import stripe
from django.core import mail
from django.db import IntegrityError, connection, transaction
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from accounts.models import CustomUser
from courses.models import Course
from enrollments.exceptions import (
    AlreadyEnrolledError,
    InvalidInputError,
    NotFoundError,
    PaymentIncompleteError,
    ProviderUnavailableError,
)
from enrollments.models import Enrollment
from enrollments.services import stripe_service
from enrollments.services.checkout_service import (
    build_payment_metadata,
    course_price_cents,
    initiate_payment,
    start_checkout_session,
    start_payment_intent,
)
from enrollments.services.counter_service import increment_enrollments
from enrollments.services.ledger_service import create_if_absent, list_student_enrollments
from enrollments.services.notification_service import notify_purchase
from enrollments.services.verification_service import (
    confirm_checkout_session,
    confirm_payment,
    confirm_payment_intent,
    extract_purchase_context,
)


def reference_object(reference):
    if reference.startswith("cs_"):
        return "checkout.session"
    if reference.startswith("pi_"):
        return "payment_intent"
    return "charge"


class EnrollmentFixturesMixin:
    @classmethod
    def setUpTestData(cls):
        cls.mentor = CustomUser.objects.create_user(
            email="mentor@example.com", password="secret-pass-1", name="Mia Mentor", role="mentor"
        )
        cls.student = CustomUser.objects.create_user(
            email="student@example.com", password="secret-pass-1", name="Sam Student", role="student"
        )
        cls.other_student = CustomUser.objects.create_user(
            email="other@example.com", password="secret-pass-1", name="Olga Other", role="student"
        )
        cls.course = Course.objects.create(
            title="Intro to Django",
            description="Models, views and the ORM",
            price=Decimal("49.99"),
            mentor=cls.mentor,
        )

    def provider_intent(self, reference="pi_test_1", status="succeeded", student=None, course=None, amount=4999):
        return {
            "id": reference,
            "status": status,
            "amount_cents": amount,
            "currency": "usd",
            "metadata": build_payment_metadata(student or self.student, course or self.course),
        }

    def provider_session(self, reference="cs_test_1", payment_status="paid", student=None, course=None):
        return {
            "id": reference,
            "payment_status": payment_status,
            "payment_intent_id": "pi_from_checkout",
            "amount_cents": 4999,
            "currency": "usd",
            "metadata": build_payment_metadata(student or self.student, course or self.course),
        }


class CoursePriceCentsTests(SimpleTestCase):
    def test_two_decimal_price(self):
        self.assertEqual(course_price_cents(Decimal("49.99")), 4999)

    def test_rounds_half_up(self):
        self.assertEqual(course_price_cents(Decimal("19.995")), 2000)
        self.assertEqual(course_price_cents(Decimal("0.005")), 1)

    def test_float_price_is_not_truncated(self):
        self.assertEqual(course_price_cents(49.99), 4999)
        self.assertEqual(course_price_cents(0.29), 29)

    def test_missing_price_is_zero(self):
        self.assertEqual(course_price_cents(None), 0)


@override_settings(PAYMENT_CURRENCY="usd", FRONTEND_URL="https://learn.example.com")
class PaymentInitiationTests(EnrollmentFixturesMixin, TestCase):
    @patch("enrollments.services.stripe_service.create_payment_intent")
    def test_intent_mode_fixes_amount_and_metadata(self, create_intent):
        create_intent.return_value = {"id": "pi_new", "client_secret": "pi_new_secret_abc"}

        result = start_payment_intent(self.student, self.course.id)

        self.assertEqual(result, {
            "mode": "intent",
            "payment_intent_id": "pi_new",
            "client_secret": "pi_new_secret_abc",
            "amount_cents": 4999,
            "currency": "usd",
        })
        kwargs = create_intent.call_args.kwargs
        self.assertEqual(kwargs["amount_cents"], 4999)
        self.assertEqual(kwargs["metadata"], {
            "student_id": str(self.student.id),
            "course_id": str(self.course.id),
            "student_name": "Sam Student",
            "student_email": "student@example.com",
            "course_title": "Intro to Django",
        })
        self.assertIsNone(kwargs["idempotency_key"])

    @patch("enrollments.services.stripe_service.create_checkout_session")
    def test_redirect_mode_builds_frontend_urls(self, create_session):
        create_session.return_value = {"id": "cs_new", "url": "https://checkout.stripe.com/c/cs_new"}

        result = initiate_payment(self.student, str(self.course.id), "redirect", attempt_id="tab-1")

        self.assertEqual(result["session_id"], "cs_new")
        self.assertEqual(result["url"], "https://checkout.stripe.com/c/cs_new")
        kwargs = create_session.call_args.kwargs
        self.assertEqual(kwargs["amount_cents"], 4999)
        self.assertEqual(kwargs["line_item_name"], "Intro to Django")
        self.assertEqual(
            kwargs["success_url"],
            "https://learn.example.com/payment-success?session_id={CHECKOUT_SESSION_ID}",
        )
        self.assertEqual(kwargs["cancel_url"], f"https://learn.example.com/courses/{self.course.id}")
        self.assertEqual(kwargs["idempotency_key"], f"checkout:{self.student.id}:{self.course.id}:tab-1")

    @patch("enrollments.services.stripe_service.create_payment_intent")
    def test_unknown_course_is_not_found(self, create_intent):
        with self.assertRaises(NotFoundError):
            start_payment_intent(self.student, 987654)
        create_intent.assert_not_called()

    @patch("enrollments.services.stripe_service.create_payment_intent")
    def test_missing_or_malformed_course_id(self, create_intent):
        with self.assertRaises(InvalidInputError):
            start_payment_intent(self.student, None)
        with self.assertRaises(InvalidInputError):
            start_payment_intent(self.student, "abc")
        create_intent.assert_not_called()

    def test_unknown_mode_is_rejected(self):
        with self.assertRaises(InvalidInputError):
            initiate_payment(self.student, self.course.id, "wire-transfer")

    @patch("enrollments.services.stripe_service.create_payment_intent")
    def test_already_enrolled_is_conflict(self, create_intent):
        Enrollment.objects.create(student=self.student, course=self.course, payment_reference="pi_old")
        with self.assertRaises(AlreadyEnrolledError):
            start_payment_intent(self.student, self.course.id)
        create_intent.assert_not_called()

    @patch("enrollments.services.stripe_service.create_checkout_session")
    def test_free_course_cannot_be_checked_out(self, create_session):
        free = Course.objects.create(title="Free intro", price=Decimal("0.00"), mentor=self.mentor)
        with self.assertRaises(InvalidInputError):
            start_checkout_session(self.student, free.id)
        create_session.assert_not_called()

    @patch("enrollments.services.stripe_service.create_payment_intent")
    def test_provider_outage_propagates(self, create_intent):
        create_intent.side_effect = ProviderUnavailableError("Payment could not be set up. Please try again.")
        with self.assertRaises(ProviderUnavailableError):
            start_payment_intent(self.student, self.course.id)


@patch("enrollments.services.stripe_service.retrieve_payment_intent")
class PaymentIntentConfirmationTests(EnrollmentFixturesMixin, TestCase):
    def test_successful_payment_creates_enrollment_and_counts_once(self, retrieve):
        retrieve.return_value = self.provider_intent()

        enrollment, created = confirm_payment_intent("pi_test_1")

        self.assertTrue(created)
        self.assertEqual(enrollment.student_id, self.student.id)
        self.assertEqual(enrollment.course_id, self.course.id)
        self.assertEqual(enrollment.payment_reference, "pi_test_1")
        self.assertEqual(enrollment.amount_cents, 4999)
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)

    def test_repeated_confirmation_returns_same_enrollment(self, retrieve):
        retrieve.return_value = self.provider_intent()

        first, first_created = confirm_payment_intent("pi_test_1")
        second, second_created = confirm_payment_intent("pi_test_1")
        third, _ = confirm_payment("pi_test_1")

        self.assertTrue(first_created)
        self.assertFalse(second_created)
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.id, third.id)
        self.assertEqual(Enrollment.objects.count(), 1)
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)

    def test_incomplete_payment_has_no_side_effects(self, retrieve):
        retrieve.return_value = self.provider_intent(status="requires_payment_method")

        with self.assertRaises(PaymentIncompleteError) as ctx:
            confirm_payment_intent("pi_test_1")

        self.assertEqual(ctx.exception.provider_status, "requires_payment_method")
        self.assertFalse(Enrollment.objects.exists())
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 0)

    def test_amount_comes_from_provider_not_current_price(self, retrieve):
        retrieve.return_value = self.provider_intent(amount=4999)
        Course.objects.filter(pk=self.course.pk).update(price=Decimal("79.00"))

        enrollment, _ = confirm_payment_intent("pi_test_1")

        self.assertEqual(enrollment.amount_cents, 4999)

    def test_already_existing_row_is_returned_without_increment(self, retrieve):
        # Another process won the insert for this pair
        winner, _ = create_if_absent(self.student.id, self.course.id, "cs_other_path")
        retrieve.return_value = self.provider_intent()

        enrollment, created = confirm_payment_intent("pi_test_1")

        self.assertFalse(created)
        self.assertEqual(enrollment.id, winner.id)
        self.assertEqual(enrollment.payment_reference, "cs_other_path")
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)

    def test_caller_must_own_the_payment(self, retrieve):
        retrieve.return_value = self.provider_intent(student=self.other_student)

        with self.assertRaises(NotFoundError):
            confirm_payment_intent("pi_test_1", expected_student_id=self.student.id)
        self.assertFalse(Enrollment.objects.exists())

    def test_missing_metadata_is_rejected(self, retrieve):
        retrieve.return_value = {"id": "pi_test_1", "status": "succeeded", "amount_cents": 4999, "metadata": {}}

        with self.assertRaises(InvalidInputError):
            confirm_payment_intent("pi_test_1")
        self.assertFalse(Enrollment.objects.exists())

    def test_deleted_course_is_not_found(self, retrieve):
        gone = Course.objects.create(title="Retired", price=Decimal("10.00"), mentor=self.mentor)
        retrieve.return_value = self.provider_intent(course=gone)
        gone.delete()

        with self.assertRaises(NotFoundError):
            confirm_payment_intent("pi_test_1")
        self.assertFalse(Enrollment.objects.exists())

    def test_provider_outage_leaves_nothing_behind(self, retrieve):
        retrieve.side_effect = ProviderUnavailableError("Payment could not be verified. Please try again.")

        with self.assertRaises(ProviderUnavailableError):
            confirm_payment_intent("pi_test_1")
        self.assertFalse(Enrollment.objects.exists())

    def test_missing_reference_is_rejected(self, retrieve):
        with self.assertRaises(InvalidInputError):
            confirm_payment_intent("")
        with self.assertRaises(InvalidInputError):
            confirm_payment("ch_not_a_reference")
        retrieve.assert_not_called()

    @patch("enrollments.services.verification_service.notify_purchase")
    def test_notification_fires_once_after_commit(self, notify, retrieve):
        retrieve.return_value = self.provider_intent()

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            confirm_payment_intent("pi_test_1")
            confirm_payment_intent("pi_test_1")

        self.assertEqual(len(callbacks), 1)
        notify.assert_called_once_with("student@example.com", "Sam Student", "Intro to Django")

    @override_settings(PURCHASE_EMAIL_ASYNC=False)
    @patch("general.email_service.EmailService.send_purchase_confirmation_email")
    def test_email_failure_does_not_fail_confirmation(self, send_email, retrieve):
        send_email.side_effect = SMTPException("mail server down")
        retrieve.return_value = self.provider_intent()

        with self.assertLogs("enrollments.services.notification_service", level="WARNING"):
            with self.captureOnCommitCallbacks(execute=True):
                enrollment, created = confirm_payment_intent("pi_test_1")

        self.assertTrue(created)
        self.assertTrue(Enrollment.objects.filter(pk=enrollment.pk).exists())
        send_email.assert_called_once()


class CheckoutSessionConfirmationTests(EnrollmentFixturesMixin, TestCase):
    @patch("enrollments.services.stripe_service.retrieve_checkout_session")
    def test_paid_session_creates_enrollment(self, retrieve):
        retrieve.return_value = self.provider_session()

        enrollment, created = confirm_checkout_session("cs_test_1")

        self.assertTrue(created)
        self.assertEqual(enrollment.payment_reference, "cs_test_1")
        retrieve.assert_called_once_with("cs_test_1")

    @patch("enrollments.services.stripe_service.retrieve_checkout_session")
    def test_unpaid_session_is_incomplete(self, retrieve):
        retrieve.return_value = self.provider_session(payment_status="unpaid")

        with self.assertRaises(PaymentIncompleteError) as ctx:
            confirm_payment("cs_test_1")

        self.assertEqual(ctx.exception.provider_status, "unpaid")
        self.assertFalse(Enrollment.objects.exists())

    @patch("enrollments.services.stripe_service.retrieve_payment_intent")
    @patch("enrollments.services.stripe_service.retrieve_checkout_session")
    def test_two_references_for_same_pair_yield_one_enrollment(self, retrieve_session, retrieve_intent):
        retrieve_session.return_value = self.provider_session(reference="cs_redirect")
        retrieve_intent.return_value = self.provider_intent(reference="pi_onpage")

        from_intent, intent_created = confirm_payment("pi_onpage")
        from_session, session_created = confirm_payment("cs_redirect")

        self.assertTrue(intent_created)
        self.assertFalse(session_created)
        self.assertEqual(from_intent.id, from_session.id)
        self.assertEqual(Enrollment.objects.filter(student=self.student, course=self.course).count(), 1)
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)


class EnrollmentLedgerTests(EnrollmentFixturesMixin, TestCase):
    def test_first_insert_increments_counter(self):
        enrollment, created = create_if_absent(self.student.id, self.course.id, "pi_a", amount_cents=4999)

        self.assertTrue(created)
        self.assertEqual(enrollment.amount_cents, 4999)
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)

    def test_duplicate_insert_returns_existing_row(self):
        first, _ = create_if_absent(self.student.id, self.course.id, "pi_a")
        second, created = create_if_absent(self.student.id, self.course.id, "pi_b")

        self.assertFalse(created)
        self.assertEqual(first.id, second.id)
        self.assertEqual(second.payment_reference, "pi_a")
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)

    def test_uniqueness_is_enforced_by_the_database(self):
        Enrollment.objects.create(student=self.student, course=self.course, payment_reference="pi_a")
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Enrollment.objects.create(student=self.student, course=self.course, payment_reference="pi_b")

    def test_failed_increment_rolls_back_insert(self):
        with patch("enrollments.services.ledger_service.increment_enrollments") as increment:
            increment.side_effect = NotFoundError("Course not found.")
            with self.assertRaises(NotFoundError):
                create_if_absent(self.student.id, self.course.id, "pi_a")

        self.assertFalse(Enrollment.objects.exists())

    def test_separate_students_each_get_a_row(self):
        create_if_absent(self.student.id, self.course.id, "pi_a")
        create_if_absent(self.other_student.id, self.course.id, "pi_b")

        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 2)
        self.assertEqual(self.course.enrollments.count(), 2)

    def test_list_student_enrollments_newest_first(self):
        second_course = Course.objects.create(title="Advanced ORM", price=Decimal("20.00"), mentor=self.mentor)
        older, _ = create_if_absent(self.student.id, self.course.id, "pi_a")
        newer, _ = create_if_absent(self.student.id, second_course.id, "pi_b")
        Enrollment.objects.filter(pk=older.pk).update(purchase_date=timezone.now() - timedelta(days=1))

        self.assertEqual([e.id for e in list_student_enrollments(self.student.id)], [newer.id, older.id])


class ConcurrentEnrollmentTests(TransactionTestCase):
    """Two confirmations for one (student, course) racing on separate connections."""

    def setUp(self):
        mentor = CustomUser.objects.create_user(
            email="mentor@example.com", password="secret-pass-1", name="Mia Mentor", role="mentor"
        )
        self.student = CustomUser.objects.create_user(
            email="student@example.com", password="secret-pass-1", name="Sam Student", role="student"
        )
        self.course = Course.objects.create(title="Intro to Django", price=Decimal("49.99"), mentor=mentor)

    def _in_thread(self, results, key, reference, barrier=None):
        try:
            if barrier is not None:
                barrier.wait(timeout=5)
            results[key] = create_if_absent(self.student.id, self.course.id, reference)
        except Exception as e:
            results[key] = e
        finally:
            connection.close()

    def test_insert_committed_by_another_connection_wins(self):
        # The other confirmation commits after this one has started its transaction
        # but before its insert reaches the database.
        results = {}
        rival_started = threading.Event()
        real_create = Enrollment.objects.create

        def create_after_rival_commits(**kwargs):
            if not rival_started.is_set():
                rival_started.set()
                rival = threading.Thread(target=self._in_thread, args=(results, "winner", "cs_winner"))
                rival.start()
                rival.join()
            return real_create(**kwargs)

        with patch.object(Enrollment.objects, "create", side_effect=create_after_rival_commits):
            loser, loser_created = create_if_absent(self.student.id, self.course.id, "pi_loser")

        self.assertNotIsInstance(results["winner"], Exception)
        winner, winner_created = results["winner"]
        self.assertTrue(winner_created)
        self.assertFalse(loser_created)
        self.assertEqual(loser.id, winner.id)
        self.assertEqual(loser.payment_reference, "cs_winner")
        self.assertEqual(Enrollment.objects.count(), 1)
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)

    @skipIf(connection.vendor == "sqlite", "SQLite serializes writers with a database-wide lock")
    def test_simultaneous_confirmations_create_one_enrollment(self):
        results = {}
        barrier = threading.Barrier(2)
        threads = [
            threading.Thread(target=self._in_thread, args=(results, "session", "cs_race", barrier)),
            threading.Thread(target=self._in_thread, args=(results, "intent", "pi_race", barrier)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for outcome in results.values():
            self.assertNotIsInstance(outcome, Exception)
        (first, first_created), (second, second_created) = results["session"], results["intent"]
        self.assertEqual(first.id, second.id)
        self.assertEqual(sorted([first_created, second_created]), [False, True])
        self.assertEqual(Enrollment.objects.count(), 1)
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)


class CounterTests(EnrollmentFixturesMixin, TestCase):
    def test_increment_is_cumulative(self):
        increment_enrollments(self.course.id)
        increment_enrollments(self.course.id)

        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 2)

    def test_unknown_course(self):
        with self.assertRaises(NotFoundError):
            increment_enrollments(987654)


class PurchaseContextTests(SimpleTestCase):
    def test_extracts_all_fields(self):
        context = extract_purchase_context({
            "student_id": "7",
            "course_id": "3",
            "student_name": "Sam",
            "student_email": "sam@example.com",
            "course_title": "Intro",
        })
        self.assertEqual(context, {
            "student_id": 7,
            "course_id": 3,
            "student_name": "Sam",
            "student_email": "sam@example.com",
            "course_title": "Intro",
        })

    def test_malformed_ids(self):
        with self.assertRaises(InvalidInputError):
            extract_purchase_context({"student_id": "x", "course_id": "3"})
        with self.assertRaises(InvalidInputError):
            extract_purchase_context({"course_id": "3"})


@override_settings(
    EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend",
    FRONTEND_URL="https://learn.example.com",
)
class PurchaseNotificationTests(SimpleTestCase):
    @override_settings(PURCHASE_EMAIL_ASYNC=False)
    def test_sends_purchase_email(self):
        notify_purchase("student@example.com", "Sam Student", "Intro to Django")

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.subject, "Course Purchase Successful!")
        self.assertEqual(message.to, ["student@example.com"])
        html = message.alternatives[0][0]
        self.assertIn("Intro to Django", html)
        self.assertIn("Sam Student", html)
        self.assertIn("https://learn.example.com/my-courses", html)

    @override_settings(PURCHASE_EMAIL_ASYNC=False)
    @patch("general.email_service.EmailService.send_purchase_confirmation_email")
    def test_failure_is_logged_not_raised(self, send_email):
        send_email.side_effect = SMTPException("mail server down")

        with self.assertLogs("enrollments.services.notification_service", level="WARNING") as logs:
            notify_purchase("student@example.com", "Sam Student", "Intro to Django")

        self.assertIn("mail server down", logs.output[0])

    @override_settings(PURCHASE_EMAIL_ASYNC=True)
    @patch("enrollments.services.notification_service.threading.Thread")
    def test_async_delivery_runs_on_daemon_thread(self, thread_cls):
        notify_purchase("student@example.com", "Sam Student", "Intro to Django")

        kwargs = thread_cls.call_args.kwargs
        self.assertEqual(kwargs["args"], ("student@example.com", "Sam Student", "Intro to Django"))
        self.assertTrue(kwargs["daemon"])
        thread_cls.return_value.start.assert_called_once()

    @override_settings(PURCHASE_EMAIL_ASYNC=False)
    def test_missing_email_is_skipped(self):
        with self.assertLogs("enrollments.services.notification_service", level="WARNING"):
            notify_purchase("", "Sam Student", "Intro to Django")
        self.assertEqual(len(mail.outbox), 0)


@override_settings(STRIPE_SECRET_KEY="sk_test_123", STRIPE_MAX_NETWORK_RETRIES=2)
class StripeServiceTests(SimpleTestCase):
    @override_settings(STRIPE_SECRET_KEY="")
    def test_unconfigured_client_is_unavailable(self):
        self.assertFalse(stripe_service.is_configured())
        with self.assertRaises(ProviderUnavailableError):
            stripe_service.get_client()

    @patch("enrollments.services.stripe_service.get_client")
    def test_retrieve_payment_intent_converts_stripe_object(self, get_client):
        client = Mock()
        client.PaymentIntent.retrieve.return_value = stripe.PaymentIntent.construct_from({
            "id": "pi_1",
            "object": "payment_intent",
            "status": "succeeded",
            "amount": 4999,
            "currency": "usd",
            "metadata": {"student_id": "5", "course_id": "3"},
        }, "sk_test_123")
        get_client.return_value = client

        result = stripe_service.retrieve_payment_intent("pi_1")

        self.assertEqual(result, {
            "id": "pi_1",
            "status": "succeeded",
            "amount_cents": 4999,
            "currency": "usd",
            "metadata": {"student_id": "5", "course_id": "3"},
        })
        self.assertIs(type(result["metadata"]), dict)

    @patch("enrollments.services.stripe_service.get_client")
    def test_retrieve_checkout_session_with_expanded_intent(self, get_client):
        client = Mock()
        client.checkout.Session.retrieve.return_value = stripe.checkout.Session.construct_from({
            "id": "cs_1",
            "object": "checkout.session",
            "payment_status": "paid",
            "payment_intent": {"id": "pi_9", "object": "payment_intent", "status": "succeeded"},
            "amount_total": 4999,
            "currency": "usd",
            "metadata": {"course_id": "3"},
        }, "sk_test_123")
        get_client.return_value = client

        result = stripe_service.retrieve_checkout_session("cs_1")

        self.assertEqual(result["payment_status"], "paid")
        self.assertEqual(result["payment_intent_id"], "pi_9")
        self.assertEqual(result["amount_cents"], 4999)
        self.assertEqual(result["metadata"], {"course_id": "3"})

    @patch("enrollments.services.stripe_service.get_client")
    def test_retrieve_checkout_session_with_intent_id(self, get_client):
        client = Mock()
        client.checkout.Session.retrieve.return_value = stripe.checkout.Session.construct_from({
            "id": "cs_2",
            "object": "checkout.session",
            "payment_status": "unpaid",
            "payment_intent": "pi_10",
            "amount_total": 4999,
            "currency": "usd",
            "metadata": {},
        }, "sk_test_123")
        get_client.return_value = client

        result = stripe_service.retrieve_checkout_session("cs_2")

        self.assertEqual(result["payment_intent_id"], "pi_10")
        self.assertEqual(result["metadata"], {})

    @patch("enrollments.services.stripe_service.get_client")
    def test_missing_resource_is_not_found(self, get_client):
        client = Mock()
        client.PaymentIntent.retrieve.side_effect = stripe.InvalidRequestError(
            "No such payment_intent: 'pi_missing'", "intent", code="resource_missing"
        )
        get_client.return_value = client

        with self.assertRaises(NotFoundError):
            stripe_service.retrieve_payment_intent("pi_missing")

    @patch("enrollments.services.stripe_service.get_client")
    def test_network_error_is_provider_unavailable(self, get_client):
        client = Mock()
        client.checkout.Session.retrieve.side_effect = stripe.APIConnectionError("connection reset")
        get_client.return_value = client

        with self.assertRaises(ProviderUnavailableError):
            stripe_service.retrieve_checkout_session("cs_1")

    @patch("enrollments.services.stripe_service.get_client")
    def test_checkout_session_carries_metadata_to_intent(self, get_client):
        client = Mock()
        client.checkout.Session.create.return_value = stripe.checkout.Session.construct_from(
            {"id": "cs_1", "object": "checkout.session", "url": "https://checkout.stripe.com/c/cs_1"}, "sk_test_123"
        )
        get_client.return_value = client
        metadata = {"student_id": "1", "course_id": "2"}

        result = stripe_service.create_checkout_session(
            amount_cents=4999,
            currency="usd",
            line_item_name="Intro",
            line_item_description=None,
            success_url="https://learn.example.com/ok",
            cancel_url="https://learn.example.com/cancel",
            metadata=metadata,
            idempotency_key="checkout:1:2:a",
        )

        self.assertEqual(result, {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"})
        kwargs = client.checkout.Session.create.call_args.kwargs
        self.assertEqual(kwargs["metadata"], metadata)
        self.assertEqual(kwargs["payment_intent_data"], {"metadata": metadata})
        self.assertEqual(kwargs["line_items"][0]["price_data"]["unit_amount"], 4999)
        self.assertNotIn("description", kwargs["line_items"][0]["price_data"]["product_data"])
        self.assertEqual(kwargs["idempotency_key"], "checkout:1:2:a")


@override_settings(STRIPE_SECRET_KEY="sk_test_123")
@patch("enrollments.services.stripe_service.get_client")
class ProviderObjectConfirmationTests(EnrollmentFixturesMixin, TestCase):
    """Confirmation driven by SDK objects, through the real adapter."""

    def test_confirm_payment_intent(self, get_client):
        client = Mock()
        client.PaymentIntent.retrieve.return_value = stripe.PaymentIntent.construct_from({
            "id": "pi_live_shape",
            "object": "payment_intent",
            "status": "succeeded",
            "amount": 4999,
            "currency": "usd",
            "metadata": build_payment_metadata(self.student, self.course),
        }, "sk_test_123")
        get_client.return_value = client

        enrollment, created = confirm_payment("pi_live_shape", expected_student_id=self.student.id)

        self.assertTrue(created)
        self.assertEqual(enrollment.course_id, self.course.id)
        self.assertEqual(enrollment.amount_cents, 4999)

    def test_confirm_checkout_session(self, get_client):
        client = Mock()
        client.checkout.Session.retrieve.return_value = stripe.checkout.Session.construct_from({
            "id": "cs_live_shape",
            "object": "checkout.session",
            "payment_status": "paid",
            "payment_intent": {"id": "pi_inner", "object": "payment_intent"},
            "amount_total": 4999,
            "currency": "usd",
            "metadata": build_payment_metadata(self.student, self.course),
        }, "sk_test_123")
        get_client.return_value = client

        enrollment, created = confirm_payment("cs_live_shape")

        self.assertTrue(created)
        self.assertEqual(enrollment.payment_reference, "cs_live_shape")


class EnrollmentApiTests(EnrollmentFixturesMixin, TestCase):
    def post_json(self, name, data):
        return self.client.post(reverse(f"enrollments:{name}"), data=json.dumps(data), content_type="application/json")

    def test_requires_authentication(self):
        response = self.post_json("create_payment_intent", {"course_id": self.course.id})
        self.assertEqual(response.status_code, 401)

    def test_requires_student_role(self):
        self.client.force_login(self.mentor)
        response = self.post_json("create_payment_intent", {"course_id": self.course.id})
        self.assertEqual(response.status_code, 403)

    @patch("enrollments.services.stripe_service.create_payment_intent")
    def test_create_payment_intent(self, create_intent):
        create_intent.return_value = {"id": "pi_new", "client_secret": "pi_new_secret"}
        self.client.force_login(self.student)

        response = self.post_json("create_payment_intent", {"course_id": self.course.id})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["client_secret"], "pi_new_secret")
        self.assertEqual(response.json()["amount_cents"], 4999)

    @patch("enrollments.services.stripe_service.create_checkout_session")
    def test_checkout_when_already_enrolled(self, create_session):
        Enrollment.objects.create(student=self.student, course=self.course, payment_reference="pi_old")
        self.client.force_login(self.student)

        response = self.post_json("checkout", {"course_id": self.course.id})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "conflict")
        create_session.assert_not_called()

    def test_checkout_with_invalid_json(self):
        self.client.force_login(self.student)
        response = self.client.post(reverse("enrollments:checkout"), data="{not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "validation_error")

    @patch("enrollments.services.stripe_service.retrieve_payment_intent")
    def test_confirm_payment_twice(self, retrieve):
        retrieve.return_value = self.provider_intent()
        self.client.force_login(self.student)

        first = self.post_json("confirm_payment", {"payment_intent_id": "pi_test_1"})
        second = self.post_json("confirm_payment", {"payment_intent_id": "pi_test_1"})

        self.assertEqual(first.json()["message"], "Enrollment successful")
        self.assertEqual(second.json()["message"], "Already enrolled")
        self.assertEqual(first.json()["enrollment"]["id"], second.json()["enrollment"]["id"])

    @patch("enrollments.services.stripe_service.retrieve_checkout_session")
    def test_verify_unpaid_session(self, retrieve):
        retrieve.return_value = self.provider_session(payment_status="unpaid")
        self.client.force_login(self.student)

        response = self.post_json("verify_session", {"session_id": "cs_test_1"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {
            "error": "payment_incomplete",
            "message": "Payment not completed",
            "status": "unpaid",
        })

    @patch("enrollments.services.stripe_service.retrieve_checkout_session")
    def test_verify_someone_elses_session(self, retrieve):
        retrieve.return_value = self.provider_session(student=self.other_student)
        self.client.force_login(self.student)

        response = self.post_json("verify_session", {"session_id": "cs_test_1"})

        self.assertEqual(response.status_code, 404)
        self.assertFalse(Enrollment.objects.exists())

    def test_my_courses_and_check(self):
        create_if_absent(self.student.id, self.course.id, "pi_a")
        self.client.force_login(self.student)

        listing = self.client.get(reverse("enrollments:my_courses")).json()
        enrolled = self.client.get(reverse("enrollments:check_enrollment", args=[self.course.id])).json()
        not_enrolled = self.client.get(reverse("enrollments:check_enrollment", args=[987654])).json()

        self.assertEqual(listing["count"], 1)
        self.assertEqual(listing["enrollments"][0]["course"]["title"], "Intro to Django")
        self.assertEqual(listing["enrollments"][0]["course"]["mentor"]["name"], "Mia Mentor")
        self.assertEqual(enrolled, {"is_enrolled": True})
        self.assertEqual(not_enrolled, {"is_enrolled": False})


@override_settings(STRIPE_WEBHOOK_SECRET="whsec_test")
class StripeWebhookTests(EnrollmentFixturesMixin, TestCase):
    def post_event(self):
        return self.client.post(
            reverse("enrollments:stripe_webhook"),
            data=b"{}",
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=signature",
        )

    def event(self, event_type, reference):
        return stripe.Event.construct_from({
            "id": "evt_test_1",
            "object": "event",
            "type": event_type,
            "data": {"object": {"id": reference, "object": reference_object(reference)}},
        }, "whsec_test")

    @patch("enrollments.services.stripe_service.retrieve_payment_intent")
    @patch("enrollments.views.stripe.Webhook.construct_event")
    def test_payment_intent_succeeded_enrolls(self, construct_event, retrieve):
        construct_event.return_value = self.event("payment_intent.succeeded", "pi_test_1")
        retrieve.return_value = self.provider_intent()

        first = self.post_event()
        redelivered = self.post_event()

        self.assertEqual(first.status_code, 200)
        self.assertEqual(redelivered.status_code, 200)
        self.assertEqual(Enrollment.objects.count(), 1)
        self.course.refresh_from_db()
        self.assertEqual(self.course.total_enrollments, 1)

    @patch("enrollments.services.stripe_service.retrieve_checkout_session")
    @patch("enrollments.views.stripe.Webhook.construct_event")
    def test_checkout_completed_enrolls(self, construct_event, retrieve):
        construct_event.return_value = self.event("checkout.session.completed", "cs_test_1")
        retrieve.return_value = self.provider_session()

        response = self.post_event()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Enrollment.objects.get().payment_reference, "cs_test_1")

    @patch("enrollments.services.stripe_service.retrieve_payment_intent")
    @patch("enrollments.views.stripe.Webhook.construct_event")
    def test_provider_outage_asks_stripe_to_retry(self, construct_event, retrieve):
        construct_event.return_value = self.event("payment_intent.succeeded", "pi_test_1")
        retrieve.side_effect = ProviderUnavailableError("Payment could not be verified. Please try again.")

        response = self.post_event()

        self.assertEqual(response.status_code, 503)
        self.assertFalse(Enrollment.objects.exists())

    @patch("enrollments.services.stripe_service.retrieve_payment_intent")
    @patch("enrollments.views.stripe.Webhook.construct_event")
    def test_other_events_are_ignored(self, construct_event, retrieve):
        construct_event.return_value = self.event("charge.refunded", "ch_1")

        response = self.post_event()

        self.assertEqual(response.status_code, 200)
        retrieve.assert_not_called()

    def test_missing_signature_is_rejected(self):
        response = self.client.post(reverse("enrollments:stripe_webhook"), data=b"{}", content_type="application/json")
        self.assertEqual(response.status_code, 400)

    @patch("enrollments.views.stripe.Webhook.construct_event")
    def test_bad_signature_is_rejected(self, construct_event):
        construct_event.side_effect = stripe.SignatureVerificationError("bad signature", "t=1,v1=signature")

        response = self.post_event()

        self.assertEqual(response.status_code, 400)
