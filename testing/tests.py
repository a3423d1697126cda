from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, override_settings

from testing.enrollment import runner


class ScenarioGuardTests(SimpleTestCase):
    @override_settings(ALLOW_TEST_SCENARIOS=False, STRIPE_SECRET_KEY="sk_test_123")
    def test_disabled_environment_refuses_to_run(self):
        with self.assertRaises(CommandError):
            call_command("run_enrollment_scenarios")

    @override_settings(ALLOW_TEST_SCENARIOS=True, STRIPE_SECRET_KEY="sk_live_123")
    def test_live_key_is_refused(self):
        with self.assertRaises(Exception):
            runner.run_all()

    @override_settings(ALLOW_TEST_SCENARIOS=True, STRIPE_SECRET_KEY="sk_test_123")
    def test_unknown_scenario(self):
        with self.assertRaises(Exception):
            runner.run_scenario("no_such_scenario")

    @override_settings(ALLOW_TEST_SCENARIOS=True, STRIPE_SECRET_KEY="sk_test_123")
    @patch("testing.enrollment.scenarios.scenario_incomplete_payment.run")
    def test_runs_named_scenario(self, run):
        call_command("run_enrollment_scenarios", scenario="incomplete_payment", stdout=StringIO())
        run.assert_called_once_with()
