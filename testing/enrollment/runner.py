from testing.enrollment.base import assert_scenarios_enabled
from testing.enrollment.scenarios import (
    scenario_duplicate_confirmation,
    scenario_incomplete_payment,
    scenario_intent_enrollment,
    scenario_two_references,
)

AVAILABLE_SCENARIOS = {
    "intent_enrollment": scenario_intent_enrollment,
    "duplicate_confirmation": scenario_duplicate_confirmation,
    "two_references": scenario_two_references,
    "incomplete_payment": scenario_incomplete_payment,
}


def run_scenario(name):
    assert_scenarios_enabled()
    if name not in AVAILABLE_SCENARIOS:
        raise Exception(f"Unknown scenario '{name}'. Available: {', '.join(AVAILABLE_SCENARIOS.keys())}")
    AVAILABLE_SCENARIOS[name].run()


def run_all():
    assert_scenarios_enabled()
    for _, scenario in AVAILABLE_SCENARIOS.items():
        scenario.run()
