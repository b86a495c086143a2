"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Funil CRM - Budget State Machine Transition Testing                         ║
║                                                                              ║
║  Tests the transition table by calling functions directly:                   ║
║  1. Every status is covered by VALID_BUDGET_TRANSITIONS                      ║
║  2. Terminal statuses have no way out                                        ║
║  3. Invalid transitions are blocked                                          ║
║  4. Planned field changes respect the invariants                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest

from models.budget import BudgetStatus, TERMINAL_STATUSES, SCHEDULABLE_STATUSES
from services.budget_lifecycle import (
    VALID_BUDGET_TRANSITIONS,
    plan_win,
    status_change_fields,
    validate_status_transition,
)
from services.errors import InvalidTransitionError, ValidationError
from tests.conftest import NOW, make_budget


class TestValidTransitions:
    """Test the VALID_BUDGET_TRANSITIONS map"""

    def test_every_status_is_covered(self):
        assert set(VALID_BUDGET_TRANSITIONS) == set(BudgetStatus)
        print(f"✅ Transitions map covers: {[s.value for s in VALID_BUDGET_TRANSITIONS]}")

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {BudgetStatus.INVOICED, BudgetStatus.LOST}
        for status in TERMINAL_STATUSES:
            assert len(VALID_BUDGET_TRANSITIONS[status]) == 0, f"{status.value} should be terminal"
        print("✅ invoiced / lost are terminal")

    def test_open_statuses_can_reach_anything(self):
        for status in set(BudgetStatus) - TERMINAL_STATUSES:
            assert VALID_BUDGET_TRANSITIONS[status] == frozenset(BudgetStatus)
        print("✅ open statuses accept every target")

    def test_only_sent_and_following_up_are_scheduled(self):
        assert SCHEDULABLE_STATUSES == {BudgetStatus.SENT, BudgetStatus.FOLLOWING_UP}


class TestTransitionValidation:

    @pytest.mark.parametrize("target", ["following_up", "order_placed", "on_hold", "invoiced", "lost"])
    def test_from_sent(self, target):
        assert validate_status_transition("b1", "sent", target) is True

    @pytest.mark.parametrize("origin", ["invoiced", "lost"])
    @pytest.mark.parametrize("target", ["sent", "following_up", "on_hold"])
    def test_terminal_blocks(self, origin, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_status_transition("b1", origin, target)
        assert exc_info.value.from_status == origin
        assert exc_info.value.to_status == target
        print(f"✅ Blocked {origin} -> {target}")

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            validate_status_transition("b1", "sent", "won")


class TestPlannedChanges:

    def test_terminal_target_clears_schedule(self):
        budget = make_budget(next_follow_up_date="2026-03-12")
        for target in TERMINAL_STATUSES:
            changes = status_change_fields(budget, target, NOW)
            assert changes["next_follow_up_date"] is None
            assert changes["status"] == target.value

    def test_non_terminal_target_leaves_schedule_alone(self):
        changes = status_change_fields(make_budget(next_follow_up_date="2026-03-12"), "order_placed", NOW)
        assert "next_follow_up_date" not in changes

    def test_lost_records_reason(self):
        changes = status_change_fields(make_budget(), "lost", NOW, lost_reason="timing", lost_notes="next year")
        assert changes["lost_reason"] == "timing"
        assert changes["lost_notes"] == "next year"

    def test_same_status_plans_nothing(self):
        assert status_change_fields(make_budget(status="on_hold"), BudgetStatus.ON_HOLD, NOW) is None

    def test_win_plan_is_pure(self):
        budget = make_budget(follow_ups=[{"id": "f0", "created_at": "2026-03-03T10:00:00+00:00", "notes": "x"}])
        plan = plan_win(budget, 600, NOW)

        assert plan.original_changes["value"] == 600.0
        assert plan.sibling["value"] == 400.0
        # the sibling history is a copy, not the same list
        plan.sibling["follow_ups"][0]["notes"] = "changed"
        assert budget["follow_ups"][0]["notes"] == "x"
        assert len(budget["follow_ups"]) == 1
