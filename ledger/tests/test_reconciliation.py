"""
Unit Tests for Reconciliation Views

Tests cover:
1. Unified feed ordering and pagination
2. Member progress and percentage rounding
3. Leaderboard and rank determinism
4. Quick stats, duty budgets and the financial summary
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from ledger.errors import DutyNotFoundError, LedgerValidationError, UnauthorizedError
from ledger.models import (
    Actor,
    AddBudgetItemRequest,
    AssignAmountRequest,
    AssignDutyRequest,
    CreateDutyRequest,
    PaymentConfigUpdate,
    PaymentMethod,
    RejectContributionRequest,
    ReviewDecision,
    ReviewReceiptRequest,
    Role,
    SetGoalRequest,
    SubmitContributionRequest,
    SubmitReceiptRequest,
    UpdateBudgetItemRequest,
)
from ledger.reconciliation import percent
from ledger.service import LedgerService
from ledger.storage import InMemoryStorage


# Test constants
EVENT_ID = "farewell-2024"
ADMIN = Actor(caller_id="admin-1", role=Role.ADMIN)
ALICE = Actor(caller_id="alice")
BOB = Actor(caller_id="bob")
CAROL = Actor(caller_id="carol")


class TickingClock:
    """Clock that advances one second per reading."""

    def __init__(self):
        self.current = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


def ticking_service():
    return LedgerService(storage=InMemoryStorage(clock=TickingClock()))


def contribute(service, actor, amount, method=PaymentMethod.UPI):
    return service.submit_contribution(EVENT_ID, actor, SubmitContributionRequest(
        amount=Decimal(amount), method=method,
    )).contribution


def assign(service, actor, amount):
    service.assign_member_amount(EVENT_ID, actor.caller_id, ADMIN, AssignAmountRequest(amount=Decimal(amount)))


def duty_with_receipts(service, expense_limit, *amounts):
    duty = service.create_duty(EVENT_ID, ADMIN, CreateDutyRequest(title="Catering", expense_limit=expense_limit))
    assignment = service.assign_duty(duty.id, ADMIN, AssignDutyRequest(member_ids=[ALICE.caller_id]))[0]
    receipts = [
        service.submit_receipt(assignment.id, ALICE, SubmitReceiptRequest(amount=Decimal(a))).receipt
        for a in amounts
    ]
    return duty, receipts


def approve_receipt(service, receipt):
    service.review_receipt(receipt.id, ADMIN, ReviewReceiptRequest(decision=ReviewDecision.APPROVE))


class TestPercent:
    """Tests for the percentage helper."""

    @pytest.mark.parametrize("part,whole,expected", [
        ("1", "3", 33),
        ("2", "3", 67),
        ("1", "8", 13),
        ("750", "500", 150),
        ("5", "0", 0),
    ])
    def test_rounds_half_up(self, part, whole, expected):
        assert percent(Decimal(part), Decimal(whole)) == expected

    def test_cap(self):
        assert percent(Decimal("750"), Decimal("500"), cap=100) == 100

    def test_extreme_ratio_does_not_overflow(self):
        assert percent(Decimal("1e30"), Decimal("1")) == 10 ** 32
        assert percent(Decimal("1e30"), Decimal("1"), cap=100) == 100
        assert percent(Decimal("1"), Decimal("1e30")) == 0


class TestUnifiedFeed:
    """Tests for the merged contribution and ledger feed."""

    def test_newest_first_across_sources(self):
        service = ticking_service()
        first = contribute(service, ALICE, "500")
        second = contribute(service, BOB, "300")
        credit = service.approve_contribution(first.id, ADMIN).ledger_entry

        feed = service.unified_feed(EVENT_ID, ADMIN)

        assert [item.id for item in feed] == [credit.id, second.id, first.id]
        assert [item.source for item in feed] == ["ledger", "contribution", "contribution"]
        assert feed[0].status == "posted"
        assert feed[1].status == "pending"
        assert feed[2].status == "verified"
        assert feed[1].method == PaymentMethod.UPI

    def test_ties_break_on_sequence(self):
        frozen = datetime(2024, 6, 1, tzinfo=timezone.utc)
        service = LedgerService(storage=InMemoryStorage(clock=lambda: frozen))
        first = contribute(service, ALICE, "100")
        second = contribute(service, BOB, "100")

        feed = service.unified_feed(EVENT_ID, ADMIN)

        assert [item.id for item in feed] == [second.id, first.id]

    def test_pagination_over_merged_list(self):
        service = ticking_service()
        contributions = [contribute(service, ALICE, str(100 + i)) for i in range(3)]
        entries = [service.approve_contribution(c.id, ADMIN).ledger_entry for c in contributions]

        everything = service.unified_feed(EVENT_ID, ADMIN, limit=10)
        first_page = service.unified_feed(EVENT_ID, ADMIN, limit=4, offset=0)
        second_page = service.unified_feed(EVENT_ID, ADMIN, limit=4, offset=4)

        assert len(everything) == 6
        assert [i.id for i in first_page + second_page] == [i.id for i in everything]
        assert [i.id for i in first_page[:3]] == [e.id for e in reversed(entries)]

    def test_limit_bounds(self):
        service = ticking_service()

        with pytest.raises(LedgerValidationError):
            service.unified_feed(EVENT_ID, ADMIN, limit=0)
        with pytest.raises(LedgerValidationError):
            service.unified_feed(EVENT_ID, ADMIN, limit=201)
        with pytest.raises(LedgerValidationError):
            service.unified_feed(EVENT_ID, ADMIN, offset=-1)

    def test_admin_only(self):
        with pytest.raises(UnauthorizedError):
            ticking_service().unified_feed(EVENT_ID, ALICE)


class TestMemberProgress:
    """Tests for assigned-versus-paid progress."""

    def test_nothing_assigned(self):
        service = ticking_service()
        service.approve_contribution(contribute(service, ALICE, "200").id, ADMIN)

        progress = service.progress_for(EVENT_ID, ALICE.caller_id)

        assert progress.assigned == Decimal("0")
        assert progress.paid == Decimal("200")
        assert progress.remaining == Decimal("0")
        assert progress.percentage == 0

    def test_overpaid_caps_at_hundred(self):
        service = ticking_service()
        assign(service, ALICE, "500")
        service.approve_contribution(contribute(service, ALICE, "750").id, ADMIN)

        progress = service.progress_for(EVENT_ID, ALICE.caller_id)

        assert progress.percentage == 100
        assert progress.remaining == Decimal("0")

    def test_awaiting_confirmation_counts_but_plain_pending_does_not(self):
        service = ticking_service()
        service.update_payment_config(EVENT_ID, ADMIN, PaymentConfigUpdate(
            confirmation_required_methods=[PaymentMethod.BANK_TRANSFER],
        ))
        assign(service, ALICE, "300")
        contribute(service, ALICE, "100", method=PaymentMethod.BANK_TRANSFER)
        contribute(service, ALICE, "150", method=PaymentMethod.UPI)

        progress = service.progress_for(EVENT_ID, ALICE.caller_id)

        assert progress.paid == Decimal("100")
        assert progress.remaining == Decimal("200")
        assert progress.percentage == 33

    def test_rejected_does_not_count(self):
        service = ticking_service()
        assign(service, ALICE, "400")
        contribution = contribute(service, ALICE, "400")
        service.reject_contribution(contribution.id, ADMIN, RejectContributionRequest(reason="Duplicate"))

        assert service.progress_for(EVENT_ID, ALICE.caller_id).paid == Decimal("0")


class TestLeaderboard:
    """Tests for ranking members by verified totals."""

    def test_ties_rank_by_first_verified(self):
        service = ticking_service()
        bob_contribution = contribute(service, BOB, "500")
        alice_contribution = contribute(service, ALICE, "500")
        carol_contribution = contribute(service, CAROL, "200")
        service.approve_contribution(alice_contribution.id, ADMIN)
        service.approve_contribution(bob_contribution.id, ADMIN)
        service.approve_contribution(carol_contribution.id, ADMIN)

        board = service.leaderboard(EVENT_ID)

        assert [(e.member_id, e.rank) for e in board] == [("alice", 1), ("bob", 2), ("carol", 3)]
        assert board == service.leaderboard(EVENT_ID)

    def test_pending_contributions_do_not_rank(self):
        service = ticking_service()
        contribute(service, ALICE, "900")
        service.approve_contribution(contribute(service, BOB, "10").id, ADMIN)

        assert [e.member_id for e in service.leaderboard(EVENT_ID)] == ["bob"]
        assert service.rank_for(EVENT_ID, ALICE.caller_id) is None

    def test_rank_percentile(self):
        service = ticking_service()
        for actor, amount in ((ALICE, "300"), (BOB, "200"), (CAROL, "100")):
            service.approve_contribution(contribute(service, actor, amount).id, ADMIN)

        top = service.rank_for(EVENT_ID, ALICE.caller_id)
        bottom = service.rank_for(EVENT_ID, CAROL.caller_id)

        assert (top.rank, top.percentile, top.total_members) == (1, 67, 3)
        assert (bottom.rank, bottom.percentile) == (3, 0)

    def test_single_member_is_top_percentile(self):
        service = ticking_service()
        service.approve_contribution(contribute(service, ALICE, "50").id, ADMIN)

        assert service.rank_for(EVENT_ID, ALICE.caller_id).percentile == 100


class TestStats:
    """Tests for quick stats and pending counts."""

    def test_quick_stats(self):
        service = ticking_service()
        contribute(service, ALICE, "100")
        service.approve_contribution(contribute(service, ALICE, "200").id, ADMIN)
        service.reject_contribution(contribute(service, ALICE, "300").id, ADMIN, RejectContributionRequest())
        contribute(service, BOB, "400")

        stats = service.quick_stats(EVENT_ID, ALICE.caller_id)

        assert (stats.total, stats.pending, stats.verified) == (3, 1, 1)
        assert service.pending_actions_count(EVENT_ID) == 2


class TestDutyBudget:
    """Tests for duty budget versus actual."""

    def test_budget_versus_actual(self):
        service = ticking_service()
        duty, receipts = duty_with_receipts(service, Decimal("1000"), "600", "500")
        approve_receipt(service, receipts[0])

        budget = service.duty_budget(duty.id)

        assert budget.approved_total == Decimal("600")
        assert budget.pending_total == Decimal("500")
        assert budget.remaining == Decimal("400")
        assert budget.over_limit is False
        assert (budget.receipt_count, budget.pending_count) == (2, 1)

        approve_receipt(service, receipts[1])
        budget = service.duty_budget(duty.id)

        assert budget.over_limit is True
        assert budget.remaining == Decimal("0")

    def test_no_limit(self):
        service = ticking_service()
        duty, _ = duty_with_receipts(service, None, "250")

        budget = service.duty_budget(duty.id)

        assert budget.remaining is None
        assert budget.over_limit is False

    def test_planned_items_alongside_receipts(self):
        service = ticking_service()
        duty, receipts = duty_with_receipts(service, Decimal("1000"), "600")
        approve_receipt(service, receipts[0])
        venue = service.add_duty_budget_item(duty.id, ADMIN, AddBudgetItemRequest(
            category="Venue", estimated_amount=Decimal("700"),
        ))
        service.add_duty_budget_item(duty.id, ADMIN, AddBudgetItemRequest(
            category="Snacks", estimated_amount=Decimal("250"),
        ))
        service.update_duty_budget_item(venue.id, ADMIN, UpdateBudgetItemRequest(actual_amount=Decimal("650")))

        budget = service.duty_budget(duty.id)

        assert budget.estimated_total == Decimal("950")
        assert budget.actual_total == Decimal("650")
        assert [i.category for i in budget.items] == ["Venue", "Snacks"]
        assert budget.approved_total == Decimal("600")
        assert budget.remaining == Decimal("400")

    def test_no_items(self):
        service = ticking_service()
        duty, _ = duty_with_receipts(service, None)

        budget = service.duty_budget(duty.id)

        assert budget.items == []
        assert budget.estimated_total == Decimal("0")
        assert budget.actual_total == Decimal("0")

    def test_unknown_duty(self):
        with pytest.raises(DutyNotFoundError):
            ticking_service().duty_budget(uuid4())


class TestFinancialSummary:
    """Tests for the event-level summary."""

    def test_summary_excludes_reversed_contributions(self):
        service = ticking_service()
        service.set_budget_goal(EVENT_ID, ADMIN, SetGoalRequest(amount=Decimal("1000")))
        service.update_payment_config(EVENT_ID, ADMIN, PaymentConfigUpdate(
            auto_verify=True, auto_verify_methods=[PaymentMethod.CASH],
        ))
        service.approve_contribution(contribute(service, ALICE, "600").id, ADMIN)
        reversed_cash = contribute(service, BOB, "200", method=PaymentMethod.CASH)
        service.reject_contribution(reversed_cash.id, ADMIN, RejectContributionRequest(reason="Not received"))
        contribute(service, CAROL, "50")
        _, receipts = duty_with_receipts(service, None, "100", "40")
        approve_receipt(service, receipts[0])

        summary = service.financial_summary(EVENT_ID)

        assert summary.budget_goal == Decimal("1000")
        assert summary.collected == Decimal("600")
        assert summary.spent == Decimal("100")
        assert summary.balance == Decimal("500")
        assert summary.goal_percentage == 60
        assert summary.pending_contributions == 1
        assert summary.pending_receipts == 1
        assert summary.balance == service.get_balance(EVENT_ID).balance


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
