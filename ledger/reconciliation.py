"""
Read-only projections over the ledger and the claims feeding it.

Nothing here writes: every figure is recomputed from committed rows on each
call, so balances, progress and ranks can never drift from the entries.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID

from .config import get_settings
from .errors import DutyNotFoundError, LedgerValidationError
from .models import (
    Contribution,
    DutyBudget,
    DutyBudgetItem,
    EntryCategory,
    EntryDirection,
    FeedItem,
    FinancialSummary,
    LeaderboardEntry,
    LedgerEntry,
    MemberProgress,
    MemberRank,
    QuickStats,
    ReceiptStatus,
)
from .storage import InMemoryStorage
from .store import LedgerStore

ZERO = Decimal("0")


def percent(part: Decimal, whole: Decimal, cap: Optional[int] = None) -> int:
    """``round(part / whole * 100)`` rounding halves up; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    value = int((Decimal(part) / Decimal(whole) * 100).to_integral_value(rounding=ROUND_HALF_UP))
    return min(cap, value) if cap is not None else value


class ReconciliationView:
    def __init__(self, storage: InMemoryStorage, ledger: LedgerStore):
        self.storage = storage
        self.ledger = ledger

    def unified_feed(self, event_id: str, limit: Optional[int] = None, offset: int = 0) -> list[FeedItem]:
        settings = get_settings()
        limit = settings.feed_default_limit if limit is None else limit
        if limit < 1 or limit > settings.feed_max_limit:
            raise LedgerValidationError(
                "limit", f"limit must be between 1 and {settings.feed_max_limit}", value=limit
            )
        if offset < 0:
            raise LedgerValidationError("offset", "offset cannot be negative", value=offset)

        items = [self._contribution_item(c) for c in self._contributions(event_id)]
        items.extend(self._entry_item(e) for e in self.ledger.entries_for(event_id))
        items.sort(key=lambda item: (item.timestamp, item.sequence), reverse=True)
        return items[offset:offset + limit]

    def progress_for(self, event_id: str, member_id: str) -> MemberProgress:
        allocation = self.storage.event_members(event_id).get(member_id)
        assigned = allocation["assigned_amount"] if allocation else ZERO
        paid = sum(
            (c.amount for c in self._contributions(event_id, member_id) if c.status.counts_toward_progress),
            ZERO,
        )
        return MemberProgress(
            event_id=event_id,
            member_id=member_id,
            assigned=assigned,
            paid=paid,
            remaining=max(ZERO, assigned - paid),
            percentage=percent(paid, assigned, cap=100),
        )

    def leaderboard(self, event_id: str) -> list[LeaderboardEntry]:
        credited = [c for c in self._contributions(event_id) if c.status.is_credited]
        # members enter in the order they were first credited; sort is stable
        credited.sort(key=self._credit_order)
        totals: dict[str, Decimal] = {}
        for contribution in credited:
            totals[contribution.member_id] = totals.get(contribution.member_id, ZERO) + contribution.amount

        ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return [
            LeaderboardEntry(member_id=member_id, total=total, rank=index + 1)
            for index, (member_id, total) in enumerate(ranked)
        ]

    def rank_for(self, event_id: str, member_id: str) -> Optional[MemberRank]:
        board = self.leaderboard(event_id)
        total = len(board)
        for entry in board:
            if entry.member_id == member_id:
                return MemberRank(
                    member_id=member_id,
                    rank=entry.rank,
                    percentile=percent(Decimal(total - entry.rank), Decimal(total)) if total > 1 else 100,
                    total_members=total,
                )
        return None

    def quick_stats(self, event_id: str, member_id: str) -> QuickStats:
        contributions = self._contributions(event_id, member_id)
        return QuickStats(
            total=len(contributions),
            pending=sum(1 for c in contributions if c.status.is_pending),
            verified=sum(1 for c in contributions if c.status.is_credited),
        )

    def pending_actions_count(self, event_id: str) -> int:
        return sum(1 for c in self._contributions(event_id) if c.status.is_pending)

    def duty_budget(self, duty_id: UUID) -> DutyBudget:
        duty = self.storage.duties.get(duty_id)
        if not duty:
            raise DutyNotFoundError(duty_id)
        receipts = [r for r in self.storage.snapshot(self.storage.receipts) if r["duty_id"] == duty_id]
        approved = sum((r["amount"] for r in receipts if r["status"] == ReceiptStatus.APPROVED), ZERO)
        pending = [r for r in receipts if r["status"] == ReceiptStatus.PENDING]
        limit = duty["expense_limit"]
        items = [
            DutyBudgetItem(**i) for i in self.storage.snapshot(self.storage.budget_items)
            if i["duty_id"] == duty_id
        ]
        items.sort(key=lambda i: i.created_at)

        return DutyBudget(
            duty_id=duty_id,
            expense_limit=limit,
            approved_total=approved,
            pending_total=sum((r["amount"] for r in pending), ZERO),
            remaining=max(ZERO, limit - approved) if limit is not None else None,
            over_limit=limit is not None and approved > limit,
            receipt_count=len(receipts),
            pending_count=len(pending),
            estimated_total=sum((i.estimated_amount for i in items), ZERO),
            actual_total=sum((i.actual_amount for i in items if i.actual_amount is not None), ZERO),
            items=items,
        )

    def financial_summary(self, event_id: str) -> FinancialSummary:
        credits, debits = self.ledger.totals(event_id)
        reversals = sum(
            (e.amount for e in self.ledger.entries_for(event_id) if e.category == EntryCategory.CONTRIBUTION_REVERSAL),
            ZERO,
        )
        collected = credits - reversals
        goal = self.storage.event(event_id)["budget_goal"]
        duty_ids = {d["id"] for d in self.storage.snapshot(self.storage.duties) if d["event_id"] == event_id}
        pending_receipts = sum(
            1 for r in self.storage.snapshot(self.storage.receipts)
            if r["duty_id"] in duty_ids and r["status"] == ReceiptStatus.PENDING
        )

        return FinancialSummary(
            event_id=event_id,
            currency=get_settings().currency,
            budget_goal=goal,
            total_assigned=sum(
                (m["assigned_amount"] for m in self.storage.snapshot(self.storage.event_members(event_id))), ZERO
            ),
            collected=collected,
            spent=debits - reversals,
            balance=credits - debits,
            goal_percentage=percent(collected, goal, cap=100),
            pending_contributions=self.pending_actions_count(event_id),
            pending_receipts=pending_receipts,
        )

    def _contributions(self, event_id: str, member_id: Optional[str] = None) -> list[Contribution]:
        return [
            Contribution(**c) for c in self.storage.snapshot(self.storage.contributions)
            if c["event_id"] == event_id and (member_id is None or c["member_id"] == member_id)
        ]

    def _credit_order(self, contribution: Contribution) -> tuple:
        entry = self.ledger.entry_for_source(contribution.id, EntryCategory.CONTRIBUTION)
        if entry is None:
            return (1, contribution.sequence)
        return (0, entry.sequence)

    def _contribution_item(self, contribution: Contribution) -> FeedItem:
        return FeedItem(
            id=contribution.id,
            source="contribution",
            direction=EntryDirection.CREDIT,
            category=EntryCategory.CONTRIBUTION,
            amount=contribution.amount,
            actor=contribution.member_id,
            status=contribution.status.value,
            description=f"Contribution via {contribution.method.value.replace('_', ' ')}",
            timestamp=contribution.created_at,
            method=contribution.method,
            external_reference=contribution.external_reference,
            sequence=contribution.sequence,
        )

    def _entry_item(self, entry: LedgerEntry) -> FeedItem:
        return FeedItem(
            id=entry.id,
            source="ledger",
            direction=entry.direction,
            category=entry.category,
            amount=entry.amount,
            actor=entry.posted_by,
            status="posted",
            description=entry.description,
            timestamp=entry.created_at,
            sequence=entry.sequence,
        )
