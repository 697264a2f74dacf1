from typing import Iterable, Optional
from uuid import UUID

from notifications import NotificationDispatcher

from .budget import BudgetAllocator
from .config import LedgerSettings, get_settings
from .contributions import ContributionTracker
from .duties import DutyWorkflow
from .guards import require_admin
from .logging_utils import audit
from .models import (
    Actor,
    AddBudgetItemRequest,
    AssignAmountRequest,
    AssignDutyRequest,
    BudgetDetails,
    Contribution,
    ContributionResponse,
    ContributionStatus,
    CreateDutyRequest,
    Distribution,
    DistributeRequest,
    Duty,
    DutyAssignment,
    DutyBudget,
    DutyBudgetItem,
    DutyReceipt,
    EventBalance,
    FeedItem,
    FinancialSummary,
    LeaderboardEntry,
    LedgerHistoryResponse,
    MemberAllocation,
    MemberProgress,
    MemberRank,
    PaymentConfig,
    PaymentConfigUpdate,
    QuickStats,
    ReceiptResponse,
    ReceiptSubmission,
    RejectContributionRequest,
    ReviewReceiptRequest,
    SetGoalRequest,
    SubmitContributionRequest,
    SubmitReceiptRequest,
    UpdateBudgetItemRequest,
    VoteResult,
)
from .reconciliation import ReconciliationView
from .storage import InMemoryStorage
from .store import LedgerStore


class LedgerService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        notifier: Optional[NotificationDispatcher] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or get_settings()
        self.notifier = notifier or NotificationDispatcher(history_size=self.settings.notification_history_size)
        self.ledger = LedgerStore(self.storage)
        self.contributions = ContributionTracker(self.storage, self.ledger, self.notifier)
        self.duties = DutyWorkflow(self.storage, self.ledger, self.notifier)
        self.budget = BudgetAllocator(self.storage)
        self.view = ReconciliationView(self.storage, self.ledger)

    # Payment configuration

    def get_payment_config(self, event_id: str) -> PaymentConfig:
        stored = self.storage.event(event_id)["payment_config"]
        if stored is None:
            return PaymentConfig(
                auto_verify=self.settings.default_auto_verify,
                auto_verify_methods=list(self.settings.default_auto_verify_methods),
                confirmation_required_methods=list(self.settings.default_confirmation_required_methods),
            )
        return PaymentConfig(**stored)

    def update_payment_config(self, event_id: str, actor: Actor, update: PaymentConfigUpdate) -> PaymentConfig:
        require_admin(actor, "change payment settings")
        with self.storage.lock_for("payment_config", event_id):
            merged = self.get_payment_config(event_id).model_copy(update=update.model_dump(exclude_none=True))
            self.storage.event(event_id)["payment_config"] = merged.model_dump()

        audit(
            "update_payment_config", actor.caller_id, "event", event_id,
            auto_verify=merged.auto_verify,
            auto_verify_methods=",".join(m.value for m in merged.auto_verify_methods),
        )
        return merged

    # Contributions

    def submit_contribution(
        self, event_id: str, actor: Actor, request: SubmitContributionRequest
    ) -> ContributionResponse:
        # read once; a config change mid-call does not affect this submission
        config = self.get_payment_config(event_id)
        return self.contributions.submit(
            event_id,
            actor,
            amount=request.amount,
            method=request.method,
            config=config,
            external_reference=request.external_reference,
            evidence_refs=request.evidence_refs,
        )

    def approve_contribution(self, contribution_id: UUID, actor: Actor) -> ContributionResponse:
        return self.contributions.approve(contribution_id, actor)

    def reject_contribution(
        self, contribution_id: UUID, actor: Actor, request: Optional[RejectContributionRequest] = None
    ) -> ContributionResponse:
        reason = request.reason if request else ""
        return self.contributions.reject(contribution_id, actor, reason)

    def issue_contribution_receipt(self, contribution_id: UUID, actor: Actor) -> ContributionResponse:
        return self.contributions.issue_receipt(contribution_id, actor)

    def get_contribution(self, contribution_id: UUID) -> Contribution:
        return self.contributions.get_contribution(contribution_id)

    def list_contributions(
        self,
        event_id: str,
        member_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[Contribution]:
        wanted = [ContributionStatus.from_str(s) for s in statuses] if statuses else None
        return self.contributions.list_contributions(event_id, member_id, wanted)

    def pending_contributions(self, event_id: str, actor: Actor) -> list[Contribution]:
        require_admin(actor, "view the verification queue")
        return self.contributions.pending_queue(event_id)

    # Duties

    def create_duty(self, event_id: str, actor: Actor, request: CreateDutyRequest) -> Duty:
        return self.duties.create_duty(
            event_id,
            actor,
            title=request.title,
            description=request.description,
            expense_limit=request.expense_limit,
            deadline=request.deadline,
        )

    def assign_duty(self, duty_id: UUID, actor: Actor, request: AssignDutyRequest) -> list[DutyAssignment]:
        return self.duties.assign_duty(duty_id, actor, request.member_ids)

    def submit_receipt(self, assignment_id: UUID, actor: Actor, request: SubmitReceiptRequest) -> ReceiptSubmission:
        return self.duties.submit_receipt(
            assignment_id,
            actor,
            amount=request.amount,
            line_items=request.line_items,
            evidence_refs=request.evidence_refs,
            notes=request.notes,
        )

    def review_receipt(self, receipt_id: UUID, actor: Actor, request: ReviewReceiptRequest) -> ReceiptResponse:
        return self.duties.review_receipt(receipt_id, actor, request.decision, request.reason)

    def vote_on_receipt(self, receipt_id: UUID, actor: Actor) -> VoteResult:
        return self.duties.vote(receipt_id, actor)

    def complete_duty(self, duty_id: UUID, actor: Actor) -> Duty:
        return self.duties.complete_duty(duty_id, actor)

    def add_duty_budget_item(self, duty_id: UUID, actor: Actor, request: AddBudgetItemRequest) -> DutyBudgetItem:
        return self.duties.add_budget_item(
            duty_id,
            actor,
            category=request.category,
            estimated_amount=request.estimated_amount,
            description=request.description,
            vendor=request.vendor,
        )

    def update_duty_budget_item(
        self, item_id: UUID, actor: Actor, request: UpdateBudgetItemRequest
    ) -> DutyBudgetItem:
        return self.duties.update_budget_item(item_id, actor, request.actual_amount, request.notes)

    def delete_duty_budget_item(self, item_id: UUID, actor: Actor) -> DutyBudgetItem:
        return self.duties.delete_budget_item(item_id, actor)

    def list_duty_budget_items(self, duty_id: UUID) -> list[DutyBudgetItem]:
        self.duties.get_duty(duty_id)
        return self.duties.list_budget_items(duty_id)

    def get_duty(self, duty_id: UUID) -> Duty:
        return self.duties.get_duty(duty_id)

    def list_duties(self, event_id: str) -> list[Duty]:
        return self.duties.list_duties(event_id)

    def list_assignments(self, duty_id: UUID) -> list[DutyAssignment]:
        self.duties.get_duty(duty_id)
        return self.duties.list_assignments(duty_id)

    def list_receipts(self, duty_id: UUID) -> list[DutyReceipt]:
        self.duties.get_duty(duty_id)
        return self.duties.list_receipts(duty_id)

    # Budget

    def register_member(self, event_id: str, actor: Actor, member_id: str) -> MemberAllocation:
        return self.budget.register_member(event_id, actor, member_id)

    def set_budget_goal(self, event_id: str, actor: Actor, request: SetGoalRequest) -> BudgetDetails:
        return self.budget.set_goal(event_id, actor, request.amount)

    def distribute_budget_equally(self, event_id: str, actor: Actor, request: DistributeRequest) -> Distribution:
        return self.budget.distribute_equally(event_id, actor, request.total_amount)

    def assign_member_amount(
        self, event_id: str, member_id: str, actor: Actor, request: AssignAmountRequest
    ) -> MemberAllocation:
        return self.budget.assign_individual(event_id, actor, member_id, request.amount)

    def get_budget_details(self, event_id: str) -> BudgetDetails:
        return self.budget.budget_details(event_id)

    # Ledger and reconciliation

    def get_balance(self, event_id: str) -> EventBalance:
        return self.ledger.balance(event_id)

    def get_ledger_history(self, event_id: str, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.ledger.history(event_id, limit, offset)

    def unified_feed(self, event_id: str, actor: Actor, limit: Optional[int] = None, offset: int = 0) -> list[FeedItem]:
        require_admin(actor, "view the transaction feed")
        return self.view.unified_feed(event_id, limit, offset)

    def progress_for(self, event_id: str, member_id: str) -> MemberProgress:
        return self.view.progress_for(event_id, member_id)

    def rank_for(self, event_id: str, member_id: str) -> Optional[MemberRank]:
        return self.view.rank_for(event_id, member_id)

    def leaderboard(self, event_id: str) -> list[LeaderboardEntry]:
        return self.view.leaderboard(event_id)

    def quick_stats(self, event_id: str, member_id: str) -> QuickStats:
        return self.view.quick_stats(event_id, member_id)

    def pending_actions_count(self, event_id: str) -> int:
        return self.view.pending_actions_count(event_id)

    def duty_budget(self, duty_id: UUID) -> DutyBudget:
        return self.view.duty_budget(duty_id)

    def financial_summary(self, event_id: str) -> FinancialSummary:
        return self.view.financial_summary(event_id)
