from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID, uuid4

from notifications import Notification, NotificationDispatcher, NotificationType

from .errors import (
    AssignmentNotFoundError,
    BudgetItemNotFoundError,
    DutyNotFoundError,
    InvalidStateTransitionError,
    InvalidVoteError,
    LedgerValidationError,
    PendingExpensesExistError,
    ReceiptNotFoundError,
)
from .guards import clean_text, require_admin, require_non_negative, require_positive
from .logging_utils import audit, get_logger
from .models import (
    Actor,
    Duty,
    DutyAssignment,
    DutyBudgetItem,
    DutyReceipt,
    DutyStatus,
    EntryCategory,
    EntryDirection,
    ExpenseLimitWarning,
    LineItem,
    ReceiptResponse,
    ReceiptStatus,
    ReceiptSubmission,
    ReceiptVote,
    ReviewDecision,
    VoteResult,
)
from .storage import InMemoryStorage
from .store import LedgerStore

LOGGER = get_logger(__name__)


class DutyWorkflow:
    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: LedgerStore,
        notifier: NotificationDispatcher,
    ):
        self.storage = storage
        self.ledger = ledger
        self.notifier = notifier

    def create_duty(
        self,
        event_id: str,
        actor: Actor,
        title: str,
        description: str = "",
        expense_limit: Optional[Decimal] = None,
        deadline: Optional[datetime] = None,
    ) -> Duty:
        require_admin(actor, "create duties")
        title = clean_text(title)
        if title is None:
            raise LedgerValidationError("title", "Duty title is required")
        if expense_limit is not None:
            expense_limit = require_non_negative(expense_limit, "expense_limit")

        duty_id = uuid4()
        duty_data = {
            "id": duty_id,
            "event_id": event_id,
            "title": title,
            "description": description or "",
            "expense_limit": expense_limit,
            "deadline": deadline,
            "status": DutyStatus.OPEN,
            "created_by": actor.caller_id,
            "created_at": self.storage.now(),
            "completed_at": None,
        }
        self.storage.duties[duty_id] = duty_data

        audit("create_duty", actor.caller_id, "duty", duty_id, title=title)
        return Duty(**duty_data)

    def assign_duty(self, duty_id: UUID, actor: Actor, member_ids: Iterable[str]) -> list[DutyAssignment]:
        require_admin(actor, "assign duties")
        duty = self.get_duty(duty_id)

        created = []
        with self.storage.lock_for("duty", duty_id):
            for member_id in dict.fromkeys(member_ids):
                if (duty_id, member_id) in self.storage.assignment_index:
                    continue
                assignment_data = {
                    "id": uuid4(),
                    "duty_id": duty_id,
                    "member_id": member_id,
                    "assigned_by": actor.caller_id,
                    "assigned_at": self.storage.now(),
                }
                self.storage.assignments[assignment_data["id"]] = assignment_data
                self.storage.assignment_index[(duty_id, member_id)] = assignment_data["id"]
                created.append(DutyAssignment(**assignment_data))

        if created:
            audit(
                "assign_duty", actor.caller_id, "duty", duty_id,
                assigned_member_ids=",".join(a.member_id for a in created),
            )
        for assignment in created:
            self.notifier.dispatch(Notification(
                type=NotificationType.DUTY_ASSIGNED,
                recipient_id=assignment.member_id,
                event_id=duty.event_id,
                title="New Duty Assigned",
                message=f"You have been assigned to duty: {duty.title}",
                link=f"/dashboard/{duty.event_id}/duties/{duty_id}",
                metadata={"duty_id": str(duty_id)},
            ))
        return self.list_assignments(duty_id)

    def submit_receipt(
        self,
        assignment_id: UUID,
        actor: Actor,
        amount: Decimal,
        line_items: Optional[list[LineItem]] = None,
        evidence_refs: Iterable[str] = (),
        notes: Optional[str] = None,
    ) -> ReceiptSubmission:
        amount = require_positive(amount)
        if line_items is not None:
            line_items = [LineItem.model_validate(item) for item in line_items]
            items_total = sum((item.amount for item in line_items), Decimal("0"))
            if items_total != amount:
                raise LedgerValidationError(
                    "line_items",
                    f"Line items add up to {items_total} but the receipt amount is {amount}",
                    items_total=items_total,
                    amount=amount,
                )

        assignment = self.get_assignment(assignment_id)
        receipt_id = uuid4()

        # completion takes the same lock, so no receipt lands on a closed duty
        with self.storage.lock_for("duty", assignment.duty_id):
            duty = self.get_duty(assignment.duty_id)
            if duty.status == DutyStatus.COMPLETED:
                raise InvalidStateTransitionError("duty", duty.id, duty.status.value, "submit receipts to")

            receipt_data = {
                "id": receipt_id,
                "assignment_id": assignment_id,
                "duty_id": duty.id,
                "uploader_id": actor.caller_id,
                "amount": amount,
                "line_items": [item.model_dump() for item in line_items] if line_items is not None else None,
                "evidence_refs": list(evidence_refs),
                "notes": clean_text(notes),
                "status": ReceiptStatus.PENDING,
                "admin_notes": None,
                "reviewed_by": None,
                "reviewed_at": None,
                "created_at": self.storage.now(),
                "sequence": self.storage.next_sequence(),
            }
            self.storage.receipts[receipt_id] = receipt_data

        warnings = []
        if duty.expense_limit is not None:
            approved_total = self._receipt_total(duty.id, ReceiptStatus.APPROVED)
            projected = approved_total + amount
            if projected > duty.expense_limit:
                warnings.append(ExpenseLimitWarning(
                    duty_id=duty.id,
                    expense_limit=duty.expense_limit,
                    approved_total=approved_total,
                    projected_total=projected,
                    overage=projected - duty.expense_limit,
                    message=f"Approving this receipt would exceed the duty's expense limit of {duty.expense_limit}",
                ))
                LOGGER.warning(
                    "Receipt %s would take duty %s to %s over its limit of %s",
                    receipt_id, duty.id, projected, duty.expense_limit,
                )

        LOGGER.info("Receipt %s for %s submitted on duty %s by %s", receipt_id, amount, duty.id, actor.caller_id)
        return ReceiptSubmission(receipt=DutyReceipt(**receipt_data), warnings=warnings)

    def review_receipt(
        self,
        receipt_id: UUID,
        actor: Actor,
        decision: ReviewDecision,
        reason: Optional[str] = None,
    ) -> ReceiptResponse:
        require_admin(actor, "review receipts")
        reason = clean_text(reason)
        if decision == ReviewDecision.REJECT and reason is None:
            raise LedgerValidationError("reason", "A reason is required when rejecting a receipt")

        self.get_receipt(receipt_id)
        with self.storage.lock_for("receipt", receipt_id):
            receipt = self.get_receipt(receipt_id)
            target = ReceiptStatus.APPROVED if decision == ReviewDecision.APPROVE else ReceiptStatus.REJECTED

            if receipt.status == target:
                return ReceiptResponse(
                    receipt=receipt,
                    ledger_entry=self.ledger.entry_for_source(receipt_id, EntryCategory.DUTY_EXPENSE),
                    already_processed=True,
                    message=f"Receipt already {target.value} (idempotent return)",
                )
            if receipt.status != ReceiptStatus.PENDING:
                raise InvalidStateTransitionError("receipt", receipt_id, receipt.status.value, decision.value)

            changes = {
                "status": target,
                "admin_notes": reason,
                "reviewed_by": actor.caller_id,
                "reviewed_at": self.storage.now(),
            }
            ledger_entry = None
            if target == ReceiptStatus.APPROVED:
                duty = self.get_duty(receipt.duty_id)
                ledger_entry = self.ledger.post(
                    duty.event_id,
                    EntryDirection.DEBIT,
                    EntryCategory.DUTY_EXPENSE,
                    receipt.amount,
                    description=f"Expense for duty: {duty.title}",
                    source_ref=receipt_id,
                    posted_by=actor.caller_id,
                    alongside=lambda: self._replace_receipt(receipt_id, changes),
                )
            else:
                self._replace_receipt(receipt_id, changes)

        receipt = self.get_receipt(receipt_id)
        duty = self.get_duty(receipt.duty_id)
        audit(f"{decision.value}_receipt", actor.caller_id, "receipt", receipt_id, amount=receipt.amount, reason=reason)
        self._notify_review(receipt, duty)

        return ReceiptResponse(
            receipt=receipt,
            ledger_entry=ledger_entry,
            message=f"Receipt {target.value} successfully",
        )

    def vote(self, receipt_id: UUID, actor: Actor) -> VoteResult:
        receipt = self.get_receipt(receipt_id)
        if receipt.uploader_id == actor.caller_id:
            raise InvalidVoteError(
                "You cannot vote on your own receipt",
                receipt_id=receipt_id,
                voter_id=actor.caller_id,
            )

        key = (receipt_id, actor.caller_id)
        with self.storage.lock_for("votes", receipt_id):
            if self.storage.receipt_votes.pop(key, None) is not None:
                voted = False
            else:
                self.storage.receipt_votes[key] = {
                    "receipt_id": receipt_id,
                    "voter_id": actor.caller_id,
                    "created_at": self.storage.now(),
                }
                voted = True

        return VoteResult(receipt_id=receipt_id, voted=voted, vote_count=len(self.votes_for(receipt_id)))

    def complete_duty(self, duty_id: UUID, actor: Actor) -> Duty:
        require_admin(actor, "complete duties")

        self.get_duty(duty_id)
        with self.storage.lock_for("duty", duty_id):
            duty = self.get_duty(duty_id)
            if duty.status == DutyStatus.COMPLETED:
                return duty

            pending = [r for r in self.list_receipts(duty_id) if r.status == ReceiptStatus.PENDING]
            if pending:
                raise PendingExpensesExistError(duty_id, len(pending))

            current = self.storage.duties[duty_id]
            self.storage.duties[duty_id] = {
                **current,
                "status": DutyStatus.COMPLETED,
                "completed_at": self.storage.now(),
            }

        audit("complete_duty", actor.caller_id, "duty", duty_id)
        return self.get_duty(duty_id)

    def add_budget_item(
        self,
        duty_id: UUID,
        actor: Actor,
        category: str,
        estimated_amount: Decimal,
        description: str = "",
        vendor: Optional[str] = None,
    ) -> DutyBudgetItem:
        require_admin(actor, "plan duty budgets")
        category = clean_text(category)
        if category is None:
            raise LedgerValidationError("category", "Budget item category is required")
        estimated_amount = require_non_negative(estimated_amount, "estimated_amount")
        duty = self.get_duty(duty_id)

        item_data = {
            "id": uuid4(),
            "duty_id": duty.id,
            "category": category,
            "description": description or "",
            "estimated_amount": estimated_amount,
            "actual_amount": None,
            "vendor": clean_text(vendor),
            "notes": None,
            "created_by": actor.caller_id,
            "created_at": self.storage.now(),
            "updated_at": None,
        }
        self.storage.budget_items[item_data["id"]] = item_data

        audit(
            "add_budget_item", actor.caller_id, "duty", duty.id,
            item_id=item_data["id"], category=category, estimated_amount=estimated_amount,
        )
        return DutyBudgetItem(**item_data)

    def update_budget_item(
        self,
        item_id: UUID,
        actor: Actor,
        actual_amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> DutyBudgetItem:
        require_admin(actor, "plan duty budgets")
        if actual_amount is not None:
            actual_amount = require_non_negative(actual_amount, "actual_amount")

        self.get_budget_item(item_id)
        with self.storage.lock_for("budget_item", item_id):
            # deleted while we waited
            self.get_budget_item(item_id)
            changes = {"updated_at": self.storage.now()}
            if actual_amount is not None:
                changes["actual_amount"] = actual_amount
            if notes is not None:
                changes["notes"] = clean_text(notes)
            self.storage.budget_items[item_id] = {**self.storage.budget_items[item_id], **changes}

        audit("update_budget_item", actor.caller_id, "budget_item", item_id, actual_amount=actual_amount)
        return self.get_budget_item(item_id)

    def delete_budget_item(self, item_id: UUID, actor: Actor) -> DutyBudgetItem:
        require_admin(actor, "plan duty budgets")

        self.get_budget_item(item_id)
        with self.storage.lock_for("budget_item", item_id):
            item = self.get_budget_item(item_id)
            del self.storage.budget_items[item_id]

        audit("delete_budget_item", actor.caller_id, "budget_item", item_id, duty_id=item.duty_id)
        return item

    def get_budget_item(self, item_id: UUID) -> DutyBudgetItem:
        item_data = self.storage.budget_items.get(item_id)
        if not item_data:
            raise BudgetItemNotFoundError(item_id)
        return DutyBudgetItem(**item_data)

    def list_budget_items(self, duty_id: UUID) -> list[DutyBudgetItem]:
        items = [
            DutyBudgetItem(**i) for i in self.storage.snapshot(self.storage.budget_items)
            if i["duty_id"] == duty_id
        ]
        items.sort(key=lambda i: i.created_at)
        return items

    def get_duty(self, duty_id: UUID) -> Duty:
        duty_data = self.storage.duties.get(duty_id)
        if not duty_data:
            raise DutyNotFoundError(duty_id)
        return Duty(**duty_data)

    def list_duties(self, event_id: str) -> list[Duty]:
        duties = [Duty(**d) for d in self.storage.snapshot(self.storage.duties) if d["event_id"] == event_id]
        duties.sort(key=lambda d: d.created_at, reverse=True)
        return duties

    def get_assignment(self, assignment_id: UUID) -> DutyAssignment:
        assignment_data = self.storage.assignments.get(assignment_id)
        if not assignment_data:
            raise AssignmentNotFoundError(assignment_id)
        return DutyAssignment(**assignment_data)

    def list_assignments(self, duty_id: UUID) -> list[DutyAssignment]:
        assignments = [
            DutyAssignment(**a) for a in self.storage.snapshot(self.storage.assignments)
            if a["duty_id"] == duty_id
        ]
        assignments.sort(key=lambda a: a.assigned_at)
        return assignments

    def get_receipt(self, receipt_id: UUID) -> DutyReceipt:
        receipt_data = self.storage.receipts.get(receipt_id)
        if not receipt_data:
            raise ReceiptNotFoundError(receipt_id)
        return DutyReceipt(**receipt_data)

    def list_receipts(self, duty_id: UUID, status: Optional[ReceiptStatus] = None) -> list[DutyReceipt]:
        assignment_ids = {a.id for a in self.list_assignments(duty_id)}
        receipts = [
            DutyReceipt(**r) for r in self.storage.snapshot(self.storage.receipts)
            if r["assignment_id"] in assignment_ids and (status is None or r["status"] == status)
        ]
        receipts.sort(key=lambda r: r.sequence)
        return receipts

    def votes_for(self, receipt_id: UUID) -> list[ReceiptVote]:
        return [
            ReceiptVote(**v) for v in self.storage.snapshot(self.storage.receipt_votes)
            if v["receipt_id"] == receipt_id
        ]

    def _receipt_total(self, duty_id: UUID, status: ReceiptStatus) -> Decimal:
        return sum((r.amount for r in self.list_receipts(duty_id, status)), Decimal("0"))

    def _replace_receipt(self, receipt_id: UUID, changes: dict) -> None:
        current = self.storage.receipts[receipt_id]
        self.storage.receipts[receipt_id] = {**current, **changes}

    def _notify_review(self, receipt: DutyReceipt, duty: Duty) -> None:
        approved = receipt.status == ReceiptStatus.APPROVED
        message = f"Your expense claim for {duty.title} was {receipt.status.value}."
        if receipt.admin_notes and not approved:
            message += f" Reason: {receipt.admin_notes}"
        self.notifier.dispatch(Notification(
            type=NotificationType.RECEIPT_APPROVED if approved else NotificationType.RECEIPT_REJECTED,
            recipient_id=receipt.uploader_id,
            event_id=duty.event_id,
            title=f"Expense {'Approved' if approved else 'Rejected'}",
            message=message,
            link=f"/dashboard/{duty.event_id}/duties/{duty.id}",
            metadata={"receipt_id": str(receipt.id), "duty_id": str(duty.id)},
        ))
