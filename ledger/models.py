from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class Role(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class EntryDirection(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class EntryCategory(str, Enum):
    CONTRIBUTION = "contribution"
    DUTY_EXPENSE = "duty_expense"
    CONTRIBUTION_REVERSAL = "contribution_reversal"


class PaymentMethod(str, Enum):
    UPI = "upi"
    CARD = "card"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class ContributionStatus(str, Enum):
    PENDING = "pending"
    PAID_PENDING_ADMIN_VERIFICATION = "paid_pending_admin_verification"
    VERIFIED = "verified"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def from_str(cls, value: str) -> "ContributionStatus":
        if isinstance(value, cls):
            return value
        normalised = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        normalised = _CONTRIBUTION_STATUS_SYNONYMS.get(normalised, normalised)
        try:
            return cls(normalised)
        except ValueError as error:
            raise ValueError(f"Unsupported contribution status: {value}") from error

    @property
    def is_pending(self) -> bool:
        return self in (ContributionStatus.PENDING, ContributionStatus.PAID_PENDING_ADMIN_VERIFICATION)

    @property
    def is_credited(self) -> bool:
        return self in (ContributionStatus.VERIFIED, ContributionStatus.APPROVED)

    @property
    def counts_toward_progress(self) -> bool:
        return self.is_credited or self == ContributionStatus.PAID_PENDING_ADMIN_VERIFICATION


_CONTRIBUTION_STATUS_SYNONYMS = {
    "awaiting_verification": "paid_pending_admin_verification",
    "paid_pending": "paid_pending_admin_verification",
    "confirmed": "verified",
    "receipt_issued": "approved",
    "declined": "rejected",
}


class ReceiptStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DutyStatus(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class Actor(BaseModel):
    caller_id: str
    role: Role = Role.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class PaymentConfig(BaseModel):
    auto_verify: bool = False
    auto_verify_methods: list[PaymentMethod] = Field(default_factory=list)
    confirmation_required_methods: list[PaymentMethod] = Field(default_factory=list)

    def needs_admin_confirmation(self, method: PaymentMethod) -> bool:
        return method in self.confirmation_required_methods

    def can_auto_verify(self, method: PaymentMethod) -> bool:
        return (
            self.auto_verify
            and method in self.auto_verify_methods
            and not self.needs_admin_confirmation(method)
        )


class PaymentConfigUpdate(BaseModel):
    auto_verify: Optional[bool] = None
    auto_verify_methods: Optional[list[PaymentMethod]] = None
    confirmation_required_methods: Optional[list[PaymentMethod]] = None


# Requests

class SubmitContributionRequest(BaseModel):
    amount: Decimal
    method: PaymentMethod
    external_reference: Optional[str] = Field(default=None, description="UPI/bank transaction id")
    evidence_refs: list[str] = Field(default_factory=list)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": "500.00",
            "method": "upi",
            "external_reference": "UPI-4821-9911",
            "evidence_refs": ["receipts/event-1/member-7/1718000000.png"]
        }
    })


class RejectContributionRequest(BaseModel):
    reason: str = Field(default="", description="Reason shown to the member")


class CreateDutyRequest(BaseModel):
    title: str
    description: str = ""
    expense_limit: Optional[Decimal] = None
    deadline: Optional[datetime] = None


class AssignDutyRequest(BaseModel):
    member_ids: list[str]


class LineItem(BaseModel):
    description: str
    amount: Decimal = Field(gt=0)


class SubmitReceiptRequest(BaseModel):
    amount: Decimal
    line_items: Optional[list[LineItem]] = None
    evidence_refs: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class ReviewReceiptRequest(BaseModel):
    decision: ReviewDecision
    reason: Optional[str] = None


class SetGoalRequest(BaseModel):
    amount: Decimal


class DistributeRequest(BaseModel):
    total_amount: Decimal


class AssignAmountRequest(BaseModel):
    amount: Decimal


class AddBudgetItemRequest(BaseModel):
    category: str
    description: str = ""
    estimated_amount: Decimal
    vendor: Optional[str] = None


class UpdateBudgetItemRequest(BaseModel):
    actual_amount: Optional[Decimal] = None
    notes: Optional[str] = None


# Entities

class Contribution(BaseModel):
    id: UUID
    event_id: str
    member_id: str
    amount: Decimal
    method: PaymentMethod
    external_reference: Optional[str] = None
    evidence_refs: list[str] = Field(default_factory=list)
    status: ContributionStatus
    verified_by: Optional[str] = None
    auto_verified: bool = False
    rejection_reason: Optional[str] = None
    receipt_number: Optional[str] = None
    created_at: datetime
    verified_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    sequence: int

    model_config = ConfigDict(from_attributes=True)


class LedgerEntry(BaseModel):
    id: UUID
    event_id: str
    direction: EntryDirection
    category: EntryCategory
    amount: Decimal
    source_ref: Optional[UUID] = None
    reference_entry_id: Optional[UUID] = None
    posted_by: Optional[str] = None
    description: str
    created_at: datetime
    sequence: int

    model_config = ConfigDict(from_attributes=True)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == EntryDirection.CREDIT else -self.amount


class Duty(BaseModel):
    id: UUID
    event_id: str
    title: str
    description: str = ""
    expense_limit: Optional[Decimal] = None
    deadline: Optional[datetime] = None
    status: DutyStatus
    created_by: str
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DutyAssignment(BaseModel):
    id: UUID
    duty_id: UUID
    member_id: str
    assigned_by: Optional[str] = None
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DutyReceipt(BaseModel):
    id: UUID
    assignment_id: UUID
    duty_id: UUID
    uploader_id: str
    amount: Decimal
    line_items: Optional[list[LineItem]] = None
    evidence_refs: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    status: ReceiptStatus
    admin_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    sequence: int

    model_config = ConfigDict(from_attributes=True)


class DutyBudgetItem(BaseModel):
    """Planned spend line for a duty. Planning only; never posted to the ledger."""

    id: UUID
    duty_id: UUID
    category: str
    description: str = ""
    estimated_amount: Decimal
    actual_amount: Optional[Decimal] = None
    vendor: Optional[str] = None
    notes: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReceiptVote(BaseModel):
    receipt_id: UUID
    voter_id: str
    created_at: datetime


class MemberAllocation(BaseModel):
    member_id: str
    assigned_amount: Decimal = Decimal("0")


# Responses

class ContributionResponse(BaseModel):
    contribution: Contribution
    ledger_entry: Optional[LedgerEntry] = None
    already_processed: bool = False
    message: str


class ExpenseLimitWarning(BaseModel):
    duty_id: UUID
    expense_limit: Decimal
    approved_total: Decimal
    projected_total: Decimal
    overage: Decimal
    message: str


class ReceiptSubmission(BaseModel):
    receipt: DutyReceipt
    warnings: list[ExpenseLimitWarning] = Field(default_factory=list)


class ReceiptResponse(BaseModel):
    receipt: DutyReceipt
    ledger_entry: Optional[LedgerEntry] = None
    already_processed: bool = False
    message: str


class VoteResult(BaseModel):
    receipt_id: UUID
    voted: bool
    vote_count: int


class Distribution(BaseModel):
    event_id: str
    member_count: int
    share: Decimal
    total_assigned: Decimal
    budget_goal: Decimal


class BudgetDetails(BaseModel):
    event_id: str
    budget_goal: Decimal
    total_assigned: Decimal
    members: list[MemberAllocation]


class EventBalance(BaseModel):
    event_id: str
    currency: str
    total_credits: Decimal
    total_debits: Decimal
    balance: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    event_id: str
    entries: list[LedgerEntry]
    total_count: int
    current_balance: Decimal


class FeedItem(BaseModel):
    id: UUID
    source: str
    direction: EntryDirection
    category: EntryCategory
    amount: Decimal
    actor: Optional[str] = None
    status: str
    description: str
    timestamp: datetime
    method: Optional[PaymentMethod] = None
    external_reference: Optional[str] = None
    sequence: int


class MemberProgress(BaseModel):
    event_id: str
    member_id: str
    assigned: Decimal
    paid: Decimal
    remaining: Decimal
    percentage: int


class LeaderboardEntry(BaseModel):
    member_id: str
    total: Decimal
    rank: int


class MemberRank(BaseModel):
    member_id: str
    rank: int
    percentile: int
    total_members: int


class QuickStats(BaseModel):
    total: int
    pending: int
    verified: int


class DutyBudget(BaseModel):
    duty_id: UUID
    expense_limit: Optional[Decimal] = None
    approved_total: Decimal
    pending_total: Decimal
    remaining: Optional[Decimal] = None
    over_limit: bool
    receipt_count: int
    pending_count: int
    estimated_total: Decimal = Decimal("0")
    actual_total: Decimal = Decimal("0")
    items: list[DutyBudgetItem] = Field(default_factory=list)


class FinancialSummary(BaseModel):
    event_id: str
    currency: str
    budget_goal: Decimal
    total_assigned: Decimal
    collected: Decimal
    spent: Decimal
    balance: Decimal
    goal_percentage: int
    pending_contributions: int
    pending_receipts: int
