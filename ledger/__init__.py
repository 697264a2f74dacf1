"""
Event Fund Ledger

This package provides:
- Contribution tracking: pending → verified / rejected, with a duplicate
  payment-reference guard and optional auto-verification
- Duty expense receipts: pending → approved / rejected, peer votes, and a
  completion gate while receipts are pending
- An append-only ledger that every approval posts to exactly once
- Budget goal and equal-split allocation
- Reconciliation views: unified feed, balances, progress, rank
"""

from .models import (
    Role,
    Actor,
    EntryDirection,
    EntryCategory,
    PaymentMethod,
    PaymentConfig,
    ContributionStatus,
    ReceiptStatus,
    DutyStatus,
    ReviewDecision,
    Contribution,
    LedgerEntry,
    Duty,
    DutyAssignment,
    DutyReceipt,
    LineItem,
)
from .errors import (
    LedgerServiceError,
    LedgerValidationError,
    DuplicateReferenceError,
    InvalidStateTransitionError,
    PendingExpensesExistError,
    UnauthorizedError,
    NoMembersError,
    InvalidVoteError,
    LedgerPostingError,
    NotFoundError,
)
from .service import LedgerService

__all__ = [
    "Role",
    "Actor",
    "EntryDirection",
    "EntryCategory",
    "PaymentMethod",
    "PaymentConfig",
    "ContributionStatus",
    "ReceiptStatus",
    "DutyStatus",
    "ReviewDecision",
    "Contribution",
    "LedgerEntry",
    "Duty",
    "DutyAssignment",
    "DutyReceipt",
    "LineItem",
    "LedgerServiceError",
    "LedgerValidationError",
    "DuplicateReferenceError",
    "InvalidStateTransitionError",
    "PendingExpensesExistError",
    "UnauthorizedError",
    "NoMembersError",
    "InvalidVoteError",
    "LedgerPostingError",
    "NotFoundError",
    "LedgerService",
]
