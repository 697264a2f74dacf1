from decimal import Decimal
from typing import Any, Optional
from uuid import UUID


class LedgerServiceError(Exception):
    code = "ledger_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            **{key: _plain(value) for key, value in self.context.items()},
        }


def _plain(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class LedgerValidationError(LedgerServiceError):
    code = "validation_error"

    def __init__(self, field: str, message: str, **context: Any):
        super().__init__(message, field=field, **context)
        self.field = field


class DuplicateReferenceError(LedgerServiceError):
    code = "duplicate_reference"

    def __init__(self, event_id: str, reference: str, existing_id: UUID):
        super().__init__(
            f"Payment reference '{reference}' was already submitted for this event",
            event_id=event_id,
            reference=reference,
            existing_contribution_id=existing_id,
        )
        self.reference = reference
        self.existing_id = existing_id


class InvalidStateTransitionError(LedgerServiceError):
    code = "invalid_state_transition"

    def __init__(self, entity: str, entity_id: UUID, current: str, attempted: str):
        super().__init__(
            f"Cannot {attempted} {entity} {entity_id} in {current} state",
            entity=entity,
            entity_id=entity_id,
            current_status=current,
            attempted=attempted,
        )
        self.current = current


class PendingExpensesExistError(LedgerServiceError):
    code = "pending_expenses_exist"

    def __init__(self, duty_id: UUID, pending_count: int):
        super().__init__(
            f"Duty {duty_id} still has {pending_count} pending receipt(s)",
            duty_id=duty_id,
            pending_count=pending_count,
        )
        self.pending_count = pending_count


class UnauthorizedError(LedgerServiceError):
    code = "unauthorized"

    def __init__(self, operation: str, caller_id: Optional[str]):
        super().__init__(
            f"Admin access required to {operation}",
            operation=operation,
            caller_id=caller_id,
        )


class NoMembersError(LedgerServiceError):
    code = "no_members"

    def __init__(self, event_id: str):
        super().__init__(f"Event {event_id} has no members to distribute across", event_id=event_id)


class InvalidVoteError(LedgerServiceError):
    code = "invalid_vote"


class LedgerPostingError(LedgerServiceError):
    code = "ledger_unavailable"


class NotFoundError(LedgerServiceError):
    code = "not_found"
    entity = "record"

    def __init__(self, entity_id: Any):
        super().__init__(f"{self.entity.capitalize()} {entity_id} not found", entity=self.entity, entity_id=entity_id)


class ContributionNotFoundError(NotFoundError):
    entity = "contribution"


class DutyNotFoundError(NotFoundError):
    entity = "duty"


class AssignmentNotFoundError(NotFoundError):
    entity = "assignment"


class ReceiptNotFoundError(NotFoundError):
    entity = "receipt"


class BudgetItemNotFoundError(NotFoundError):
    entity = "budget item"
