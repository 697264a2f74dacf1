from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID, uuid4

from notifications import Notification, NotificationDispatcher, NotificationType

from .errors import (
    ContributionNotFoundError,
    DuplicateReferenceError,
    InvalidStateTransitionError,
    LedgerPostingError,
)
from .guards import clean_text, require_admin, require_positive
from .logging_utils import audit, get_logger
from .models import (
    Actor,
    Contribution,
    ContributionResponse,
    ContributionStatus,
    EntryCategory,
    EntryDirection,
    PaymentConfig,
    PaymentMethod,
)
from .storage import InMemoryStorage
from .store import LedgerStore

LOGGER = get_logger(__name__)


class ContributionTracker:
    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: LedgerStore,
        notifier: NotificationDispatcher,
    ):
        self.storage = storage
        self.ledger = ledger
        self.notifier = notifier

    def submit(
        self,
        event_id: str,
        actor: Actor,
        amount: Decimal,
        method: PaymentMethod,
        config: PaymentConfig,
        external_reference: Optional[str] = None,
        evidence_refs: Iterable[str] = (),
    ) -> ContributionResponse:
        amount = require_positive(amount)
        reference = clean_text(external_reference)
        auto_verify = config.can_auto_verify(method)
        initial_status = (
            ContributionStatus.PAID_PENDING_ADMIN_VERIFICATION
            if config.needs_admin_confirmation(method)
            else ContributionStatus.PENDING
        )

        contribution_id = uuid4()
        contribution_data = {
            "id": contribution_id,
            "event_id": event_id,
            "member_id": actor.caller_id,
            "amount": amount,
            "method": method,
            "external_reference": reference,
            "evidence_refs": list(evidence_refs),
            "status": initial_status,
            "verified_by": None,
            "auto_verified": False,
            "rejection_reason": None,
            "receipt_number": None,
            "created_at": self.storage.now(),
            "verified_at": None,
            "reviewed_at": None,
            "sequence": self.storage.next_sequence(),
        }

        with self.storage.lock_for("references", event_id):
            if reference is not None:
                existing_id = self.storage.reference_index.get((event_id, reference))
                if existing_id is not None:
                    raise DuplicateReferenceError(event_id, reference, existing_id)
                self.storage.reference_index[(event_id, reference)] = contribution_id
            self.storage.contributions[contribution_id] = contribution_data

        LOGGER.info(
            "Contribution %s submitted by %s for event %s: %s via %s",
            contribution_id, actor.caller_id, event_id, amount, method.value,
        )

        if not auto_verify:
            return ContributionResponse(
                contribution=Contribution(**contribution_data),
                message="Contribution submitted for admin verification",
            )

        with self.storage.lock_for("contribution", contribution_id):
            if not self.get_contribution(contribution_id).status.is_pending:
                return ContributionResponse(
                    contribution=self.get_contribution(contribution_id),
                    ledger_entry=self.ledger.entry_for_source(contribution_id, EntryCategory.CONTRIBUTION),
                    message="Contribution was reviewed before auto-verification ran",
                )
            try:
                ledger_entry = self._post_credit(contribution_id, verified_by=None)
            except LedgerPostingError as e:
                LOGGER.warning("Auto-verification of %s failed, left in queue: %s", contribution_id, e)
                return ContributionResponse(
                    contribution=self.get_contribution(contribution_id),
                    message="Contribution submitted; auto-verification unavailable, queued for admin verification",
                )

        contribution = self.get_contribution(contribution_id)
        audit("auto_verify_contribution", None, "contribution", contribution_id, amount=amount)
        self._notify(contribution, NotificationType.CONTRIBUTION_APPROVED)

        return ContributionResponse(
            contribution=contribution,
            ledger_entry=ledger_entry,
            message="Contribution auto-verified",
        )

    def approve(self, contribution_id: UUID, actor: Actor) -> ContributionResponse:
        require_admin(actor, "approve contributions")

        self.get_contribution(contribution_id)
        with self.storage.lock_for("contribution", contribution_id):
            contribution = self.get_contribution(contribution_id)
            if contribution.status.is_credited:
                return ContributionResponse(
                    contribution=contribution,
                    ledger_entry=self.ledger.entry_for_source(contribution_id, EntryCategory.CONTRIBUTION),
                    already_processed=True,
                    message="Contribution already verified (idempotent return)",
                )
            if not contribution.status.is_pending:
                raise InvalidStateTransitionError(
                    "contribution", contribution_id, contribution.status.value, "approve"
                )
            ledger_entry = self._post_credit(contribution_id, verified_by=actor.caller_id)

        contribution = self.get_contribution(contribution_id)
        audit("approve_contribution", actor.caller_id, "contribution", contribution_id, amount=contribution.amount)
        self._notify(contribution, NotificationType.CONTRIBUTION_APPROVED)

        return ContributionResponse(
            contribution=contribution,
            ledger_entry=ledger_entry,
            message="Contribution verified successfully",
        )

    def reject(self, contribution_id: UUID, actor: Actor, reason: str = "") -> ContributionResponse:
        require_admin(actor, "reject contributions")
        reason = clean_text(reason)
        ledger_entry = None

        self.get_contribution(contribution_id)
        with self.storage.lock_for("contribution", contribution_id):
            contribution = self.get_contribution(contribution_id)
            if contribution.status == ContributionStatus.REJECTED:
                return ContributionResponse(
                    contribution=contribution,
                    already_processed=True,
                    message="Contribution already rejected (idempotent return)",
                )

            changes = {
                "status": ContributionStatus.REJECTED,
                "verified_by": actor.caller_id,
                "rejection_reason": reason,
                "reviewed_at": self.storage.now(),
            }
            if contribution.status.is_pending:
                self._replace(contribution_id, changes)
            elif contribution.auto_verified:
                ledger_entry = self._post_reversal(contribution, actor, reason, changes)
            else:
                raise InvalidStateTransitionError(
                    "contribution", contribution_id, contribution.status.value, "reject"
                )
            self._release_reference(contribution)

        contribution = self.get_contribution(contribution_id)
        audit(
            "reject_contribution", actor.caller_id, "contribution", contribution_id,
            reason=reason, reversed=ledger_entry is not None,
        )
        self._notify(contribution, NotificationType.CONTRIBUTION_REJECTED)

        return ContributionResponse(
            contribution=contribution,
            ledger_entry=ledger_entry,
            message="Auto-verified contribution reversed" if ledger_entry else "Contribution rejected",
        )

    def issue_receipt(self, contribution_id: UUID, actor: Actor) -> ContributionResponse:
        require_admin(actor, "issue contribution receipts")

        self.get_contribution(contribution_id)
        with self.storage.lock_for("contribution", contribution_id):
            contribution = self.get_contribution(contribution_id)
            if contribution.status == ContributionStatus.APPROVED:
                return ContributionResponse(
                    contribution=contribution,
                    ledger_entry=self.ledger.entry_for_source(contribution_id, EntryCategory.CONTRIBUTION),
                    already_processed=True,
                    message="Receipt already issued (idempotent return)",
                )
            if contribution.status != ContributionStatus.VERIFIED:
                raise InvalidStateTransitionError(
                    "contribution", contribution_id, contribution.status.value, "issue a receipt for"
                )
            receipt_number = f"RCPT-{contribution.sequence:06d}"
            self._replace(contribution_id, {
                "status": ContributionStatus.APPROVED,
                "receipt_number": receipt_number,
            })

        audit("issue_receipt", actor.caller_id, "contribution", contribution_id, receipt_number=receipt_number)
        return ContributionResponse(
            contribution=self.get_contribution(contribution_id),
            ledger_entry=self.ledger.entry_for_source(contribution_id, EntryCategory.CONTRIBUTION),
            message="Receipt issued",
        )

    def get_contribution(self, contribution_id: UUID) -> Contribution:
        contribution_data = self.storage.contributions.get(contribution_id)
        if not contribution_data:
            raise ContributionNotFoundError(contribution_id)
        return Contribution(**contribution_data)

    def list_contributions(
        self,
        event_id: str,
        member_id: Optional[str] = None,
        statuses: Optional[Iterable[ContributionStatus]] = None,
    ) -> list[Contribution]:
        wanted = set(statuses) if statuses is not None else None
        contributions = [
            Contribution(**c) for c in self.storage.snapshot(self.storage.contributions)
            if c["event_id"] == event_id
            and (member_id is None or c["member_id"] == member_id)
            and (wanted is None or c["status"] in wanted)
        ]
        contributions.sort(key=lambda c: c.sequence)
        return contributions

    def pending_queue(self, event_id: str) -> list[Contribution]:
        return self.list_contributions(
            event_id,
            statuses=[ContributionStatus.PENDING, ContributionStatus.PAID_PENDING_ADMIN_VERIFICATION],
        )

    def _post_credit(self, contribution_id: UUID, verified_by: Optional[str]):
        contribution = self.get_contribution(contribution_id)
        changes = {
            "status": ContributionStatus.VERIFIED,
            "verified_by": verified_by,
            "auto_verified": verified_by is None,
            "verified_at": self.storage.now(),
        }
        return self.ledger.post(
            contribution.event_id,
            EntryDirection.CREDIT,
            EntryCategory.CONTRIBUTION,
            contribution.amount,
            description=f"Contribution via {contribution.method.value.replace('_', ' ')}",
            source_ref=contribution_id,
            posted_by=verified_by or contribution.member_id,
            alongside=lambda: self._replace(contribution_id, changes),
        )

    def _post_reversal(self, contribution: Contribution, actor: Actor, reason: Optional[str], changes: dict):
        original = self.ledger.entry_for_source(contribution.id, EntryCategory.CONTRIBUTION)
        return self.ledger.post(
            contribution.event_id,
            EntryDirection.DEBIT,
            EntryCategory.CONTRIBUTION_REVERSAL,
            contribution.amount,
            description=f"Reversal: {reason}" if reason else "Reversal of auto-verified contribution",
            source_ref=contribution.id,
            reference_entry_id=original.id if original else None,
            posted_by=actor.caller_id,
            alongside=lambda: self._replace(contribution.id, changes),
        )

    def _replace(self, contribution_id: UUID, changes: dict) -> None:
        current = self.storage.contributions[contribution_id]
        self.storage.contributions[contribution_id] = {**current, **changes}

    def _release_reference(self, contribution: Contribution) -> None:
        if contribution.external_reference is None:
            return
        key = (contribution.event_id, contribution.external_reference)
        with self.storage.lock_for("references", contribution.event_id):
            if self.storage.reference_index.get(key) == contribution.id:
                del self.storage.reference_index[key]

    def _notify(self, contribution: Contribution, notification_type: NotificationType) -> None:
        approved = notification_type == NotificationType.CONTRIBUTION_APPROVED
        message = f"Your contribution of {contribution.amount} was {'verified' if approved else 'rejected'}."
        if contribution.rejection_reason and not approved:
            message += f" Reason: {contribution.rejection_reason}"
        self.notifier.dispatch(Notification(
            type=notification_type,
            recipient_id=contribution.member_id,
            event_id=contribution.event_id,
            title=f"Contribution {'Verified' if approved else 'Rejected'}",
            message=message,
            link=f"/dashboard/{contribution.event_id}/contributions",
            metadata={"contribution_id": str(contribution.id)},
        ))
