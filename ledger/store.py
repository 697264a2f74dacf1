from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from .config import get_settings
from .errors import LedgerPostingError, LedgerValidationError
from .logging_utils import get_logger
from .models import (
    EntryCategory,
    EntryDirection,
    EventBalance,
    LedgerEntry,
    LedgerHistoryResponse,
)
from .storage import InMemoryStorage

LOGGER = get_logger(__name__)


class LedgerStore:
    """Append-only record of posted credits and debits per event.

    ``post`` is reached only through the approval and reversal paths of the
    contribution tracker and the duty workflow; nothing else writes here.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def post(
        self,
        event_id: str,
        direction: EntryDirection,
        category: EntryCategory,
        amount: Decimal,
        *,
        description: str,
        source_ref: Optional[UUID] = None,
        reference_entry_id: Optional[UUID] = None,
        posted_by: Optional[str] = None,
        alongside: Optional[Callable[[], None]] = None,
    ) -> LedgerEntry:
        if amount <= 0:
            raise LedgerValidationError("amount", "Ledger entries must carry a positive amount", value=amount)

        with self.storage.ledger_write_lock:
            if source_ref is not None:
                existing = self.storage.source_index.get((source_ref, category.value))
                if existing is not None:
                    raise LedgerPostingError(
                        f"A {category.value} entry was already posted for {source_ref}",
                        source_ref=source_ref,
                        existing_entry_id=existing,
                    )

            entry_data = {
                "id": uuid4(),
                "event_id": event_id,
                "direction": direction,
                "category": category,
                "amount": amount,
                "source_ref": source_ref,
                "reference_entry_id": reference_entry_id,
                "posted_by": posted_by,
                "description": description,
                "created_at": self.storage.now(),
                "sequence": self.storage.next_sequence(),
            }
            self._append(entry_data)
            # the caller's status swap commits in the same write section
            if alongside is not None:
                alongside()

        LOGGER.info(
            "Posted %s %s %s for event %s (source=%s)",
            direction.value, category.value, amount, event_id, source_ref,
        )
        return LedgerEntry(**entry_data)

    def _append(self, entry_data: dict) -> None:
        self.storage.ledger_entries[entry_data["id"]] = entry_data
        if entry_data["source_ref"] is not None:
            key = (entry_data["source_ref"], entry_data["category"].value)
            self.storage.source_index[key] = entry_data["id"]

    def entries_for(self, event_id: str) -> list[LedgerEntry]:
        entries = [
            LedgerEntry(**e) for e in self.storage.snapshot(self.storage.ledger_entries)
            if e["event_id"] == event_id
        ]
        entries.sort(key=lambda e: e.sequence)
        return entries

    def entry_for_source(self, source_ref: UUID, category: EntryCategory) -> Optional[LedgerEntry]:
        entry_id = self.storage.source_index.get((source_ref, category.value))
        if entry_id is None:
            return None
        entry_data = self.storage.ledger_entries.get(entry_id)
        return LedgerEntry(**entry_data) if entry_data else None

    def totals(self, event_id: str) -> tuple[Decimal, Decimal]:
        credits = Decimal("0")
        debits = Decimal("0")
        for entry in self.storage.snapshot(self.storage.ledger_entries):
            if entry["event_id"] != event_id:
                continue
            if entry["direction"] == EntryDirection.CREDIT:
                credits += entry["amount"]
            else:
                debits += entry["amount"]
        return credits, debits

    def balance(self, event_id: str) -> EventBalance:
        entries = self.entries_for(event_id)
        credits = sum((e.amount for e in entries if e.direction == EntryDirection.CREDIT), Decimal("0"))
        debits = sum((e.amount for e in entries if e.direction == EntryDirection.DEBIT), Decimal("0"))
        last_entry = entries[-1] if entries else None

        return EventBalance(
            event_id=event_id,
            currency=get_settings().currency,
            total_credits=credits,
            total_debits=debits,
            balance=credits - debits,
            total_entries=len(entries),
            last_transaction_at=last_entry.created_at if last_entry else None,
        )

    def history(self, event_id: str, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        max_limit = get_settings().feed_max_limit
        if limit < 1 or limit > max_limit:
            raise LedgerValidationError("limit", f"limit must be between 1 and {max_limit}", value=limit)
        if offset < 0:
            raise LedgerValidationError("offset", "offset cannot be negative", value=offset)

        all_entries = self.entries_for(event_id)
        all_entries.sort(key=lambda e: (e.created_at, e.sequence), reverse=True)
        paginated = all_entries[offset:offset + limit]
        credits, debits = self.totals(event_id)

        return LedgerHistoryResponse(
            event_id=event_id,
            entries=paginated,
            total_count=len(all_entries),
            current_balance=credits - debits,
        )
