from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Hashable, Optional
from uuid import UUID
import itertools
import threading
import weakref


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KeyLock:
    """Mutex for one storage key; lives only while some caller holds it."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self) -> "KeyLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


class InMemoryStorage:
    """Row store shared by every writer and reader of one ledger deployment.

    Rows are plain dicts replaced wholesale on update, so a reader holding a
    row never sees a half-applied transition.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or utc_now
        self.events: dict[str, dict] = {}
        self.members: dict[str, dict[str, dict]] = {}
        self.contributions: dict[UUID, dict] = {}
        self.reference_index: dict[tuple[str, str], UUID] = {}
        self.ledger_entries: dict[UUID, dict] = {}
        self.source_index: dict[tuple[UUID, str], UUID] = {}
        self.duties: dict[UUID, dict] = {}
        self.assignments: dict[UUID, dict] = {}
        self.assignment_index: dict[tuple[UUID, str], UUID] = {}
        self.receipts: dict[UUID, dict] = {}
        self.receipt_votes: dict[tuple[UUID, str], dict] = {}
        self.budget_items: dict[UUID, dict] = {}
        self.ledger_write_lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._locks: "weakref.WeakValueDictionary[Hashable, KeyLock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def now(self) -> datetime:
        return self.clock()

    def next_sequence(self) -> int:
        return next(self._sequence)

    def lock_for(self, *key: Hashable) -> KeyLock:
        # entries drop out once no caller references them
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = KeyLock()
                self._locks[key] = lock
            return lock

    def event(self, event_id: str) -> dict:
        record = self.events.get(event_id)
        if record is None:
            record = self.events.setdefault(event_id, {
                "id": event_id,
                "budget_goal": Decimal("0"),
                "payment_config": None,
            })
        return record

    def event_members(self, event_id: str) -> dict[str, dict]:
        return self.members.setdefault(event_id, {})

    def snapshot(self, table: dict) -> list[dict]:
        return list(table.values())
