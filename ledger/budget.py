from decimal import Decimal, ROUND_CEILING

from .errors import NoMembersError
from .guards import require_admin, require_non_negative
from .logging_utils import audit, get_logger
from .models import Actor, BudgetDetails, Distribution, MemberAllocation
from .storage import InMemoryStorage

LOGGER = get_logger(__name__)


def ceil_share(total_amount: Decimal, member_count: int) -> Decimal:
    """Per-member share rounded up to a whole currency unit.

    Rounding up keeps ``share * member_count >= total_amount``; the overshoot
    is at most ``member_count - 1`` units.
    """
    if member_count <= 0:
        raise ValueError("member_count must be positive")
    return (total_amount / Decimal(member_count)).to_integral_value(rounding=ROUND_CEILING)


class BudgetAllocator:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def register_member(self, event_id: str, actor: Actor, member_id: str) -> MemberAllocation:
        require_admin(actor, "register members")
        with self.storage.lock_for("budget", event_id):
            members = self.storage.event_members(event_id)
            allocation = members.setdefault(member_id, {"member_id": member_id, "assigned_amount": Decimal("0")})

        audit("register_member", actor.caller_id, "member", member_id, event_id=event_id)
        return MemberAllocation(**allocation)

    def set_goal(self, event_id: str, actor: Actor, amount: Decimal) -> BudgetDetails:
        require_admin(actor, "set the budget goal")
        amount = require_non_negative(amount)

        with self.storage.lock_for("budget", event_id):
            self.storage.event(event_id)["budget_goal"] = amount

        audit("set_budget_goal", actor.caller_id, "event", event_id, amount=amount)
        return self.budget_details(event_id)

    def distribute_equally(self, event_id: str, actor: Actor, total_amount: Decimal) -> Distribution:
        require_admin(actor, "distribute the budget")
        total_amount = require_non_negative(total_amount, "total_amount")

        with self.storage.lock_for("budget", event_id):
            members = self.storage.event_members(event_id)
            member_count = len(members)
            if member_count == 0:
                raise NoMembersError(event_id)

            share = ceil_share(total_amount, member_count)
            self.storage.event(event_id)["budget_goal"] = total_amount
            # overwrites individual overrides
            for member_id in list(members):
                members[member_id] = {"member_id": member_id, "assigned_amount": share}

        LOGGER.info("Distributed %s across %s members of %s: share %s", total_amount, member_count, event_id, share)
        audit("distribute_budget", actor.caller_id, "event", event_id, total_amount=total_amount, share=share)

        return Distribution(
            event_id=event_id,
            member_count=member_count,
            share=share,
            total_assigned=share * member_count,
            budget_goal=total_amount,
        )

    def assign_individual(self, event_id: str, actor: Actor, member_id: str, amount: Decimal) -> MemberAllocation:
        require_admin(actor, "assign member contributions")
        amount = require_non_negative(amount)

        with self.storage.lock_for("budget", event_id):
            members = self.storage.event_members(event_id)
            members[member_id] = {"member_id": member_id, "assigned_amount": amount}

        audit("assign_contribution", actor.caller_id, "member", member_id, event_id=event_id, amount=amount)
        return MemberAllocation(member_id=member_id, assigned_amount=amount)

    def assigned_amount(self, event_id: str, member_id: str) -> Decimal:
        allocation = self.storage.event_members(event_id).get(member_id)
        return allocation["assigned_amount"] if allocation else Decimal("0")

    def budget_details(self, event_id: str) -> BudgetDetails:
        members = [MemberAllocation(**m) for m in self.storage.snapshot(self.storage.event_members(event_id))]
        return BudgetDetails(
            event_id=event_id,
            budget_goal=self.storage.event(event_id)["budget_goal"],
            total_assigned=sum((m.assigned_amount for m in members), Decimal("0")),
            members=members,
        )
