from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from .errors import (
    DuplicateReferenceError,
    InvalidStateTransitionError,
    InvalidVoteError,
    LedgerPostingError,
    LedgerServiceError,
    LedgerValidationError,
    NoMembersError,
    NotFoundError,
    PendingExpensesExistError,
    UnauthorizedError,
)
from .models import (
    Actor, AddBudgetItemRequest, AssignAmountRequest, AssignDutyRequest, BudgetDetails, Contribution,
    ContributionResponse, CreateDutyRequest, Distribution, DistributeRequest, Duty,
    DutyAssignment, DutyBudget, DutyBudgetItem, DutyReceipt, EventBalance, FeedItem, FinancialSummary,
    LeaderboardEntry, LedgerHistoryResponse, MemberAllocation, MemberProgress, MemberRank,
    PaymentConfig, PaymentConfigUpdate, QuickStats, ReceiptResponse, ReceiptSubmission,
    RejectContributionRequest, ReviewReceiptRequest, Role, SetGoalRequest,
    SubmitContributionRequest, SubmitReceiptRequest, UpdateBudgetItemRequest, VoteResult,
)
from .service import LedgerService

_STATUS_BY_ERROR = [
    (LedgerValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (DuplicateReferenceError, status.HTTP_409_CONFLICT),
    (PendingExpensesExistError, status.HTTP_409_CONFLICT),
    (NoMembersError, status.HTTP_409_CONFLICT),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateTransitionError, status.HTTP_400_BAD_REQUEST),
    (InvalidVoteError, status.HTTP_400_BAD_REQUEST),
    (LedgerPostingError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_error(error: LedgerServiceError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.to_dict())
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.to_dict())


def get_actor(
    x_caller_id: str = Header(..., description="Caller id supplied by the identity provider"),
    x_caller_role: Role = Header(Role.MEMBER, description="Caller role for this event"),
) -> Actor:
    return Actor(caller_id=x_caller_id, role=x_caller_role)


def build_router(ledger_service: LedgerService) -> APIRouter:
    router = APIRouter()

    @router.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "event-fund-ledger"}

    # Contributions

    @router.post(
        "/events/{event_id}/contributions", response_model=ContributionResponse,
        status_code=status.HTTP_201_CREATED, tags=["Contributions"],
    )
    def submit_contribution(
        event_id: str, request: SubmitContributionRequest, actor: Actor = Depends(get_actor)
    ) -> ContributionResponse:
        try:
            return ledger_service.submit_contribution(event_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/events/{event_id}/contributions", response_model=list[Contribution], tags=["Contributions"])
    def list_contributions(
        event_id: str,
        member_id: Optional[str] = None,
        status_filter: Optional[list[str]] = Query(default=None, alias="status"),
    ) -> list[Contribution]:
        try:
            return ledger_service.list_contributions(event_id, member_id, status_filter)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    @router.get(
        "/events/{event_id}/contributions/pending", response_model=list[Contribution], tags=["Contributions"]
    )
    def pending_contributions(event_id: str, actor: Actor = Depends(get_actor)) -> list[Contribution]:
        try:
            return ledger_service.pending_contributions(event_id, actor)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/contributions/{contribution_id}", response_model=Contribution, tags=["Contributions"])
    def get_contribution(contribution_id: UUID) -> Contribution:
        try:
            return ledger_service.get_contribution(contribution_id)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post(
        "/contributions/{contribution_id}/approve", response_model=ContributionResponse, tags=["Contributions"]
    )
    def approve_contribution(contribution_id: UUID, actor: Actor = Depends(get_actor)) -> ContributionResponse:
        try:
            return ledger_service.approve_contribution(contribution_id, actor)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post(
        "/contributions/{contribution_id}/reject", response_model=ContributionResponse, tags=["Contributions"]
    )
    def reject_contribution(
        contribution_id: UUID, request: RejectContributionRequest, actor: Actor = Depends(get_actor)
    ) -> ContributionResponse:
        try:
            return ledger_service.reject_contribution(contribution_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post(
        "/contributions/{contribution_id}/receipt", response_model=ContributionResponse, tags=["Contributions"]
    )
    def issue_receipt(contribution_id: UUID, actor: Actor = Depends(get_actor)) -> ContributionResponse:
        try:
            return ledger_service.issue_contribution_receipt(contribution_id, actor)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/events/{event_id}/payment-config", response_model=PaymentConfig, tags=["Contributions"])
    def get_payment_config(event_id: str) -> PaymentConfig:
        return ledger_service.get_payment_config(event_id)

    @router.patch("/events/{event_id}/payment-config", response_model=PaymentConfig, tags=["Contributions"])
    def update_payment_config(
        event_id: str, update: PaymentConfigUpdate, actor: Actor = Depends(get_actor)
    ) -> PaymentConfig:
        try:
            return ledger_service.update_payment_config(event_id, actor, update)
        except LedgerServiceError as e:
            raise to_http_error(e)

    # Duties

    @router.post(
        "/events/{event_id}/duties", response_model=Duty, status_code=status.HTTP_201_CREATED, tags=["Duties"]
    )
    def create_duty(event_id: str, request: CreateDutyRequest, actor: Actor = Depends(get_actor)) -> Duty:
        try:
            return ledger_service.create_duty(event_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/events/{event_id}/duties", response_model=list[Duty], tags=["Duties"])
    def list_duties(event_id: str) -> list[Duty]:
        return ledger_service.list_duties(event_id)

    @router.get("/duties/{duty_id}", response_model=Duty, tags=["Duties"])
    def get_duty(duty_id: UUID) -> Duty:
        try:
            return ledger_service.get_duty(duty_id)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post("/duties/{duty_id}/assignments", response_model=list[DutyAssignment], tags=["Duties"])
    def assign_duty(
        duty_id: UUID, request: AssignDutyRequest, actor: Actor = Depends(get_actor)
    ) -> list[DutyAssignment]:
        try:
            return ledger_service.assign_duty(duty_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/duties/{duty_id}/receipts", response_model=list[DutyReceipt], tags=["Duties"])
    def list_receipts(duty_id: UUID) -> list[DutyReceipt]:
        try:
            return ledger_service.list_receipts(duty_id)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/duties/{duty_id}/budget", response_model=DutyBudget, tags=["Duties"])
    def duty_budget(duty_id: UUID) -> DutyBudget:
        try:
            return ledger_service.duty_budget(duty_id)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post(
        "/duties/{duty_id}/budget-items", response_model=DutyBudgetItem,
        status_code=status.HTTP_201_CREATED, tags=["Duties"],
    )
    def add_budget_item(
        duty_id: UUID, request: AddBudgetItemRequest, actor: Actor = Depends(get_actor)
    ) -> DutyBudgetItem:
        try:
            return ledger_service.add_duty_budget_item(duty_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/duties/{duty_id}/budget-items", response_model=list[DutyBudgetItem], tags=["Duties"])
    def list_budget_items(duty_id: UUID) -> list[DutyBudgetItem]:
        try:
            return ledger_service.list_duty_budget_items(duty_id)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.patch("/budget-items/{item_id}", response_model=DutyBudgetItem, tags=["Duties"])
    def update_budget_item(
        item_id: UUID, request: UpdateBudgetItemRequest, actor: Actor = Depends(get_actor)
    ) -> DutyBudgetItem:
        try:
            return ledger_service.update_duty_budget_item(item_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.delete("/budget-items/{item_id}", response_model=DutyBudgetItem, tags=["Duties"])
    def delete_budget_item(item_id: UUID, actor: Actor = Depends(get_actor)) -> DutyBudgetItem:
        try:
            return ledger_service.delete_duty_budget_item(item_id, actor)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post("/duties/{duty_id}/complete", response_model=Duty, tags=["Duties"])
    def complete_duty(duty_id: UUID, actor: Actor = Depends(get_actor)) -> Duty:
        try:
            return ledger_service.complete_duty(duty_id, actor)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post(
        "/assignments/{assignment_id}/receipts", response_model=ReceiptSubmission,
        status_code=status.HTTP_201_CREATED, tags=["Duties"],
    )
    def submit_receipt(
        assignment_id: UUID, request: SubmitReceiptRequest, actor: Actor = Depends(get_actor)
    ) -> ReceiptSubmission:
        try:
            return ledger_service.submit_receipt(assignment_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post("/receipts/{receipt_id}/review", response_model=ReceiptResponse, tags=["Duties"])
    def review_receipt(
        receipt_id: UUID, request: ReviewReceiptRequest, actor: Actor = Depends(get_actor)
    ) -> ReceiptResponse:
        try:
            return ledger_service.review_receipt(receipt_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post("/receipts/{receipt_id}/vote", response_model=VoteResult, tags=["Duties"])
    def vote_on_receipt(receipt_id: UUID, actor: Actor = Depends(get_actor)) -> VoteResult:
        try:
            return ledger_service.vote_on_receipt(receipt_id, actor)
        except LedgerServiceError as e:
            raise to_http_error(e)

    # Budget

    @router.get("/events/{event_id}/budget", response_model=BudgetDetails, tags=["Budget"])
    def budget_details(event_id: str) -> BudgetDetails:
        return ledger_service.get_budget_details(event_id)

    @router.put("/events/{event_id}/budget/goal", response_model=BudgetDetails, tags=["Budget"])
    def set_budget_goal(event_id: str, request: SetGoalRequest, actor: Actor = Depends(get_actor)) -> BudgetDetails:
        try:
            return ledger_service.set_budget_goal(event_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.post("/events/{event_id}/budget/distribute", response_model=Distribution, tags=["Budget"])
    def distribute_budget(
        event_id: str, request: DistributeRequest, actor: Actor = Depends(get_actor)
    ) -> Distribution:
        try:
            return ledger_service.distribute_budget_equally(event_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.put("/events/{event_id}/members/{member_id}/assigned", response_model=MemberAllocation, tags=["Budget"])
    def assign_member_amount(
        event_id: str, member_id: str, request: AssignAmountRequest, actor: Actor = Depends(get_actor)
    ) -> MemberAllocation:
        try:
            return ledger_service.assign_member_amount(event_id, member_id, actor, request)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.put("/events/{event_id}/members/{member_id}", response_model=MemberAllocation, tags=["Budget"])
    def register_member(event_id: str, member_id: str, actor: Actor = Depends(get_actor)) -> MemberAllocation:
        try:
            return ledger_service.register_member(event_id, actor, member_id)
        except LedgerServiceError as e:
            raise to_http_error(e)

    # Reconciliation

    @router.get("/events/{event_id}/balance", response_model=EventBalance, tags=["Reconciliation"])
    def get_balance(event_id: str) -> EventBalance:
        return ledger_service.get_balance(event_id)

    @router.get("/events/{event_id}/ledger", response_model=LedgerHistoryResponse, tags=["Reconciliation"])
    def get_ledger(event_id: str, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        try:
            return ledger_service.get_ledger_history(event_id, limit, offset)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/events/{event_id}/feed", response_model=list[FeedItem], tags=["Reconciliation"])
    def unified_feed(
        event_id: str, limit: Optional[int] = None, offset: int = 0, actor: Actor = Depends(get_actor)
    ) -> list[FeedItem]:
        try:
            return ledger_service.unified_feed(event_id, actor, limit, offset)
        except LedgerServiceError as e:
            raise to_http_error(e)

    @router.get("/events/{event_id}/summary", response_model=FinancialSummary, tags=["Reconciliation"])
    def financial_summary(event_id: str) -> FinancialSummary:
        return ledger_service.financial_summary(event_id)

    @router.get("/events/{event_id}/leaderboard", response_model=list[LeaderboardEntry], tags=["Reconciliation"])
    def leaderboard(event_id: str) -> list[LeaderboardEntry]:
        return ledger_service.leaderboard(event_id)

    @router.get(
        "/events/{event_id}/members/{member_id}/progress", response_model=MemberProgress, tags=["Reconciliation"]
    )
    def member_progress(event_id: str, member_id: str) -> MemberProgress:
        return ledger_service.progress_for(event_id, member_id)

    @router.get(
        "/events/{event_id}/members/{member_id}/rank", response_model=Optional[MemberRank], tags=["Reconciliation"]
    )
    def member_rank(event_id: str, member_id: str) -> Optional[MemberRank]:
        return ledger_service.rank_for(event_id, member_id)

    @router.get(
        "/events/{event_id}/members/{member_id}/stats", response_model=QuickStats, tags=["Reconciliation"]
    )
    def member_stats(event_id: str, member_id: str) -> QuickStats:
        return ledger_service.quick_stats(event_id, member_id)

    return router


def create_app(ledger_service: Optional[LedgerService] = None, root_path: str = "") -> FastAPI:
    app = FastAPI(
        title="Event Fund Ledger API",
        description="Contribution verification, duty expenses and reconciliation for group events",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.ledger_service = ledger_service or LedgerService()
    app.include_router(build_router(app.state.ledger_service))
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from .config import get_settings
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
