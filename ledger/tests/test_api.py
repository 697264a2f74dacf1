"""
API Tests for the Event Fund Ledger

Tests cover:
1. Caller identity headers
2. Error-to-status mapping
3. Contribution and duty flows over HTTP
4. Budget items, member registration and ledger paging
"""

import pytest
from decimal import Decimal
from uuid import uuid4
from fastapi.testclient import TestClient

from ledger.api import create_app
from ledger.service import LedgerService


# Test constants
EVENT_ID = "farewell-2024"
ADMIN_HEADERS = {"X-Caller-Id": "admin-1", "X-Caller-Role": "admin"}
MEMBER_HEADERS = {"X-Caller-Id": "member-1", "X-Caller-Role": "member"}


@pytest.fixture
def client():
    return TestClient(create_app(LedgerService()))


def submit(client, reference="UPI-0001", amount="500.00", headers=MEMBER_HEADERS):
    return client.post(
        f"/events/{EVENT_ID}/contributions",
        json={"amount": amount, "method": "upi", "external_reference": reference},
        headers=headers,
    )


class TestSystem:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_caller_header(self, client):
        response = client.post(
            f"/events/{EVENT_ID}/contributions", json={"amount": "10", "method": "cash"}
        )

        assert response.status_code == 422


class TestContributionEndpoints:
    """Tests for the contribution routes."""

    def test_submit_and_approve(self, client):
        created = submit(client)
        assert created.status_code == 201
        contribution = created.json()["contribution"]
        assert contribution["status"] == "pending"
        assert contribution["member_id"] == "member-1"

        approved = client.post(f"/contributions/{contribution['id']}/approve", headers=ADMIN_HEADERS)

        assert approved.status_code == 200
        body = approved.json()
        assert body["contribution"]["status"] == "verified"
        assert Decimal(body["ledger_entry"]["amount"]) == Decimal("500.00")
        assert body["already_processed"] is False

        again = client.post(f"/contributions/{contribution['id']}/approve", headers=ADMIN_HEADERS)
        assert again.status_code == 200
        assert again.json()["already_processed"] is True

        balance = client.get(f"/events/{EVENT_ID}/balance").json()
        assert Decimal(balance["balance"]) == Decimal("500.00")
        assert balance["total_entries"] == 1

    def test_duplicate_reference_is_conflict(self, client):
        submit(client, reference="UPI-DUP")

        response = submit(client, reference="UPI-DUP", headers={"X-Caller-Id": "member-2"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "duplicate_reference"

    def test_member_cannot_approve(self, client):
        contribution_id = submit(client).json()["contribution"]["id"]

        response = client.post(f"/contributions/{contribution_id}/approve", headers=MEMBER_HEADERS)

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "unauthorized"

    def test_unknown_contribution(self, client):
        response = client.post(f"/contributions/{uuid4()}/approve", headers=ADMIN_HEADERS)

        assert response.status_code == 404

    def test_approve_after_reject_is_bad_request(self, client):
        contribution_id = submit(client).json()["contribution"]["id"]
        client.post(
            f"/contributions/{contribution_id}/reject", json={"reason": "No payment found"}, headers=ADMIN_HEADERS
        )

        response = client.post(f"/contributions/{contribution_id}/approve", headers=ADMIN_HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_state_transition"

    def test_non_positive_amount(self, client):
        response = submit(client, amount="0")

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "amount"

    def test_list_filters_by_status_synonym(self, client):
        first = submit(client, reference="UPI-A").json()["contribution"]["id"]
        submit(client, reference="UPI-B")
        client.post(f"/contributions/{first}/approve", headers=ADMIN_HEADERS)

        response = client.get(f"/events/{EVENT_ID}/contributions", params={"status": "confirmed"})

        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [first]

    def test_unknown_status_filter(self, client):
        response = client.get(f"/events/{EVENT_ID}/contributions", params={"status": "lost"})

        assert response.status_code == 422

    def test_payment_config_update(self, client):
        response = client.patch(
            f"/events/{EVENT_ID}/payment-config",
            json={"auto_verify": True, "auto_verify_methods": ["upi"]},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200

        created = submit(client).json()

        assert created["contribution"]["status"] == "verified"
        assert created["contribution"]["auto_verified"] is True


class TestDutyEndpoints:
    """Tests for the duty and receipt routes."""

    def test_receipt_gates_completion(self, client):
        duty = client.post(
            f"/events/{EVENT_ID}/duties", json={"title": "Book the venue", "expense_limit": "1000"},
            headers=ADMIN_HEADERS,
        )
        assert duty.status_code == 201
        duty_id = duty.json()["id"]
        assignments = client.post(
            f"/duties/{duty_id}/assignments", json={"member_ids": ["member-1"]}, headers=ADMIN_HEADERS
        ).json()

        receipt = client.post(
            f"/assignments/{assignments[0]['id']}/receipts", json={"amount": "1200"}, headers=MEMBER_HEADERS
        )
        assert receipt.status_code == 201
        assert len(receipt.json()["warnings"]) == 1
        receipt_id = receipt.json()["receipt"]["id"]

        blocked = client.post(f"/duties/{duty_id}/complete", headers=ADMIN_HEADERS)
        assert blocked.status_code == 409
        assert blocked.json()["detail"]["pending_count"] == 1

        reviewed = client.post(f"/receipts/{receipt_id}/review", json={"decision": "approve"}, headers=ADMIN_HEADERS)
        assert reviewed.status_code == 200
        assert reviewed.json()["ledger_entry"]["direction"] == "debit"

        completed = client.post(f"/duties/{duty_id}/complete", headers=ADMIN_HEADERS)
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"

    def test_self_vote_is_bad_request(self, client):
        duty_id = client.post(f"/events/{EVENT_ID}/duties", json={"title": "Snacks"}, headers=ADMIN_HEADERS).json()["id"]
        assignment_id = client.post(
            f"/duties/{duty_id}/assignments", json={"member_ids": ["member-1"]}, headers=ADMIN_HEADERS
        ).json()[0]["id"]
        receipt_id = client.post(
            f"/assignments/{assignment_id}/receipts", json={"amount": "80"}, headers=MEMBER_HEADERS
        ).json()["receipt"]["id"]

        response = client.post(f"/receipts/{receipt_id}/vote", headers=MEMBER_HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_vote"

    def test_negative_line_item_is_unprocessable(self, client):
        duty_id = client.post(f"/events/{EVENT_ID}/duties", json={"title": "Snacks"}, headers=ADMIN_HEADERS).json()["id"]
        assignment_id = client.post(
            f"/duties/{duty_id}/assignments", json={"member_ids": ["member-1"]}, headers=ADMIN_HEADERS
        ).json()[0]["id"]

        response = client.post(
            f"/assignments/{assignment_id}/receipts",
            json={"amount": "100", "line_items": [
                {"description": "Refund", "amount": "-100"},
                {"description": "Chips", "amount": "200"},
            ]},
            headers=MEMBER_HEADERS,
        )

        assert response.status_code == 422
        assert client.get(f"/duties/{duty_id}/receipts").json() == []

    def test_budget_item_lifecycle(self, client):
        duty_id = client.post(f"/events/{EVENT_ID}/duties", json={"title": "Venue"}, headers=ADMIN_HEADERS).json()["id"]

        created = client.post(
            f"/duties/{duty_id}/budget-items",
            json={"category": "Hall", "estimated_amount": "5000", "vendor": "City Hall"},
            headers=ADMIN_HEADERS,
        )
        assert created.status_code == 201
        item_id = created.json()["id"]

        updated = client.patch(f"/budget-items/{item_id}", json={"actual_amount": "4800"}, headers=ADMIN_HEADERS)
        assert updated.status_code == 200
        assert Decimal(updated.json()["actual_amount"]) == Decimal("4800")

        budget = client.get(f"/duties/{duty_id}/budget").json()
        assert Decimal(budget["estimated_total"]) == Decimal("5000")
        assert Decimal(budget["actual_total"]) == Decimal("4800")

        assert client.delete(f"/budget-items/{item_id}", headers=MEMBER_HEADERS).status_code == 403
        assert client.delete(f"/budget-items/{item_id}", headers=ADMIN_HEADERS).status_code == 200
        assert client.get(f"/duties/{duty_id}/budget-items").json() == []
        assert client.patch(f"/budget-items/{item_id}", json={}, headers=ADMIN_HEADERS).status_code == 404


class TestBudgetAndViews:
    """Tests for budget and reconciliation routes."""

    def test_distribute_without_members_is_conflict(self, client):
        response = client.post(
            f"/events/{EVENT_ID}/budget/distribute", json={"total_amount": "1000"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "no_members"

    def test_distribute_and_progress(self, client):
        for member_id in ("member-1", "member-2", "member-3"):
            client.put(f"/events/{EVENT_ID}/members/{member_id}", headers=ADMIN_HEADERS)

        distribution = client.post(
            f"/events/{EVENT_ID}/budget/distribute", json={"total_amount": "1000"}, headers=ADMIN_HEADERS
        ).json()
        progress = client.get(f"/events/{EVENT_ID}/members/member-1/progress").json()

        assert Decimal(distribution["share"]) == Decimal("334")
        assert Decimal(progress["assigned"]) == Decimal("334")
        assert progress["percentage"] == 0

    def test_feed_limit_out_of_range(self, client):
        response = client.get(f"/events/{EVENT_ID}/feed", params={"limit": 0}, headers=ADMIN_HEADERS)

        assert response.status_code == 422

    def test_feed_requires_admin(self, client):
        response = client.get(f"/events/{EVENT_ID}/feed", headers=MEMBER_HEADERS)

        assert response.status_code == 403

    def test_unranked_member(self, client):
        response = client.get(f"/events/{EVENT_ID}/members/member-9/rank")

        assert response.status_code == 200
        assert response.json() is None

    def test_member_cannot_register_members(self, client):
        response = client.put(f"/events/{EVENT_ID}/members/member-2", headers=MEMBER_HEADERS)

        assert response.status_code == 403
        assert client.get(f"/events/{EVENT_ID}/budget").json()["members"] == []

    def test_ledger_paging_out_of_range(self, client):
        negative = client.get(f"/events/{EVENT_ID}/ledger", params={"offset": -1})
        empty = client.get(f"/events/{EVENT_ID}/ledger", params={"limit": 0})

        assert negative.status_code == 422
        assert negative.json()["detail"]["field"] == "offset"
        assert empty.status_code == 422


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
