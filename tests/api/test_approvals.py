"""
Tests for approval endpoints.

Notifications must reach the channel only after a successful
commit, so several tests assert on what the recording channel
received.
"""

import pytest

TENANT = {"X-Tenant-Id": "acme"}
ALICE = {**TENANT, "X-Actor-Id": "alice"}
CAROL = {**TENANT, "X-Actor-Id": "carol"}
ERIN = {**TENANT, "X-Actor-Id": "erin"}


@pytest.fixture
def workflow(client, ledger):
    response = client.post("/approvals/workflows", headers=ALICE, json={
        "code": "JE-APPROVAL",
        "name": "Journal entry approval",
        "document_type": "JOURNAL_ENTRY",
        "rule_type": "SEQUENTIAL",
        "allow_delegation": True,
        "steps": [
            {"step_order": 1, "name": "Controller", "approver_type": "ROLE",
             "approver_roles": ["controller"]},
            {"step_order": 2, "name": "CFO", "approver_user_ids": ["erin"],
             "min_amount": "10000"},
        ],
    })
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def submitted(client, ledger, workflow, channel):
    """A 15,000 entry waiting on the controller step."""
    entry = client.post("/journal-entries", headers=ALICE, json={
        "entry_date": "2026-01-20",
        "description": "Equipment purchase",
        "lines": [
            {"account_code": "5000", "debit_amount": "15000"},
            {"account_code": "1000", "credit_amount": "15000"},
        ],
    }).json()
    response = client.post(
        f"/journal-entries/{entry['id']}/submit", headers=ALICE,
        json={"notes": "Capex"},
    )
    assert response.status_code == 200
    return entry, response.json()


class TestWorkflows:

    def test_create_and_fetch(self, client, workflow):
        assert [s["step_order"] for s in workflow["steps"]] == [1, 2]
        fetched = client.get(f"/approvals/workflows/{workflow['id']}", headers=TENANT)
        assert fetched.status_code == 200
        assert fetched.json()["code"] == "JE-APPROVAL"

    def test_duplicate_step_orders_rejected(self, client):
        response = client.post("/approvals/workflows", headers=ALICE, json={
            "code": "BAD",
            "name": "Bad",
            "document_type": "JOURNAL_ENTRY",
            "steps": [
                {"step_order": 1, "name": "A", "approver_user_ids": ["carol"]},
                {"step_order": 1, "name": "B", "approver_user_ids": ["erin"]},
            ],
        })
        assert response.status_code == 422


class TestDecisions:

    def test_two_step_approval_posts_entry(self, client, submitted, channel):
        entry, request = submitted
        assert request["status"] == "PENDING"
        assert request["resolved_approvers"] == {"1": ["carol", "dave"]}
        assert channel.sent[-1][0] == "approval_required"

        first = client.post(
            f"/approvals/requests/{request['id']}/approve", headers=CAROL,
            json={"step_order": 1},
        )
        assert first.json()["current_step_order"] == 2

        second = client.post(
            f"/approvals/requests/{request['id']}/approve", headers=ERIN, json={},
        )
        assert second.json()["status"] == "APPROVED"
        assert channel.sent[-1][0] == "approved"

        posted = client.get(f"/journal-entries/{entry['id']}", headers=TENANT).json()
        assert posted["status"] == "POSTED"

        history = client.get(
            f"/approvals/requests/{request['id']}/history", headers=TENANT,
        ).json()
        assert [h["action"] for h in history] == ["SUBMIT", "APPROVE", "APPROVE"]

    def test_non_approver_gets_403(self, client, submitted, channel):
        _, request = submitted
        sent = len(channel.sent)
        response = client.post(
            f"/approvals/requests/{request['id']}/approve", headers=ERIN, json={},
        )
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "PERMISSION_DENIED"
        assert len(channel.sent) == sent

    def test_reject_then_approve_conflicts(self, client, submitted):
        entry, request = submitted
        rejected = client.post(
            f"/approvals/requests/{request['id']}/reject", headers=CAROL,
            json={"reason": "missing support"},
        )
        assert rejected.json()["status"] == "REJECTED"
        body = client.get(f"/journal-entries/{entry['id']}", headers=TENANT).json()
        assert body["status"] == "REJECTED"
        assert body["rejection_reason"] == "missing support"

        late = client.post(
            f"/approvals/requests/{request['id']}/approve", headers=CAROL, json={},
        )
        assert late.status_code == 409

    def test_reject_needs_reason(self, client, submitted):
        _, request = submitted
        response = client.post(
            f"/approvals/requests/{request['id']}/reject", headers=CAROL,
            json={"reason": ""},
        )
        assert response.status_code == 422

    def test_delegate(self, client, submitted):
        _, request = submitted
        response = client.post(
            f"/approvals/requests/{request['id']}/delegate", headers=CAROL,
            json={"delegate_to": "frank", "reason": "Holiday"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "DELEGATED"
        assert "frank" in response.json()["resolved_approvers"]["1"]

    def test_recall_returns_entry_to_draft(self, client, submitted):
        entry, request = submitted
        denied = client.post(
            f"/approvals/requests/{request['id']}/recall", headers=CAROL, json={},
        )
        assert denied.status_code == 403

        response = client.post(
            f"/approvals/requests/{request['id']}/recall", headers=ALICE,
            json={"reason": "Wrong cost centre"},
        )
        assert response.json()["status"] == "RECALLED"
        body = client.get(f"/journal-entries/{entry['id']}", headers=TENANT).json()
        assert body["status"] == "DRAFT"

    def test_comment(self, client, submitted):
        _, request = submitted
        response = client.post(
            f"/approvals/requests/{request['id']}/comment", headers=CAROL,
            json={"comments": "Invoice attached?"},
        )
        assert response.status_code == 200
        history = client.get(
            f"/approvals/requests/{request['id']}/history", headers=TENANT,
        ).json()
        assert history[-1]["action"] == "COMMENT"


class TestQueries:

    def test_pending_for_and_summary(self, client, submitted):
        _, request = submitted

        mine = client.get("/approvals/requests?pending_for=dave", headers=TENANT).json()
        assert [r["id"] for r in mine["items"]] == [request["id"]]
        assert client.get(
            "/approvals/requests?pending_for=erin", headers=TENANT,
        ).json()["total"] == 0

        summary = client.get("/approvals/summary", headers=TENANT).json()
        assert summary["pending_count"] == 1

    def test_other_tenant_gets_404(self, client, submitted):
        _, request = submitted
        response = client.get(
            f"/approvals/requests/{request['id']}", headers={"X-Tenant-Id": "globex"},
        )
        assert response.status_code == 404


class TestSweep:

    def test_sweep_expires_and_is_idempotent(self, client, submitted):
        entry, request = submitted
        expires_at = request["expires_at"]

        first = client.post("/approvals/sweep", json={"now": expires_at}).json()
        second = client.post("/approvals/sweep", json={"now": expires_at}).json()

        assert first["expired"] == [request["id"]]
        assert second["expired"] == []
        body = client.get(f"/journal-entries/{entry['id']}", headers=TENANT).json()
        assert body["status"] == "DRAFT"
