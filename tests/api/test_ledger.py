"""
Tests for ledger setup endpoints.

These test the HTTP layer: status codes, response format,
and error handling. Business logic is tested in the service
tests.
"""

HEADERS = {"X-Tenant-Id": "acme", "X-Actor-Id": "alice"}


class TestAccounts:

    def test_create_account_returns_201(self, client):
        response = client.post("/ledger/accounts", headers=HEADERS, json={
            "code": "1000",
            "name": "Cash",
            "account_type": "ASSET",
            "currency": "USD",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["code"] == "1000"
        assert data["tenant_id"] == "acme"
        assert data["is_active"] is True

    def test_duplicate_code_returns_409(self, client):
        body = {"code": "1000", "name": "Cash", "account_type": "ASSET"}
        client.post("/ledger/accounts", headers=HEADERS, json=body)
        response = client.post("/ledger/accounts", headers=HEADERS, json=body)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "CONFLICT"

    def test_missing_actor_returns_400(self, client):
        response = client.post(
            "/ledger/accounts",
            headers={"X-Tenant-Id": "acme"},
            json={"code": "1000", "name": "Cash", "account_type": "ASSET"},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "MISSING_ACTOR"

    def test_missing_tenant_returns_422(self, client):
        response = client.get("/ledger/accounts/1")
        assert response.status_code == 422

    def test_other_tenant_gets_404(self, client, ledger):
        response = client.get(
            f"/ledger/accounts/{ledger.accounts.cash.id}",
            headers={"X-Tenant-Id": "globex"},
        )
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"


class TestPeriods:

    def test_create_and_close(self, client):
        response = client.post("/ledger/periods", headers=HEADERS, json={
            "name": "Mar 2026",
            "fiscal_year": 2026,
            "fiscal_period": 3,
            "start_date": "2026-03-01",
            "end_date": "2026-03-31",
        })
        assert response.status_code == 201
        period_id = response.json()["id"]

        closed = client.post(f"/ledger/periods/{period_id}/close", headers=HEADERS)
        assert closed.status_code == 200
        assert closed.json()["status"] == "CLOSED"
        assert closed.json()["closed_by"] == "alice"

        again = client.post(f"/ledger/periods/{period_id}/close", headers=HEADERS)
        assert again.status_code == 409

    def test_end_before_start_rejected(self, client):
        response = client.post("/ledger/periods", headers=HEADERS, json={
            "name": "Bad",
            "fiscal_year": 2026,
            "fiscal_period": 4,
            "start_date": "2026-04-30",
            "end_date": "2026-04-01",
        })
        assert response.status_code == 422


class TestConfiguration:

    def test_partial_update_keeps_other_fields(self, client, ledger):
        response = client.put("/ledger/configuration", headers=HEADERS, json={
            "auto_post_on_approval": False,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["auto_post_on_approval"] is False
        assert data["base_currency"] == "USD"
        assert data["fx_unrealized_gain_account_id"] == ledger.accounts.fx_unrealized_gain.id

    def test_unknown_account_rejected(self, client, ledger):
        response = client.put("/ledger/configuration", headers=HEADERS, json={
            "fx_realized_gain_account_id": 9999,
        })
        assert response.status_code == 404
