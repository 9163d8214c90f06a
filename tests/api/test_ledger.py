"""
Tests for ledger API endpoints.

These test the HTTP layer: status codes, response format,
and error handling. Business logic is tested in
test_ledger_service.py.
"""

from decimal import Decimal


def create_account(client, owner_type="VENTANA", owner_id=1):
    response = client.post("/ledger/accounts", json={
        "owner_type": owner_type,
        "owner_id": owner_id,
    })
    assert response.status_code == 201
    return response.json()["id"]


class TestAccounts:

    def test_create_account_returns_data(self, client):
        response = client.post("/ledger/accounts", json={
            "owner_type": "BANCA",
            "owner_id": 1,
            "currency": "USD",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["owner_type"] == "BANCA"
        assert data["currency"] == "USD"
        assert Decimal(data["balance"]) == Decimal("0")
        assert data["is_active"] is True

    def test_same_owner_returns_same_account(self, client):
        first = create_account(client)
        second = create_account(client)
        assert second == first

    def test_unknown_account_returns_404(self, client):
        response = client.get("/ledger/accounts/999")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "ACCOUNT_NOT_FOUND"


class TestEntries:

    def test_admin_posts_entry(self, client, admin_headers, org):
        account_id = create_account(client)
        response = client.post(
            f"/ledger/accounts/{account_id}/entries",
            json={"type": "ADJUSTMENT", "value_signed": "150.00"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["value_signed"]) == Decimal("150")
        assert data["created_by"] == org.admin.id

        balance = client.get(f"/ledger/accounts/{account_id}/balance").json()
        assert Decimal(balance["balance"]) == Decimal("150")
        assert balance["is_consistent"] is True

    def test_non_admin_gets_403(self, client, org):
        account_id = create_account(client)
        response = client.post(
            f"/ledger/accounts/{account_id}/entries",
            json={"type": "ADJUSTMENT", "value_signed": "10"},
            headers={"X-Actor-Id": str(org.vendedor.id), "X-Actor-Role": "VENDEDOR"},
        )
        assert response.status_code == 403

    def test_missing_actor_headers_returns_422(self, client):
        account_id = create_account(client)
        response = client.post(
            f"/ledger/accounts/{account_id}/entries",
            json={"type": "ADJUSTMENT", "value_signed": "10"},
        )
        assert response.status_code == 422

    def test_zero_value_returns_422(self, client, admin_headers):
        account_id = create_account(client)
        response = client.post(
            f"/ledger/accounts/{account_id}/entries",
            json={"type": "ADJUSTMENT", "value_signed": "0"},
            headers=admin_headers,
        )
        assert response.status_code == 422

    def test_reverse_entry_and_list(self, client, admin_headers):
        account_id = create_account(client)
        entry = client.post(
            f"/ledger/accounts/{account_id}/entries",
            json={"type": "ADJUSTMENT", "value_signed": "75"},
            headers=admin_headers,
        ).json()

        response = client.post(
            f"/ledger/entries/{entry['id']}/reverse",
            json={"note": "typo"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["reversal_of_entry_id"] == entry["id"]

        again = client.post(
            f"/ledger/entries/{entry['id']}/reverse",
            json={},
            headers=admin_headers,
        )
        assert again.status_code == 409

        entries = client.get(f"/ledger/accounts/{account_id}/entries").json()
        assert len(entries) == 2
        assert sum(Decimal(e["value_signed"]) for e in entries) == Decimal("0")


class TestDocuments:

    def test_bank_deposit(self, client, admin_headers):
        account_id = create_account(client)
        response = client.post(
            f"/ledger/accounts/{account_id}/deposits",
            json={
                "date": "2025-03-10T15:00:00",
                "doc_number": "DEP-1",
                "amount": "300",
            },
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.json()["doc_number"] == "DEP-1"
        balance = client.get(f"/ledger/accounts/{account_id}/balance").json()
        assert Decimal(balance["balance"]) == Decimal("-300")

    def test_payment_document_returns_both_legs(self, client, admin_headers):
        source = create_account(client, "VENTANA", 1)
        destination = create_account(client, "BANCA", 1)

        response = client.post(
            "/ledger/payment-documents",
            json={
                "from_account_id": source,
                "to_account_id": destination,
                "amount": "120",
                "doc_number": "PD-9",
            },
            headers=admin_headers,
        )

        assert response.status_code == 201
        legs = response.json()
        assert [leg["type"] for leg in legs] == ["PAYMENT_OUT", "PAYMENT_IN"]

    def test_same_account_document_returns_400(self, client, admin_headers):
        account_id = create_account(client)
        response = client.post(
            "/ledger/payment-documents",
            json={
                "from_account_id": account_id,
                "to_account_id": account_id,
                "amount": "120",
                "doc_number": "PD-9",
            },
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "SAME_ACCOUNT"


class TestSnapshots:

    def test_create_and_list_snapshot(self, client):
        account_id = create_account(client)

        created = client.post(
            f"/ledger/accounts/{account_id}/snapshots", params={"day": "2025-03-10"}
        )
        assert created.status_code == 201

        listed = client.get(
            f"/ledger/accounts/{account_id}/snapshots",
            params={"date_from": "2025-03-01", "date_to": "2025-03-31"},
        )
        assert listed.status_code == 200
        assert [s["date"] for s in listed.json()] == ["2025-03-10"]
