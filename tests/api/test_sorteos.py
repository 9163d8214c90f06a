"""
Tests for sorteo, ticket and commission API endpoints.
"""

from decimal import Decimal

import pytest


@pytest.fixture
def vendedor_headers(org) -> dict:
    return {
        "X-Actor-Id": str(org.vendedor.id),
        "X-Actor-Role": "VENDEDOR",
        "X-Actor-Ventana-Id": str(org.ventana.id),
    }


def sell(client, sorteo_id, headers, *jugadas):
    return client.post("/tickets", json={
        "sorteo_id": sorteo_id,
        "jugadas": list(jugadas),
    }, headers=headers)


class TestSorteoLifecycle:

    def test_create_and_open(self, client, org, admin_headers):
        created = client.post("/sorteos", json={
            "loteria_id": org.loteria.id,
            "name": "Tica 19:30",
            "scheduled_at": "2030-01-01T19:30:00",
        }, headers=admin_headers)
        assert created.status_code == 201
        assert created.json()["status"] == "SCHEDULED"

        opened = client.post(
            f"/sorteos/{created.json()['id']}/open", headers=admin_headers
        )
        assert opened.status_code == 200
        assert opened.json()["status"] == "OPEN"

    def test_list_filters_by_status(self, client, org, open_sorteo):
        response = client.get("/sorteos", params={"status": "OPEN"})

        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == [open_sorteo.id]
        assert client.get("/sorteos", params={"status": "CLOSED"}).json() == []

    def test_unknown_sorteo_returns_404(self, client):
        assert client.get("/sorteos/999").status_code == 404

    def test_invalid_transition_returns_409(self, client, open_sorteo, admin_headers):
        response = client.post(
            f"/sorteos/{open_sorteo.id}/force-open", headers=admin_headers
        )
        assert response.status_code == 409

    def test_non_admin_gets_403(self, client, open_sorteo, vendedor_headers):
        response = client.post(
            f"/sorteos/{open_sorteo.id}/close", headers=vendedor_headers
        )
        assert response.status_code == 403

    def test_close_cascade_blocks_cancel(
        self, client, open_sorteo, admin_headers, vendedor_headers
    ):
        ticket = sell(client, open_sorteo.id, vendedor_headers, {
            "type": "NUMERO", "number": "47", "amount": "100",
        }).json()

        closed = client.post(
            f"/sorteos/{open_sorteo.id}/close-cascade", headers=admin_headers
        )
        assert closed.status_code == 200
        assert closed.json()["status"] == "CLOSED"

        cancel = client.post(
            f"/tickets/{ticket['id']}/cancel", headers=vendedor_headers
        )
        assert cancel.status_code == 409


class TestEvaluation:

    def test_evaluate_pay_and_revert(
        self, client, org, open_sorteo, admin_headers, vendedor_headers
    ):
        ticket = sell(
            client, open_sorteo.id, vendedor_headers,
            {"type": "NUMERO", "number": "47", "amount": "100"},
            {"type": "REVENTADO", "number": "47", "amount": "20"},
        ).json()

        evaluated = client.post(f"/sorteos/{open_sorteo.id}/evaluate", json={
            "winning_number": "47",
            "extra_outcome_code": "ROJA",
            "extra_multiplier_id": org.reventado_multiplier.id,
        }, headers=admin_headers)
        assert evaluated.status_code == 200
        assert evaluated.json()["status"] == "EVALUATED"
        assert Decimal(evaluated.json()["extra_multiplier_x"]) == Decimal("200")

        detail = client.get(f"/tickets/{ticket['id']}").json()
        assert detail["status"] == "EVALUATED"
        assert Decimal(detail["total_payout"]) == Decimal("13000")

        paid = client.post(f"/tickets/{ticket['id']}/payments", json={
            "amount": "13000", "idempotency_key": "prize-77",
        }, headers=admin_headers)
        assert paid.status_code == 201
        assert client.get(f"/tickets/{ticket['id']}").json()["status"] == "PAID"

        reverted = client.post(
            f"/sorteos/{open_sorteo.id}/revert",
            json={"reason": "wrong ball"},
            headers=admin_headers,
        )
        assert reverted.status_code == 200
        assert reverted.json()["status"] == "OPEN"
        assert reverted.json()["winning_number"] is None

        detail = client.get(f"/tickets/{ticket['id']}").json()
        assert detail["status"] == "ACTIVE"
        assert Decimal(detail["total_paid"]) == Decimal("0")

    def test_missing_extra_multiplier_returns_400(
        self, client, open_sorteo, admin_headers, vendedor_headers
    ):
        sell(client, open_sorteo.id, vendedor_headers, {
            "type": "REVENTADO", "number": "47", "amount": "20",
        })

        response = client.post(f"/sorteos/{open_sorteo.id}/evaluate", json={
            "winning_number": "47",
        }, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "EXTRA_MULTIPLIER_REQUIRED"
        assert client.get(f"/sorteos/{open_sorteo.id}").json()["status"] == "OPEN"

    def test_revert_without_body(self, client, open_sorteo, admin_headers):
        client.post(f"/sorteos/{open_sorteo.id}/evaluate", json={
            "winning_number": "00",
        }, headers=admin_headers)

        response = client.post(
            f"/sorteos/{open_sorteo.id}/revert", headers=admin_headers
        )
        assert response.status_code == 200


class TestTickets:

    def test_sell_returns_lines(self, client, open_sorteo, vendedor_headers):
        response = sell(client, open_sorteo.id, vendedor_headers, {
            "type": "NUMERO", "number": "05", "amount": "250",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "ACTIVE"
        assert Decimal(data["total_amount"]) == Decimal("250")
        assert len(data["jugadas"]) == 1
        assert Decimal(data["jugadas"][0]["final_multiplier_x"]) == Decimal("90")

    def test_sell_without_lines_returns_422(self, client, open_sorteo, vendedor_headers):
        response = sell(client, open_sorteo.id, vendedor_headers)
        assert response.status_code == 422

    def test_unknown_ticket_returns_404(self, client):
        assert client.get("/tickets/999").status_code == 404


class TestCommissions:

    def test_resolve_falls_back_to_default(self, client, org):
        response = client.post("/commissions/resolve", json={
            "vendedor_id": org.vendedor.id,
            "loteria_id": org.loteria.id,
            "bet_type": "NUMERO",
            "final_multiplier_x": "90",
            "amount": "100",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["vendedor"]["origin"] == "DEFAULT"
        assert data["ventana"]["origin"] == "DEFAULT"
        assert Decimal(data["listero_commission_amount"]) == Decimal("0")

    def test_unknown_vendedor_returns_404(self, client, org):
        response = client.post("/commissions/resolve", json={
            "vendedor_id": 999,
            "loteria_id": org.loteria.id,
            "bet_type": "NUMERO",
            "final_multiplier_x": "90",
            "amount": "100",
        })
        assert response.status_code == 404
