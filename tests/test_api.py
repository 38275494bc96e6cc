# tests/test_api.py

import json
from decimal import Decimal

import pytest
from httpx import AsyncClient

from points_ledger.clients.payment_gateway import OUTCOME_PENDING
from points_ledger.crud import purchase as crud_purchase
from points_ledger.models.purchase import STATUS_SUCCESS
from points_ledger.services import ledger as ledger_service


pytestmark = pytest.mark.asyncio


async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"status": "ok"}}


async def test_packages_require_token(client: AsyncClient):
    response = await client.get("/api/v1/points/packages")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"


async def test_packages(client: AsyncClient, auth_headers):
    response = await client.get("/api/v1/points/packages", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["currency"] == "NGN"
    assert body["data"]["packages"][0]["points"] == 1000
    assert Decimal(body["data"]["packages"][0]["localAmount"]) == Decimal("900")
    assert body["data"]["customRate"]["minPoints"] == 10_000


async def test_missing_token_is_unauthorized(client: AsyncClient, member):
    response = await client.get(f"/api/v1/points/balance/{member.id}")

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "unauthorized"


async def test_balance_of_own_member(client: AsyncClient, member, auth_headers, fund):
    fund(member, 250)

    response = await client.get(f"/api/v1/points/balance/{member.id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"memberId": member.id, "balance": 250}}


async def test_cannot_read_another_members_balance(client: AsyncClient, member, other_member, auth_headers):
    response = await client.get(f"/api/v1/points/balance/{other_member.id}", headers=auth_headers)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "forbidden"


async def test_admin_can_read_any_balance(client: AsyncClient, member, admin_auth_headers):
    response = await client.get(f"/api/v1/points/balance/{member.id}", headers=admin_auth_headers)
    assert response.status_code == 200


async def test_unknown_member_is_not_found(client: AsyncClient, admin_auth_headers):
    response = await client.get("/api/v1/points/balance/9999", headers=admin_auth_headers)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "member_not_found"


async def test_transactions_page(client: AsyncClient, member, auth_headers, fund):
    for points in (10, 20, 30):
        fund(member, points)

    response = await client.get(
        f"/api/v1/points/transactions/{member.id}",
        params={"page": 1, "pageSize": 2, "type": "award"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalItems"] == 3
    assert data["totalPages"] == 2
    assert data["currentBalance"] == 60
    assert [item["amount"] for item in data["items"]] == [30, 20]
    assert data["items"][0]["balanceAfter"] == 60
    assert data["items"][0]["transactionType"] == "award"


async def test_purchase_and_verify_flow(client: AsyncClient, db_session, gateway, member, auth_headers):
    response = await client.post(
        "/api/v1/points/purchase",
        json={"mode": "preset", "pointsAmount": 1000, "localAmount": 900},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    reference = data["reference"]
    assert data["checkoutUrl"] == f"https://checkout.test/{reference}"
    assert data["purchase"]["status"] == "pending"
    assert data["purchase"]["externalReference"] == reference

    response = await client.post("/api/v1/points/purchase/verify", json={"reference": reference}, headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["alreadyProcessed"] is False
    assert body["data"]["purchase"]["status"] == "success"

    response = await client.post("/api/v1/points/purchase/verify", json={"reference": reference}, headers=auth_headers)
    assert response.json()["data"]["alreadyProcessed"] is True

    db_session.expire_all()
    assert ledger_service.get_balance(db_session, member.id) == 1000


async def test_invalid_custom_amount_is_rejected(client: AsyncClient, gateway, auth_headers):
    response = await client.post(
        "/api/v1/points/purchase",
        json={"mode": "custom", "pointsAmount": 50000, "localAmount": 30000},
        headers=auth_headers,
    )

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "invalid_package"
    assert error["details"]["expected_local_amount"] == "37594"
    assert gateway.initialize_calls == []


async def test_malformed_body_uses_error_envelope(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/points/purchase", json={"mode": "preset"}, headers=auth_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "validation_error"


async def test_gateway_outage_returns_502(client: AsyncClient, gateway, auth_headers):
    gateway.unavailable_initializations = 10

    response = await client.post(
        "/api/v1/points/purchase",
        json={"mode": "preset", "pointsAmount": 1000, "localAmount": 900},
        headers=auth_headers,
    )

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "gateway_unavailable"


async def test_pending_verification_returns_202(client: AsyncClient, gateway, member, auth_headers, make_pending_purchase):
    purchase = make_pending_purchase(member)
    gateway.outcome = OUTCOME_PENDING

    response = await client.post(
        "/api/v1/points/purchase/verify", json={"reference": purchase.external_reference}, headers=auth_headers,
    )

    assert response.status_code == 202
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "payment_pending"
    assert body["data"]["purchase"]["status"] == "pending"


async def test_cannot_verify_another_members_purchase(client: AsyncClient, gateway, other_member, member, make_auth_headers,
                                                      make_pending_purchase):
    purchase = make_pending_purchase(member)

    response = await client.post(
        "/api/v1/points/purchase/verify",
        json={"reference": purchase.external_reference},
        headers=make_auth_headers(other_member),
    )

    assert response.status_code == 403
    assert gateway.verify_calls == []


async def test_purchases_list(client: AsyncClient, member, auth_headers, make_pending_purchase):
    make_pending_purchase(member)
    make_pending_purchase(member)

    response = await client.get(f"/api/v1/points/purchases/{member.id}", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalItems"] == 2
    assert data["items"][0]["pointsAmount"] == 1000


async def test_transfer_endpoint(client: AsyncClient, db_session, member, other_member, auth_headers, fund):
    fund(member, 500)

    response = await client.post(
        "/api/v1/points/transfer",
        json={"toMemberId": other_member.id, "points": 200, "reason": "Gift"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["transferId"].startswith("transfer_")
    assert data["from"]["amount"] == -200
    assert data["to"]["amount"] == 200

    db_session.expire_all()
    assert ledger_service.get_balance(db_session, member.id) == 300
    assert ledger_service.get_balance(db_session, other_member.id) == 200


async def test_transfer_errors(client: AsyncClient, member, other_member, auth_headers, fund):
    fund(member, 50)

    response = await client.post(
        "/api/v1/points/transfer",
        json={"toMemberId": other_member.id, "points": 100, "reason": "Too much"},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "insufficient_funds"

    response = await client.post(
        "/api/v1/points/transfer",
        json={"toMemberId": member.id, "points": 10, "reason": "Me"},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "self_transfer"


async def test_webhook_settles_purchase(client: AsyncClient, db_session, gateway, member, make_pending_purchase):
    purchase = make_pending_purchase(member)
    payload = json.dumps({"event": "charge.success", "reference": purchase.external_reference})

    response = await client.post(
        "/api/v1/webhooks/paystack", content=payload, headers={"x-fake-signature": "valid"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["processed"] is True

    db_session.expire_all()
    assert crud_purchase.get_purchase_by_reference(db_session, purchase.external_reference).status == STATUS_SUCCESS
    assert ledger_service.get_balance(db_session, member.id) == 1000


async def test_webhook_with_bad_signature_is_rejected(client: AsyncClient, gateway, member, make_pending_purchase):
    purchase = make_pending_purchase(member)
    payload = json.dumps({"event": "charge.success", "reference": purchase.external_reference})

    response = await client.post(
        "/api/v1/webhooks/flutterwave", content=payload, headers={"x-fake-signature": "forged"},
    )

    assert response.status_code == 401
    assert gateway.verify_calls == []


async def test_webhook_for_unknown_reference_is_acknowledged(client: AsyncClient, gateway):
    payload = json.dumps({"event": "charge.success", "reference": "pt_0_unknown"})

    response = await client.post(
        "/api/v1/webhooks/paystack", content=payload, headers={"x-fake-signature": "valid"},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["processed"] is False
    assert data["error"] == "purchase_not_found"


async def test_admin_audit_and_adjustments(client: AsyncClient, member, auth_headers, admin_auth_headers):
    response = await client.post(
        f"/api/v1/admin/ledger/{member.id}/award",
        json={"points": 100, "reason": "Compensation"},
        headers=admin_auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["source"] == "admin"

    response = await client.post(
        f"/api/v1/admin/ledger/{member.id}/redeem", json={"points": 30}, headers=admin_auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["balanceAfter"] == 70

    response = await client.get(f"/api/v1/admin/ledger/{member.id}/audit", headers=admin_auth_headers)
    assert response.status_code == 200
    audit = response.json()["data"]
    assert audit == {
        "memberId": member.id,
        "sumOfAmounts": 70,
        "latestBalanceAfter": 70,
        "entries": 2,
        "consistent": True,
    }

    response = await client.get(f"/api/v1/admin/ledger/{member.id}/audit", headers=auth_headers)
    assert response.status_code == 403


async def test_admin_ledger_totals_and_transfer_audit(client: AsyncClient, member, other_member, auth_headers,
                                                      admin_auth_headers, fund):
    fund(member, 500)
    response = await client.post(
        "/api/v1/points/transfer",
        json={"toMemberId": other_member.id, "points": 200, "reason": "Tickets"},
        headers=auth_headers,
    )
    transfer_id = response.json()["data"]["transferId"]

    response = await client.get("/api/v1/admin/ledger/totals", headers=admin_auth_headers)
    assert response.status_code == 200
    totals = response.json()["data"]
    assert totals["pointsInCirculation"] == 500
    assert totals["transferNet"] == 0
    assert totals["consistent"] is True

    response = await client.get(f"/api/v1/admin/transfers/{transfer_id}/audit", headers=admin_auth_headers)
    assert response.status_code == 200
    audit = response.json()["data"]
    assert audit["consistent"] is True
    assert len(audit["entries"]) == 2

    response = await client.get("/api/v1/admin/transfers/transfer_missing/audit", headers=admin_auth_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "transfer_not_found"

    response = await client.get("/api/v1/admin/ledger/totals", headers=auth_headers)
    assert response.status_code == 403
