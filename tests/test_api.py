import pytest
from fastapi.testclient import TestClient

from main import create_app


@pytest.fixture
def client(service):
    with TestClient(create_app(ledger_service=service)) as c:
        yield c


def _receipt(client, name="Ravi Kumar", price="100.00", **extra):
    body = {"customer_name": name, "items": [{"name": "Tea", "unit_price": price}]}
    body.update(extra)
    res = client.post("/receipts", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def test_root(client):
    assert client.get("/").json() == {"message": "Receipt Ledger is running!!"}


def test_create_and_get_receipt(client):
    created = _receipt(
        client,
        items=[{"unit_price": "199.99", "quantity": "2"}],
        tax_percent="5",
        amount_paid="100",
        payment_mode="upi",
        receipt_no="R-1",
    )
    # 399.98 + 20.00 (19.999 rounded)
    assert created["line_items_total"] == "419.98"
    assert created["amount_paid"] == "100.00"
    assert created["receipt_own_balance"] == "319.98"
    assert created["receipt_no"] == "R-1"

    fetched = client.get(f"/receipts/{created['receipt_id']}").json()
    assert fetched == created


def test_unknown_receipt_is_404(client):
    res = client.get("/receipts/nope")
    assert res.status_code == 404
    assert res.json()["detail"]["code"] == "NOT_FOUND"


def test_receipt_validation(client):
    res = client.post("/receipts", json={"customer_name": "Ravi", "items": []})
    assert res.status_code == 422

    res = client.post(
        "/receipts",
        json={"customer_name": "Ravi", "items": [{"unit_price": "10"}], "amount_paid": "11"},
    )
    assert res.status_code == 422
    assert res.json()["detail"]["code"] == "INVALID_AMOUNT"


def test_payment_cascades_and_replays(client):
    first = _receipt(client, price="100", created_at="2024-01-01T09:00:00Z")
    second = _receipt(client, price="50", created_at="2024-01-01T10:00:00Z")
    assert second["old_balance_at_creation"] == "100.00"

    url = f"/receipts/{first['receipt_id']}/payments"
    res = client.post(url, json={"amount": "120.00"}, headers={"Idempotency-Key": "pay-1"})
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["total_applied"] == "120.00"
    assert body["replayed"] is False
    assert [r["receipt_id"] for r in body["receipts_affected"]] == [first["receipt_id"], second["receipt_id"]]

    again = client.post(url, json={"amount": "120.00"}, headers={"Idempotency-Key": "pay-1"}).json()
    assert again["replayed"] is True
    assert again["payment_id"] == body["payment_id"]

    history = client.get(url).json()
    assert [t["amount"] for t in history] == ["100.00"]
    assert history[0]["payment_mode"] == "cash"


def test_key_in_body_and_conflicting_reuse(client):
    r = _receipt(client, price="100")
    url = f"/receipts/{r['receipt_id']}/payments"

    assert client.post(url, json={"amount": "10", "idempotency_key": "k1"}).status_code == 200
    res = client.post(url, json={"amount": "20", "idempotency_key": "k1"})
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "DUPLICATE_PAYMENT"


@pytest.mark.parametrize(
    "payload, status, code",
    [
        ({"amount": "500", "idempotency_key": "k"}, 409, "OVERPAYMENT"),
        ({"amount": "0", "idempotency_key": "k"}, 422, "INVALID_AMOUNT"),
        ({"amount": "1.005", "idempotency_key": "k"}, 422, "INVALID_AMOUNT"),
        ({"amount": "10"}, 422, "INVALID_REQUEST"),
    ],
)
def test_payment_errors(client, payload, status, code):
    r = _receipt(client, price="100")
    res = client.post(f"/receipts/{r['receipt_id']}/payments", json=payload)
    assert res.status_code == status
    assert res.json()["detail"]["code"] == code


def test_overpayment_reports_remainder(client):
    r = _receipt(client, price="100")
    res = client.post(f"/receipts/{r['receipt_id']}/payments", json={"amount": "130", "idempotency_key": "k"})
    assert res.json()["detail"]["unapplied_minor"] == 3000


def test_customer_views(client):
    first = _receipt(client, name="Ravi Kumar", price="100", created_at="2024-01-01T09:00:00Z")
    _receipt(client, name="ravi  kumar", price="40", created_at="2024-01-01T10:00:00Z")
    _receipt(client, name="Meena", price="5")

    ledger = client.get("/customers/Ravi Kumar/ledger").json()
    assert [row["running_balance"] for row in ledger] == ["100.00", "140.00"]
    assert [row["carried_balance"] for row in ledger] == ["0.00", "100.00"]

    balances = client.get("/customers/balances").json()
    assert [(c["customer_key"], c["total_balance"]) for c in balances] == [
        ("ravi kumar", "140.00"),
        ("meena", "5.00"),
    ]
    assert len(client.get("/customers/balances", params={"min_balance": "10"}).json()) == 1

    client.post(f"/receipts/{first['receipt_id']}/payments", json={"amount": "30", "idempotency_key": "k1"})
    payments = client.get("/customers/ravi kumar/payments").json()
    assert [p["idempotency_key"] for p in payments] == ["k1"]

    report = client.get("/customers/ravi kumar/reconciliation").json()
    assert report["is_consistent"] is True
    assert report["receipts_checked"] == 2

    assert client.get("/customers/nobody/ledger").status_code == 404
    assert client.get("/customers/nobody/reconciliation").status_code == 404


def test_key_reused_on_other_receipt_is_409(client):
    a = _receipt(client, name="Ravi")
    b = _receipt(client, name="Meena")
    body = {"amount": "3.00", "idempotency_key": "k1"}

    assert client.post(f"/receipts/{a['receipt_id']}/payments", json=body).status_code == 200
    res = client.post(f"/receipts/{b['receipt_id']}/payments", json=body)
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "DUPLICATE_PAYMENT"
    assert client.get(f"/receipts/{b['receipt_id']}").json()["amount_paid"] == "0.00"


def test_unpaid_receipts_route(client):
    first = _receipt(client, price="100", created_at="2024-01-01T09:00:00Z")
    _receipt(client, price="20", amount_paid="20", created_at="2024-01-01T08:00:00Z")

    unpaid = client.get("/customers/RAVI KUMAR/unpaid").json()
    assert [r["receipt_id"] for r in unpaid] == [first["receipt_id"]]
    assert client.get("/customers/nobody/unpaid").json() == []


def test_payment_preview_route(client):
    r = _receipt(client, price="100")
    url = f"/receipts/{r['receipt_id']}/payments/preview"

    ok = client.post(url, json={"amount": "40"}).json()
    assert ok["valid"] is True
    assert ok["max_amount"] == "100.00"
    assert ok["allocations"] == [{"receipt_id": r["receipt_id"], "to_own": "40.00", "to_old": "0.00"}]

    over = client.post(url, json={"amount": "130"}).json()
    assert over["valid"] is False
    assert over["unapplied"] == "30.00"

    assert client.get(f"/receipts/{r['receipt_id']}").json()["amount_paid"] == "0.00"
    assert client.post("/receipts/nope/payments/preview", json={"amount": "1"}).status_code == 404


def test_payment_statistics_route(client):
    r = _receipt(client, price="100", amount_paid="10", payment_mode="upi", created_at="2024-01-01T09:00:00Z")
    _receipt(client, name="Meena", price="5", amount_paid="5", created_at="2024-01-02T09:00:00Z")
    client.post(f"/receipts/{r['receipt_id']}/payments", json={"amount": "20", "idempotency_key": "k1"})

    stats = client.get("/payments/statistics").json()
    assert stats["total_payments"] == 3
    assert stats["total_amount"] == "35.00"
    assert stats["by_method"]["cash"] == {"count": 2, "amount": "25.00"}

    ravi = client.get("/payments/statistics", params={"customer": "Ravi Kumar"}).json()
    assert ravi["total_payments"] == 2
    assert ravi["average_payment"] == "15.00"

    jan1 = client.get(
        "/payments/statistics",
        params={"start": "2024-01-01T00:00:00Z", "end": "2024-01-01T23:59:59Z"},
    ).json()
    assert (jan1["total_payments"], jan1["by_method"]) == (1, {"upi": {"count": 1, "amount": "10.00"}})
