import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from csrf import CSRF_HEADER
from database import Base
from main import app, get_db


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    testing_session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        token = test_client.get("/api/csrf-token").json()["token"]
        test_client.headers[CSRF_HEADER] = token
        yield test_client
    app.dependency_overrides.clear()


def _account(client: TestClient) -> int:
    response = client.post("/api/accounts", json={"name": "Home"})
    assert response.status_code == 201
    return response.json()["id"]


def _card(client: TestClient, account_id: int) -> int:
    response = client.post(
        f"/api/accounts/{account_id}/credit-cards",
        json={"name": "Visa", "closing_day": 10, "due_day": 20},
    )
    assert response.status_code == 201
    return response.json()["id"]


def _purchase(client: TestClient, account_id: int, card_id: int, installments: int = 3):
    response = client.post(
        f"/api/accounts/{account_id}/transactions",
        json={
            "date": "2024-01-15",
            "type": "expense",
            "amount": "100.00",
            "description": "TV",
            "credit_card_id": card_id,
            "installments": installments,
        },
    )
    assert response.status_code == 201
    return response.json()["items"]


def test_mutations_require_csrf_header(client):
    client.headers.pop(CSRF_HEADER)
    response = client.post("/api/accounts", json={"name": "Home"})
    assert response.status_code == 400
    assert client.get("/api/accounts").status_code == 200


def test_installment_purchase_and_invoice_payment(client):
    account_id = _account(client)
    card_id = _card(client, account_id)
    items = _purchase(client, account_id, card_id)
    assert [i["amount"] for i in items] == ["33.34", "33.33", "33.33"]
    assert [i["current_installment"] for i in items] == [1, 2, 3]

    invoices = client.get(
        f"/api/accounts/{account_id}/credit-card-invoices", params={"month": "2024-03"}
    ).json()
    assert len(invoices) == 1
    assert invoices[0]["total_cents"] == 3333
    assert invoices[0]["due_date"] == "2024-04-20"

    invoice = client.get(f"/api/credit-cards/{card_id}/invoices/2024-02").json()
    assert invoice["total"] == "33.34"
    assert invoice["installment_count"] == 1

    paid = client.post(f"/api/credit-cards/{card_id}/invoices/2024-02/pay")
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    card = client.get(f"/api/credit-cards/{card_id}").json()
    assert card["current_balance_cents"] == 6666

    reopened = client.post(f"/api/credit-cards/{card_id}/invoices/2024-02/reopen")
    assert reopened.json()["status"] != "paid"


def test_scoped_edits_over_http(client):
    account_id = _account(client)
    card_id = _card(client, account_id)
    items = _purchase(client, account_id, card_id, installments=4)
    second = items[1]["id"]

    rejected = client.patch(
        f"/api/transactions/{second}", json={"edit_scope": "future", "amount": "40.00"}
    )
    assert rejected.status_code == 409
    assert rejected.json()["error"] == "InconsistentGroupState"

    accepted = client.patch(
        f"/api/transactions/{second}",
        json={"edit_scope": "future", "amount": "40.00", "amount_policy": "retotal"},
    )
    assert accepted.status_code == 200
    assert [i["amount_cents"] for i in accepted.json()["items"]] == [4000, 4000, 4000]

    deleted = client.delete(
        f"/api/transactions/{items[2]['id']}", params={"edit_scope": "future"}
    )
    assert deleted.json() == {"removed": 2}
    assert client.get(f"/api/transactions/{items[3]['id']}").status_code == 404


def test_validation_errors_map_to_client_errors(client):
    account_id = _account(client)
    bad_card = client.post(
        f"/api/accounts/{account_id}/credit-cards",
        json={"name": "Broken", "closing_day": 32, "due_day": 5},
    )
    assert bad_card.status_code == 422
    assert bad_card.json()["error"] == "InvalidCardConfiguration"

    bad_count = client.post(
        f"/api/accounts/{account_id}/transactions",
        json={
            "date": "2024-01-15",
            "type": "expense",
            "amount_cents": 1000,
            "description": "Nothing",
            "installments": 0,
        },
    )
    assert bad_count.status_code == 422
    assert bad_count.json()["error"] == "InvalidInstallmentCount"

    assert client.get("/api/accounts/999").status_code == 404


def test_fixed_cashflow_occurrences(client):
    account_id = _account(client)
    created = client.post(
        f"/api/accounts/{account_id}/monthly-fixed",
        json={
            "description": "Rent",
            "amount": "1500.00",
            "type": "expense",
            "due_day": 31,
            "start_month": "2024-01",
        },
    )
    assert created.status_code == 201
    fixed_id = created.json()["id"]

    february = client.get(
        f"/api/accounts/{account_id}/monthly-fixed", params={"month": "2024-02"}
    ).json()
    assert [o["date"] for o in february["expenses"]] == ["2024-02-29"]
    assert february["totals"]["expenses"] == 150000

    url = f"/api/monthly-fixed/{fixed_id}/occurrences"
    assert client.delete(f"{url}/2024-02-29").status_code == 200
    assert client.get(url, params={"month": "2024-02"}).json() == []
    assert client.get(url, params={"month": "2024-03"}).json()[0]["date"] == "2024-03-31"

    reverted = client.post(f"{url}/2024-02-29/revert")
    assert reverted.json()["date"] == "2024-02-29"

    edited = client.patch(f"{url}/2024-03-31", json={"amount": "1600.00"})
    assert edited.json()["amount_cents"] == 160000
    assert edited.json()["is_exception"] is True

    not_an_occurrence = client.patch(f"{url}/2024-03-15", json={"amount": "1.00"})
    assert not_an_occurrence.status_code == 404

    summary = client.get(
        f"/api/accounts/{account_id}/summary", params={"month": "2024-03"}
    ).json()
    assert summary["expenses"] == 160000

    listing = client.get(
        f"/api/accounts/{account_id}/transactions", params={"month": "2024-03"}
    ).json()
    assert [(i["kind"], i["amount_cents"]) for i in listing["items"]] == [
        ("fixed", 160000)
    ]


def test_categories_and_debts(client):
    account_id = _account(client)
    created = client.post(
        f"/api/accounts/{account_id}/categories",
        json={"name": "Food", "type": "expense"},
    )
    assert created.status_code == 201
    names = [c["name"] for c in client.get(f"/api/accounts/{account_id}/categories").json()]
    assert names == ["Food"]

    debt = client.post(
        f"/api/accounts/{account_id}/debts",
        json={"name": "Car loan", "balance": "12000.00", "rate_period": "yearly"},
    )
    assert debt.status_code == 201
    debt_id = debt.json()["id"]
    assert debt.json()["balance_cents"] == 1200000

    updated = client.patch(
        f"/api/debts/{debt_id}",
        json={"name": "Car loan", "balance_cents": 1100000, "rate_period": "yearly"},
    )
    assert updated.json()["balance_cents"] == 1100000

    assert client.delete(f"/api/debts/{debt_id}").json() == {"status": "deleted"}
    assert client.get(f"/api/accounts/{account_id}/debts").json() == []


def test_category_stats_over_http(client):
    account_id = _account(client)
    food = client.post(
        f"/api/accounts/{account_id}/categories",
        json={"name": "Food", "type": "expense", "color": "#00aa00"},
    ).json()
    client.post(
        f"/api/accounts/{account_id}/transactions",
        json={
            "date": "2024-03-02",
            "type": "expense",
            "amount": "40.00",
            "description": "Groceries",
            "category_id": food["id"],
        },
    )
    client.post(
        f"/api/accounts/{account_id}/monthly-fixed",
        json={
            "description": "Rent",
            "amount": "1500.00",
            "type": "expense",
            "due_day": 5,
            "start_month": "2024-01",
        },
    )

    url = f"/api/accounts/{account_id}/categories/stats"
    march = client.get(url, params={"month": "2024-03"}).json()
    assert march["period"] == {"start": "2024-03-01", "end": "2024-03-31"}
    assert [(i["name"], i["total"]) for i in march["items"]] == [
        ("Uncategorized", "1500.00"),
        ("Food", "40.00"),
    ]
    assert march["items"][1]["color"] == "#00aa00"

    income = client.get(url, params={"month": "2024-03", "type": "income"}).json()
    assert income["items"] == []
    assert client.get("/api/accounts/999/categories/stats").status_code == 404
