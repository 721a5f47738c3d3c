import pytest
from sqlalchemy import update

from schoolhub.api.deps import get_finance_service
from schoolhub.main import app
from schoolhub.models import SchoolFinance
from schoolhub.services.finance import FinanceService, spending_status

pytestmark = pytest.mark.anyio

BUDGET = {
    "budget_year": "2025",
    "period": "Semester 1",
    "budget_category": "Operasional",
    "budget_amount": 100000000,
}


async def create_budget(client, headers, **overrides):
    payload = dict(BUDGET, **overrides)
    response = await client.post("/api/finance/budgets", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


async def book(client, headers, budget_id, amount, transaction_type="expense"):
    return await client.post(
        "/api/finance/transactions",
        json={
            "finance_id": budget_id,
            "transaction_type": transaction_type,
            "amount": amount,
            "description": "Pembelian alat tulis kantor",
            "transaction_date": "2025-02-10",
        },
        headers=headers,
    )


async def test_new_budget_starts_unused(client, auth_headers):
    budget = await create_budget(client, auth_headers)

    assert budget["used_amount"] == 0
    assert budget["remaining_amount"] == 100000000
    assert budget["approval_status"] is False


async def test_expense_cannot_exceed_remaining(client, auth_headers):
    budget = await create_budget(client, auth_headers)

    response = await book(client, auth_headers, budget["id"], 30000000)
    assert response.status_code == 201
    assert response.json()["data"]["budget_category"] == "Operasional"

    response = await book(client, auth_headers, budget["id"], 80000000)
    assert response.status_code == 400
    assert response.json()["message"] == "Jumlah transaksi melebihi sisa anggaran yang tersedia"

    response = await client.get(f"/api/finance/budgets/{budget['id']}", headers=auth_headers)
    data = response.json()["data"]
    assert data["used_amount"] == 30000000
    assert data["remaining_amount"] == 70000000
    assert data["usage_percentage"] == 30.0


async def test_income_raises_budget(client, auth_headers):
    budget = await create_budget(client, auth_headers)

    response = await book(client, auth_headers, budget["id"], 10000000, transaction_type="income")
    assert response.status_code == 201

    response = await client.get(f"/api/finance/budgets/{budget['id']}", headers=auth_headers)
    data = response.json()["data"]
    assert data["budget_amount"] == 110000000
    assert data["remaining_amount"] == 110000000
    assert data["used_amount"] == 0


async def test_duplicate_budget_rejected(client, auth_headers):
    await create_budget(client, auth_headers)

    response = await client.post("/api/finance/budgets", json=BUDGET, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Anggaran untuk tahun, periode, dan kategori ini sudah ada"


async def test_budget_cannot_shrink_below_used(client, auth_headers):
    budget = await create_budget(client, auth_headers)
    await book(client, auth_headers, budget["id"], 40000000)

    response = await client.put(
        f"/api/finance/budgets/{budget['id']}", json={"budget_amount": 30000000}, headers=auth_headers
    )
    assert response.status_code == 400

    response = await client.put(
        f"/api/finance/budgets/{budget['id']}", json={"budget_amount": 50000000}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["remaining_amount"] == 10000000


async def test_transaction_on_missing_budget(client, auth_headers):
    response = await book(client, auth_headers, 999, 1000)

    assert response.status_code == 404


async def test_approve_budget(client, auth_headers, principal):
    budget = await create_budget(client, auth_headers)

    response = await client.put(f"/api/finance/budgets/{budget['id']}/approve", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["approval_status"] is True
    assert data["approved_by"] == principal.id
    assert data["approved_at"] is not None


async def test_summary_and_spending_report(client, auth_headers):
    operational = await create_budget(client, auth_headers)
    await create_budget(client, auth_headers, budget_category="Sarana", budget_amount=50000000)
    await book(client, auth_headers, operational["id"], 95000000)

    response = await client.get("/api/finance/summary", headers=auth_headers)
    summary = response.json()["data"]
    assert summary["total_budget"] == 150000000
    assert summary["total_used"] == 95000000
    assert summary["budget_count"] == 2
    assert len(summary["recent_transactions"]) == 1

    response = await client.get("/api/finance/spending-report", headers=auth_headers)
    statuses = {row["category"]: row["status"] for row in response.json()["data"]}
    assert statuses == {"Operasional": "warning", "Sarana": "normal"}


def test_spending_status_thresholds():
    assert spending_status(95) == "warning"
    assert spending_status(90) == "caution"
    assert spending_status(71) == "caution"
    assert spending_status(70) == "normal"


class ConcurrentExpenseFinanceService(FinanceService):
    """Another expense of 90M commits right after the budget is read."""

    async def _get_owned_budget(self, db, school_id, budget_id):
        budget = await super()._get_owned_budget(db, school_id, budget_id)
        await db.execute(
            update(SchoolFinance)
            .where(SchoolFinance.id == budget.id)
            .values(
                used_amount=SchoolFinance.used_amount + 90000000,
                remaining_amount=SchoolFinance.remaining_amount - 90000000,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return budget


async def test_expense_rejected_when_budget_shrinks_after_read(client, auth_headers):
    budget = await create_budget(client, auth_headers)
    app.dependency_overrides[get_finance_service] = lambda: ConcurrentExpenseFinanceService()

    response = await book(client, auth_headers, budget["id"], 30000000)

    assert response.status_code == 400
    assert response.json()["message"] == "Jumlah transaksi melebihi sisa anggaran yang tersedia"

    del app.dependency_overrides[get_finance_service]
    response = await client.get(f"/api/finance/budgets/{budget['id']}", headers=auth_headers)
    data = response.json()["data"]
    assert data["used_amount"] == 90000000
    assert data["remaining_amount"] == 10000000
    assert data["remaining_amount"] == data["budget_amount"] - data["used_amount"]

    response = await client.get(f"/api/finance/budgets/{budget['id']}/transactions", headers=auth_headers)
    assert response.json()["data"] == []


async def test_budget_update_rejects_null_amount(client, auth_headers):
    budget = await create_budget(client, auth_headers)

    response = await client.put(f"/api/finance/budgets/{budget['id']}", json={"budget_amount": None}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "budget_amount"
