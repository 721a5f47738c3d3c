from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok, get_finance_service
from schoolhub.database import get_db
from schoolhub.middleware.authentication import get_current_user, get_school_id, require_principal_or_admin
from schoolhub.schemas.finance import BudgetCreate, BudgetUpdate, TransactionCreate, TransactionTypeEnum
from schoolhub.schemas.users import CurrentUser
from schoolhub.services.finance import FinanceService

router = APIRouter()

# Budget endpoints
@router.get("/finance/budgets")
async def get_budgets(
    budget_year: Optional[str] = None,
    period: Optional[str] = None,
    category: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    """
    List budgets, newest year first.
    """
    budgets = await service.get_budgets(db, school_id, budget_year, period, category, page, limit)
    return ok("Data anggaran berhasil diambil", budgets)

@router.get("/finance/budgets/categories")
async def get_budget_categories(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    return ok("Kategori anggaran berhasil diambil", await service.get_budget_categories(db, school_id))

@router.get("/finance/budgets/category/{category}")
async def get_budgets_by_category(
    category: str,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    return ok("Data anggaran berhasil diambil", await service.get_budgets_by_category(db, school_id, category))

@router.get("/finance/budgets/{budget_id}")
async def get_budget(
    budget_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    return ok("Data anggaran berhasil diambil", await service.get_budget(db, school_id, budget_id))

@router.post("/finance/budgets", status_code=status.HTTP_201_CREATED)
async def add_budget(
    data: BudgetCreate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    return ok("Anggaran berhasil ditambahkan", await service.add_budget(db, school_id, data))

@router.put("/finance/budgets/{budget_id}")
async def update_budget(
    data: BudgetUpdate,
    budget_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    return ok("Anggaran berhasil diperbarui", await service.update_budget(db, school_id, budget_id, data))

@router.put("/finance/budgets/{budget_id}/approve")
async def approve_budget(
    budget_id: int = Path(..., gt=0),
    current_user: CurrentUser = Depends(require_principal_or_admin),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    """
    Approve a budget. Only principals and admins may approve.
    """
    budget = await service.approve_budget(db, school_id, budget_id, current_user.user_id)
    return ok("Anggaran berhasil disetujui", budget)

@router.get("/finance/budgets/{budget_id}/transactions")
async def get_budget_transactions(
    budget_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    transactions = await service.get_budget_transactions(db, school_id, budget_id)
    return ok("Data transaksi berhasil diambil", transactions)

# Transaction endpoints
@router.get("/finance/transactions")
async def get_transactions(
    finance_id: Optional[int] = None,
    transaction_type: Optional[TransactionTypeEnum] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    transactions = await service.get_transactions(
        db,
        school_id,
        finance_id,
        transaction_type.value if transaction_type else None,
        start_date,
        end_date,
        page,
        limit,
    )
    return ok("Data transaksi berhasil diambil", transactions)

@router.post("/finance/transactions", status_code=status.HTTP_201_CREATED)
async def add_transaction(
    data: TransactionCreate,
    current_user: CurrentUser = Depends(get_current_user),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    """
    Record income or expense against a budget; expenses may not exceed what remains.
    """
    transaction = await service.add_transaction(db, school_id, data, created_by=current_user.user_id)
    return ok("Transaksi berhasil ditambahkan", transaction)

# Reports
@router.get("/finance/summary")
async def get_financial_summary(
    budget_year: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    return ok("Ringkasan keuangan berhasil diambil", await service.get_financial_summary(db, school_id, budget_year))

@router.get("/finance/spending-report")
async def get_spending_report(
    budget_year: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FinanceService = Depends(get_finance_service)
):
    return ok("Laporan pengeluaran berhasil diambil", await service.get_spending_report(db, school_id, budget_year))
