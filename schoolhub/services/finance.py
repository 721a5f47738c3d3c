import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, desc, asc, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolhub.exceptions import BusinessRuleError, NotFoundError
from schoolhub.models.finance import SchoolFinance, FinancialTransaction
from schoolhub.schemas.common import Page, build_page, to_float
from schoolhub.schemas.finance import (
    BudgetCreate, BudgetUpdate, BudgetRead, TransactionCreate, TransactionRead,
    budget_to_dto, transaction_to_dto,
)

logger = logging.getLogger(__name__)

BUDGET_NOT_FOUND = "Anggaran tidak ditemukan atau bukan bagian dari sekolah ini"
INSUFFICIENT_BUDGET = "Jumlah transaksi melebihi sisa anggaran yang tersedia"


def spending_status(percentage: float) -> str:
    if percentage > 90:
        return "warning"
    if percentage > 70:
        return "caution"
    return "normal"


class FinanceService:
    """Budgets and the transactions booked against them."""

    async def _get_owned_budget(self, db: AsyncSession, school_id: int, budget_id: int) -> SchoolFinance:
        result = await db.execute(
            select(SchoolFinance).where(
                and_(SchoolFinance.id == budget_id, SchoolFinance.school_id == school_id)
            )
        )
        budget = result.scalars().first()
        if not budget:
            raise NotFoundError(BUDGET_NOT_FOUND)
        return budget

    # Budgets
    async def get_budgets(
        self,
        db: AsyncSession,
        school_id: int,
        budget_year: Optional[str] = None,
        period: Optional[str] = None,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page:
        conditions = [SchoolFinance.school_id == school_id]
        if budget_year:
            conditions.append(SchoolFinance.budget_year == budget_year)
        if period:
            conditions.append(SchoolFinance.period.ilike(f"%{period}%"))
        if category:
            conditions.append(SchoolFinance.budget_category.ilike(f"%{category}%"))

        total = await db.scalar(select(func.count(SchoolFinance.id)).where(and_(*conditions)))
        result = await db.execute(
            select(SchoolFinance)
            .where(and_(*conditions))
            .order_by(desc(SchoolFinance.budget_year), asc(SchoolFinance.period), asc(SchoolFinance.budget_category))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        budgets = [budget_to_dto(b) for b in result.scalars().all()]
        return build_page(budgets, total or 0, page, limit)

    async def get_budget(self, db: AsyncSession, school_id: int, budget_id: int) -> BudgetRead:
        return budget_to_dto(await self._get_owned_budget(db, school_id, budget_id))

    async def get_budgets_by_category(self, db: AsyncSession, school_id: int, category: str) -> List[BudgetRead]:
        result = await db.execute(
            select(SchoolFinance)
            .where(and_(SchoolFinance.school_id == school_id, SchoolFinance.budget_category.ilike(category)))
            .order_by(desc(SchoolFinance.budget_year), asc(SchoolFinance.period))
        )
        return [budget_to_dto(b) for b in result.scalars().all()]

    async def get_budget_categories(self, db: AsyncSession, school_id: int) -> List[str]:
        result = await db.execute(
            select(SchoolFinance.budget_category)
            .where(SchoolFinance.school_id == school_id)
            .distinct()
            .order_by(SchoolFinance.budget_category)
        )
        return list(result.scalars().all())

    async def add_budget(self, db: AsyncSession, school_id: int, data: BudgetCreate) -> BudgetRead:
        existing = await db.execute(
            select(SchoolFinance.id).where(
                and_(
                    SchoolFinance.school_id == school_id,
                    SchoolFinance.budget_year == data.budget_year,
                    SchoolFinance.period == data.period,
                    SchoolFinance.budget_category == data.budget_category,
                )
            )
        )
        if existing.scalars().first():
            raise BusinessRuleError("Anggaran untuk tahun, periode, dan kategori ini sudah ada")

        budget = SchoolFinance(
            school_id=school_id,
            used_amount=Decimal("0"),
            remaining_amount=data.budget_amount,
            approval_status=False,
            **data.model_dump(),
        )
        db.add(budget)
        await db.commit()
        await db.refresh(budget)
        logger.info(f"Budget {budget.id} created for school {school_id}")
        return budget_to_dto(budget)

    async def update_budget(self, db: AsyncSession, school_id: int, budget_id: int, data: BudgetUpdate) -> BudgetRead:
        budget = await self._get_owned_budget(db, school_id, budget_id)
        update_data = data.model_dump(exclude_unset=True)

        if "budget_amount" in update_data and update_data["budget_amount"] is not None:
            new_amount = update_data["budget_amount"]
            if new_amount < budget.used_amount:
                raise BusinessRuleError("Jumlah anggaran tidak boleh lebih kecil dari jumlah yang sudah digunakan")
            budget.remaining_amount = new_amount - budget.used_amount

        for key, value in update_data.items():
            setattr(budget, key, value)

        await db.commit()
        await db.refresh(budget)
        return budget_to_dto(budget)

    async def approve_budget(self, db: AsyncSession, school_id: int, budget_id: int, approver_id: int) -> BudgetRead:
        budget = await self._get_owned_budget(db, school_id, budget_id)
        budget.approval_status = True
        budget.approved_by = approver_id
        budget.approved_at = datetime.utcnow()
        await db.commit()
        await db.refresh(budget)
        logger.info(f"Budget {budget_id} approved by user {approver_id}")
        return budget_to_dto(budget)

    # Transactions
    async def get_transactions(
        self,
        db: AsyncSession,
        school_id: int,
        finance_id: Optional[int] = None,
        transaction_type: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page:
        conditions = [SchoolFinance.school_id == school_id]
        if finance_id:
            conditions.append(FinancialTransaction.finance_id == finance_id)
        if transaction_type:
            conditions.append(FinancialTransaction.transaction_type == transaction_type)
        if start_date:
            conditions.append(FinancialTransaction.transaction_date >= start_date)
        if end_date:
            conditions.append(FinancialTransaction.transaction_date <= end_date)

        total = await db.scalar(
            select(func.count(FinancialTransaction.id))
            .join(SchoolFinance, FinancialTransaction.finance_id == SchoolFinance.id)
            .where(and_(*conditions))
        )
        result = await db.execute(
            select(FinancialTransaction, SchoolFinance.budget_category)
            .join(SchoolFinance, FinancialTransaction.finance_id == SchoolFinance.id)
            .where(and_(*conditions))
            .order_by(desc(FinancialTransaction.transaction_date), desc(FinancialTransaction.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        transactions = [transaction_to_dto(t, category) for t, category in result.all()]
        return build_page(transactions, total or 0, page, limit)

    async def get_budget_transactions(self, db: AsyncSession, school_id: int, budget_id: int) -> List[TransactionRead]:
        budget = await self._get_owned_budget(db, school_id, budget_id)
        result = await db.execute(
            select(FinancialTransaction)
            .where(FinancialTransaction.finance_id == budget.id)
            .order_by(desc(FinancialTransaction.transaction_date), desc(FinancialTransaction.id))
        )
        return [transaction_to_dto(t, budget.budget_category) for t in result.scalars().all()]

    async def add_transaction(
        self,
        db: AsyncSession,
        school_id: int,
        data: TransactionCreate,
        created_by: Optional[int] = None,
    ) -> TransactionRead:
        """
        Book a transaction and adjust its budget.

        The budget is adjusted with a single conditional UPDATE. For expenses the
        UPDATE only matches while remaining_amount still covers the amount, so two
        concurrent expenses cannot overspend the budget.

        Raises:
            NotFoundError: If the budget does not exist in this school
            BusinessRuleError: If an expense exceeds the remaining budget
        """
        budget = await self._get_owned_budget(db, school_id, data.finance_id)
        amount = data.amount

        if data.transaction_type.value == "expense":
            if amount > budget.remaining_amount:
                raise BusinessRuleError(INSUFFICIENT_BUDGET)
            statement = (
                update(SchoolFinance)
                .where(and_(SchoolFinance.id == budget.id, SchoolFinance.remaining_amount >= amount))
                .values(
                    used_amount=SchoolFinance.used_amount + amount,
                    remaining_amount=SchoolFinance.remaining_amount - amount,
                )
            )
        else:
            statement = (
                update(SchoolFinance)
                .where(SchoolFinance.id == budget.id)
                .values(
                    budget_amount=SchoolFinance.budget_amount + amount,
                    remaining_amount=SchoolFinance.remaining_amount + amount,
                )
            )

        result = await db.execute(statement.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            await db.rollback()
            logger.info(f"Expense on budget {budget.id} rejected: remaining amount changed concurrently")
            raise BusinessRuleError(INSUFFICIENT_BUDGET)

        transaction = FinancialTransaction(
            finance_id=budget.id,
            transaction_type=data.transaction_type.value,
            amount=amount,
            description=data.description,
            transaction_date=data.transaction_date,
            receipt_number=data.receipt_number,
            proof_document=data.proof_document,
            created_by=created_by,
        )
        db.add(transaction)
        await db.commit()
        await db.refresh(transaction)
        await db.refresh(budget)
        return transaction_to_dto(transaction, budget.budget_category)

    # Reports
    async def get_financial_summary(self, db: AsyncSession, school_id: int, budget_year: Optional[str] = None) -> Dict[str, Any]:
        conditions = [SchoolFinance.school_id == school_id]
        if budget_year:
            conditions.append(SchoolFinance.budget_year == budget_year)

        result = await db.execute(select(SchoolFinance).where(and_(*conditions)))
        budgets = result.scalars().all()

        total_budget = sum(to_float(b.budget_amount) for b in budgets)
        total_used = sum(to_float(b.used_amount) for b in budgets)
        total_remaining = sum(to_float(b.remaining_amount) for b in budgets)

        by_category: Dict[str, Dict[str, float]] = {}
        for budget in budgets:
            entry = by_category.setdefault(budget.budget_category, {"budget": 0.0, "used": 0.0, "remaining": 0.0})
            entry["budget"] += to_float(budget.budget_amount)
            entry["used"] += to_float(budget.used_amount)
            entry["remaining"] += to_float(budget.remaining_amount)
        for entry in by_category.values():
            entry["usage_percentage"] = round(entry["used"] / entry["budget"] * 100, 2) if entry["budget"] > 0 else 0.0

        recent = await db.execute(
            select(FinancialTransaction, SchoolFinance.budget_category)
            .join(SchoolFinance, FinancialTransaction.finance_id == SchoolFinance.id)
            .where(and_(*conditions))
            .order_by(desc(FinancialTransaction.transaction_date), desc(FinancialTransaction.id))
            .limit(10)
        )

        return {
            "total_budget": total_budget,
            "total_used": total_used,
            "total_remaining": total_remaining,
            "usage_percentage": round(total_used / total_budget * 100, 2) if total_budget > 0 else 0.0,
            "budget_count": len(budgets),
            "by_category": by_category,
            "recent_transactions": [transaction_to_dto(t, category) for t, category in recent.all()],
        }

    async def get_spending_report(self, db: AsyncSession, school_id: int, budget_year: Optional[str] = None) -> List[Dict[str, Any]]:
        conditions = [SchoolFinance.school_id == school_id]
        if budget_year:
            conditions.append(SchoolFinance.budget_year == budget_year)

        result = await db.execute(
            select(SchoolFinance)
            .where(and_(*conditions))
            .order_by(desc(SchoolFinance.budget_year), asc(SchoolFinance.budget_category))
        )
        report = []
        for budget in result.scalars().all():
            dto = budget_to_dto(budget)
            report.append({
                "id": dto.id,
                "budget_year": dto.budget_year,
                "period": dto.period,
                "category": dto.budget_category,
                "budget_amount": dto.budget_amount,
                "used_amount": dto.used_amount,
                "remaining_amount": dto.remaining_amount,
                "spending_percentage": dto.usage_percentage,
                "status": spending_status(dto.usage_percentage),
            })
        return report
