from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field, condecimal, field_validator
from enum import Enum

from schoolhub.models.finance import SchoolFinance, FinancialTransaction
from schoolhub.schemas.common import reject_null, to_float


class TransactionTypeEnum(str, Enum):
    income = "income"
    expense = "expense"


# Budget schemas
class BudgetBase(BaseModel):
    budget_year: str = Field(..., pattern=r"^\d{4}$")
    period: str = Field(..., min_length=1, max_length=50)
    budget_category: str = Field(..., min_length=1, max_length=100)
    budget_amount: condecimal(max_digits=15, decimal_places=2, gt=0)
    funding_source: Optional[str] = None
    notes: Optional[str] = None


class BudgetCreate(BudgetBase):
    pass


class BudgetUpdate(BaseModel):
    period: Optional[str] = Field(None, min_length=1, max_length=50)
    budget_category: Optional[str] = Field(None, min_length=1, max_length=100)
    budget_amount: Optional[condecimal(max_digits=15, decimal_places=2, gt=0)] = None
    funding_source: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("period", "budget_category", "budget_amount")
    @classmethod
    def required_columns(cls, v):
        return reject_null(v)


class BudgetRead(BaseModel):
    id: int
    budget_year: str
    period: str
    budget_category: str
    budget_amount: float
    used_amount: float
    remaining_amount: float
    usage_percentage: float
    funding_source: Optional[str] = None
    approval_status: bool
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Transaction schemas
class TransactionCreate(BaseModel):
    finance_id: int = Field(..., gt=0)
    transaction_type: TransactionTypeEnum
    amount: condecimal(max_digits=15, decimal_places=2, gt=0)
    description: str = Field(..., min_length=1)
    transaction_date: date
    receipt_number: Optional[str] = None
    proof_document: Optional[str] = None


class TransactionRead(BaseModel):
    id: int
    finance_id: int
    transaction_type: TransactionTypeEnum
    amount: float
    description: str
    transaction_date: date
    receipt_number: Optional[str] = None
    proof_document: Optional[str] = None
    budget_category: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


def budget_to_dto(budget: SchoolFinance) -> BudgetRead:
    budget_amount = to_float(budget.budget_amount) or 0.0
    used_amount = to_float(budget.used_amount) or 0.0
    usage = round(used_amount / budget_amount * 100, 2) if budget_amount > 0 else 0.0
    return BudgetRead(
        id=budget.id,
        budget_year=budget.budget_year,
        period=budget.period,
        budget_category=budget.budget_category,
        budget_amount=budget_amount,
        used_amount=used_amount,
        remaining_amount=to_float(budget.remaining_amount) or 0.0,
        usage_percentage=usage,
        funding_source=budget.funding_source,
        approval_status=budget.approval_status,
        approved_by=budget.approved_by,
        approved_at=budget.approved_at,
        notes=budget.notes,
        created_at=budget.created_at,
        updated_at=budget.updated_at,
    )


def transaction_to_dto(transaction: FinancialTransaction, budget_category: Optional[str] = None) -> TransactionRead:
    return TransactionRead(
        id=transaction.id,
        finance_id=transaction.finance_id,
        transaction_type=transaction.transaction_type,
        amount=to_float(transaction.amount),
        description=transaction.description,
        transaction_date=transaction.transaction_date,
        receipt_number=transaction.receipt_number,
        proof_document=transaction.proof_document,
        budget_category=budget_category,
        created_by=transaction.created_by,
        created_at=transaction.created_at,
    )
