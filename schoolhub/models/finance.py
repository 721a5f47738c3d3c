from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Text, Numeric, Boolean, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolhub.database import Base

# Budget model
class SchoolFinance(Base):
    __tablename__ = "school_finances"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    budget_year = Column(String(4), nullable=False)
    period = Column(String(50), nullable=False)
    budget_category = Column(String(100), nullable=False)
    budget_amount = Column(Numeric(15, 2), nullable=False)
    used_amount = Column(Numeric(15, 2), default=0, nullable=False)
    remaining_amount = Column(Numeric(15, 2), nullable=False)
    funding_source = Column(String(100))
    approval_status = Column(Boolean, default=False, nullable=False)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    approved_at = Column(DateTime)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint("school_id", "budget_year", "period", "budget_category", name="uq_school_budget"),
        CheckConstraint("budget_amount >= 0", name="check_budget_amount"),
    )
    
    # Relationships
    transactions = relationship("FinancialTransaction", back_populates="budget")

# Financial Transaction model
class FinancialTransaction(Base):
    __tablename__ = "financial_transactions"
    
    id = Column(Integer, primary_key=True, index=True)
    finance_id = Column(Integer, ForeignKey("school_finances.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_type = Column(String(10), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(Text, nullable=False)
    transaction_date = Column(Date, nullable=False)
    receipt_number = Column(String(100))
    proof_document = Column(Text)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        CheckConstraint("transaction_type IN ('income', 'expense')", name="check_transaction_type"),
        CheckConstraint("amount > 0", name="check_transaction_amount"),
    )
    
    # Relationships
    budget = relationship("SchoolFinance", back_populates="transactions")
