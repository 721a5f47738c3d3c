from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Numeric, UniqueConstraint
from sqlalchemy.sql import func
from schoolhub.database import Base

# School KPI model
class SchoolKpi(Base):
    __tablename__ = "school_kpis"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    kpi_name = Column(String(255), nullable=False)
    kpi_category = Column(String(100), nullable=False)
    academic_year = Column(String(9), nullable=False)
    period = Column(String(50), nullable=False)
    target_value = Column(Numeric(12, 2), nullable=False)
    achieved_value = Column(Numeric(12, 2))
    achievement_percentage = Column(Numeric(6, 2))
    priority = Column(Integer, default=3)
    trend = Column(String(20))
    analysis = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint("school_id", "academic_year", "period", "kpi_name", name="uq_school_kpi"),
    )
