from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from schoolhub.models.kpi import SchoolKpi
from schoolhub.schemas.common import reject_null, to_float


class TrendEnum(str, Enum):
    up = "up"
    down = "down"
    stable = "stable"


# KPI schemas
class KpiBase(BaseModel):
    kpi_name: str = Field(..., min_length=1, max_length=255)
    kpi_category: str = Field(..., min_length=1, max_length=100)
    academic_year: str = Field(..., pattern=r"^\d{4}/\d{4}$")
    period: str = Field(..., min_length=1, max_length=50)
    target_value: float = Field(..., ge=0)
    achieved_value: Optional[float] = Field(None, ge=0)
    achievement_percentage: Optional[float] = Field(None, ge=0)
    priority: int = Field(3, ge=1, le=5)
    trend: Optional[TrendEnum] = None
    analysis: Optional[str] = None


class KpiCreate(KpiBase):
    pass


class KpiUpdate(BaseModel):
    kpi_name: Optional[str] = Field(None, min_length=1, max_length=255)
    kpi_category: Optional[str] = Field(None, min_length=1, max_length=100)
    academic_year: Optional[str] = Field(None, pattern=r"^\d{4}/\d{4}$")
    period: Optional[str] = Field(None, min_length=1, max_length=50)
    target_value: Optional[float] = Field(None, ge=0)
    achieved_value: Optional[float] = Field(None, ge=0)
    achievement_percentage: Optional[float] = Field(None, ge=0)
    priority: Optional[int] = Field(None, ge=1, le=5)
    trend: Optional[TrendEnum] = None
    analysis: Optional[str] = None

    @field_validator("kpi_name", "kpi_category", "academic_year", "period", "target_value")
    @classmethod
    def required_columns(cls, v):
        return reject_null(v)


class KpiRead(BaseModel):
    id: int
    kpi_name: str
    kpi_category: str
    academic_year: str
    period: str
    target_value: float
    achieved_value: Optional[float] = None
    achievement_percentage: Optional[float] = None
    priority: Optional[int] = None
    trend: Optional[str] = None
    analysis: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def kpi_to_dto(kpi: SchoolKpi) -> KpiRead:
    return KpiRead(
        id=kpi.id,
        kpi_name=kpi.kpi_name,
        kpi_category=kpi.kpi_category,
        academic_year=kpi.academic_year,
        period=kpi.period,
        target_value=to_float(kpi.target_value),
        achieved_value=to_float(kpi.achieved_value),
        achievement_percentage=to_float(kpi.achievement_percentage),
        priority=kpi.priority,
        trend=kpi.trend,
        analysis=kpi.analysis,
        created_at=kpi.created_at,
        updated_at=kpi.updated_at,
    )
