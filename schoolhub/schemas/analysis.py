from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from schoolhub.models.analysis import AiRecommendation, EarlyWarning
from schoolhub.schemas.common import reject_null, to_float


class RecommendationCategoryEnum(str, Enum):
    academic = "academic"
    financial = "financial"
    asset = "asset"
    teacher = "teacher"
    attendance = "attendance"


class WarningCategoryEnum(str, Enum):
    academic = "academic"
    financial = "financial"
    asset = "asset"
    teacher = "teacher"
    attendance = "attendance"
    deadline = "deadline"


class ImplementationStatusEnum(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    approved = "approved"
    completed = "completed"
    rejected = "rejected"


class UrgencyEnum(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


URGENCY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}

# Display hints used by the dashboard
CATEGORY_DISPLAY = {
    "financial": ("TrendingUp", "green"),
    "teacher": ("Lightbulb", "purple"),
    "asset": ("Brain", "orange"),
}
DEFAULT_DISPLAY = ("Target", "blue")


# Generated records, before they are persisted
class RecommendationDraft(BaseModel):
    category: RecommendationCategoryEnum
    title: str
    description: str
    supporting_data: Optional[Dict[str, Any]] = None
    affected_entities: Optional[List[Any]] = None
    confidence_level: float = Field(0.7, ge=0, le=1)
    urgency_level: UrgencyEnum = UrgencyEnum.medium
    predicted_impact: Optional[str] = None


class WarningDraft(BaseModel):
    category: WarningCategoryEnum
    title: str
    description: str
    urgency_level: UrgencyEnum
    target_value: Optional[float] = None
    actual_value: Optional[float] = None
    affected_entities: Optional[List[Any]] = None
    recommended_actions: Optional[List[str]] = None


class SaveResult(BaseModel):
    success: bool
    saved: int = 0
    skipped: int = 0
    errors: List[str] = []


# Recommendation schemas
class RecommendationRead(BaseModel):
    id: int
    category: RecommendationCategoryEnum
    title: str
    description: str
    supporting_data: Optional[Dict[str, Any]] = None
    affected_entities: Optional[List[Any]] = None
    confidence_level: float
    urgency_level: UrgencyEnum
    predicted_impact: Optional[str] = None
    implementation_status: ImplementationStatusEnum
    principal_feedback: Optional[str] = None
    generated_date: datetime
    icon: str
    color: str


class RecommendationUpdate(BaseModel):
    implementation_status: Optional[ImplementationStatusEnum] = None
    principal_feedback: Optional[str] = Field(None, max_length=2000)

    @field_validator("implementation_status")
    @classmethod
    def status_required(cls, v):
        return reject_null(v)


class BulkStatusUpdate(BaseModel):
    ids: List[int] = Field(..., min_length=1)
    implementation_status: ImplementationStatusEnum


class GenerateRequest(BaseModel):
    category: Optional[RecommendationCategoryEnum] = None
    save: bool = True


# Early warning schemas
class WarningRead(BaseModel):
    id: int
    category: WarningCategoryEnum
    title: str
    description: str
    urgency_level: UrgencyEnum
    target_value: Optional[float] = None
    actual_value: Optional[float] = None
    affected_entities: Optional[List[Any]] = None
    recommended_actions: Optional[List[str]] = None
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    detected_date: datetime


def recommendation_to_dto(recommendation: AiRecommendation) -> RecommendationRead:
    icon, color = CATEGORY_DISPLAY.get(recommendation.category, DEFAULT_DISPLAY)
    return RecommendationRead(
        id=recommendation.id,
        category=recommendation.category,
        title=recommendation.title,
        description=recommendation.description,
        supporting_data=recommendation.supporting_data,
        affected_entities=recommendation.affected_entities,
        confidence_level=to_float(recommendation.confidence_level),
        urgency_level=recommendation.urgency_level,
        predicted_impact=recommendation.predicted_impact,
        implementation_status=recommendation.implementation_status,
        principal_feedback=recommendation.principal_feedback,
        generated_date=recommendation.generated_date,
        icon=icon,
        color=color,
    )


def warning_to_dto(warning: EarlyWarning) -> WarningRead:
    return WarningRead(
        id=warning.id,
        category=warning.category,
        title=warning.title,
        description=warning.description,
        urgency_level=warning.urgency_level,
        target_value=to_float(warning.target_value),
        actual_value=to_float(warning.actual_value),
        affected_entities=warning.affected_entities,
        recommended_actions=warning.recommended_actions,
        is_resolved=warning.is_resolved,
        resolved_at=warning.resolved_at,
        detected_date=warning.detected_date,
    )
