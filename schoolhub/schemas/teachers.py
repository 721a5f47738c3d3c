from datetime import date, datetime
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator, ValidationInfo
from enum import Enum

from schoolhub.models.teachers import TeacherPerformance, TeacherDevelopment
from schoolhub.schemas.common import reject_null, to_float


class EvaluationStatusEnum(str, Enum):
    draft = "draft"
    completed = "completed"
    reviewed = "reviewed"
    approved = "approved"


class ProgramStatusEnum(str, Enum):
    planned = "planned"
    ongoing = "ongoing"
    completed = "completed"
    cancelled = "cancelled"


SCORE_FIELDS = (
    "teaching_quality",
    "classroom_management",
    "student_engagement",
    "professional_development",
    "collaboration",
    "punctuality",
)


# Evaluation schemas
class EvaluationScores(BaseModel):
    teaching_quality: float = Field(..., ge=1, le=5)
    classroom_management: float = Field(..., ge=1, le=5)
    student_engagement: float = Field(..., ge=1, le=5)
    professional_development: float = Field(..., ge=1, le=5)
    collaboration: float = Field(..., ge=1, le=5)
    punctuality: float = Field(..., ge=1, le=5)


class EvaluationCreate(EvaluationScores):
    teacher_id: int = Field(..., gt=0)
    evaluation_period: str = Field(..., min_length=1, max_length=50)
    academic_year: str = Field(..., pattern=r"^\d{4}/\d{4}$")
    evaluation_notes: Optional[str] = None
    evaluation_date: Optional[date] = None
    evaluator_id: Optional[int] = None
    recommendations: List[str] = []
    development_goals: List[str] = []


class EvaluationUpdate(BaseModel):
    teaching_quality: Optional[float] = Field(None, ge=1, le=5)
    classroom_management: Optional[float] = Field(None, ge=1, le=5)
    student_engagement: Optional[float] = Field(None, ge=1, le=5)
    professional_development: Optional[float] = Field(None, ge=1, le=5)
    collaboration: Optional[float] = Field(None, ge=1, le=5)
    punctuality: Optional[float] = Field(None, ge=1, le=5)
    evaluation_notes: Optional[str] = None
    evaluation_date: Optional[date] = None
    status: Optional[EvaluationStatusEnum] = None
    recommendations: Optional[List[str]] = None
    development_goals: Optional[List[str]] = None

    @field_validator(*SCORE_FIELDS, "status")
    @classmethod
    def required_columns(cls, v):
        return reject_null(v)


class EvaluationRead(EvaluationScores):
    id: int
    teacher_id: int
    teacher_name: Optional[str] = None
    employee_id: Optional[str] = None
    evaluation_period: str
    academic_year: str
    total_score: float
    evaluation_notes: Optional[str] = None
    evaluation_date: Optional[date] = None
    evaluator_id: Optional[int] = None
    status: EvaluationStatusEnum
    recommendations: List[str] = []
    development_goals: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Development program schemas
class DevelopmentProgramBase(BaseModel):
    program_name: str = Field(..., min_length=1, max_length=255)
    program_type: str = Field(..., min_length=1, max_length=100)
    provider: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    status: Optional[ProgramStatusEnum] = None
    certificate_url: Optional[str] = None
    notes: Optional[str] = None
    
    @field_validator("end_date")
    @classmethod
    def end_date_after_start_date(cls, v, info: ValidationInfo):
        start_date = info.data.get("start_date")
        if v and start_date and v < start_date:
            raise ValueError("end_date must be after start_date")
        return v


class DevelopmentProgramCreate(DevelopmentProgramBase):
    teacher_id: int = Field(..., gt=0)


class DevelopmentProgramUpdate(BaseModel):
    program_name: Optional[str] = Field(None, min_length=1, max_length=255)
    program_type: Optional[str] = Field(None, min_length=1, max_length=100)
    provider: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[ProgramStatusEnum] = None
    certificate_url: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("program_name", "program_type", "start_date", "status")
    @classmethod
    def required_columns(cls, v):
        return reject_null(v)


class DevelopmentProgramRead(BaseModel):
    id: int
    teacher_id: int
    teacher_name: Optional[str] = None
    program_name: str
    program_type: str
    provider: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    status: ProgramStatusEnum
    certificate_url: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


def evaluation_to_dto(evaluation: TeacherPerformance) -> EvaluationRead:
    """Map an evaluation with its teacher and detail rows loaded."""
    recommendations = [d.notes for d in evaluation.details if d.assessment_category == "recommendations"]
    goals = [d.notes for d in evaluation.details if d.assessment_category == "development_goals"]
    teacher = evaluation.teacher
    return EvaluationRead(
        id=evaluation.id,
        teacher_id=evaluation.teacher_id,
        teacher_name=teacher.full_name if teacher else None,
        employee_id=teacher.employee_id if teacher else None,
        evaluation_period=evaluation.evaluation_period,
        academic_year=evaluation.academic_year,
        total_score=to_float(evaluation.total_score),
        evaluation_notes=evaluation.evaluation_notes,
        evaluation_date=evaluation.evaluation_date,
        evaluator_id=evaluation.evaluator_id,
        status=evaluation.status,
        recommendations=recommendations,
        development_goals=goals,
        created_at=evaluation.created_at,
        updated_at=evaluation.updated_at,
        **{field: to_float(getattr(evaluation, field)) for field in SCORE_FIELDS},
    )


def development_program_to_dto(program: TeacherDevelopment) -> DevelopmentProgramRead:
    return DevelopmentProgramRead(
        id=program.id,
        teacher_id=program.teacher_id,
        teacher_name=program.teacher.full_name if program.teacher else None,
        program_name=program.program_name,
        program_type=program.program_type,
        provider=program.provider,
        start_date=program.start_date,
        end_date=program.end_date,
        status=program.status,
        certificate_url=program.certificate_url,
        notes=program.notes,
        created_at=program.created_at,
    )
