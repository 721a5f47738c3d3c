from datetime import date, datetime, time
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from schoolhub.models.academics import AcademicRecord
from schoolhub.schemas.common import reject_null


class SemesterEnum(str, Enum):
    first = "1"
    second = "2"


class AttitudeGradeEnum(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


# Student schemas
class StudentRead(BaseModel):
    id: int
    student_id: str
    national_student_id: Optional[str] = None
    full_name: str
    grade: str
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    address: Optional[str] = None
    parent_name: Optional[str] = None
    parent_contact: Optional[str] = None
    enrollment_date: Optional[date] = None
    is_active: bool
    
    class Config:
        from_attributes = True


class SubjectRead(BaseModel):
    id: int
    subject_code: str
    subject_name: str
    description: Optional[str] = None
    grade_level: Optional[str] = None
    weekly_hours: Optional[int] = None
    curriculum: Optional[str] = None
    
    class Config:
        from_attributes = True


class TeacherRead(BaseModel):
    id: int
    employee_id: str
    full_name: str
    gender: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    subject_area: Optional[str] = None
    position: Optional[str] = None
    employment_status: Optional[str] = None
    education_level: Optional[str] = None
    teaching_start_year: Optional[int] = None
    
    class Config:
        from_attributes = True


class BasicCompetencyRead(BaseModel):
    id: int
    subject_id: int
    competency_code: str
    competency_description: str
    difficulty_level: Optional[str] = None
    
    class Config:
        from_attributes = True


class StudentAttendanceRead(BaseModel):
    id: int
    student_id: int
    date: date
    status: str
    check_in_time: Optional[time] = None
    check_out_time: Optional[time] = None
    notes: Optional[str] = None
    
    class Config:
        from_attributes = True


# Academic Record schemas
class AcademicRecordBase(BaseModel):
    knowledge_score: Optional[float] = Field(None, ge=0, le=100)
    skill_score: Optional[float] = Field(None, ge=0, le=100)
    attitude_score: Optional[AttitudeGradeEnum] = None
    midterm_exam_score: Optional[float] = Field(None, ge=0, le=100)
    final_exam_score: Optional[float] = Field(None, ge=0, le=100)
    final_score: Optional[float] = Field(None, ge=0, le=100)
    teacher_notes: Optional[str] = None


class AcademicRecordCreate(AcademicRecordBase):
    student_id: int = Field(..., gt=0)
    subject_id: int = Field(..., gt=0)
    teacher_id: int = Field(..., gt=0)
    semester: SemesterEnum
    academic_year: str = Field(..., pattern=r"^\d{4}/\d{4}$")
    
    @field_validator("academic_year")
    @classmethod
    def consecutive_years(cls, v):
        start, end = v.split("/")
        if int(end) != int(start) + 1:
            raise ValueError("academic_year must span two consecutive years")
        return v


class AcademicRecordUpdate(AcademicRecordBase):
    teacher_id: Optional[int] = Field(None, gt=0)

    @field_validator("teacher_id")
    @classmethod
    def teacher_required(cls, v):
        return reject_null(v)


class AcademicRecordRead(AcademicRecordBase):
    id: int
    student_id: int
    subject_id: int
    teacher_id: int
    semester: str
    academic_year: str
    student_name: Optional[str] = None
    grade: Optional[str] = None
    subject_name: Optional[str] = None
    teacher_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def academic_record_to_dto(record: AcademicRecord) -> AcademicRecordRead:
    """Map a record with its student, subject and teacher loaded."""
    return AcademicRecordRead(
        id=record.id,
        student_id=record.student_id,
        subject_id=record.subject_id,
        teacher_id=record.teacher_id,
        semester=record.semester,
        academic_year=record.academic_year,
        knowledge_score=record.knowledge_score,
        skill_score=record.skill_score,
        attitude_score=record.attitude_score,
        midterm_exam_score=record.midterm_exam_score,
        final_exam_score=record.final_exam_score,
        final_score=record.final_score,
        teacher_notes=record.teacher_notes,
        student_name=record.student.full_name if record.student else None,
        grade=record.student.grade if record.student else None,
        subject_name=record.subject.subject_name if record.subject else None,
        teacher_name=record.teacher.full_name if record.teacher else None,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
