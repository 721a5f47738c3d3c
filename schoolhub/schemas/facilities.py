from datetime import date, datetime, time
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from schoolhub.models.facilities import Facility, FacilityUsage
from schoolhub.schemas.common import reject_null


class ApprovalStatusEnum(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


APPROVAL_STATUSES = [status.value for status in ApprovalStatusEnum]


# Facility schemas
class FacilityBase(BaseModel):
    facility_name: str = Field(..., min_length=1, max_length=255)
    facility_type: str = Field(..., min_length=1, max_length=100)
    capacity: Optional[int] = Field(None, ge=0)
    location: Optional[str] = None
    condition: Optional[str] = "good"
    description: Optional[str] = None
    facility_photo: Optional[str] = None


class FacilityCreate(FacilityBase):
    pass


class FacilityUpdate(BaseModel):
    facility_name: Optional[str] = Field(None, min_length=1, max_length=255)
    facility_type: Optional[str] = Field(None, min_length=1, max_length=100)
    capacity: Optional[int] = Field(None, ge=0)
    location: Optional[str] = None
    condition: Optional[str] = None
    description: Optional[str] = None
    facility_photo: Optional[str] = None

    @field_validator("facility_name", "facility_type")
    @classmethod
    def required_columns(cls, v):
        return reject_null(v)


class FacilityRead(FacilityBase):
    id: int
    usage_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Usage schemas
class FacilityUsageCreate(BaseModel):
    facility_id: int = Field(..., gt=0)
    usage_date: date
    start_time: time
    end_time: time
    purpose: str = Field(..., min_length=1)
    organizer: Optional[str] = None
    participant_count: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class UsageApprovalUpdate(BaseModel):
    # Checked against APPROVAL_STATUSES in the service
    approval_status: str
    notes: Optional[str] = None


class FacilityUsageRead(BaseModel):
    id: int
    facility_id: int
    usage_date: date
    start_time: time
    end_time: time
    purpose: str
    organizer: Optional[str] = None
    participant_count: Optional[int] = None
    approval_status: ApprovalStatusEnum
    approved_by: Optional[int] = None
    notes: Optional[str] = None
    facility_name: Optional[str] = None
    created_at: Optional[datetime] = None


def facility_to_dto(facility: Facility, usage_count: Optional[int] = None) -> FacilityRead:
    return FacilityRead(
        id=facility.id,
        facility_name=facility.facility_name,
        facility_type=facility.facility_type,
        capacity=facility.capacity,
        location=facility.location,
        condition=facility.condition,
        description=facility.description,
        facility_photo=facility.facility_photo,
        usage_count=usage_count,
        created_at=facility.created_at,
        updated_at=facility.updated_at,
    )


def usage_to_dto(usage: FacilityUsage, facility: Optional[Facility] = None) -> FacilityUsageRead:
    return FacilityUsageRead(
        id=usage.id,
        facility_id=usage.facility_id,
        usage_date=usage.usage_date,
        start_time=usage.start_time,
        end_time=usage.end_time,
        purpose=usage.purpose,
        organizer=usage.organizer,
        participant_count=usage.participant_count,
        approval_status=usage.approval_status,
        approved_by=usage.approved_by,
        notes=usage.notes,
        facility_name=facility.facility_name if facility else None,
        created_at=usage.created_at,
    )
