from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok, get_facility_service
from schoolhub.database import get_db
from schoolhub.middleware.authentication import get_school_id, require_principal_or_admin
from schoolhub.schemas.facilities import (
    FacilityCreate, FacilityUpdate, FacilityUsageCreate, UsageApprovalUpdate, ApprovalStatusEnum,
)
from schoolhub.schemas.users import CurrentUser
from schoolhub.services.facilities import FacilityService

router = APIRouter()

# Facility endpoints
@router.get("/facilities")
async def get_facilities(
    facility_type: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    facilities = await service.get_facilities(db, school_id, facility_type, search, page, limit)
    return ok("Data fasilitas berhasil diambil", facilities)

@router.get("/facilities/types")
async def get_facility_types(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    return ok("Jenis fasilitas berhasil diambil", await service.get_facility_types(db, school_id))

@router.get("/facilities/stats")
async def get_facility_stats(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    return ok("Statistik fasilitas berhasil diambil", await service.get_facility_stats(db, school_id))

@router.get("/facilities/utilization")
async def get_utilization_report(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    """
    Usage count and booked hours per facility, over the last 30 days by default.
    """
    report = await service.get_utilization_report(db, school_id, start_date, end_date)
    return ok("Laporan pemanfaatan fasilitas berhasil diambil", report)

# Usage endpoints
@router.get("/facilities/usage")
async def get_facility_usage(
    facility_id: Optional[int] = None,
    approval_status: Optional[ApprovalStatusEnum] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    usage = await service.get_facility_usage(
        db,
        school_id,
        facility_id,
        approval_status.value if approval_status else None,
        start_date,
        end_date,
        page,
        limit,
    )
    return ok("Data penggunaan fasilitas berhasil diambil", usage)

@router.post("/facilities/usage", status_code=status.HTTP_201_CREATED)
async def add_facility_usage(
    data: FacilityUsageCreate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    """
    Book a facility. Overlapping bookings on the same day are rejected.
    """
    usage = await service.add_facility_usage(db, school_id, data)
    return ok("Penggunaan fasilitas berhasil ditambahkan", usage)

@router.put("/facilities/usage/{usage_id}/approval")
async def update_usage_approval(
    data: UsageApprovalUpdate,
    usage_id: int = Path(..., gt=0),
    current_user: CurrentUser = Depends(require_principal_or_admin),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    usage = await service.update_usage_approval(db, school_id, usage_id, data, current_user.user_id)
    return ok("Status persetujuan berhasil diperbarui", usage)

@router.get("/facilities/type/{facility_type}")
async def get_facilities_by_type(
    facility_type: str,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    return ok("Data fasilitas berhasil diambil", await service.get_facilities_by_type(db, school_id, facility_type))

@router.get("/facilities/{facility_id}")
async def get_facility(
    facility_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    return ok("Data fasilitas berhasil diambil", await service.get_facility(db, school_id, facility_id))

@router.get("/facilities/{facility_id}/usage")
async def get_usage_by_facility(
    facility_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    usage = await service.get_usage_by_facility(db, school_id, facility_id)
    return ok("Data penggunaan fasilitas berhasil diambil", usage)

@router.post("/facilities", status_code=status.HTTP_201_CREATED)
async def add_facility(
    data: FacilityCreate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    return ok("Fasilitas berhasil ditambahkan", await service.add_facility(db, school_id, data))

@router.put("/facilities/{facility_id}")
async def update_facility(
    data: FacilityUpdate,
    facility_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    return ok("Fasilitas berhasil diperbarui", await service.update_facility(db, school_id, facility_id, data))

@router.delete("/facilities/{facility_id}", dependencies=[Depends(require_principal_or_admin)])
async def delete_facility(
    facility_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: FacilityService = Depends(get_facility_service)
):
    await service.delete_facility(db, school_id, facility_id)
    return ok("Fasilitas berhasil dihapus")
