import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, func, desc, asc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolhub.exceptions import BusinessRuleError, NotFoundError
from schoolhub.models.facilities import Facility, FacilityUsage
from schoolhub.schemas.common import Page, build_page
from schoolhub.schemas.facilities import (
    FacilityCreate, FacilityUpdate, FacilityRead, FacilityUsageCreate, FacilityUsageRead,
    UsageApprovalUpdate, APPROVAL_STATUSES, facility_to_dto, usage_to_dto,
)

logger = logging.getLogger(__name__)

FACILITY_NOT_FOUND = "Fasilitas tidak ditemukan atau bukan bagian dari sekolah ini"


def booked_hours(start: time, end: time) -> float:
    start_dt = datetime.combine(date.min, start)
    end_dt = datetime.combine(date.min, end)
    return max((end_dt - start_dt).total_seconds() / 3600, 0.0)


def overlap_condition(start_time: time, end_time: time):
    """
    Bookings overlapping [start_time, end_time).

    Three cases: the new booking starts inside an existing one, ends inside
    an existing one, or fully contains one.
    """
    return or_(
        and_(FacilityUsage.start_time <= start_time, FacilityUsage.end_time > start_time),
        and_(FacilityUsage.start_time < end_time, FacilityUsage.end_time >= end_time),
        and_(FacilityUsage.start_time >= start_time, FacilityUsage.end_time <= end_time),
    )


class FacilityService:

    async def _get_owned_facility(self, db: AsyncSession, school_id: int, facility_id: int) -> Facility:
        facility = await db.scalar(
            select(Facility).where(and_(Facility.id == facility_id, Facility.school_id == school_id))
        )
        if not facility:
            raise NotFoundError(FACILITY_NOT_FOUND)
        return facility

    async def _ensure_name_available(self, db: AsyncSession, school_id: int, name: str, exclude_id: Optional[int] = None) -> None:
        query = select(Facility.id).where(and_(Facility.school_id == school_id, Facility.facility_name == name))
        if exclude_id:
            query = query.where(Facility.id != exclude_id)
        if await db.scalar(query):
            raise BusinessRuleError("Nama fasilitas sudah digunakan di sekolah ini")

    async def _usage_count(self, db: AsyncSession, facility_id: int) -> int:
        return await db.scalar(
            select(func.count(FacilityUsage.id)).where(FacilityUsage.facility_id == facility_id)
        ) or 0

    # Facilities
    async def get_facilities(
        self,
        db: AsyncSession,
        school_id: int,
        facility_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        conditions = [Facility.school_id == school_id]
        if facility_type:
            conditions.append(Facility.facility_type == facility_type)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Facility.facility_name.ilike(pattern), Facility.location.ilike(pattern)))

        total = await db.scalar(select(func.count(Facility.id)).where(and_(*conditions)))
        usage_count = (
            select(func.count(FacilityUsage.id))
            .where(FacilityUsage.facility_id == Facility.id)
            .correlate(Facility)
            .scalar_subquery()
        )
        result = await db.execute(
            select(Facility, usage_count)
            .where(and_(*conditions))
            .order_by(asc(Facility.facility_name))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        facilities = [facility_to_dto(facility, count) for facility, count in result.all()]
        return build_page(facilities, total or 0, page, limit)

    async def get_facility(self, db: AsyncSession, school_id: int, facility_id: int) -> FacilityRead:
        facility = await self._get_owned_facility(db, school_id, facility_id)
        return facility_to_dto(facility, await self._usage_count(db, facility.id))

    async def get_facilities_by_type(self, db: AsyncSession, school_id: int, facility_type: str) -> List[FacilityRead]:
        result = await db.execute(
            select(Facility)
            .where(and_(Facility.school_id == school_id, Facility.facility_type == facility_type))
            .order_by(asc(Facility.facility_name))
        )
        return [facility_to_dto(f) for f in result.scalars().all()]

    async def get_facility_types(self, db: AsyncSession, school_id: int) -> List[str]:
        result = await db.execute(
            select(Facility.facility_type)
            .where(Facility.school_id == school_id)
            .distinct()
            .order_by(Facility.facility_type)
        )
        return list(result.scalars().all())

    async def add_facility(self, db: AsyncSession, school_id: int, data: FacilityCreate) -> FacilityRead:
        await self._ensure_name_available(db, school_id, data.facility_name)

        facility = Facility(school_id=school_id, **data.model_dump())
        db.add(facility)
        await db.commit()
        await db.refresh(facility)
        return facility_to_dto(facility, 0)

    async def update_facility(self, db: AsyncSession, school_id: int, facility_id: int, data: FacilityUpdate) -> FacilityRead:
        facility = await self._get_owned_facility(db, school_id, facility_id)
        update_data = data.model_dump(exclude_unset=True)

        if update_data.get("facility_name") and update_data["facility_name"] != facility.facility_name:
            await self._ensure_name_available(db, school_id, update_data["facility_name"], exclude_id=facility.id)

        for key, value in update_data.items():
            setattr(facility, key, value)

        await db.commit()
        await db.refresh(facility)
        return facility_to_dto(facility, await self._usage_count(db, facility.id))

    async def delete_facility(self, db: AsyncSession, school_id: int, facility_id: int) -> None:
        facility = await self._get_owned_facility(db, school_id, facility_id)
        if await self._usage_count(db, facility.id) > 0:
            raise BusinessRuleError("Tidak dapat menghapus fasilitas yang memiliki riwayat penggunaan")

        await db.delete(facility)
        await db.commit()
        logger.info(f"Facility {facility_id} deleted from school {school_id}")

    # Usage
    async def get_facility_usage(
        self,
        db: AsyncSession,
        school_id: int,
        facility_id: Optional[int] = None,
        approval_status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page:
        conditions = [Facility.school_id == school_id]
        if facility_id:
            conditions.append(FacilityUsage.facility_id == facility_id)
        if approval_status:
            conditions.append(FacilityUsage.approval_status == approval_status)
        if start_date:
            conditions.append(FacilityUsage.usage_date >= start_date)
        if end_date:
            conditions.append(FacilityUsage.usage_date <= end_date)

        total = await db.scalar(
            select(func.count(FacilityUsage.id))
            .join(Facility, FacilityUsage.facility_id == Facility.id)
            .where(and_(*conditions))
        )
        result = await db.execute(
            select(FacilityUsage, Facility)
            .join(Facility, FacilityUsage.facility_id == Facility.id)
            .where(and_(*conditions))
            .order_by(desc(FacilityUsage.usage_date), asc(FacilityUsage.start_time))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        usages = [usage_to_dto(usage, facility) for usage, facility in result.all()]
        return build_page(usages, total or 0, page, limit)

    async def get_usage_by_facility(self, db: AsyncSession, school_id: int, facility_id: int) -> List[FacilityUsageRead]:
        facility = await self._get_owned_facility(db, school_id, facility_id)
        result = await db.execute(
            select(FacilityUsage)
            .where(FacilityUsage.facility_id == facility.id)
            .order_by(desc(FacilityUsage.usage_date), asc(FacilityUsage.start_time))
        )
        return [usage_to_dto(u, facility) for u in result.scalars().all()]

    async def add_facility_usage(self, db: AsyncSession, school_id: int, data: FacilityUsageCreate) -> FacilityUsageRead:
        """
        Book a facility for a time window on one date.

        Raises:
            NotFoundError: If the facility does not exist in this school
            BusinessRuleError: If the window is empty or overlaps an existing booking
        """
        facility = await self._get_owned_facility(db, school_id, data.facility_id)

        if data.start_time >= data.end_time:
            raise BusinessRuleError("Waktu mulai harus lebih awal dari waktu selesai", "INVALID_TIME_RANGE")

        conflict = await db.scalar(
            select(FacilityUsage.id).where(
                and_(
                    FacilityUsage.facility_id == facility.id,
                    FacilityUsage.usage_date == data.usage_date,
                    overlap_condition(data.start_time, data.end_time),
                )
            )
        )
        if conflict:
            logger.info(f"Booking of facility {facility.id} on {data.usage_date} rejected: conflicts with usage {conflict}")
            raise BusinessRuleError("Terdapat konflik waktu dengan penggunaan fasilitas yang sudah ada", "SCHEDULE_CONFLICT")

        usage = FacilityUsage(approval_status="pending", **data.model_dump())
        db.add(usage)
        await db.commit()
        await db.refresh(usage)
        return usage_to_dto(usage, facility)

    async def update_usage_approval(
        self,
        db: AsyncSession,
        school_id: int,
        usage_id: int,
        data: UsageApprovalUpdate,
        approver_id: int,
    ) -> FacilityUsageRead:
        if data.approval_status not in APPROVAL_STATUSES:
            raise BusinessRuleError(
                f"Status persetujuan harus salah satu dari: {', '.join(APPROVAL_STATUSES)}", "INVALID_APPROVAL_STATUS"
            )

        result = await db.execute(
            select(FacilityUsage, Facility)
            .join(Facility, FacilityUsage.facility_id == Facility.id)
            .where(and_(FacilityUsage.id == usage_id, Facility.school_id == school_id))
        )
        row = result.first()
        if not row:
            raise NotFoundError("Data penggunaan fasilitas tidak ditemukan atau bukan bagian dari sekolah ini")
        usage, facility = row

        usage.approval_status = data.approval_status
        usage.approved_by = approver_id
        if data.notes is not None:
            usage.notes = data.notes

        await db.commit()
        await db.refresh(usage)
        return usage_to_dto(usage, facility)

    # Reports
    async def get_facility_stats(self, db: AsyncSession, school_id: int) -> Dict[str, Any]:
        total_facilities = await db.scalar(select(func.count(Facility.id)).where(Facility.school_id == school_id))
        total_capacity = await db.scalar(
            select(func.coalesce(func.sum(Facility.capacity), 0)).where(Facility.school_id == school_id)
        )

        result = await db.execute(
            select(Facility.facility_type, func.count(Facility.id))
            .where(Facility.school_id == school_id)
            .group_by(Facility.facility_type)
        )
        by_type = dict(result.all())

        result = await db.execute(
            select(FacilityUsage.approval_status, func.count(FacilityUsage.id))
            .join(Facility, FacilityUsage.facility_id == Facility.id)
            .where(Facility.school_id == school_id)
            .group_by(FacilityUsage.approval_status)
        )
        usage_by_status = {status: 0 for status in APPROVAL_STATUSES}
        usage_by_status.update(dict(result.all()))

        return {
            "total_facilities": total_facilities or 0,
            "total_capacity": int(total_capacity or 0),
            "by_type": by_type,
            "usage_by_status": usage_by_status,
            "pending_approvals": usage_by_status["pending"],
        }

    async def get_utilization_report(
        self,
        db: AsyncSession,
        school_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=30)

        facilities = (await db.execute(
            select(Facility).where(Facility.school_id == school_id).order_by(asc(Facility.facility_name))
        )).scalars().all()

        result = await db.execute(
            select(FacilityUsage)
            .join(Facility, FacilityUsage.facility_id == Facility.id)
            .where(
                and_(
                    Facility.school_id == school_id,
                    FacilityUsage.usage_date >= start_date,
                    FacilityUsage.usage_date <= end_date,
                    FacilityUsage.approval_status != "rejected",
                )
            )
        )
        usage_by_facility: Dict[int, List[FacilityUsage]] = {}
        for usage in result.scalars().all():
            usage_by_facility.setdefault(usage.facility_id, []).append(usage)

        report = []
        for facility in facilities:
            usages = usage_by_facility.get(facility.id, [])
            report.append({
                "facility_id": facility.id,
                "facility_name": facility.facility_name,
                "facility_type": facility.facility_type,
                "usage_count": len(usages),
                "booked_hours": round(sum(booked_hours(u.start_time, u.end_time) for u in usages), 2),
                "days_used": len({u.usage_date for u in usages}),
            })

        return {
            "start_date": start_date,
            "end_date": end_date,
            "facilities": sorted(report, key=lambda r: r["usage_count"], reverse=True),
        }
