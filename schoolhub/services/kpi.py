import csv
import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, func, desc, asc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolhub.exceptions import BusinessRuleError, NotFoundError
from schoolhub.models.kpi import SchoolKpi
from schoolhub.schemas.kpi import KpiCreate, KpiUpdate, KpiRead, kpi_to_dto

logger = logging.getLogger(__name__)

KPI_NOT_FOUND = "KPI tidak ditemukan atau bukan bagian dari sekolah ini"

CSV_HEADER = [
    "KPI Name",
    "Category",
    "Academic Year",
    "Period",
    "Target Value",
    "Achieved Value",
    "Achievement %",
    "Priority",
    "Trend",
    "Analysis",
]


def calculate_achievement(achieved_value: Optional[float], target_value: Optional[float]) -> Optional[float]:
    """Achievement in percent, or None when there is nothing to divide by."""
    if achieved_value is None or not target_value or target_value <= 0:
        return None
    return round(achieved_value / target_value * 100, 2)


def kpis_to_csv(kpis: List[KpiRead]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for kpi in kpis:
        writer.writerow([
            kpi.kpi_name,
            kpi.kpi_category,
            kpi.academic_year,
            kpi.period,
            kpi.target_value,
            "" if kpi.achieved_value is None else kpi.achieved_value,
            "" if kpi.achievement_percentage is None else kpi.achievement_percentage,
            "" if kpi.priority is None else kpi.priority,
            kpi.trend or "",
            kpi.analysis or "",
        ])
    return buffer.getvalue()


class KpiService:

    async def _get_owned_kpi(self, db: AsyncSession, school_id: int, kpi_id: int) -> SchoolKpi:
        kpi = await db.scalar(select(SchoolKpi).where(and_(SchoolKpi.id == kpi_id, SchoolKpi.school_id == school_id)))
        if not kpi:
            raise NotFoundError(KPI_NOT_FOUND)
        return kpi

    async def _ensure_unique(
        self, db: AsyncSession, school_id: int, kpi_name: str, academic_year: str, period: str, exclude_id: Optional[int] = None
    ) -> None:
        query = select(SchoolKpi.id).where(
            and_(
                SchoolKpi.school_id == school_id,
                SchoolKpi.kpi_name == kpi_name,
                SchoolKpi.academic_year == academic_year,
                SchoolKpi.period == period,
            )
        )
        if exclude_id:
            query = query.where(SchoolKpi.id != exclude_id)
        if await db.scalar(query):
            raise BusinessRuleError("KPI dengan nama, tahun akademik, dan period yang sama sudah ada")

    async def get_kpis(
        self,
        db: AsyncSession,
        school_id: int,
        academic_year: Optional[str] = None,
        period: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[int] = None,
    ) -> List[KpiRead]:
        query = select(SchoolKpi).where(SchoolKpi.school_id == school_id)
        if academic_year:
            query = query.where(SchoolKpi.academic_year == academic_year)
        if period:
            query = query.where(SchoolKpi.period == period)
        if category:
            query = query.where(SchoolKpi.kpi_category.ilike(f"%{category}%"))
        if priority:
            query = query.where(SchoolKpi.priority == priority)

        result = await db.execute(
            query.order_by(asc(SchoolKpi.priority), desc(SchoolKpi.academic_year), asc(SchoolKpi.kpi_name))
        )
        return [kpi_to_dto(k) for k in result.scalars().all()]

    async def get_kpi(self, db: AsyncSession, school_id: int, kpi_id: int) -> KpiRead:
        return kpi_to_dto(await self._get_owned_kpi(db, school_id, kpi_id))

    async def get_kpis_by_category(self, db: AsyncSession, school_id: int, category: str) -> List[KpiRead]:
        return await self.get_kpis(db, school_id, category=category)

    async def get_kpis_by_priority(self, db: AsyncSession, school_id: int, priority: int) -> List[KpiRead]:
        return await self.get_kpis(db, school_id, priority=priority)

    async def get_critical_kpis(self, db: AsyncSession, school_id: int, academic_year: Optional[str] = None) -> List[KpiRead]:
        """High-priority KPIs (priority 1-2 or unset) that are below 70% or unmeasured."""
        conditions = [
            SchoolKpi.school_id == school_id,
            or_(SchoolKpi.priority <= 2, SchoolKpi.priority.is_(None)),
            or_(SchoolKpi.achievement_percentage < 70, SchoolKpi.achievement_percentage.is_(None)),
        ]
        if academic_year:
            conditions.append(SchoolKpi.academic_year == academic_year)
        result = await db.execute(
            select(SchoolKpi)
            .where(and_(*conditions))
            .order_by(asc(SchoolKpi.priority), asc(SchoolKpi.achievement_percentage))
        )
        return [kpi_to_dto(k) for k in result.scalars().all()]

    async def create_kpi(self, db: AsyncSession, school_id: int, data: KpiCreate) -> KpiRead:
        await self._ensure_unique(db, school_id, data.kpi_name, data.academic_year, data.period)

        kpi_data = data.model_dump()
        if kpi_data["trend"]:
            kpi_data["trend"] = data.trend.value
        if kpi_data["achievement_percentage"] is None:
            kpi_data["achievement_percentage"] = calculate_achievement(data.achieved_value, data.target_value)

        kpi = SchoolKpi(school_id=school_id, **kpi_data)
        db.add(kpi)
        await db.commit()
        await db.refresh(kpi)
        return kpi_to_dto(kpi)

    async def update_kpi(self, db: AsyncSession, school_id: int, kpi_id: int, data: KpiUpdate) -> KpiRead:
        kpi = await self._get_owned_kpi(db, school_id, kpi_id)
        update_data = data.model_dump(exclude_unset=True)

        if {"kpi_name", "academic_year", "period"} & update_data.keys():
            await self._ensure_unique(
                db,
                school_id,
                update_data.get("kpi_name") or kpi.kpi_name,
                update_data.get("academic_year") or kpi.academic_year,
                update_data.get("period") or kpi.period,
                exclude_id=kpi.id,
            )
        if update_data.get("trend"):
            update_data["trend"] = data.trend.value

        for key, value in update_data.items():
            setattr(kpi, key, value)

        if update_data.get("achievement_percentage") is None and ({"achieved_value", "target_value"} & update_data.keys()):
            target = float(kpi.target_value) if kpi.target_value is not None else None
            achieved = float(kpi.achieved_value) if kpi.achieved_value is not None else None
            kpi.achievement_percentage = calculate_achievement(achieved, target)

        await db.commit()
        await db.refresh(kpi)
        return kpi_to_dto(kpi)

    async def delete_kpi(self, db: AsyncSession, school_id: int, kpi_id: int) -> None:
        kpi = await self._get_owned_kpi(db, school_id, kpi_id)
        await db.delete(kpi)
        await db.commit()

    async def get_kpi_statistics(self, db: AsyncSession, school_id: int, academic_year: Optional[str] = None) -> Dict[str, Any]:
        kpis = await self.get_kpis(db, school_id, academic_year=academic_year)
        measured = [k.achievement_percentage for k in kpis if k.achievement_percentage is not None]
        critical = await self.get_critical_kpis(db, school_id, academic_year=academic_year)

        by_category: Dict[str, Dict[str, Any]] = {}
        for kpi in kpis:
            entry = by_category.setdefault(kpi.kpi_category, {"count": 0, "achievements": []})
            entry["count"] += 1
            if kpi.achievement_percentage is not None:
                entry["achievements"].append(kpi.achievement_percentage)
        for entry in by_category.values():
            achievements = entry.pop("achievements")
            entry["average_achievement"] = round(sum(achievements) / len(achievements), 2) if achievements else None

        return {
            "total_kpis": len(kpis),
            "average_achievement": round(sum(measured) / len(measured), 2) if measured else 0.0,
            "excellent": sum(1 for p in measured if p >= 90),
            "good": sum(1 for p in measured if 70 <= p < 90),
            "needs_attention": sum(1 for p in measured if p < 70),
            "critical": len(critical),
            "by_category": by_category,
        }

    async def export_kpis(
        self,
        db: AsyncSession,
        school_id: int,
        export_format: str = "json",
        academic_year: Optional[str] = None,
        period: Optional[str] = None,
    ) -> Tuple[str, Any]:
        """
        Export KPIs as CSV text or as a JSON-ready dict.

        Returns:
            (filename, content) for CSV, ("", payload) for JSON
        """
        kpis = await self.get_kpis(db, school_id, academic_year=academic_year, period=period)

        if export_format == "csv":
            year_label = (academic_year or "all").replace("/", "-")
            filename = f"KPI_Report_{year_label}_{period or 'all'}.csv"
            return filename, kpis_to_csv(kpis)

        return "", {
            "kpis": kpis,
            "metadata": {
                "total": len(kpis),
                "academic_year": academic_year,
                "period": period,
                "exported_at": datetime.utcnow(),
            },
        }
