from typing import Optional

from fastapi import APIRouter, Depends, Query, Path, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok, get_kpi_service
from schoolhub.database import get_db
from schoolhub.middleware.authentication import get_school_id, require_principal_or_admin
from schoolhub.schemas.kpi import KpiCreate, KpiUpdate
from schoolhub.services.kpi import KpiService

router = APIRouter()

@router.get("/kpi")
async def get_kpis(
    academic_year: Optional[str] = None,
    period: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[int] = Query(None, ge=1, le=5),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    kpis = await service.get_kpis(db, school_id, academic_year, period, category, priority)
    return ok("Data KPI berhasil diambil", kpis)

@router.get("/kpi/statistics")
async def get_kpi_statistics(
    academic_year: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    return ok("Statistik KPI berhasil diambil", await service.get_kpi_statistics(db, school_id, academic_year))

@router.get("/kpi/critical")
async def get_critical_kpis(
    academic_year: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    return ok("KPI kritis berhasil diambil", await service.get_critical_kpis(db, school_id, academic_year))

@router.get("/kpi/export")
async def export_kpis(
    format: str = Query("json", pattern="^(json|csv)$"),
    academic_year: Optional[str] = None,
    period: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    """
    Export KPIs as a CSV download or as JSON with export metadata.
    """
    filename, content = await service.export_kpis(db, school_id, format, academic_year, period)
    if format == "csv":
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return ok("Data KPI berhasil diekspor", content)

@router.get("/kpi/category/{category}")
async def get_kpis_by_category(
    category: str,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    return ok("Data KPI berhasil diambil", await service.get_kpis_by_category(db, school_id, category))

@router.get("/kpi/priority/{priority}")
async def get_kpis_by_priority(
    priority: int = Path(..., ge=1, le=5),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    return ok("Data KPI berhasil diambil", await service.get_kpis_by_priority(db, school_id, priority))

@router.get("/kpi/{kpi_id}")
async def get_kpi(
    kpi_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    return ok("Data KPI berhasil diambil", await service.get_kpi(db, school_id, kpi_id))

@router.post("/kpi", status_code=status.HTTP_201_CREATED)
async def create_kpi(
    data: KpiCreate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    return ok("KPI berhasil ditambahkan", await service.create_kpi(db, school_id, data))

@router.put("/kpi/{kpi_id}")
async def update_kpi(
    data: KpiUpdate,
    kpi_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    return ok("KPI berhasil diperbarui", await service.update_kpi(db, school_id, kpi_id, data))

@router.delete("/kpi/{kpi_id}", dependencies=[Depends(require_principal_or_admin)])
async def delete_kpi(
    kpi_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: KpiService = Depends(get_kpi_service)
):
    await service.delete_kpi(db, school_id, kpi_id)
    return ok("KPI berhasil dihapus")
