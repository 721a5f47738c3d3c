from typing import Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok, get_asset_service
from schoolhub.database import get_db
from schoolhub.middleware.authentication import get_school_id, require_principal_or_admin
from schoolhub.schemas.assets import AssetCreate, AssetUpdate, MaintenanceCreate, AssetConditionEnum
from schoolhub.services.assets import AssetService

router = APIRouter()

@router.get("/assets")
async def get_assets(
    category: Optional[str] = None,
    condition: Optional[AssetConditionEnum] = None,
    location: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    """
    List assets with their maintenance counts.
    """
    assets = await service.get_assets(
        db, school_id, category, condition.value if condition else None, location, search, page, limit
    )
    return ok("Data aset berhasil diambil", assets)

@router.get("/assets/stats")
async def get_asset_stats(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    return ok("Statistik aset berhasil diambil", await service.get_asset_stats(db, school_id))

@router.get("/assets/maintenance")
async def get_all_maintenance(
    maintenance_type: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    records = await service.get_all_maintenance(db, school_id, maintenance_type)
    return ok("Data pemeliharaan berhasil diambil", records)

@router.get("/assets/category/{category}")
async def get_assets_by_category(
    category: str,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    return ok("Data aset berhasil diambil", await service.get_assets_by_category(db, school_id, category))

@router.get("/assets/{asset_id}")
async def get_asset(
    asset_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    return ok("Data aset berhasil diambil", await service.get_asset(db, school_id, asset_id))

@router.post("/assets", status_code=status.HTTP_201_CREATED)
async def add_asset(
    data: AssetCreate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    return ok("Aset berhasil ditambahkan", await service.add_asset(db, school_id, data))

@router.put("/assets/{asset_id}")
async def update_asset(
    data: AssetUpdate,
    asset_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    return ok("Aset berhasil diperbarui", await service.update_asset(db, school_id, asset_id, data))

@router.delete("/assets/{asset_id}", dependencies=[Depends(require_principal_or_admin)])
async def delete_asset(
    asset_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    """
    Delete an asset. Assets with maintenance history are kept.
    """
    await service.delete_asset(db, school_id, asset_id)
    return ok("Aset berhasil dihapus")

# Maintenance
@router.get("/assets/{asset_id}/maintenance")
async def get_asset_maintenance(
    asset_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    return ok("Data pemeliharaan berhasil diambil", await service.get_asset_maintenance(db, school_id, asset_id))

@router.post("/assets/{asset_id}/maintenance", status_code=status.HTTP_201_CREATED)
async def add_maintenance(
    data: MaintenanceCreate,
    asset_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AssetService = Depends(get_asset_service)
):
    record = await service.add_maintenance(db, school_id, asset_id, data)
    return ok("Data pemeliharaan berhasil ditambahkan", record)
