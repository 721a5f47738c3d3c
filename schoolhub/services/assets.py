import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, func, desc, asc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolhub.exceptions import BusinessRuleError, NotFoundError
from schoolhub.models.assets import Asset, AssetMaintenance, ASSET_CONDITIONS
from schoolhub.schemas.common import Page, build_page, to_float
from schoolhub.schemas.assets import (
    AssetCreate, AssetUpdate, AssetRead, MaintenanceCreate, MaintenanceRead,
    asset_to_dto, maintenance_to_dto,
)

logger = logging.getLogger(__name__)

ASSET_NOT_FOUND = "Aset tidak ditemukan atau bukan bagian dari sekolah ini"


class AssetService:

    async def _get_owned_asset(self, db: AsyncSession, school_id: int, asset_id: int) -> Asset:
        asset = await db.scalar(select(Asset).where(and_(Asset.id == asset_id, Asset.school_id == school_id)))
        if not asset:
            raise NotFoundError(ASSET_NOT_FOUND)
        return asset

    async def _ensure_code_available(self, db: AsyncSession, school_id: int, code: str, exclude_id: Optional[int] = None) -> None:
        query = select(Asset.id).where(and_(Asset.school_id == school_id, Asset.asset_code == code))
        if exclude_id:
            query = query.where(Asset.id != exclude_id)
        if await db.scalar(query):
            raise BusinessRuleError("Kode aset sudah digunakan")

    async def _maintenance_count(self, db: AsyncSession, asset_id: int) -> int:
        return await db.scalar(
            select(func.count(AssetMaintenance.id)).where(AssetMaintenance.asset_id == asset_id)
        ) or 0

    async def get_assets(
        self,
        db: AsyncSession,
        school_id: int,
        category: Optional[str] = None,
        condition: Optional[str] = None,
        location: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        conditions = [Asset.school_id == school_id]
        if category:
            conditions.append(Asset.asset_category == category)
        if condition:
            conditions.append(Asset.condition == condition)
        if location:
            conditions.append(Asset.location.ilike(f"%{location}%"))
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(Asset.asset_name.ilike(pattern), Asset.asset_code.ilike(pattern), Asset.asset_category.ilike(pattern))
            )

        total = await db.scalar(select(func.count(Asset.id)).where(and_(*conditions)))
        maintenance_count = (
            select(func.count(AssetMaintenance.id))
            .where(AssetMaintenance.asset_id == Asset.id)
            .correlate(Asset)
            .scalar_subquery()
        )
        result = await db.execute(
            select(Asset, maintenance_count)
            .where(and_(*conditions))
            .order_by(asc(Asset.asset_name))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        assets = [asset_to_dto(asset, count) for asset, count in result.all()]
        return build_page(assets, total or 0, page, limit)

    async def get_asset(self, db: AsyncSession, school_id: int, asset_id: int) -> AssetRead:
        asset = await self._get_owned_asset(db, school_id, asset_id)
        return asset_to_dto(asset, await self._maintenance_count(db, asset.id))

    async def get_assets_by_category(self, db: AsyncSession, school_id: int, category: str) -> List[AssetRead]:
        result = await db.execute(
            select(Asset)
            .where(and_(Asset.school_id == school_id, Asset.asset_category == category))
            .order_by(asc(Asset.asset_name))
        )
        return [asset_to_dto(a) for a in result.scalars().all()]

    async def add_asset(self, db: AsyncSession, school_id: int, data: AssetCreate) -> AssetRead:
        await self._ensure_code_available(db, school_id, data.asset_code)

        asset_data = data.model_dump()
        asset_data["condition"] = data.condition.value
        asset = Asset(school_id=school_id, **asset_data)
        db.add(asset)
        await db.commit()
        await db.refresh(asset)
        return asset_to_dto(asset, 0)

    async def update_asset(self, db: AsyncSession, school_id: int, asset_id: int, data: AssetUpdate) -> AssetRead:
        asset = await self._get_owned_asset(db, school_id, asset_id)
        update_data = data.model_dump(exclude_unset=True)

        if update_data.get("asset_code") and update_data["asset_code"] != asset.asset_code:
            await self._ensure_code_available(db, school_id, update_data["asset_code"], exclude_id=asset.id)
        if update_data.get("condition"):
            update_data["condition"] = data.condition.value

        for key, value in update_data.items():
            setattr(asset, key, value)

        await db.commit()
        await db.refresh(asset)
        return asset_to_dto(asset, await self._maintenance_count(db, asset.id))

    async def delete_asset(self, db: AsyncSession, school_id: int, asset_id: int) -> None:
        """
        Delete an asset without maintenance history.

        Raises:
            NotFoundError: If the asset does not exist in this school
            BusinessRuleError: If maintenance records reference the asset
        """
        asset = await self._get_owned_asset(db, school_id, asset_id)
        if await self._maintenance_count(db, asset.id) > 0:
            raise BusinessRuleError("Tidak dapat menghapus aset yang memiliki riwayat pemeliharaan")

        await db.delete(asset)
        await db.commit()
        logger.info(f"Asset {asset_id} deleted from school {school_id}")

    # Maintenance
    async def get_asset_maintenance(self, db: AsyncSession, school_id: int, asset_id: int) -> List[MaintenanceRead]:
        asset = await self._get_owned_asset(db, school_id, asset_id)
        result = await db.execute(
            select(AssetMaintenance)
            .where(AssetMaintenance.asset_id == asset.id)
            .order_by(desc(AssetMaintenance.maintenance_date))
        )
        return [maintenance_to_dto(m, asset) for m in result.scalars().all()]

    async def get_all_maintenance(self, db: AsyncSession, school_id: int, maintenance_type: Optional[str] = None) -> List[MaintenanceRead]:
        query = (
            select(AssetMaintenance, Asset)
            .join(Asset, AssetMaintenance.asset_id == Asset.id)
            .where(Asset.school_id == school_id)
        )
        if maintenance_type:
            query = query.where(AssetMaintenance.maintenance_type == maintenance_type)
        result = await db.execute(query.order_by(desc(AssetMaintenance.maintenance_date)))
        return [maintenance_to_dto(m, asset) for m, asset in result.all()]

    async def add_maintenance(self, db: AsyncSession, school_id: int, asset_id: int, data: MaintenanceCreate) -> MaintenanceRead:
        asset = await self._get_owned_asset(db, school_id, asset_id)

        record = AssetMaintenance(asset_id=asset.id, **data.model_dump(exclude={"condition_after"}))
        db.add(record)
        if data.condition_after:
            asset.condition = data.condition_after.value

        await db.commit()
        await db.refresh(record)
        return maintenance_to_dto(record, asset)

    async def get_asset_stats(self, db: AsyncSession, school_id: int) -> Dict[str, Any]:
        total_assets = await db.scalar(select(func.count(Asset.id)).where(Asset.school_id == school_id))
        total_value = await db.scalar(
            select(func.coalesce(func.sum(Asset.acquisition_value), 0)).where(Asset.school_id == school_id)
        )

        by_condition = {condition: 0 for condition in ASSET_CONDITIONS}
        result = await db.execute(
            select(Asset.condition, func.count(Asset.id)).where(Asset.school_id == school_id).group_by(Asset.condition)
        )
        for condition, count in result.all():
            by_condition[condition] = count

        result = await db.execute(
            select(Asset.asset_category, func.count(Asset.id), func.coalesce(func.sum(Asset.acquisition_value), 0))
            .where(Asset.school_id == school_id)
            .group_by(Asset.asset_category)
        )
        by_category = {
            category: {"count": count, "value": to_float(value)} for category, count, value in result.all()
        }

        maintenance_cost = await db.scalar(
            select(func.coalesce(func.sum(AssetMaintenance.cost), 0))
            .join(Asset, AssetMaintenance.asset_id == Asset.id)
            .where(Asset.school_id == school_id)
        )

        return {
            "total_assets": total_assets or 0,
            "total_value": to_float(total_value) or 0.0,
            "by_condition": by_condition,
            "by_category": by_category,
            "needs_attention": by_condition["minor_damage"] + by_condition["major_damage"] + by_condition["under_repair"],
            "total_maintenance_cost": to_float(maintenance_cost) or 0.0,
        }
