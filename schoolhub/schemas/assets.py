from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field, condecimal, field_validator
from enum import Enum

from schoolhub.models.assets import Asset, AssetMaintenance
from schoolhub.schemas.common import reject_null, to_float


class AssetConditionEnum(str, Enum):
    good = "good"
    minor_damage = "minor_damage"
    major_damage = "major_damage"
    under_repair = "under_repair"


# Asset schemas
class AssetBase(BaseModel):
    asset_name: str = Field(..., min_length=1, max_length=255)
    asset_category: str = Field(..., min_length=1, max_length=100)
    acquisition_date: Optional[date] = None
    acquisition_value: Optional[condecimal(max_digits=15, decimal_places=2, ge=0)] = None
    useful_life: Optional[int] = Field(None, ge=0)
    condition: AssetConditionEnum = AssetConditionEnum.good
    location: Optional[str] = None
    notes: Optional[str] = None
    qr_code: Optional[str] = None
    asset_photo: Optional[str] = None


class AssetCreate(AssetBase):
    asset_code: str = Field(..., min_length=1, max_length=50)


class AssetUpdate(BaseModel):
    asset_code: Optional[str] = Field(None, min_length=1, max_length=50)
    asset_name: Optional[str] = Field(None, min_length=1, max_length=255)
    asset_category: Optional[str] = Field(None, min_length=1, max_length=100)
    acquisition_date: Optional[date] = None
    acquisition_value: Optional[condecimal(max_digits=15, decimal_places=2, ge=0)] = None
    useful_life: Optional[int] = Field(None, ge=0)
    condition: Optional[AssetConditionEnum] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    qr_code: Optional[str] = None
    asset_photo: Optional[str] = None

    @field_validator("asset_code", "asset_name", "asset_category", "condition")
    @classmethod
    def required_columns(cls, v):
        return reject_null(v)


class AssetRead(BaseModel):
    id: int
    asset_code: str
    asset_name: str
    asset_category: str
    acquisition_date: Optional[date] = None
    acquisition_value: Optional[float] = None
    useful_life: Optional[int] = None
    condition: AssetConditionEnum
    location: Optional[str] = None
    notes: Optional[str] = None
    qr_code: Optional[str] = None
    asset_photo: Optional[str] = None
    maintenance_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Maintenance schemas
class MaintenanceCreate(BaseModel):
    maintenance_date: date
    maintenance_type: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1)
    cost: Optional[condecimal(max_digits=15, decimal_places=2, ge=0)] = None
    performed_by: Optional[str] = None
    next_maintenance_date: Optional[date] = None
    # Condition of the asset after the maintenance
    condition_after: Optional[AssetConditionEnum] = None


class MaintenanceRead(BaseModel):
    id: int
    asset_id: int
    maintenance_date: date
    maintenance_type: str
    description: str
    cost: Optional[float] = None
    performed_by: Optional[str] = None
    next_maintenance_date: Optional[date] = None
    asset_name: Optional[str] = None
    asset_code: Optional[str] = None
    created_at: Optional[datetime] = None


def asset_to_dto(asset: Asset, maintenance_count: Optional[int] = None) -> AssetRead:
    return AssetRead(
        id=asset.id,
        asset_code=asset.asset_code,
        asset_name=asset.asset_name,
        asset_category=asset.asset_category,
        acquisition_date=asset.acquisition_date,
        acquisition_value=to_float(asset.acquisition_value),
        useful_life=asset.useful_life,
        condition=asset.condition,
        location=asset.location,
        notes=asset.notes,
        qr_code=asset.qr_code,
        asset_photo=asset.asset_photo,
        maintenance_count=maintenance_count,
        created_at=asset.created_at,
        updated_at=asset.updated_at,
    )


def maintenance_to_dto(record: AssetMaintenance, asset: Optional[Asset] = None) -> MaintenanceRead:
    return MaintenanceRead(
        id=record.id,
        asset_id=record.asset_id,
        maintenance_date=record.maintenance_date,
        maintenance_type=record.maintenance_type,
        description=record.description,
        cost=to_float(record.cost),
        performed_by=record.performed_by,
        next_maintenance_date=record.next_maintenance_date,
        asset_name=asset.asset_name if asset else None,
        asset_code=asset.asset_code if asset else None,
        created_at=record.created_at,
    )
