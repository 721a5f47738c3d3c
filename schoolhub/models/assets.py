from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Text, Numeric, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolhub.database import Base

ASSET_CONDITIONS = ("good", "minor_damage", "major_damage", "under_repair")

# Asset model
class Asset(Base):
    __tablename__ = "assets"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    asset_code = Column(String(50), nullable=False)
    asset_name = Column(String(255), nullable=False)
    asset_category = Column(String(100), nullable=False)
    acquisition_date = Column(Date)
    acquisition_value = Column(Numeric(15, 2))
    useful_life = Column(Integer)
    condition = Column(String(20), default="good", nullable=False)
    location = Column(String(255))
    notes = Column(Text)
    qr_code = Column(Text)
    asset_photo = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint("school_id", "asset_code", name="uq_school_asset_code"),
        CheckConstraint("condition IN ('good', 'minor_damage', 'major_damage', 'under_repair')", name="check_asset_condition"),
    )
    
    # Relationships
    maintenance_records = relationship("AssetMaintenance", back_populates="asset")

# Asset Maintenance model
class AssetMaintenance(Base):
    __tablename__ = "asset_maintenance"
    
    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False, index=True)
    maintenance_date = Column(Date, nullable=False)
    maintenance_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    cost = Column(Numeric(15, 2))
    performed_by = Column(String(255))
    next_maintenance_date = Column(Date)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    # Relationships
    asset = relationship("Asset", back_populates="maintenance_records")
