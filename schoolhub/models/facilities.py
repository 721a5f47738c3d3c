from sqlalchemy import Column, Integer, String, DateTime, Date, Time, ForeignKey, Text, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolhub.database import Base

# Facility model
class Facility(Base):
    __tablename__ = "facilities"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    facility_name = Column(String(255), nullable=False)
    facility_type = Column(String(100), nullable=False)
    capacity = Column(Integer)
    location = Column(String(255))
    condition = Column(String(20), default="good")
    description = Column(Text)
    facility_photo = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint("school_id", "facility_name", name="uq_school_facility_name"),
    )
    
    # Relationships
    usages = relationship("FacilityUsage", back_populates="facility")

# Facility Usage (booking) model
class FacilityUsage(Base):
    __tablename__ = "facility_usage"
    
    id = Column(Integer, primary_key=True, index=True)
    facility_id = Column(Integer, ForeignKey("facilities.id"), nullable=False, index=True)
    usage_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    purpose = Column(Text, nullable=False)
    organizer = Column(String(255))
    participant_count = Column(Integer)
    approval_status = Column(String(20), default="pending", nullable=False)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint("approval_status IN ('pending', 'approved', 'rejected')", name="check_usage_approval"),
    )
    
    # Relationships
    facility = relationship("Facility", back_populates="usages")
