from sqlalchemy import Column, Integer, String, ForeignKey, Text, Boolean, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolhub.database import Base

# Users
class User(Base):
    __tablename__ = "users"
    
    id = Column(Integer, primary_key=True, index=True)
    # Membership for staff accounts; principals are linked through School.principal_id
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="SET NULL"), nullable=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(Text, nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="staff")
    phone_number = Column(String(50))
    profile_picture = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint("role IN ('principal', 'admin', 'teacher', 'staff')", name="check_user_role"),
    )
    
    # Relationships
    school = relationship("School", foreign_keys=[school_id], back_populates="staff")
    principal_of = relationship("School", foreign_keys="School.principal_id", back_populates="principal", uselist=False)
