from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Numeric, Boolean, JSON, CheckConstraint
from sqlalchemy.sql import func
from schoolhub.database import Base

# AI Recommendation model
class AiRecommendation(Base):
    __tablename__ = "ai_recommendations"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    supporting_data = Column(JSON)
    affected_entities = Column(JSON)
    confidence_level = Column(Numeric(3, 2), nullable=False, default=0.7)
    urgency_level = Column(String(10), default="medium", nullable=False)
    predicted_impact = Column(Text)
    implementation_status = Column(String(20), default="pending", nullable=False)
    principal_feedback = Column(Text)
    generated_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint("category IN ('academic', 'financial', 'asset', 'teacher', 'attendance')", name="check_recommendation_category"),
        CheckConstraint("implementation_status IN ('pending', 'in_progress', 'approved', 'completed', 'rejected')", name="check_recommendation_status"),
        CheckConstraint("urgency_level IN ('low', 'medium', 'high', 'critical')", name="check_recommendation_urgency"),
    )

# Early Warning model
class EarlyWarning(Base):
    __tablename__ = "early_warnings"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    urgency_level = Column(String(10), nullable=False)
    target_value = Column(Numeric(12, 2))
    actual_value = Column(Numeric(12, 2))
    affected_entities = Column(JSON)
    recommended_actions = Column(JSON)
    is_resolved = Column(Boolean, default=False, nullable=False)
    resolved_at = Column(DateTime)
    detected_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        CheckConstraint("category IN ('academic', 'financial', 'asset', 'teacher', 'attendance', 'deadline')", name="check_warning_category"),
        CheckConstraint("urgency_level IN ('low', 'medium', 'high', 'critical')", name="check_warning_urgency"),
    )
