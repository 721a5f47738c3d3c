from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Text, Numeric, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolhub.database import Base

# Teacher Performance (evaluation) model
class TeacherPerformance(Base):
    __tablename__ = "teacher_performances"
    
    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    evaluation_period = Column(String(50), nullable=False)
    academic_year = Column(String(9), nullable=False)
    teaching_quality = Column(Numeric(3, 2), nullable=False)
    classroom_management = Column(Numeric(3, 2), nullable=False)
    student_engagement = Column(Numeric(3, 2), nullable=False)
    professional_development = Column(Numeric(3, 2), nullable=False)
    collaboration = Column(Numeric(3, 2), nullable=False)
    punctuality = Column(Numeric(3, 2), nullable=False)
    total_score = Column(Numeric(3, 2), nullable=False)
    evaluation_notes = Column(Text)
    evaluator_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    evaluation_date = Column(Date)
    status = Column(String(20), default="draft", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint("teacher_id", "evaluation_period", "academic_year", name="uq_teacher_evaluation"),
        CheckConstraint("status IN ('draft', 'completed', 'reviewed', 'approved')", name="check_evaluation_status"),
    )
    
    # Relationships
    teacher = relationship("Teacher", back_populates="performances")
    details = relationship("TeacherPerformanceDetail", back_populates="performance", cascade="all, delete-orphan")

# Free-text evaluation detail, tagged by category
class TeacherPerformanceDetail(Base):
    __tablename__ = "teacher_performance_details"
    
    id = Column(Integer, primary_key=True, index=True)
    performance_id = Column(Integer, ForeignKey("teacher_performances.id", ondelete="CASCADE"), nullable=False, index=True)
    assessment_category = Column(String(50), nullable=False)
    indicator = Column(String(255), nullable=False)
    notes = Column(Text)
    
    __table_args__ = (
        CheckConstraint("assessment_category IN ('recommendations', 'development_goals')", name="check_detail_category"),
    )
    
    # Relationships
    performance = relationship("TeacherPerformance", back_populates="details")

# Teacher Development Program model
class TeacherDevelopment(Base):
    __tablename__ = "teacher_developments"
    
    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    program_name = Column(String(255), nullable=False)
    program_type = Column(String(100), nullable=False)
    provider = Column(String(255))
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    status = Column(String(20), default="planned", nullable=False)
    certificate_url = Column(Text)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint("status IN ('planned', 'ongoing', 'completed', 'cancelled')", name="check_development_status"),
    )
    
    # Relationships
    teacher = relationship("Teacher", back_populates="development_programs")

# Teacher Attendance model
class TeacherAttendance(Base):
    __tablename__ = "teacher_attendance"
    
    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        UniqueConstraint("teacher_id", "date", name="uq_teacher_attendance_date"),
        CheckConstraint("status IN ('present', 'absent', 'sick', 'permission')", name="check_teacher_attendance_status"),
    )
    
    # Relationships
    teacher = relationship("Teacher", back_populates="attendance_records")
