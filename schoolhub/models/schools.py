from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Date, Numeric, Boolean, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolhub.database import Base

# School model
class School(Base):
    __tablename__ = "schools"
    
    id = Column(Integer, primary_key=True, index=True)
    npsn = Column(String(20), unique=True, nullable=False, index=True)
    school_name = Column(String(255), nullable=False)
    full_address = Column(Text)
    education_level = Column(String(20))
    accreditation = Column(String(5))
    phone = Column(String(50))
    email = Column(String(100))
    logo_url = Column(Text)
    principal_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL", use_alter=True, name="fk_school_principal"), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    principal = relationship("User", foreign_keys=[principal_id], back_populates="principal_of")
    staff = relationship("User", foreign_keys="User.school_id", back_populates="school")
    students = relationship("Student", back_populates="school")
    teachers = relationship("Teacher", back_populates="school")
    benchmarks = relationship("SchoolBenchmark", back_populates="school")
    reports = relationship("Report", back_populates="school")

# Teacher model
class Teacher(Base):
    __tablename__ = "teachers"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = Column(String(50), unique=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    gender = Column(String(10))
    email = Column(String(255))
    phone_number = Column(String(50))
    subject_area = Column(String(100))
    position = Column(String(100))
    employment_status = Column(String(50))
    education_level = Column(String(20))
    teaching_start_year = Column(Integer)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    school = relationship("School", back_populates="teachers")
    academic_records = relationship("AcademicRecord", back_populates="teacher")
    performances = relationship("TeacherPerformance", back_populates="teacher")
    development_programs = relationship("TeacherDevelopment", back_populates="teacher")
    attendance_records = relationship("TeacherAttendance", back_populates="teacher")

# Subject catalog, shared by all schools
class Subject(Base):
    __tablename__ = "subjects"
    
    id = Column(Integer, primary_key=True, index=True)
    subject_code = Column(String(20), unique=True, nullable=False)
    subject_name = Column(String(100), nullable=False)
    description = Column(Text)
    grade_level = Column(String(50))
    weekly_hours = Column(Integer)
    curriculum = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    competencies = relationship("BasicCompetency", back_populates="subject")
    academic_records = relationship("AcademicRecord", back_populates="subject")

# Basic Competency model
class BasicCompetency(Base):
    __tablename__ = "basic_competencies"
    
    id = Column(Integer, primary_key=True, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    competency_code = Column(String(20), nullable=False)
    competency_description = Column(Text, nullable=False)
    difficulty_level = Column(String(20))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        UniqueConstraint("subject_id", "competency_code", name="uq_subject_competency"),
    )
    
    # Relationships
    subject = relationship("Subject", back_populates="competencies")

# Benchmark of a school metric against the national value
class SchoolBenchmark(Base):
    __tablename__ = "school_benchmarks"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year = Column(String(9), nullable=False)
    metric_name = Column(String(100), nullable=False)
    school_value = Column(Numeric(10, 2))
    national_value = Column(Numeric(10, 2))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    # Relationships
    school = relationship("School", back_populates="benchmarks")

# Report owed by a school to the education office
class Report(Base):
    __tablename__ = "reports"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    report_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    submission_date = Column(Date)
    submission_status = Column(String(20), default="draft", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint("submission_status IN ('draft', 'pending', 'submitted', 'approved')", name="check_report_status"),
    )
    
    # Relationships
    school = relationship("School", back_populates="reports")
