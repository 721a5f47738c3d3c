from sqlalchemy import Column, Integer, String, DateTime, Date, Time, ForeignKey, Text, Numeric, Boolean, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolhub.database import Base

# Student model
class Student(Base):
    __tablename__ = "students"
    
    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String(50), unique=True, nullable=False)
    national_student_id = Column(String(50), unique=True)
    full_name = Column(String(255), nullable=False)
    grade = Column(String(10), nullable=False)
    gender = Column(String(10))
    birth_date = Column(Date)
    address = Column(Text)
    parent_name = Column(String(255))
    parent_contact = Column(String(50))
    enrollment_date = Column(Date)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    school = relationship("School", back_populates="students")
    academic_records = relationship("AcademicRecord", back_populates="student")
    attendance_records = relationship("StudentAttendance", back_populates="student")

# Academic Record model
class AcademicRecord(Base):
    __tablename__ = "academic_records"
    
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    semester = Column(String(1), nullable=False)
    academic_year = Column(String(9), nullable=False)
    knowledge_score = Column(Numeric(5, 2))
    skill_score = Column(Numeric(5, 2))
    attitude_score = Column(String(2))
    midterm_exam_score = Column(Numeric(5, 2))
    final_exam_score = Column(Numeric(5, 2))
    final_score = Column(Numeric(5, 2))
    teacher_notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint("student_id", "subject_id", "semester", "academic_year", name="uq_academic_record"),
        CheckConstraint("semester IN ('1', '2')", name="check_record_semester"),
    )
    
    # Relationships
    student = relationship("Student", back_populates="academic_records")
    subject = relationship("Subject", back_populates="academic_records")
    teacher = relationship("Teacher", back_populates="academic_records")

# Student Attendance model
class StudentAttendance(Base):
    __tablename__ = "student_attendance"
    
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False)
    check_in_time = Column(Time)
    check_out_time = Column(Time)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        UniqueConstraint("student_id", "date", name="uq_student_attendance_date"),
        CheckConstraint("status IN ('present', 'absent', 'sick', 'permission')", name="check_student_attendance_status"),
    )
    
    # Relationships
    student = relationship("Student", back_populates="attendance_records")
