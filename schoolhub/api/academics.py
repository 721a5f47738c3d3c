from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok, get_academic_service
from schoolhub.database import get_db
from schoolhub.middleware.authentication import get_school_id, require_principal_or_admin
from schoolhub.schemas.academics import AcademicRecordCreate, AcademicRecordUpdate, SemesterEnum
from schoolhub.services.academic import AcademicService

router = APIRouter()

# Students
@router.get("/academic/students")
async def get_students(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    grade: Optional[str] = None,
    is_active: Optional[bool] = True,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    """
    List the school's students, with search on name and student numbers.
    """
    students = await service.get_students(db, school_id, page, limit, search, grade, is_active)
    return ok("Data siswa berhasil diambil", students)

@router.get("/academic/students/{student_id}")
async def get_student(
    student_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    return ok("Data siswa berhasil diambil", await service.get_student(db, school_id, student_id))

# Academic records
@router.get("/academic/records")
async def get_academic_records(
    student_id: Optional[int] = None,
    subject_id: Optional[int] = None,
    semester: Optional[SemesterEnum] = None,
    academic_year: Optional[str] = None,
    grade: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    records = await service.get_academic_records(
        db, school_id, student_id, subject_id, semester.value if semester else None, academic_year, grade
    )
    return ok("Data nilai berhasil diambil", records)

@router.get("/academic/records/{record_id}")
async def get_academic_record(
    record_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    return ok("Data nilai berhasil diambil", await service.get_academic_record(db, school_id, record_id))

@router.post("/academic/records", status_code=status.HTTP_201_CREATED)
async def create_academic_record(
    data: AcademicRecordCreate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    """
    Record a student's score for one subject and semester.
    """
    record = await service.create_academic_record(db, school_id, data)
    return ok("Data nilai berhasil ditambahkan", record)

@router.put("/academic/records/{record_id}")
async def update_academic_record(
    data: AcademicRecordUpdate,
    record_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    record = await service.update_academic_record(db, school_id, record_id, data)
    return ok("Data nilai berhasil diperbarui", record)

@router.delete("/academic/records/{record_id}", dependencies=[Depends(require_principal_or_admin)])
async def delete_academic_record(
    record_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    await service.delete_academic_record(db, school_id, record_id)
    return ok("Data nilai berhasil dihapus")

# Reference data
@router.get("/academic/subjects")
async def get_subjects(
    grade_level: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    return ok("Data mata pelajaran berhasil diambil", await service.get_subjects(db, grade_level))

@router.get("/academic/teachers")
async def get_teachers(
    search: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    return ok("Data guru berhasil diambil", await service.get_teachers(db, school_id, search))

@router.get("/academic/competencies")
async def get_basic_competencies(
    subject_id: Optional[int] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    return ok("Data kompetensi dasar berhasil diambil", await service.get_basic_competencies(db, subject_id))

@router.get("/academic/attendance")
async def get_student_attendance(
    student_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    attendance = await service.get_student_attendance(db, school_id, student_id, start_date, end_date)
    return ok("Data kehadiran berhasil diambil", attendance)

# Statistics
@router.get("/academic/stats")
async def get_academic_stats(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    return ok("Statistik akademik berhasil diambil", await service.get_academic_stats(db, school_id))

@router.get("/academic/attendance-summary")
async def get_attendance_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    summary = await service.get_attendance_summary(db, school_id, start_date, end_date)
    return ok("Ringkasan kehadiran berhasil diambil", summary)

@router.get("/academic/grade-distribution")
async def get_grade_distribution(
    academic_year: Optional[str] = None,
    semester: Optional[SemesterEnum] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    distribution = await service.get_grade_distribution(
        db, school_id, academic_year, semester.value if semester else None
    )
    return ok("Distribusi nilai berhasil diambil", distribution)

@router.get("/academic/subject-averages")
async def get_subject_averages(
    academic_year: Optional[str] = None,
    semester: Optional[SemesterEnum] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: AcademicService = Depends(get_academic_service)
):
    averages = await service.get_subject_averages(db, school_id, academic_year, semester.value if semester else None)
    return ok("Rata-rata mata pelajaran berhasil diambil", averages)
