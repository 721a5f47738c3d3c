from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok, get_teacher_evaluation_service
from schoolhub.database import get_db
from schoolhub.middleware.authentication import get_school_id, require_principal_or_admin
from schoolhub.schemas.teachers import (
    EvaluationCreate, EvaluationUpdate, EvaluationStatusEnum,
    DevelopmentProgramCreate, DevelopmentProgramUpdate, ProgramStatusEnum,
)
from schoolhub.services.teacher_evaluation import TeacherEvaluationService

router = APIRouter()

# Evaluations
@router.get("/teacher-evaluation/evaluations")
async def get_evaluations(
    teacher_id: Optional[int] = None,
    evaluation_period: Optional[str] = None,
    academic_year: Optional[str] = None,
    status: Optional[EvaluationStatusEnum] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    evaluations = await service.get_evaluations(
        db, school_id, teacher_id, evaluation_period, academic_year, status.value if status else None, page, limit
    )
    return ok("Data evaluasi guru berhasil diambil", evaluations)

@router.get("/teacher-evaluation/stats")
async def get_evaluation_stats(
    academic_year: Optional[str] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    stats = await service.get_evaluation_stats(db, school_id, academic_year)
    return ok("Statistik evaluasi guru berhasil diambil", stats)

@router.get("/teacher-evaluation/teachers/{teacher_id}/attendance")
async def get_teacher_attendance_rate(
    teacher_id: int = Path(..., gt=0),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    rate = await service.get_teacher_attendance_rate(db, school_id, teacher_id, start_date, end_date)
    return ok("Tingkat kehadiran guru berhasil diambil", rate)

@router.get("/teacher-evaluation/evaluations/{evaluation_id}")
async def get_evaluation(
    evaluation_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    return ok("Data evaluasi guru berhasil diambil", await service.get_evaluation(db, school_id, evaluation_id))

@router.post(
    "/teacher-evaluation/evaluations",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_principal_or_admin)],
)
async def create_evaluation(
    data: EvaluationCreate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    """
    Evaluate a teacher for one period. The total score is the mean of the six scores.
    """
    evaluation = await service.create_evaluation(db, school_id, data)
    return ok("Evaluasi guru berhasil ditambahkan", evaluation)

@router.put("/teacher-evaluation/evaluations/{evaluation_id}", dependencies=[Depends(require_principal_or_admin)])
async def update_evaluation(
    data: EvaluationUpdate,
    evaluation_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    evaluation = await service.update_evaluation(db, school_id, evaluation_id, data)
    return ok("Evaluasi guru berhasil diperbarui", evaluation)

@router.delete("/teacher-evaluation/evaluations/{evaluation_id}", dependencies=[Depends(require_principal_or_admin)])
async def delete_evaluation(
    evaluation_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    await service.delete_evaluation(db, school_id, evaluation_id)
    return ok("Evaluasi guru berhasil dihapus")

# Development programs
@router.get("/teacher-evaluation/development-programs")
async def get_development_programs(
    teacher_id: Optional[int] = None,
    status: Optional[ProgramStatusEnum] = None,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    programs = await service.get_development_programs(db, school_id, teacher_id, status.value if status else None)
    return ok("Data program pengembangan berhasil diambil", programs)

@router.get("/teacher-evaluation/development-programs/{program_id}")
async def get_development_program(
    program_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    program = await service.get_development_program(db, school_id, program_id)
    return ok("Data program pengembangan berhasil diambil", program)

@router.post("/teacher-evaluation/development-programs", status_code=status.HTTP_201_CREATED)
async def create_development_program(
    data: DevelopmentProgramCreate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    program = await service.create_development_program(db, school_id, data)
    return ok("Program pengembangan berhasil ditambahkan", program)

@router.put("/teacher-evaluation/development-programs/{program_id}")
async def update_development_program(
    data: DevelopmentProgramUpdate,
    program_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    program = await service.update_development_program(db, school_id, program_id, data)
    return ok("Program pengembangan berhasil diperbarui", program)

@router.delete("/teacher-evaluation/development-programs/{program_id}", dependencies=[Depends(require_principal_or_admin)])
async def delete_development_program(
    program_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: TeacherEvaluationService = Depends(get_teacher_evaluation_service)
):
    await service.delete_development_program(db, school_id, program_id)
    return ok("Program pengembangan berhasil dihapus")
