import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, desc, asc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from schoolhub.exceptions import BusinessRuleError, NotFoundError
from schoolhub.models.schools import Teacher
from schoolhub.models.teachers import TeacherPerformance, TeacherPerformanceDetail, TeacherDevelopment, TeacherAttendance
from schoolhub.schemas.common import Page, build_page, to_float
from schoolhub.schemas.teachers import (
    SCORE_FIELDS, EvaluationCreate, EvaluationUpdate, EvaluationRead,
    DevelopmentProgramCreate, DevelopmentProgramUpdate, DevelopmentProgramRead,
    evaluation_to_dto, development_program_to_dto,
)

logger = logging.getLogger(__name__)

EVALUATION_NOT_FOUND = "Evaluasi tidak ditemukan atau bukan bagian dari sekolah ini"
PROGRAM_NOT_FOUND = "Program pengembangan tidak ditemukan atau bukan bagian dari sekolah ini"

EXCELLENT_SCORE = 4.5
IMPROVEMENT_SCORE = 4.0


def total_score(scores: Dict[str, float]) -> float:
    return round(sum(scores[field] for field in SCORE_FIELDS) / len(SCORE_FIELDS), 2)


def evaluation_status(evaluation_date: Optional[date], evaluator_id: Optional[int]) -> str:
    if not evaluation_date:
        return "draft"
    if evaluator_id:
        return "approved"
    return "completed"


def program_status(start_date: date, end_date: Optional[date], today: Optional[date] = None) -> str:
    today = today or date.today()
    if start_date > today:
        return "planned"
    if end_date and end_date < today:
        return "completed"
    return "ongoing"


def build_details(recommendations: List[str], development_goals: List[str]) -> List[TeacherPerformanceDetail]:
    details = [
        TeacherPerformanceDetail(assessment_category="recommendations", indicator=f"Rekomendasi {i}", notes=text)
        for i, text in enumerate(recommendations, start=1)
    ]
    details += [
        TeacherPerformanceDetail(assessment_category="development_goals", indicator=f"Tujuan Pengembangan {i}", notes=text)
        for i, text in enumerate(development_goals, start=1)
    ]
    return details


class TeacherEvaluationService:
    """Teacher evaluations, development programs and attendance."""

    def _evaluation_query(self, school_id: int):
        return (
            select(TeacherPerformance)
            .join(Teacher, TeacherPerformance.teacher_id == Teacher.id)
            .where(Teacher.school_id == school_id)
            .options(selectinload(TeacherPerformance.teacher), selectinload(TeacherPerformance.details))
            .execution_options(populate_existing=True)
        )

    async def _get_owned_evaluation(self, db: AsyncSession, school_id: int, evaluation_id: int) -> TeacherPerformance:
        result = await db.execute(self._evaluation_query(school_id).where(TeacherPerformance.id == evaluation_id))
        evaluation = result.scalars().first()
        if not evaluation:
            raise NotFoundError(EVALUATION_NOT_FOUND)
        return evaluation

    async def _get_owned_teacher(self, db: AsyncSession, school_id: int, teacher_id: int) -> Teacher:
        teacher = await db.scalar(select(Teacher).where(and_(Teacher.id == teacher_id, Teacher.school_id == school_id)))
        if not teacher:
            raise NotFoundError("Guru tidak ditemukan atau bukan bagian dari sekolah ini")
        return teacher

    # Evaluations
    async def get_evaluations(
        self,
        db: AsyncSession,
        school_id: int,
        teacher_id: Optional[int] = None,
        evaluation_period: Optional[str] = None,
        academic_year: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        conditions = [Teacher.school_id == school_id]
        if teacher_id:
            conditions.append(TeacherPerformance.teacher_id == teacher_id)
        if evaluation_period:
            conditions.append(TeacherPerformance.evaluation_period == evaluation_period)
        if academic_year:
            conditions.append(TeacherPerformance.academic_year == academic_year)
        if status:
            conditions.append(TeacherPerformance.status == status)

        total = await db.scalar(
            select(func.count(TeacherPerformance.id))
            .join(Teacher, TeacherPerformance.teacher_id == Teacher.id)
            .where(and_(*conditions))
        )
        result = await db.execute(
            self._evaluation_query(school_id)
            .where(and_(*conditions))
            .order_by(desc(TeacherPerformance.academic_year), desc(TeacherPerformance.evaluation_date), asc(Teacher.full_name))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        evaluations = [evaluation_to_dto(e) for e in result.scalars().all()]
        return build_page(evaluations, total or 0, page, limit)

    async def get_evaluation(self, db: AsyncSession, school_id: int, evaluation_id: int) -> EvaluationRead:
        return evaluation_to_dto(await self._get_owned_evaluation(db, school_id, evaluation_id))

    async def create_evaluation(self, db: AsyncSession, school_id: int, data: EvaluationCreate) -> EvaluationRead:
        """
        Record an evaluation; one per teacher, period and academic year.

        Raises:
            NotFoundError: If the teacher does not belong to this school
            BusinessRuleError: If the teacher was already evaluated for the period
        """
        await self._get_owned_teacher(db, school_id, data.teacher_id)

        existing = await db.scalar(
            select(TeacherPerformance.id).where(
                and_(
                    TeacherPerformance.teacher_id == data.teacher_id,
                    TeacherPerformance.evaluation_period == data.evaluation_period,
                    TeacherPerformance.academic_year == data.academic_year,
                )
            )
        )
        if existing:
            raise BusinessRuleError("Evaluasi untuk guru, periode, dan tahun akademik ini sudah ada")

        scores = {field: getattr(data, field) for field in SCORE_FIELDS}
        evaluation = TeacherPerformance(
            teacher_id=data.teacher_id,
            evaluation_period=data.evaluation_period,
            academic_year=data.academic_year,
            total_score=total_score(scores),
            evaluation_notes=data.evaluation_notes,
            evaluation_date=data.evaluation_date,
            evaluator_id=data.evaluator_id,
            status=evaluation_status(data.evaluation_date, data.evaluator_id),
            details=build_details(data.recommendations, data.development_goals),
            **scores,
        )
        db.add(evaluation)
        await db.commit()
        return await self.get_evaluation(db, school_id, evaluation.id)

    async def update_evaluation(
        self, db: AsyncSession, school_id: int, evaluation_id: int, data: EvaluationUpdate
    ) -> EvaluationRead:
        evaluation = await self._get_owned_evaluation(db, school_id, evaluation_id)
        update_data = data.model_dump(exclude_unset=True, exclude={"recommendations", "development_goals"})

        for key, value in update_data.items():
            setattr(evaluation, key, value.value if key == "status" and value else value)

        if set(SCORE_FIELDS) & update_data.keys():
            evaluation.total_score = total_score({field: to_float(getattr(evaluation, field)) for field in SCORE_FIELDS})

        if "status" not in update_data and "evaluation_date" in update_data:
            evaluation.status = evaluation_status(evaluation.evaluation_date, evaluation.evaluator_id)

        if data.recommendations is not None or data.development_goals is not None:
            recommendations = data.recommendations
            if recommendations is None:
                recommendations = [d.notes for d in evaluation.details if d.assessment_category == "recommendations"]
            goals = data.development_goals
            if goals is None:
                goals = [d.notes for d in evaluation.details if d.assessment_category == "development_goals"]
            evaluation.details = build_details(recommendations, goals)

        await db.commit()
        return await self.get_evaluation(db, school_id, evaluation_id)

    async def delete_evaluation(self, db: AsyncSession, school_id: int, evaluation_id: int) -> None:
        evaluation = await self._get_owned_evaluation(db, school_id, evaluation_id)
        await db.delete(evaluation)
        await db.commit()

    async def get_evaluation_stats(self, db: AsyncSession, school_id: int, academic_year: Optional[str] = None) -> Dict[str, Any]:
        query = (
            select(TeacherPerformance.evaluation_period, TeacherPerformance.total_score)
            .join(Teacher, TeacherPerformance.teacher_id == Teacher.id)
            .where(Teacher.school_id == school_id)
        )
        if academic_year:
            query = query.where(TeacherPerformance.academic_year == academic_year)
        rows = (await db.execute(query)).all()
        scores = [to_float(score) for _, score in rows]

        by_period: Dict[str, List[float]] = {}
        for period, score in rows:
            by_period.setdefault(period, []).append(to_float(score))

        total_teachers = await db.scalar(
            select(func.count(Teacher.id)).where(and_(Teacher.school_id == school_id, Teacher.is_active.is_(True)))
        )

        return {
            "total_teachers": total_teachers or 0,
            "total_evaluations": len(scores),
            "average_score": round(sum(scores) / len(scores), 2) if scores else 0.0,
            "excellent_count": sum(1 for s in scores if s >= EXCELLENT_SCORE),
            "needs_improvement_count": sum(1 for s in scores if s < IMPROVEMENT_SCORE),
            "by_period": {
                period: {"count": len(values), "average_score": round(sum(values) / len(values), 2)}
                for period, values in by_period.items()
            },
        }

    async def get_teacher_attendance_rate(
        self,
        db: AsyncSession,
        school_id: int,
        teacher_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        await self._get_owned_teacher(db, school_id, teacher_id)
        query = (
            select(TeacherAttendance.status, func.count(TeacherAttendance.id))
            .where(TeacherAttendance.teacher_id == teacher_id)
            .group_by(TeacherAttendance.status)
        )
        if start_date:
            query = query.where(TeacherAttendance.date >= start_date)
        if end_date:
            query = query.where(TeacherAttendance.date <= end_date)
        counts = dict((await db.execute(query)).all())
        total = sum(counts.values())
        return {
            "teacher_id": teacher_id,
            "total_days": total,
            "present_days": counts.get("present", 0),
            "attendance_rate": round(counts.get("present", 0) / total * 100, 2) if total else 0.0,
        }

    # Development programs
    def _program_query(self, school_id: int):
        return (
            select(TeacherDevelopment)
            .join(Teacher, TeacherDevelopment.teacher_id == Teacher.id)
            .where(Teacher.school_id == school_id)
            .options(selectinload(TeacherDevelopment.teacher))
            .execution_options(populate_existing=True)
        )

    async def _get_owned_program(self, db: AsyncSession, school_id: int, program_id: int) -> TeacherDevelopment:
        result = await db.execute(self._program_query(school_id).where(TeacherDevelopment.id == program_id))
        program = result.scalars().first()
        if not program:
            raise NotFoundError(PROGRAM_NOT_FOUND)
        return program

    async def get_development_programs(
        self,
        db: AsyncSession,
        school_id: int,
        teacher_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[DevelopmentProgramRead]:
        query = self._program_query(school_id)
        if teacher_id:
            query = query.where(TeacherDevelopment.teacher_id == teacher_id)
        if status:
            query = query.where(TeacherDevelopment.status == status)
        result = await db.execute(query.order_by(desc(TeacherDevelopment.start_date)))
        return [development_program_to_dto(p) for p in result.scalars().all()]

    async def get_development_program(self, db: AsyncSession, school_id: int, program_id: int) -> DevelopmentProgramRead:
        return development_program_to_dto(await self._get_owned_program(db, school_id, program_id))

    async def create_development_program(self, db: AsyncSession, school_id: int, data: DevelopmentProgramCreate) -> DevelopmentProgramRead:
        await self._get_owned_teacher(db, school_id, data.teacher_id)

        program_data = data.model_dump()
        program_data["status"] = data.status.value if data.status else program_status(data.start_date, data.end_date)
        program = TeacherDevelopment(**program_data)
        db.add(program)
        await db.commit()
        return await self.get_development_program(db, school_id, program.id)

    async def update_development_program(
        self, db: AsyncSession, school_id: int, program_id: int, data: DevelopmentProgramUpdate
    ) -> DevelopmentProgramRead:
        program = await self._get_owned_program(db, school_id, program_id)
        update_data = data.model_dump(exclude_unset=True)

        for key, value in update_data.items():
            setattr(program, key, value.value if key == "status" and value else value)

        if program.end_date and program.end_date < program.start_date:
            raise BusinessRuleError("Tanggal selesai harus setelah tanggal mulai")
        if "status" not in update_data and {"start_date", "end_date"} & update_data.keys():
            program.status = program_status(program.start_date, program.end_date)

        await db.commit()
        return await self.get_development_program(db, school_id, program_id)

    async def delete_development_program(self, db: AsyncSession, school_id: int, program_id: int) -> None:
        program = await self._get_owned_program(db, school_id, program_id)
        await db.delete(program)
        await db.commit()
