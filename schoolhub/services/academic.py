import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, func, desc, asc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from schoolhub.exceptions import BusinessRuleError, NotFoundError
from schoolhub.models.academics import Student, AcademicRecord, StudentAttendance
from schoolhub.models.schools import Teacher, Subject, BasicCompetency
from schoolhub.schemas.common import Page, build_page, to_float
from schoolhub.schemas.academics import (
    StudentRead, SubjectRead, TeacherRead, BasicCompetencyRead, StudentAttendanceRead,
    AcademicRecordCreate, AcademicRecordUpdate, AcademicRecordRead, academic_record_to_dto,
)

logger = logging.getLogger(__name__)

PASSING_GRADE = 75
RECORD_NOT_FOUND = "Data nilai tidak ditemukan atau bukan bagian dari sekolah ini"

GRADE_BANDS = [("A", 90), ("B", 80), ("C", 70), ("D", 60), ("E", 0)]
GRADE_RANGES = {"A": "90-100", "B": "80-89", "C": "70-79", "D": "60-69", "E": "<60"}


def current_academic_year(today: Optional[date] = None) -> str:
    """Academic years start in July: 2024/2025 runs from July 2024 to June 2025."""
    today = today or date.today()
    if today.month >= 7:
        return f"{today.year}/{today.year + 1}"
    return f"{today.year - 1}/{today.year}"


def current_semester(today: Optional[date] = None) -> str:
    today = today or date.today()
    return "2" if today.month <= 6 else "1"


def attendance_status(rate: float) -> str:
    if rate >= 95:
        return "excellent"
    if rate >= 90:
        return "good"
    if rate >= 80:
        return "fair"
    return "poor"


def grade_letter(score: float) -> str:
    for letter, low in GRADE_BANDS:
        if score >= low:
            return letter
    return "E"


class AcademicService:
    """Students, grades, attendance and the statistics built on them."""

    def _record_query(self):
        return (
            select(AcademicRecord)
            .join(Student, AcademicRecord.student_id == Student.id)
            .options(
                selectinload(AcademicRecord.student),
                selectinload(AcademicRecord.subject),
                selectinload(AcademicRecord.teacher),
            )
            .execution_options(populate_existing=True)
        )

    async def _get_owned_record(self, db: AsyncSession, school_id: int, record_id: int) -> AcademicRecord:
        result = await db.execute(
            self._record_query().where(and_(AcademicRecord.id == record_id, Student.school_id == school_id))
        )
        record = result.scalars().first()
        if not record:
            raise NotFoundError(RECORD_NOT_FOUND)
        return record

    # Students
    async def get_students(
        self,
        db: AsyncSession,
        school_id: int,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        grade: Optional[str] = None,
        is_active: Optional[bool] = True,
    ) -> Page:
        conditions = [Student.school_id == school_id]
        if grade:
            conditions.append(Student.grade == grade)
        if is_active is not None:
            conditions.append(Student.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    Student.full_name.ilike(pattern),
                    Student.student_id.ilike(pattern),
                    Student.national_student_id.ilike(pattern),
                )
            )

        total = await db.scalar(select(func.count(Student.id)).where(and_(*conditions)))
        result = await db.execute(
            select(Student)
            .where(and_(*conditions))
            .order_by(asc(Student.grade), asc(Student.full_name))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        students = [StudentRead.model_validate(s) for s in result.scalars().all()]
        return build_page(students, total or 0, page, limit)

    async def get_student(self, db: AsyncSession, school_id: int, student_id: int) -> StudentRead:
        result = await db.execute(
            select(Student).where(and_(Student.id == student_id, Student.school_id == school_id))
        )
        student = result.scalars().first()
        if not student:
            raise NotFoundError("Siswa tidak ditemukan atau bukan bagian dari sekolah ini")
        return StudentRead.model_validate(student)

    # Academic records
    async def get_academic_records(
        self,
        db: AsyncSession,
        school_id: int,
        student_id: Optional[int] = None,
        subject_id: Optional[int] = None,
        semester: Optional[str] = None,
        academic_year: Optional[str] = None,
        grade: Optional[str] = None,
    ) -> List[AcademicRecordRead]:
        query = self._record_query().where(Student.school_id == school_id)
        if student_id:
            query = query.where(AcademicRecord.student_id == student_id)
        if subject_id:
            query = query.where(AcademicRecord.subject_id == subject_id)
        if semester:
            query = query.where(AcademicRecord.semester == semester)
        if academic_year:
            query = query.where(AcademicRecord.academic_year == academic_year)
        if grade:
            query = query.where(Student.grade == grade)

        result = await db.execute(
            query.order_by(desc(AcademicRecord.academic_year), asc(AcademicRecord.semester), asc(Student.full_name))
        )
        return [academic_record_to_dto(r) for r in result.scalars().all()]

    async def get_academic_record(self, db: AsyncSession, school_id: int, record_id: int) -> AcademicRecordRead:
        return academic_record_to_dto(await self._get_owned_record(db, school_id, record_id))

    async def create_academic_record(self, db: AsyncSession, school_id: int, data: AcademicRecordCreate) -> AcademicRecordRead:
        """
        Create a grade for a student.

        Raises:
            NotFoundError: If the student, subject or teacher is unknown to this school
            BusinessRuleError: If the student already has a grade for the subject in that semester
        """
        student = await db.scalar(
            select(Student).where(and_(Student.id == data.student_id, Student.school_id == school_id))
        )
        if not student:
            raise NotFoundError("Siswa tidak ditemukan atau bukan bagian dari sekolah ini")

        subject = await db.scalar(select(Subject).where(Subject.id == data.subject_id))
        if not subject:
            raise NotFoundError("Mata pelajaran tidak ditemukan")

        teacher = await db.scalar(
            select(Teacher).where(and_(Teacher.id == data.teacher_id, Teacher.school_id == school_id))
        )
        if not teacher:
            raise NotFoundError("Guru tidak ditemukan atau bukan bagian dari sekolah ini")

        existing = await db.scalar(
            select(AcademicRecord.id).where(
                and_(
                    AcademicRecord.student_id == data.student_id,
                    AcademicRecord.subject_id == data.subject_id,
                    AcademicRecord.semester == data.semester.value,
                    AcademicRecord.academic_year == data.academic_year,
                )
            )
        )
        if existing:
            raise BusinessRuleError("Nilai untuk siswa, mata pelajaran, semester, dan tahun akademik ini sudah ada")

        record_data = data.model_dump()
        record_data["semester"] = data.semester.value
        if data.attitude_score:
            record_data["attitude_score"] = data.attitude_score.value
        record = AcademicRecord(**record_data)
        db.add(record)
        await db.commit()
        return await self.get_academic_record(db, school_id, record.id)

    async def update_academic_record(
        self, db: AsyncSession, school_id: int, record_id: int, data: AcademicRecordUpdate
    ) -> AcademicRecordRead:
        record = await self._get_owned_record(db, school_id, record_id)
        update_data = data.model_dump(exclude_unset=True)

        if update_data.get("teacher_id"):
            teacher = await db.scalar(
                select(Teacher).where(and_(Teacher.id == update_data["teacher_id"], Teacher.school_id == school_id))
            )
            if not teacher:
                raise NotFoundError("Guru tidak ditemukan atau bukan bagian dari sekolah ini")
        if update_data.get("attitude_score"):
            update_data["attitude_score"] = data.attitude_score.value

        for key, value in update_data.items():
            setattr(record, key, value)

        await db.commit()
        return await self.get_academic_record(db, school_id, record_id)

    async def delete_academic_record(self, db: AsyncSession, school_id: int, record_id: int) -> None:
        record = await self._get_owned_record(db, school_id, record_id)
        await db.delete(record)
        await db.commit()
        logger.info(f"Academic record {record_id} deleted from school {school_id}")

    # Reference data
    async def get_subjects(self, db: AsyncSession, grade_level: Optional[str] = None) -> List[SubjectRead]:
        query = select(Subject).order_by(asc(Subject.subject_name))
        if grade_level:
            query = query.where(Subject.grade_level.ilike(f"%{grade_level}%"))
        result = await db.execute(query)
        return [SubjectRead.model_validate(s) for s in result.scalars().all()]

    async def get_teachers(self, db: AsyncSession, school_id: int, search: Optional[str] = None) -> List[TeacherRead]:
        query = select(Teacher).where(and_(Teacher.school_id == school_id, Teacher.is_active.is_(True)))
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(Teacher.full_name.ilike(pattern), Teacher.employee_id.ilike(pattern)))
        result = await db.execute(query.order_by(asc(Teacher.full_name)))
        return [TeacherRead.model_validate(t) for t in result.scalars().all()]

    async def get_basic_competencies(self, db: AsyncSession, subject_id: Optional[int] = None) -> List[BasicCompetencyRead]:
        query = select(BasicCompetency).order_by(asc(BasicCompetency.subject_id), asc(BasicCompetency.competency_code))
        if subject_id:
            query = query.where(BasicCompetency.subject_id == subject_id)
        result = await db.execute(query)
        return [BasicCompetencyRead.model_validate(c) for c in result.scalars().all()]

    async def get_student_attendance(
        self,
        db: AsyncSession,
        school_id: int,
        student_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[StudentAttendanceRead]:
        query = (
            select(StudentAttendance)
            .join(Student, StudentAttendance.student_id == Student.id)
            .where(Student.school_id == school_id)
        )
        if student_id:
            query = query.where(StudentAttendance.student_id == student_id)
        if start_date:
            query = query.where(StudentAttendance.date >= start_date)
        if end_date:
            query = query.where(StudentAttendance.date <= end_date)
        result = await db.execute(query.order_by(desc(StudentAttendance.date)))
        return [StudentAttendanceRead.model_validate(a) for a in result.scalars().all()]

    # Statistics
    async def get_academic_stats(self, db: AsyncSession, school_id: int, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or date.today()
        academic_year = current_academic_year(today)

        total_students = await db.scalar(
            select(func.count(Student.id)).where(and_(Student.school_id == school_id, Student.is_active.is_(True)))
        )
        total_teachers = await db.scalar(
            select(func.count(Teacher.id)).where(and_(Teacher.school_id == school_id, Teacher.is_active.is_(True)))
        )
        total_subjects = await db.scalar(select(func.count(Subject.id)))

        scores = await db.execute(
            select(AcademicRecord.final_score)
            .join(Student, AcademicRecord.student_id == Student.id)
            .where(
                and_(
                    Student.school_id == school_id,
                    AcademicRecord.academic_year == academic_year,
                    AcademicRecord.final_score.is_not(None),
                )
            )
        )
        values = [to_float(s) for s in scores.scalars().all()]
        average_score = round(sum(values) / len(values), 2) if values else 0.0
        passing_rate = round(sum(1 for v in values if v >= PASSING_GRADE) / len(values) * 100, 2) if values else 0.0

        month_start = today.replace(day=1)
        attendance = await db.execute(
            select(StudentAttendance.status, func.count(StudentAttendance.id))
            .join(Student, StudentAttendance.student_id == Student.id)
            .where(and_(Student.school_id == school_id, StudentAttendance.date >= month_start, StudentAttendance.date <= today))
            .group_by(StudentAttendance.status)
        )
        counts = dict(attendance.all())
        total_attendance = sum(counts.values())
        attendance_rate = round(counts.get("present", 0) / total_attendance * 100, 2) if total_attendance else 0.0

        return {
            "total_students": total_students or 0,
            "total_teachers": total_teachers or 0,
            "total_subjects": total_subjects or 0,
            "academic_year": academic_year,
            "average_score": average_score,
            "passing_rate": passing_rate,
            "attendance_rate": attendance_rate,
        }

    async def get_attendance_summary(
        self,
        db: AsyncSession,
        school_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=30)

        result = await db.execute(
            select(Student.grade, StudentAttendance.status, func.count(StudentAttendance.id))
            .join(Student, StudentAttendance.student_id == Student.id)
            .where(
                and_(
                    Student.school_id == school_id,
                    StudentAttendance.date >= start_date,
                    StudentAttendance.date <= end_date,
                )
            )
            .group_by(Student.grade, StudentAttendance.status)
        )

        by_grade: Dict[str, Dict[str, int]] = {}
        for grade, status, count in result.all():
            by_grade.setdefault(grade, {})[status] = count

        summary = []
        for grade in sorted(by_grade):
            counts = by_grade[grade]
            total = sum(counts.values())
            rate = round(counts.get("present", 0) / total * 100, 2) if total else 0.0
            summary.append({
                "grade": grade,
                "total_records": total,
                "present": counts.get("present", 0),
                "absent": counts.get("absent", 0),
                "sick": counts.get("sick", 0),
                "permission": counts.get("permission", 0),
                "attendance_rate": rate,
                "status": attendance_status(rate),
            })
        return summary

    async def get_grade_distribution(
        self,
        db: AsyncSession,
        school_id: int,
        academic_year: Optional[str] = None,
        semester: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        conditions = [Student.school_id == school_id, AcademicRecord.final_score.is_not(None)]
        if academic_year:
            conditions.append(AcademicRecord.academic_year == academic_year)
        if semester:
            conditions.append(AcademicRecord.semester == semester)

        result = await db.execute(
            select(AcademicRecord.final_score)
            .join(Student, AcademicRecord.student_id == Student.id)
            .where(and_(*conditions))
        )
        scores = [to_float(s) for s in result.scalars().all()]
        counts = {letter: 0 for letter, _ in GRADE_BANDS}
        for score in scores:
            counts[grade_letter(score)] += 1

        return [
            {
                "grade": letter,
                "range": GRADE_RANGES[letter],
                "count": counts[letter],
                "percentage": round(counts[letter] / len(scores) * 100, 2) if scores else 0.0,
            }
            for letter, _ in GRADE_BANDS
        ]

    async def get_subject_averages(
        self,
        db: AsyncSession,
        school_id: int,
        academic_year: Optional[str] = None,
        semester: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        academic_year = academic_year or current_academic_year()
        semester = semester or current_semester()
        other_semester = "1" if semester == "2" else "2"

        result = await db.execute(
            select(
                Subject.id,
                Subject.subject_name,
                AcademicRecord.semester,
                func.avg(AcademicRecord.final_score),
                func.count(AcademicRecord.id),
            )
            .join(AcademicRecord, AcademicRecord.subject_id == Subject.id)
            .join(Student, AcademicRecord.student_id == Student.id)
            .where(
                and_(
                    Student.school_id == school_id,
                    AcademicRecord.academic_year == academic_year,
                    AcademicRecord.final_score.is_not(None),
                )
            )
            .group_by(Subject.id, Subject.subject_name, AcademicRecord.semester)
        )

        subjects: Dict[int, Dict[str, Any]] = {}
        for subject_id, subject_name, row_semester, average, count in result.all():
            entry = subjects.setdefault(subject_id, {"subject_id": subject_id, "subject_name": subject_name})
            entry[row_semester] = (to_float(average), count)

        averages = []
        for entry in subjects.values():
            if semester not in entry:
                continue
            average, count = entry[semester]
            trend = "stable"
            if other_semester in entry:
                difference = average - entry[other_semester][0]
                if difference > 2:
                    trend = "up"
                elif difference < -2:
                    trend = "down"
            averages.append({
                "subject_id": entry["subject_id"],
                "subject_name": entry["subject_name"],
                "average_score": round(average, 2),
                "record_count": count,
                "trend": trend,
            })
        return sorted(averages, key=lambda a: a["subject_name"])
