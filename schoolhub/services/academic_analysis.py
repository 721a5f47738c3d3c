import asyncio
import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolhub.models.academics import Student, AcademicRecord, StudentAttendance
from schoolhub.models.schools import Subject, SchoolBenchmark
from schoolhub.schemas.analysis import RecommendationDraft, UrgencyEnum
from schoolhub.schemas.common import to_float
from schoolhub.services.academic import current_academic_year, current_semester
from schoolhub.services.gemini import GeminiService, AIResult, AIJsonResult, AIFailure
from schoolhub.services.recommendations import determine_urgency

logger = logging.getLogger(__name__)

MIN_DATA_QUALITY = 0.3
GATHER_FAILED = "Failed to gather school data for analysis"
MAX_STUDENTS_PER_PROMPT = 10
ATTENDANCE_LOOKBACK_DAYS = 90
CRITICAL_ATTENDANCE = 70

RECOMMENDATION_FORMAT = (
    "Berikan jawaban dalam format JSON berupa array objek dengan field: "
    '"title" (judul singkat), "description" (penjelasan dan langkah implementasi), '
    '"predicted_impact" (dampak yang diharapkan), "urgency" (low/medium/high/critical) '
    'dan "affected_entities" (daftar siswa, kelas atau mata pelajaran terkait).'
)


class AnalysisTaskError(Exception):
    """A sub-task could not produce recommendations."""


class AcademicAnalysisConfig(BaseModel):
    passing_grade: float = 75
    attendance_threshold: float = 85
    improvement_target_percentage: float = 15
    minimum_sample_size: int = 5


class StudentSnapshot(BaseModel):
    id: int
    name: str
    grade: str
    scores: Dict[str, float] = {}
    average_score: Optional[float] = None
    attendance_rate: Optional[float] = None


class AcademicSnapshot(BaseModel):
    school_id: int
    academic_year: str
    semester: str
    students: List[StudentSnapshot]
    benchmark_count: int = 0


class AnalysisResult(BaseModel):
    success: bool
    recommendations: List[RecommendationDraft] = []
    summary: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}
    errors: List[str] = []


def drafts_from_ai(
    result: AIResult,
    category: str,
    default_urgency: str,
    supporting_data: Optional[Dict[str, Any]] = None,
) -> List[RecommendationDraft]:
    """
    Turn a model response into recommendation drafts.

    Only a JSON array (or an object holding one under "recommendations")
    yields drafts; raw text is ignored. Failures raise AnalysisTaskError.
    """
    if isinstance(result, AIFailure):
        raise AnalysisTaskError(result.error)
    if not isinstance(result, AIJsonResult):
        return []

    items = result.data
    if isinstance(items, dict):
        items = items.get("recommendations", [])
    if not isinstance(items, list):
        return []

    drafts = []
    for item in items:
        if not isinstance(item, dict) or not item.get("title"):
            continue
        urgency = item.get("urgency") or item.get("priority")
        if urgency not in UrgencyEnum.__members__:
            urgency = default_urgency
        affected = item.get("affected_entities")
        drafts.append(RecommendationDraft(
            category=category,
            title=str(item["title"])[:255],
            description=str(item.get("description") or item.get("implementation") or item["title"]),
            predicted_impact=item.get("predicted_impact") or item.get("expected_impact"),
            affected_entities=affected if isinstance(affected, list) else None,
            supporting_data=supporting_data,
            confidence_level=round(result.confidence, 2),
            urgency_level=urgency,
        ))
    return drafts


class AcademicAnalysisService:
    """
    Looks for academic problems in a school and asks the model for remedies.

    A run gathers one snapshot of the school, scores its data quality, then
    runs the student, subject, attendance and class analyses concurrently.
    A failing analysis is reported in `errors` and never stops the others.
    """

    def __init__(self, gateway: GeminiService, config: Optional[AcademicAnalysisConfig] = None):
        self.gateway = gateway
        self.config = config or AcademicAnalysisConfig()

    async def gather(self, db: AsyncSession, school_id: int, today: Optional[date] = None) -> AcademicSnapshot:
        today = today or date.today()
        academic_year = current_academic_year(today)
        semester = current_semester(today)

        result = await db.execute(
            select(Student).where(and_(Student.school_id == school_id, Student.is_active.is_(True)))
        )
        students = {
            s.id: StudentSnapshot(id=s.id, name=s.full_name, grade=s.grade)
            for s in result.scalars().all()
        }

        result = await db.execute(
            select(AcademicRecord.student_id, Subject.subject_name, AcademicRecord.final_score)
            .join(Subject, AcademicRecord.subject_id == Subject.id)
            .join(Student, AcademicRecord.student_id == Student.id)
            .where(
                and_(
                    Student.school_id == school_id,
                    AcademicRecord.academic_year == academic_year,
                    AcademicRecord.semester == semester,
                    AcademicRecord.final_score.is_not(None),
                )
            )
        )
        for student_id, subject_name, score in result.all():
            if student_id in students:
                students[student_id].scores[subject_name] = to_float(score)

        result = await db.execute(
            select(StudentAttendance.student_id, StudentAttendance.status, func.count(StudentAttendance.id))
            .join(Student, StudentAttendance.student_id == Student.id)
            .where(
                and_(
                    Student.school_id == school_id,
                    StudentAttendance.date >= today - timedelta(days=ATTENDANCE_LOOKBACK_DAYS),
                )
            )
            .group_by(StudentAttendance.student_id, StudentAttendance.status)
        )
        attendance: Dict[int, Dict[str, int]] = {}
        for student_id, status, count in result.all():
            attendance.setdefault(student_id, {})[status] = count

        for student in students.values():
            if student.scores:
                student.average_score = round(sum(student.scores.values()) / len(student.scores), 2)
            counts = attendance.get(student.id)
            if counts:
                student.attendance_rate = round(counts.get("present", 0) / sum(counts.values()) * 100, 2)

        benchmark_count = await db.scalar(
            select(func.count(SchoolBenchmark.id)).where(
                and_(SchoolBenchmark.school_id == school_id, SchoolBenchmark.academic_year == academic_year)
            )
        )

        return AcademicSnapshot(
            school_id=school_id,
            academic_year=academic_year,
            semester=semester,
            students=list(students.values()),
            benchmark_count=benchmark_count or 0,
        )

    def data_quality(self, snapshot: AcademicSnapshot) -> float:
        """Weighted score in [0, 1] of how much the snapshot can be trusted."""
        students = snapshot.students
        total = len(students)
        quality = 0.0
        if total >= self.config.minimum_sample_size:
            quality += 0.3
        if total:
            quality += 0.3 * sum(1 for s in students if s.scores) / total
            quality += 0.2 * sum(1 for s in students if s.attendance_rate is not None) / total
        if snapshot.benchmark_count > 0:
            quality += 0.2
        return round(quality, 2)

    # Sub-tasks
    async def analyze_student_performance(self, snapshot: AcademicSnapshot) -> List[RecommendationDraft]:
        struggling = [
            s for s in snapshot.students
            if (s.average_score is not None and s.average_score < self.config.passing_grade)
            or (s.attendance_rate is not None and s.attendance_rate < self.config.attendance_threshold)
        ]
        if not struggling:
            return []

        struggling.sort(key=lambda s: (s.average_score if s.average_score is not None else 100))
        sample = struggling[:MAX_STUDENTS_PER_PROMPT]
        context = {
            "academic_year": snapshot.academic_year,
            "semester": snapshot.semester,
            "passing_grade": self.config.passing_grade,
            "attendance_threshold": self.config.attendance_threshold,
            "improvement_target_percentage": self.config.improvement_target_percentage,
            "students": [s.model_dump() for s in sample],
        }
        prompt = (
            f"Analisis data {len(sample)} siswa yang nilainya di bawah KKM {self.config.passing_grade:g} "
            f"atau kehadirannya di bawah {self.config.attendance_threshold:g}%. "
            f"Berikan rekomendasi strategi peningkatan prestasi dengan target kenaikan "
            f"{self.config.improvement_target_percentage:g}%. {RECOMMENDATION_FORMAT}"
        )
        result = await self.gateway.generate_content(prompt, context, temperature=0.3)

        lowest_score = min((s.average_score for s in sample if s.average_score is not None), default=None)
        lowest_attendance = min((s.attendance_rate for s in sample if s.attendance_rate is not None), default=None)
        return drafts_from_ai(
            result,
            "academic",
            determine_urgency(lowest_score, lowest_attendance),
            {"type": "student_performance", "students_flagged": len(struggling)},
        )

    def subject_breakdown(self, snapshot: AcademicSnapshot) -> List[Dict[str, Any]]:
        scores: Dict[str, List[float]] = {}
        for student in snapshot.students:
            for subject, score in student.scores.items():
                scores.setdefault(subject, []).append(score)

        subjects = []
        for subject, values in scores.items():
            below = sum(1 for v in values if v < self.config.passing_grade)
            subjects.append({
                "subject": subject,
                "average_score": round(sum(values) / len(values), 2),
                "student_count": len(values),
                "below_passing_percentage": round(below / len(values) * 100, 2),
            })
        return subjects

    async def analyze_subject_performance(self, snapshot: AcademicSnapshot) -> List[RecommendationDraft]:
        weak_subjects = [
            s for s in self.subject_breakdown(snapshot)
            if s["average_score"] < self.config.passing_grade or s["below_passing_percentage"] > 30
        ]
        if not weak_subjects:
            return []

        prompt = (
            f"Analisis {len(weak_subjects)} mata pelajaran dengan rata-rata di bawah KKM atau lebih dari 30% siswa "
            f"belum tuntas. Berikan rekomendasi perbaikan metode pembelajaran per mata pelajaran. {RECOMMENDATION_FORMAT}"
        )
        context = {"academic_year": snapshot.academic_year, "semester": snapshot.semester, "subjects": weak_subjects}
        result = await self.gateway.generate_content(prompt, context)

        lowest = min(s["average_score"] for s in weak_subjects)
        return drafts_from_ai(
            result, "academic", determine_urgency(lowest), {"type": "subject_performance", "subjects": weak_subjects}
        )

    async def analyze_attendance_patterns(self, snapshot: AcademicSnapshot) -> List[RecommendationDraft]:
        low_attendance = [
            s for s in snapshot.students
            if s.attendance_rate is not None and s.attendance_rate < self.config.attendance_threshold
        ]
        if not low_attendance:
            return []

        critical_cases = [s for s in low_attendance if s.attendance_rate < CRITICAL_ATTENDANCE]
        rates = [s.attendance_rate for s in low_attendance]
        context = {
            "attendance_threshold": self.config.attendance_threshold,
            "students_below_threshold": len(low_attendance),
            "critical_cases": len(critical_cases),
            "average_attendance": round(sum(rates) / len(rates), 2),
            "students": [
                {"name": s.name, "grade": s.grade, "attendance_rate": s.attendance_rate}
                for s in low_attendance[:MAX_STUDENTS_PER_PROMPT]
            ],
        }
        prompt = (
            f"Analisis pola kehadiran {len(low_attendance)} siswa dengan tingkat kehadiran di bawah "
            f"{self.config.attendance_threshold:g}%, {len(critical_cases)} di antaranya di bawah {CRITICAL_ATTENDANCE}%. "
            f"Berikan rekomendasi untuk meningkatkan kehadiran siswa. {RECOMMENDATION_FORMAT}"
        )
        result = await self.gateway.generate_content(prompt, context)
        return drafts_from_ai(
            result,
            "attendance",
            "high",
            {"type": "attendance_patterns", "students_flagged": len(low_attendance), "critical_cases": len(critical_cases)},
        )

    def class_breakdown(self, snapshot: AcademicSnapshot) -> List[Dict[str, Any]]:
        grades: Dict[str, List[StudentSnapshot]] = {}
        for student in snapshot.students:
            grades.setdefault(student.grade, []).append(student)

        classes = []
        for grade in sorted(grades):
            members = grades[grade]
            averages = [s.average_score for s in members if s.average_score is not None]
            rates = [s.attendance_rate for s in members if s.attendance_rate is not None]
            classes.append({
                "grade": grade,
                "student_count": len(members),
                "average_score": round(sum(averages) / len(averages), 2) if averages else None,
                "average_attendance": round(sum(rates) / len(rates), 2) if rates else None,
            })
        return classes

    async def analyze_class_performance(self, snapshot: AcademicSnapshot) -> List[RecommendationDraft]:
        weak_classes = [
            c for c in self.class_breakdown(snapshot)
            if (c["average_score"] is not None and c["average_score"] < self.config.passing_grade)
            or (c["average_attendance"] is not None and c["average_attendance"] < self.config.attendance_threshold)
        ]
        if not weak_classes:
            return []

        prompt = (
            f"Analisis performa {len(weak_classes)} kelas yang rata-rata nilai atau kehadirannya di bawah standar. "
            f"Berikan rekomendasi strategi pengelolaan kelas dan pembelajaran. {RECOMMENDATION_FORMAT}"
        )
        result = await self.gateway.generate_content(prompt, {"classes": weak_classes})
        return drafts_from_ai(result, "academic", "medium", {"type": "class_performance", "classes": weak_classes})

    # Run
    def summarize(self, snapshot: AcademicSnapshot, recommendations: List[RecommendationDraft]) -> Dict[str, Any]:
        averages = [s.average_score for s in snapshot.students if s.average_score is not None]
        critical_subjects = [
            s["subject"] for s in self.subject_breakdown(snapshot) if s["average_score"] < self.config.passing_grade
        ]
        return {
            "total_students_analyzed": len(snapshot.students),
            "students_needing_help": sum(1 for r in recommendations if r.urgency_level == UrgencyEnum.critical),
            "average_class_performance": round(sum(averages) / len(averages), 1) if averages else 0.0,
            "critical_subjects": critical_subjects,
            "attendance_issues": sum(
                1 for r in recommendations if "kehadiran" in r.title.lower() or "absen" in r.title.lower()
            ),
        }

    async def analyze(self, db: AsyncSession, school_id: int, today: Optional[date] = None) -> AnalysisResult:
        """
        Run a full academic analysis for one school.

        Returns:
            AnalysisResult; success is False when AI is disabled or the data is too thin to analyze
        """
        if not self.gateway.config.AI_ANALYSIS_ENABLED:
            return AnalysisResult(success=False, errors=["AI analysis is disabled"])

        start_time = time.perf_counter()
        try:
            snapshot = await self.gather(db, school_id, today)
        except Exception as e:
            logger.error(f"Academic analysis for school {school_id} could not gather data: {str(e)}", exc_info=True)
            return AnalysisResult(
                success=False,
                metadata={"analysis_date": datetime.utcnow()},
                errors=[GATHER_FAILED],
            )
        quality = self.data_quality(snapshot)
        metadata = {
            "analysis_date": datetime.utcnow(),
            "academic_year": snapshot.academic_year,
            "semester": snapshot.semester,
            "data_quality": quality,
        }

        if quality < MIN_DATA_QUALITY:
            logger.info(f"Academic analysis skipped for school {school_id}: data quality {quality}")
            metadata["processing_time_ms"] = int((time.perf_counter() - start_time) * 1000)
            return AnalysisResult(
                success=False,
                summary=self.summarize(snapshot, []),
                metadata=metadata,
                errors=["Data quality too low for reliable analysis"],
            )

        tasks = {
            "student": self.analyze_student_performance(snapshot),
            "subject": self.analyze_subject_performance(snapshot),
            "attendance": self.analyze_attendance_patterns(snapshot),
            "class": self.analyze_class_performance(snapshot),
        }
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)

        recommendations: List[RecommendationDraft] = []
        errors: List[str] = []
        for name, result in zip(tasks, results):
            if isinstance(result, Exception):
                logger.warning(f"{name} analysis failed for school {school_id}: {str(result)}")
                errors.append(f"{name} analysis failed: {str(result)}")
            elif isinstance(result, BaseException):
                raise result
            else:
                recommendations.extend(result)

        confidences = [r.confidence_level for r in recommendations]
        metadata["confidence"] = round(sum(confidences) / len(confidences), 2) if confidences else 0.0
        metadata["processing_time_ms"] = int((time.perf_counter() - start_time) * 1000)

        return AnalysisResult(
            success=True,
            recommendations=recommendations,
            summary=self.summarize(snapshot, recommendations),
            metadata=metadata,
            errors=errors,
        )
