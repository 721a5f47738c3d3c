import asyncio
import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import and_, case, desc, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolhub.exceptions import BusinessRuleError, NotFoundError
from schoolhub.models.academics import Student, AcademicRecord, StudentAttendance
from schoolhub.models.analysis import EarlyWarning
from schoolhub.models.assets import Asset
from schoolhub.models.finance import SchoolFinance
from schoolhub.models.schools import Subject, Teacher, Report
from schoolhub.models.teachers import TeacherPerformance
from schoolhub.schemas.analysis import (
    WarningDraft, WarningRead, SaveResult, WarningCategoryEnum, UrgencyEnum, URGENCY_RANK, warning_to_dto,
)
from schoolhub.schemas.common import Page, build_page, to_float
from schoolhub.services.academic import current_academic_year
from schoolhub.services.academic_analysis import GATHER_FAILED
from schoolhub.services.gemini import GeminiService, AIJsonResult
from schoolhub.services.recommendations import DEDUP_WINDOW, escape_like

logger = logging.getLogger(__name__)

MIN_DATA_QUALITY = 0.3
MINIMUM_SAMPLE_SIZE = 5
TITLE_PREFIX_LENGTH = 15
ATTENDANCE_LOOKBACK_DAYS = 30
DEADLINE_WINDOW_DAYS = 7
MAX_AFFECTED_ENTITIES = 20
MAX_ACTIONS = 5

ATTENDANCE_TARGET = 85
SUBJECT_WARNING_AVERAGE = 70
SUBJECT_TARGET = 75
BUDGET_WARNING_PERCENTAGE = 20
BUDGET_TARGET = 50
DAMAGED_CONDITIONS = ["minor_damage", "major_damage", "under_repair"]

WARNING_NOT_FOUND = "Peringatan tidak ditemukan atau bukan bagian dari sekolah ini"


class WarningSnapshot(BaseModel):
    today: date
    academic_year: str
    budget_year: str
    student_count: int = 0
    teacher_count: int = 0
    asset_count: int = 0
    attendance: List[Dict[str, Any]] = []
    subjects: List[Dict[str, Any]] = []
    budgets: List[Dict[str, Any]] = []
    damaged_assets: List[Dict[str, Any]] = []
    unevaluated_teachers: List[Dict[str, Any]] = []
    due_reports: List[Dict[str, Any]] = []


class WarningAnalysisResult(BaseModel):
    success: bool
    warnings: List[WarningDraft] = []
    summary: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}
    errors: List[str] = []


# Detection rules
def check_attendance(snapshot: WarningSnapshot) -> List[WarningDraft]:
    low = [s for s in snapshot.attendance if s["rate"] < ATTENDANCE_TARGET]
    if not low:
        return []
    present = sum(s["present"] for s in snapshot.attendance)
    total = sum(s["total"] for s in snapshot.attendance)
    school_rate = round(present / total * 100, 1) if total else 0.0
    low.sort(key=lambda s: s["rate"])
    return [WarningDraft(
        category=WarningCategoryEnum.attendance,
        title="Tingkat Kehadiran Siswa Menurun",
        description=(
            f"{len(low)} siswa memiliki tingkat kehadiran di bawah {ATTENDANCE_TARGET}% dalam "
            f"{ATTENDANCE_LOOKBACK_DAYS} hari terakhir. Tingkat kehadiran sekolah {school_rate}%."
        ),
        urgency_level=UrgencyEnum.critical if school_rate < 70 else UrgencyEnum.high,
        target_value=ATTENDANCE_TARGET,
        actual_value=school_rate,
        affected_entities=low[:MAX_AFFECTED_ENTITIES],
    )]


def check_academic(snapshot: WarningSnapshot) -> List[WarningDraft]:
    warnings = []
    for subject in snapshot.subjects:
        if subject["count"] < MINIMUM_SAMPLE_SIZE or subject["average"] >= SUBJECT_WARNING_AVERAGE:
            continue
        average = round(subject["average"], 1)
        warnings.append(WarningDraft(
            category=WarningCategoryEnum.academic,
            title=f"Nilai {subject['subject']} Rendah",
            description=(
                f"Rata-rata nilai {subject['subject']} tahun akademik {snapshot.academic_year} adalah "
                f"{average} dari {subject['count']} nilai, di bawah KKM {SUBJECT_TARGET}."
            ),
            urgency_level=UrgencyEnum.critical if average < 60 else UrgencyEnum.medium,
            target_value=SUBJECT_TARGET,
            actual_value=average,
            affected_entities=[subject],
        ))
    return warnings


def check_financial(snapshot: WarningSnapshot) -> List[WarningDraft]:
    warnings = []
    for budget in snapshot.budgets:
        if budget["budget_amount"] <= 0:
            continue
        remaining = round(budget["remaining_amount"] / budget["budget_amount"] * 100, 1)
        if remaining >= BUDGET_WARNING_PERCENTAGE:
            continue
        warnings.append(WarningDraft(
            category=WarningCategoryEnum.financial,
            title=f"Anggaran {budget['category']} Menipis",
            description=(
                f"Sisa anggaran {budget['category']} tahun {snapshot.budget_year} tinggal {remaining}% "
                f"(Rp {budget['remaining_amount']:,.0f} dari Rp {budget['budget_amount']:,.0f})."
            ),
            urgency_level=UrgencyEnum.critical if remaining < 10 else UrgencyEnum.high,
            target_value=BUDGET_TARGET,
            actual_value=remaining,
            affected_entities=[budget],
        ))
    return warnings


def check_assets(snapshot: WarningSnapshot) -> List[WarningDraft]:
    damaged = snapshot.damaged_assets
    if not damaged:
        return []
    return [WarningDraft(
        category=WarningCategoryEnum.asset,
        title="Aset Memerlukan Perawatan",
        description=f"{len(damaged)} aset dalam kondisi rusak atau sedang diperbaiki.",
        urgency_level=UrgencyEnum.high if len(damaged) > 5 else UrgencyEnum.medium,
        target_value=0,
        actual_value=len(damaged),
        affected_entities=damaged[:MAX_AFFECTED_ENTITIES],
    )]


def check_teachers(snapshot: WarningSnapshot) -> List[WarningDraft]:
    pending = snapshot.unevaluated_teachers
    if not pending:
        return []
    return [WarningDraft(
        category=WarningCategoryEnum.teacher,
        title="Evaluasi Kinerja Guru Tertunda",
        description=f"{len(pending)} guru belum dievaluasi pada tahun akademik {snapshot.academic_year}.",
        urgency_level=UrgencyEnum.medium if len(pending) > 3 else UrgencyEnum.low,
        target_value=0,
        actual_value=len(pending),
        affected_entities=pending[:MAX_AFFECTED_ENTITIES],
    )]


def check_deadlines(snapshot: WarningSnapshot) -> List[WarningDraft]:
    reports = snapshot.due_reports
    if not reports:
        return []
    days_left = min(r["days_left"] for r in reports)
    return [WarningDraft(
        category=WarningCategoryEnum.deadline,
        title="Laporan Mendekati Deadline",
        description=(
            f"{len(reports)} laporan belum dikirim dan jatuh tempo dalam {DEADLINE_WINDOW_DAYS} hari. "
            f"Tenggat terdekat {days_left} hari lagi."
        ),
        urgency_level=UrgencyEnum.critical if days_left <= 3 else UrgencyEnum.medium,
        target_value=DEADLINE_WINDOW_DAYS,
        actual_value=days_left,
        affected_entities=reports,
    )]


CHECKS: Dict[str, Callable[[WarningSnapshot], List[WarningDraft]]] = {
    "attendance": check_attendance,
    "academic": check_academic,
    "financial": check_financial,
    "asset": check_assets,
    "teacher": check_teachers,
    "deadline": check_deadlines,
}


class EarlyWarningService:
    """
    Detects school problems from fixed thresholds and keeps the resulting warnings.

    Detection never depends on the model. When a gateway is configured and AI
    analysis is enabled, each category with findings asks it for handling
    suggestions, which are attached as `recommended_actions`.
    """

    def __init__(self, gateway: Optional[GeminiService] = None):
        self.gateway = gateway

    @property
    def ai_enabled(self) -> bool:
        return self.gateway is not None and self.gateway.config.AI_ANALYSIS_ENABLED

    async def gather(self, db: AsyncSession, school_id: int, today: Optional[date] = None) -> WarningSnapshot:
        today = today or date.today()
        academic_year = current_academic_year(today)
        snapshot = WarningSnapshot(today=today, academic_year=academic_year, budget_year=str(today.year))
        active_student = and_(Student.school_id == school_id, Student.is_active.is_(True))

        snapshot.student_count = await db.scalar(select(func.count(Student.id)).where(active_student)) or 0

        # Attendance over the lookback window, per student
        result = await db.execute(
            select(Student.id, Student.full_name, Student.grade, StudentAttendance.status, func.count(StudentAttendance.id))
            .join(StudentAttendance, StudentAttendance.student_id == Student.id)
            .where(and_(active_student, StudentAttendance.date >= today - timedelta(days=ATTENDANCE_LOOKBACK_DAYS)))
            .group_by(Student.id, Student.full_name, Student.grade, StudentAttendance.status)
        )
        attendance: Dict[int, Dict[str, Any]] = {}
        for student_id, name, grade, status, count in result.all():
            entry = attendance.setdefault(
                student_id, {"student_id": student_id, "name": name, "grade": grade, "present": 0, "total": 0}
            )
            entry["total"] += count
            if status == "present":
                entry["present"] += count
        for entry in attendance.values():
            entry["rate"] = round(entry["present"] / entry["total"] * 100, 1)
        snapshot.attendance = list(attendance.values())

        # Subject averages for the academic year
        result = await db.execute(
            select(Subject.subject_name, func.avg(AcademicRecord.final_score), func.count(AcademicRecord.id))
            .join(AcademicRecord, AcademicRecord.subject_id == Subject.id)
            .join(Student, AcademicRecord.student_id == Student.id)
            .where(
                and_(
                    Student.school_id == school_id,
                    AcademicRecord.academic_year == academic_year,
                    AcademicRecord.final_score.is_not(None),
                )
            )
            .group_by(Subject.subject_name)
        )
        snapshot.subjects = [
            {"subject": name, "average": to_float(average), "count": count}
            for name, average, count in result.all()
        ]

        result = await db.execute(
            select(SchoolFinance).where(
                and_(SchoolFinance.school_id == school_id, SchoolFinance.budget_year == snapshot.budget_year)
            )
        )
        snapshot.budgets = [
            {
                "budget_id": b.id,
                "category": b.budget_category,
                "period": b.period,
                "budget_amount": to_float(b.budget_amount),
                "remaining_amount": to_float(b.remaining_amount),
            }
            for b in result.scalars().all()
        ]

        snapshot.asset_count = await db.scalar(select(func.count(Asset.id)).where(Asset.school_id == school_id)) or 0
        result = await db.execute(
            select(Asset.id, Asset.asset_code, Asset.asset_name, Asset.condition).where(
                and_(Asset.school_id == school_id, Asset.condition.in_(DAMAGED_CONDITIONS))
            )
        )
        snapshot.damaged_assets = [
            {"asset_id": asset_id, "asset_code": code, "asset_name": name, "condition": condition}
            for asset_id, code, name, condition in result.all()
        ]

        active_teacher = and_(Teacher.school_id == school_id, Teacher.is_active.is_(True))
        snapshot.teacher_count = await db.scalar(select(func.count(Teacher.id)).where(active_teacher)) or 0
        evaluated = select(TeacherPerformance.teacher_id).where(TeacherPerformance.academic_year == academic_year)
        result = await db.execute(
            select(Teacher.id, Teacher.full_name).where(and_(active_teacher, Teacher.id.not_in(evaluated)))
        )
        snapshot.unevaluated_teachers = [{"teacher_id": t_id, "name": name} for t_id, name in result.all()]

        result = await db.execute(
            select(Report).where(
                and_(
                    Report.school_id == school_id,
                    Report.submission_status.in_(["draft", "pending"]),
                    Report.submission_date >= today,
                    Report.submission_date <= today + timedelta(days=DEADLINE_WINDOW_DAYS),
                )
            )
        )
        snapshot.due_reports = [
            {
                "report_id": r.id,
                "title": r.title,
                "submission_date": r.submission_date.isoformat(),
                "days_left": (r.submission_date - today).days,
            }
            for r in result.scalars().all()
        ]

        return snapshot

    def data_quality(self, snapshot: WarningSnapshot) -> float:
        quality = 0.0
        if snapshot.student_count >= MINIMUM_SAMPLE_SIZE:
            quality += 0.25
        if snapshot.attendance:
            quality += 0.15
        if snapshot.subjects:
            quality += 0.15
        if snapshot.budgets:
            quality += 0.15
        if snapshot.teacher_count:
            quality += 0.15
        if snapshot.asset_count:
            quality += 0.15
        return round(quality, 2)

    async def suggest_actions(self, category: str, drafts: List[WarningDraft]) -> None:
        """Attach model-suggested actions to the drafts; any failure leaves them untouched."""
        prompt = (
            f"Berikut peringatan dini kategori {category} di sebuah sekolah. "
            "Berikan maksimal 5 langkah penanganan yang konkret dalam format JSON "
            '{"recommended_actions": ["langkah 1", "langkah 2"]}.'
        )
        context = {"warnings": [d.model_dump(mode="json", exclude={"recommended_actions"}) for d in drafts]}
        try:
            result = await self.gateway.generate_content(prompt, context, temperature=0.3)
        except Exception as e:
            logger.warning(f"Action suggestions for {category} warnings failed: {str(e)}")
            return

        if not isinstance(result, AIJsonResult):
            logger.info(f"No action suggestions for {category} warnings: {getattr(result, 'error', 'text response')}")
            return
        actions = result.data.get("recommended_actions") if isinstance(result.data, dict) else result.data
        if not isinstance(actions, list) or not actions:
            return
        actions = [str(a) for a in actions][:MAX_ACTIONS]
        for draft in drafts:
            draft.recommended_actions = actions

    async def _detect(self, category: str, snapshot: WarningSnapshot) -> List[WarningDraft]:
        drafts = CHECKS[category](snapshot)
        if drafts and self.ai_enabled:
            await self.suggest_actions(category, drafts)
        return drafts

    async def analyze(self, db: AsyncSession, school_id: int, today: Optional[date] = None) -> WarningAnalysisResult:
        start_time = time.perf_counter()
        try:
            snapshot = await self.gather(db, school_id, today)
        except Exception as e:
            logger.error(f"Early warning analysis for school {school_id} could not gather data: {str(e)}", exc_info=True)
            return WarningAnalysisResult(
                success=False,
                metadata={"analysis_date": datetime.utcnow(), "ai_enabled": self.ai_enabled},
                errors=[GATHER_FAILED],
            )
        quality = self.data_quality(snapshot)
        metadata = {
            "analysis_date": datetime.utcnow(),
            "academic_year": snapshot.academic_year,
            "budget_year": snapshot.budget_year,
            "data_quality": quality,
            "ai_enabled": self.ai_enabled,
        }

        if quality < MIN_DATA_QUALITY:
            logger.info(f"Early warning analysis skipped for school {school_id}: data quality {quality}")
            metadata["processing_time_ms"] = int((time.perf_counter() - start_time) * 1000)
            return WarningAnalysisResult(
                success=False, metadata=metadata, errors=["Data quality too low for reliable analysis"]
            )

        results = await asyncio.gather(*(self._detect(c, snapshot) for c in CHECKS), return_exceptions=True)

        warnings: List[WarningDraft] = []
        errors: List[str] = []
        for category, result in zip(CHECKS, results):
            if isinstance(result, Exception):
                logger.warning(f"{category} warning detection failed for school {school_id}: {str(result)}")
                errors.append(f"{category} analysis failed: {str(result)}")
            elif isinstance(result, BaseException):
                raise result
            else:
                warnings.extend(result)

        warnings.sort(key=lambda w: URGENCY_RANK[w.urgency_level.value])
        by_category: Dict[str, int] = {}
        for warning in warnings:
            by_category[warning.category.value] = by_category.get(warning.category.value, 0) + 1
        metadata["processing_time_ms"] = int((time.perf_counter() - start_time) * 1000)

        return WarningAnalysisResult(
            success=True,
            warnings=warnings,
            summary={
                "total_warnings": len(warnings),
                "critical_warnings": sum(1 for w in warnings if w.urgency_level == UrgencyEnum.critical),
                "warnings_by_category": by_category,
            },
            metadata=metadata,
            errors=errors,
        )

    # Storage
    async def find_recent_duplicate(
        self, db: AsyncSession, school_id: int, category: str, title: str, now: Optional[datetime] = None
    ) -> Optional[int]:
        now = now or datetime.utcnow()
        prefix = escape_like(title[:TITLE_PREFIX_LENGTH])
        return await db.scalar(
            select(EarlyWarning.id).where(
                and_(
                    EarlyWarning.school_id == school_id,
                    EarlyWarning.category == category,
                    EarlyWarning.title.ilike(f"%{prefix}%", escape="\\"),
                    EarlyWarning.detected_date >= now - DEDUP_WINDOW,
                )
            )
        )

    async def save_warnings(
        self, db: AsyncSession, school_id: int, drafts: List[WarningDraft], now: Optional[datetime] = None
    ) -> SaveResult:
        now = now or datetime.utcnow()
        saved = skipped = 0
        errors: List[str] = []

        for draft in drafts:
            try:
                if await self.find_recent_duplicate(db, school_id, draft.category.value, draft.title, now):
                    skipped += 1
                    continue
                db.add(EarlyWarning(
                    school_id=school_id,
                    category=draft.category.value,
                    title=draft.title[:255],
                    description=draft.description,
                    urgency_level=draft.urgency_level.value,
                    target_value=draft.target_value,
                    actual_value=draft.actual_value,
                    affected_entities=draft.affected_entities,
                    recommended_actions=draft.recommended_actions,
                    is_resolved=False,
                    detected_date=now,
                ))
                await db.commit()
                saved += 1
            except Exception as e:
                await db.rollback()
                logger.error(f"Failed to save warning '{draft.title}': {str(e)}")
                errors.append(f"Failed to save '{draft.title}': {str(e)}")

        logger.info(f"Early warnings for school {school_id}: {saved} saved, {skipped} skipped, {len(errors)} failed")
        return SaveResult(success=len(errors) < len(drafts) or not drafts, saved=saved, skipped=skipped, errors=errors)

    async def get_warnings(
        self,
        db: AsyncSession,
        school_id: int,
        category: Optional[str] = None,
        urgency: Optional[str] = None,
        is_resolved: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        conditions = [EarlyWarning.school_id == school_id]
        if category:
            conditions.append(EarlyWarning.category == category)
        if urgency:
            conditions.append(EarlyWarning.urgency_level == urgency)
        if is_resolved is not None:
            conditions.append(EarlyWarning.is_resolved.is_(is_resolved))

        total = await db.scalar(select(func.count(EarlyWarning.id)).where(and_(*conditions)))
        result = await db.execute(
            select(EarlyWarning)
            .where(and_(*conditions))
            .order_by(case(URGENCY_RANK, value=EarlyWarning.urgency_level, else_=len(URGENCY_RANK)), desc(EarlyWarning.detected_date))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        warnings = [warning_to_dto(w) for w in result.scalars().all()]
        return build_page(warnings, total or 0, page, limit)

    async def get_stats(self, db: AsyncSession, school_id: int) -> Dict[str, Any]:
        scope = EarlyWarning.school_id == school_id
        open_scope = and_(scope, EarlyWarning.is_resolved.is_(False))

        total = await db.scalar(select(func.count(EarlyWarning.id)).where(scope))
        unresolved = await db.scalar(select(func.count(EarlyWarning.id)).where(open_scope))
        by_category = {c.value: 0 for c in WarningCategoryEnum}
        by_category.update(dict((await db.execute(
            select(EarlyWarning.category, func.count(EarlyWarning.id)).where(open_scope).group_by(EarlyWarning.category)
        )).all()))
        by_urgency = {u.value: 0 for u in UrgencyEnum}
        by_urgency.update(dict((await db.execute(
            select(EarlyWarning.urgency_level, func.count(EarlyWarning.id))
            .where(open_scope)
            .group_by(EarlyWarning.urgency_level)
        )).all()))

        return {
            "total": total or 0,
            "unresolved": unresolved or 0,
            "resolved": (total or 0) - (unresolved or 0),
            "critical": by_urgency["critical"],
            "by_category": by_category,
            "by_urgency": by_urgency,
        }

    async def resolve_warning(self, db: AsyncSession, school_id: int, warning_id: int) -> WarningRead:
        warning = await db.scalar(
            select(EarlyWarning).where(and_(EarlyWarning.id == warning_id, EarlyWarning.school_id == school_id))
        )
        if not warning:
            raise NotFoundError(WARNING_NOT_FOUND)
        if warning.is_resolved:
            raise BusinessRuleError("Peringatan sudah ditandai selesai")

        warning.is_resolved = True
        warning.resolved_at = datetime.utcnow()
        await db.commit()
        await db.refresh(warning)
        return warning_to_dto(warning)
