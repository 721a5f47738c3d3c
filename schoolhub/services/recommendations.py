import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, desc, delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolhub.exceptions import NotFoundError
from schoolhub.models.analysis import AiRecommendation
from schoolhub.schemas.common import Page, build_page, to_float
from schoolhub.schemas.analysis import (
    RecommendationDraft, RecommendationRead, RecommendationUpdate, SaveResult,
    RecommendationCategoryEnum, ImplementationStatusEnum, recommendation_to_dto,
)

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(hours=24)
TITLE_PREFIX_LENGTH = 20
CLEANUP_AGE_DAYS = 90
RECENT_DAYS = 7
TRENDING_DAYS = 30

RECOMMENDATION_NOT_FOUND = "Rekomendasi tidak ditemukan atau bukan bagian dari sekolah ini"


def determine_urgency(average_score: Optional[float] = None, attendance_rate: Optional[float] = None) -> str:
    """
    Urgency of a finding from the underlying score and attendance.

    score < 60 or attendance < 70 is critical, < 70 / < 80 high,
    < 75 / < 85 medium, anything else low.
    """
    score = 100.0 if average_score is None else average_score
    attendance = 100.0 if attendance_rate is None else attendance_rate
    if score < 60 or attendance < 70:
        return "critical"
    if score < 70 or attendance < 80:
        return "high"
    if score < 75 or attendance < 85:
        return "medium"
    return "low"


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class RecommendationService:
    """Stored AI recommendations and their review workflow."""

    async def _get_owned(self, db: AsyncSession, school_id: int, recommendation_id: int) -> AiRecommendation:
        recommendation = await db.scalar(
            select(AiRecommendation).where(
                and_(AiRecommendation.id == recommendation_id, AiRecommendation.school_id == school_id)
            )
        )
        if not recommendation:
            raise NotFoundError(RECOMMENDATION_NOT_FOUND)
        return recommendation

    async def find_recent_duplicate(
        self, db: AsyncSession, school_id: int, category: str, title: str, now: Optional[datetime] = None
    ) -> Optional[int]:
        """Id of a same-category recommendation with a matching title prefix from the last 24 hours."""
        now = now or datetime.utcnow()
        prefix = escape_like(title[:TITLE_PREFIX_LENGTH])
        return await db.scalar(
            select(AiRecommendation.id).where(
                and_(
                    AiRecommendation.school_id == school_id,
                    AiRecommendation.category == category,
                    AiRecommendation.title.ilike(f"%{prefix}%", escape="\\"),
                    AiRecommendation.generated_date >= now - DEDUP_WINDOW,
                )
            )
        )

    async def save_recommendations(
        self, db: AsyncSession, school_id: int, drafts: List[RecommendationDraft], now: Optional[datetime] = None
    ) -> SaveResult:
        now = now or datetime.utcnow()
        saved = skipped = 0
        errors: List[str] = []

        for draft in drafts:
            try:
                if await self.find_recent_duplicate(db, school_id, draft.category.value, draft.title, now):
                    skipped += 1
                    continue
                db.add(AiRecommendation(
                    school_id=school_id,
                    category=draft.category.value,
                    title=draft.title[:255],
                    description=draft.description,
                    supporting_data=draft.supporting_data,
                    affected_entities=draft.affected_entities,
                    confidence_level=round(draft.confidence_level, 2),
                    urgency_level=draft.urgency_level.value,
                    predicted_impact=draft.predicted_impact,
                    implementation_status="pending",
                    generated_date=now,
                ))
                await db.commit()
                saved += 1
            except Exception as e:
                await db.rollback()
                logger.error(f"Failed to save recommendation '{draft.title}': {str(e)}")
                errors.append(f"Failed to save '{draft.title}': {str(e)}")

        logger.info(f"Recommendations for school {school_id}: {saved} saved, {skipped} skipped, {len(errors)} failed")
        return SaveResult(success=len(errors) < len(drafts) or not drafts, saved=saved, skipped=skipped, errors=errors)

    async def get_recommendations(
        self,
        db: AsyncSession,
        school_id: int,
        category: Optional[str] = None,
        status: Optional[str] = None,
        min_confidence: Optional[float] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        conditions = [AiRecommendation.school_id == school_id]
        if category:
            conditions.append(AiRecommendation.category == category)
        if status:
            conditions.append(AiRecommendation.implementation_status == status)
        if min_confidence is not None:
            conditions.append(AiRecommendation.confidence_level >= min_confidence)
        if start_date:
            conditions.append(AiRecommendation.generated_date >= start_date)
        if end_date:
            conditions.append(AiRecommendation.generated_date <= end_date)

        total = await db.scalar(select(func.count(AiRecommendation.id)).where(and_(*conditions)))
        result = await db.execute(
            select(AiRecommendation)
            .where(and_(*conditions))
            .order_by(desc(AiRecommendation.generated_date), desc(AiRecommendation.confidence_level))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        recommendations = [recommendation_to_dto(r) for r in result.scalars().all()]
        return build_page(recommendations, total or 0, page, limit)

    async def get_recommendation(self, db: AsyncSession, school_id: int, recommendation_id: int) -> RecommendationRead:
        return recommendation_to_dto(await self._get_owned(db, school_id, recommendation_id))

    async def update_recommendation(
        self, db: AsyncSession, school_id: int, recommendation_id: int, data: RecommendationUpdate
    ) -> RecommendationRead:
        recommendation = await self._get_owned(db, school_id, recommendation_id)
        if data.implementation_status is not None:
            recommendation.implementation_status = data.implementation_status.value
        if data.principal_feedback is not None:
            recommendation.principal_feedback = data.principal_feedback
        await db.commit()
        await db.refresh(recommendation)
        return recommendation_to_dto(recommendation)

    async def delete_recommendation(self, db: AsyncSession, school_id: int, recommendation_id: int) -> None:
        recommendation = await self._get_owned(db, school_id, recommendation_id)
        await db.delete(recommendation)
        await db.commit()

    async def bulk_update_status(
        self, db: AsyncSession, school_id: int, ids: List[int], status: ImplementationStatusEnum
    ) -> int:
        result = await db.execute(
            update(AiRecommendation)
            .where(and_(AiRecommendation.school_id == school_id, AiRecommendation.id.in_(ids)))
            .values(implementation_status=status.value)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount

    async def cleanup_old(self, db: AsyncSession, school_id: int, now: Optional[datetime] = None) -> int:
        """Delete completed or rejected recommendations older than 90 days."""
        now = now or datetime.utcnow()
        result = await db.execute(
            delete(AiRecommendation)
            .where(
                and_(
                    AiRecommendation.school_id == school_id,
                    AiRecommendation.generated_date < now - timedelta(days=CLEANUP_AGE_DAYS),
                    AiRecommendation.implementation_status.in_(["completed", "rejected"]),
                )
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info(f"Removed {result.rowcount} old recommendations for school {school_id}")
        return result.rowcount

    async def get_stats(self, db: AsyncSession, school_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        scope = AiRecommendation.school_id == school_id

        total = await db.scalar(select(func.count(AiRecommendation.id)).where(scope))
        by_category = {c.value: 0 for c in RecommendationCategoryEnum}
        by_category.update(dict((await db.execute(
            select(AiRecommendation.category, func.count(AiRecommendation.id)).where(scope).group_by(AiRecommendation.category)
        )).all()))
        by_status = {s.value: 0 for s in ImplementationStatusEnum}
        by_status.update(dict((await db.execute(
            select(AiRecommendation.implementation_status, func.count(AiRecommendation.id))
            .where(scope)
            .group_by(AiRecommendation.implementation_status)
        )).all()))
        average_confidence = await db.scalar(select(func.avg(AiRecommendation.confidence_level)).where(scope))
        recent = await db.scalar(
            select(func.count(AiRecommendation.id)).where(
                and_(scope, AiRecommendation.generated_date >= now - timedelta(days=RECENT_DAYS))
            )
        )

        return {
            "total": total or 0,
            "by_category": by_category,
            "by_status": by_status,
            "average_confidence": round(to_float(average_confidence) or 0.0, 2),
            "recent_count": recent or 0,
        }

    async def get_trending_categories(self, db: AsyncSession, school_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or datetime.utcnow()
        result = await db.execute(
            select(AiRecommendation.category, func.count(AiRecommendation.id).label("count"))
            .where(
                and_(
                    AiRecommendation.school_id == school_id,
                    AiRecommendation.generated_date >= now - timedelta(days=TRENDING_DAYS),
                )
            )
            .group_by(AiRecommendation.category)
            .order_by(desc("count"))
        )
        rows = result.all()
        total = sum(count for _, count in rows)
        return [
            {"category": category, "count": count, "percentage": round(count / total * 100, 2)}
            for category, count in rows
        ]

    async def get_category_summary(self, db: AsyncSession, school_id: int, category: str) -> Dict[str, Any]:
        scope = and_(AiRecommendation.school_id == school_id, AiRecommendation.category == category)
        total = await db.scalar(select(func.count(AiRecommendation.id)).where(scope))
        by_status = dict((await db.execute(
            select(AiRecommendation.implementation_status, func.count(AiRecommendation.id))
            .where(scope)
            .group_by(AiRecommendation.implementation_status)
        )).all())
        average_confidence = await db.scalar(select(func.avg(AiRecommendation.confidence_level)).where(scope))
        latest = await db.scalar(
            select(AiRecommendation).where(scope).order_by(desc(AiRecommendation.generated_date)).limit(1)
        )
        return {
            "category": category,
            "total": total or 0,
            "by_status": by_status,
            "average_confidence": round(to_float(average_confidence) or 0.0, 2),
            "latest": recommendation_to_dto(latest) if latest else None,
        }
