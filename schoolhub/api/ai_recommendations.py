import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok, get_ai_gateway, get_recommendation_service, get_academic_analysis_service
from schoolhub.database import get_db
from schoolhub.exceptions import BusinessRuleError
from schoolhub.middleware.authentication import get_current_user, get_school_id, require_principal_or_admin
from schoolhub.schemas.analysis import (
    RecommendationUpdate, BulkStatusUpdate, GenerateRequest,
    RecommendationCategoryEnum, ImplementationStatusEnum,
)
from schoolhub.schemas.users import CurrentUser
from schoolhub.services.academic_analysis import AcademicAnalysisService
from schoolhub.services.gemini import GeminiService
from schoolhub.services.recommendations import RecommendationService

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/ai-recommendations")
async def get_recommendations(
    category: Optional[RecommendationCategoryEnum] = None,
    status: Optional[ImplementationStatusEnum] = None,
    min_confidence: Optional[float] = Query(None, ge=0, le=1),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    """
    List recommendations, newest and most confident first, with school-wide stats.
    """
    recommendations = await service.get_recommendations(
        db,
        school_id,
        category.value if category else None,
        status.value if status else None,
        min_confidence,
        start_date,
        end_date,
        page,
        limit,
    )
    stats = await service.get_stats(db, school_id)
    return ok("Rekomendasi berhasil diambil", recommendations, stats=stats)

@router.get("/ai-recommendations/stats")
async def get_recommendation_stats(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    return ok("Statistik rekomendasi berhasil diambil", await service.get_stats(db, school_id))

@router.get("/ai-recommendations/trending")
async def get_trending_categories(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    return ok("Kategori tren berhasil diambil", await service.get_trending_categories(db, school_id))

@router.get("/ai-recommendations/ai-status")
async def get_ai_status(
    check: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    gateway: GeminiService = Depends(get_ai_gateway)
):
    """
    Gateway quota usage; with `check=true` also sends a small test request to the model.
    """
    status = {
        "enabled": gateway.config.AI_ANALYSIS_ENABLED,
        "model": gateway.model_name,
        "stats": gateway.get_stats(),
    }
    if check:
        status["health"] = await gateway.health_check()
    return ok("Status AI berhasil diambil", status)

@router.get("/ai-recommendations/category/{category}")
async def get_category_summary(
    category: RecommendationCategoryEnum,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    summary = await service.get_category_summary(db, school_id, category.value)
    return ok("Ringkasan kategori berhasil diambil", summary)

@router.post("/ai-recommendations/generate", dependencies=[Depends(require_principal_or_admin)])
async def generate_recommendations(
    data: GenerateRequest = GenerateRequest(),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    analysis: AcademicAnalysisService = Depends(get_academic_analysis_service),
    service: RecommendationService = Depends(get_recommendation_service)
):
    """
    Run the academic analysis for the caller's school and optionally store the results.
    """
    result = await analysis.analyze(db, school_id)
    if not result.success:
        raise BusinessRuleError(result.errors[0] if result.errors else "Analisis gagal", "ANALYSIS_UNAVAILABLE")

    recommendations = result.recommendations
    if data.category:
        recommendations = [r for r in recommendations if r.category == data.category]

    save_result = None
    if data.save and recommendations:
        save_result = await service.save_recommendations(db, school_id, recommendations)

    logger.info(f"Generated {len(recommendations)} recommendations for school {school_id}")
    return ok(
        f"{len(recommendations)} rekomendasi berhasil dibuat",
        {
            "recommendations": recommendations,
            "summary": result.summary,
            "metadata": result.metadata,
            "errors": result.errors,
            "save_result": save_result,
        },
    )

@router.put("/ai-recommendations/bulk-status", dependencies=[Depends(require_principal_or_admin)])
async def bulk_update_status(
    data: BulkStatusUpdate,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    updated = await service.bulk_update_status(db, school_id, data.ids, data.implementation_status)
    return ok(f"{updated} rekomendasi berhasil diperbarui", {"updated": updated})

@router.delete("/ai-recommendations/cleanup", dependencies=[Depends(require_principal_or_admin)])
async def cleanup_recommendations(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    """
    Remove completed or rejected recommendations older than 90 days.
    """
    deleted = await service.cleanup_old(db, school_id)
    return ok(f"{deleted} rekomendasi lama berhasil dihapus", {"deleted": deleted})

@router.get("/ai-recommendations/{recommendation_id}")
async def get_recommendation(
    recommendation_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    return ok("Rekomendasi berhasil diambil", await service.get_recommendation(db, school_id, recommendation_id))

@router.put("/ai-recommendations/{recommendation_id}")
async def update_recommendation(
    data: RecommendationUpdate,
    recommendation_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    recommendation = await service.update_recommendation(db, school_id, recommendation_id, data)
    return ok("Rekomendasi berhasil diperbarui", recommendation)

@router.delete("/ai-recommendations/{recommendation_id}", dependencies=[Depends(require_principal_or_admin)])
async def delete_recommendation(
    recommendation_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service)
):
    await service.delete_recommendation(db, school_id, recommendation_id)
    return ok("Rekomendasi berhasil dihapus")
