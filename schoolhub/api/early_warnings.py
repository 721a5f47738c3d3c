import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok, get_early_warning_service
from schoolhub.database import get_db
from schoolhub.exceptions import BusinessRuleError
from schoolhub.middleware.authentication import get_school_id, require_principal_or_admin
from schoolhub.schemas.analysis import WarningCategoryEnum, UrgencyEnum
from schoolhub.services.early_warning import EarlyWarningService

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/early-warnings")
async def get_warnings(
    category: Optional[WarningCategoryEnum] = None,
    urgency: Optional[UrgencyEnum] = None,
    resolved: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: EarlyWarningService = Depends(get_early_warning_service)
):
    """
    List warnings, most urgent first, with school-wide stats.
    """
    warnings = await service.get_warnings(
        db,
        school_id,
        category.value if category else None,
        urgency.value if urgency else None,
        resolved,
        page,
        limit,
    )
    stats = await service.get_stats(db, school_id)
    return ok("Peringatan dini berhasil diambil", warnings, stats=stats)

@router.get("/early-warnings/stats")
async def get_warning_stats(
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: EarlyWarningService = Depends(get_early_warning_service)
):
    return ok("Statistik peringatan dini berhasil diambil", await service.get_stats(db, school_id))

@router.post("/early-warnings/generate", dependencies=[Depends(require_principal_or_admin)])
async def generate_warnings(
    save: bool = True,
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: EarlyWarningService = Depends(get_early_warning_service)
):
    """
    Check the school against the warning thresholds and optionally store what was found.
    """
    result = await service.analyze(db, school_id)
    if not result.success:
        raise BusinessRuleError(result.errors[0] if result.errors else "Analisis gagal", "ANALYSIS_UNAVAILABLE")

    save_result = None
    if save and result.warnings:
        save_result = await service.save_warnings(db, school_id, result.warnings)

    logger.info(f"Detected {len(result.warnings)} early warnings for school {school_id}")
    return ok(
        f"{len(result.warnings)} peringatan dini terdeteksi",
        {
            "warnings": result.warnings,
            "summary": result.summary,
            "metadata": result.metadata,
            "errors": result.errors,
            "save_result": save_result,
        },
    )

@router.put("/early-warnings/{warning_id}/resolve")
async def resolve_warning(
    warning_id: int = Path(..., gt=0),
    school_id: int = Depends(get_school_id),
    db: AsyncSession = Depends(get_db),
    service: EarlyWarningService = Depends(get_early_warning_service)
):
    warning = await service.resolve_warning(db, school_id, warning_id)
    return ok("Peringatan berhasil ditandai selesai", warning)
