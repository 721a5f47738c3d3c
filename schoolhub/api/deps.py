from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends

from schoolhub.config import settings
from schoolhub.services.academic import AcademicService
from schoolhub.services.academic_analysis import AcademicAnalysisService
from schoolhub.services.assets import AssetService
from schoolhub.services.early_warning import EarlyWarningService
from schoolhub.services.facilities import FacilityService
from schoolhub.services.finance import FinanceService
from schoolhub.services.gemini import GeminiService
from schoolhub.services.kpi import KpiService
from schoolhub.services.recommendations import RecommendationService
from schoolhub.services.teacher_evaluation import TeacherEvaluationService


def ok(message: str, data: Optional[Any] = None, **extra: Any) -> Dict[str, Any]:
    """Success envelope; `extra` adds sibling keys such as `stats`."""
    response = {"success": True, "message": message}
    if data is not None:
        response["data"] = data
    response.update(extra)
    return response


# One shared instance per process; tests override these providers
@lru_cache()
def get_ai_gateway() -> GeminiService:
    return GeminiService(settings)


@lru_cache()
def get_academic_service() -> AcademicService:
    return AcademicService()


@lru_cache()
def get_finance_service() -> FinanceService:
    return FinanceService()


@lru_cache()
def get_asset_service() -> AssetService:
    return AssetService()


@lru_cache()
def get_facility_service() -> FacilityService:
    return FacilityService()


@lru_cache()
def get_kpi_service() -> KpiService:
    return KpiService()


@lru_cache()
def get_teacher_evaluation_service() -> TeacherEvaluationService:
    return TeacherEvaluationService()


@lru_cache()
def get_recommendation_service() -> RecommendationService:
    return RecommendationService()


def get_academic_analysis_service(gateway: GeminiService = Depends(get_ai_gateway)) -> AcademicAnalysisService:
    return AcademicAnalysisService(gateway)


def get_early_warning_service(gateway: GeminiService = Depends(get_ai_gateway)) -> EarlyWarningService:
    return EarlyWarningService(gateway)
