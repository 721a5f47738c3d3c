import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from schoolhub.api import auth, academics, finance, assets, facilities, kpi, teacher_evaluation, ai_recommendations, early_warnings
from schoolhub.config import settings, validate_ai_settings
from schoolhub.database import engine, Base
from schoolhub.exceptions import DomainError
from schoolhub.schemas.common import ApiResponse
from schoolhub.middleware.logging import setup_logging, add_logging_middleware

# Initialize FastAPI app
app = FastAPI(
    title="SchoolHub API",
    description="School management API with academic, finance, asset, facility, KPI and teacher modules, plus AI-assisted analysis",
    version="1.0.0",
    docs_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
add_logging_middleware(app)

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Exception handlers
def error_response(status_code: int, message: str, error: str, errors=None) -> JSONResponse:
    body = ApiResponse(success=False, message=message, error=error, errors=errors)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))

@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return error_response(exc.status_code, exc.message, exc.code)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location) or "request", "message": error.get("msg", "")})
    return error_response(400, "Data yang dikirim tidak valid", "VALIDATION_ERROR", errors=errors)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), "HTTP_ERROR")

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return error_response(500, "Terjadi kesalahan pada server. Silakan coba lagi nanti.", "INTERNAL_ERROR")

# Create database tables and check the AI configuration
@app.on_event("startup")
async def startup():
    validate_ai_settings(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created or verified")

# Include routers
app.include_router(auth.router, prefix="/api", tags=["Authentication"])
app.include_router(academics.router, prefix="/api", tags=["Academic"])
app.include_router(finance.router, prefix="/api", tags=["Finance"])
app.include_router(assets.router, prefix="/api", tags=["Assets"])
app.include_router(facilities.router, prefix="/api", tags=["Facilities"])
app.include_router(kpi.router, prefix="/api", tags=["KPI"])
app.include_router(teacher_evaluation.router, prefix="/api", tags=["Teacher Evaluation"])
app.include_router(ai_recommendations.router, prefix="/api", tags=["AI Recommendations"])
app.include_router(early_warnings.router, prefix="/api", tags=["Early Warnings"])

# Custom OpenAPI schema for documentation
@app.get("/api/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/api/openapi.json",
        title="SchoolHub API Documentation",
        swagger_ui_parameters={"defaultModelsExpandDepth": -1},
    )

@app.get("/api/openapi.json", include_in_schema=False)
async def get_openapi_endpoint():
    return get_openapi(
        title="SchoolHub API",
        version="1.0.0",
        description="SchoolHub API",
        routes=app.routes,
    )

@app.get("/", tags=["Root"])
async def root():
    return {"success": True, "message": "SchoolHub API. Visit /api/docs for documentation."}

# Run the server
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("schoolhub.main:app", host="0.0.0.0", port=8000, reload=True)
