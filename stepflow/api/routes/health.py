"""
Health API Routes
"""
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from stepflow.config import settings
from stepflow.database import database_health
from stepflow.services.providers import anthropic_configured

router = APIRouter()


@router.get("/health")
async def health_check() -> JSONResponse:
    """Storage reachability plus which AI providers have credentials."""
    db = database_health()
    return JSONResponse(
        status_code=status.HTTP_200_OK if db["ok"] else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if db["ok"] else "degraded",
            "environment": settings.app_env,
            "database": db,
            "providers": {
                "anthropic": anthropic_configured(),
                "pollinations": bool(settings.pollinations_api_key.get_secret_value()),
            },
        },
    )
