"""Routes for generating soil stories."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..config import Settings, get_settings
from ..schemas.soil import HealthStatus, SoilStoryRequest, SoilStoryResponse
from ..services.generation import GenerationOrchestrator, ValidationFailure
from ..services.granite import InferenceFailure
from ..services.tts import SynthesisFailure

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["soil"])

SERVICE_NAME = "soil-song-api"


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    orchestrator = getattr(request.app.state, "generation_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Generation service unavailable")
    return orchestrator


@router.post("/story", response_model=SoilStoryResponse)
async def generate_story(
    payload: SoilStoryRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> SoilStoryResponse:
    try:
        result = await orchestrator.handle_request(
            payload.acidity,
            payload.moisture,
            image_base64=payload.image_base64,
        )
    except ValidationFailure as exc:
        raise HTTPException(status_code=400, detail=exc.reason) from exc
    except InferenceFailure as exc:
        status_code = 504 if exc.reason == "timeout" else 502
        raise HTTPException(
            status_code=status_code,
            detail={"message": "Failed to generate soil story", "reason": exc.reason},
        ) from exc
    except SynthesisFailure as exc:
        raise HTTPException(
            status_code=502,
            detail={"message": "Failed to generate soil story audio", "reason": exc.reason},
        ) from exc

    return SoilStoryResponse.from_result(
        result.narrative,
        result.asset.locator,
        result.asset.duration_millis,
    )


@router.get("/health", response_model=HealthStatus)
async def health(request: Request) -> HealthStatus:
    settings: Settings = getattr(request.app.state, "settings", None) or get_settings()
    return HealthStatus(status="ok", service=SERVICE_NAME, mode=settings.mode)


__all__ = ["router", "get_orchestrator"]
