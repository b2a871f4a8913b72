from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..exceptions import GenerationError, RateLimitedError
from ..schemas.storefront import GenerateRequest, GenerateResponse
from ..services.artifact_storage import ArtifactStorage
from ..services.generation import GenerationService, HttpImageGenerator, ImageGenerator
from .rate_limit import ShopRateLimiter, client_key, get_generation_limiter
from .utils import error_response, rate_limited_response

router = APIRouter(prefix="/api", tags=["generate"])

_STATUS_BY_ERROR_TYPE = {
    "invalid_prompt": 400,
    "generator_not_configured": 503,
}


def get_image_generator() -> ImageGenerator:
    return HttpImageGenerator()


def get_artifact_storage() -> ArtifactStorage:
    return ArtifactStorage()


@router.post("/generate", response_model=GenerateResponse)
async def generate_design(
    payload: GenerateRequest,
    request: Request,
    limiter: ShopRateLimiter = Depends(get_generation_limiter),
    generator: ImageGenerator = Depends(get_image_generator),
    storage: ArtifactStorage = Depends(get_artifact_storage),
):
    try:
        limiter.hit(client_key(request, payload.shop))
    except RateLimitedError as exc:
        return rate_limited_response(exc)

    service = GenerationService(generator, storage)
    try:
        design = await service.generate(payload.prompt, payload.design_id)
    except GenerationError as exc:
        return error_response(exc, _STATUS_BY_ERROR_TYPE.get(exc.error_type, 502))
    except ValueError as exc:
        return error_response(GenerationError(str(exc), error_type="invalid_design_id"), 400)
    return GenerateResponse.model_validate(design.to_dict())


__all__ = ["router", "get_image_generator", "get_artifact_storage"]
