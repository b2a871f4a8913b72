from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session as DbSession

from ..db.models import Merchant
from ..exceptions import (
    FulfillmentNotConfiguredError,
    InvalidReferenceError,
    RateLimitedError,
    ResolutionExhaustedError,
    TrackedError,
)
from ..schemas.storefront import MockupRequest
from ..services.configuration_resolver import ConfigurationResolver
from ..services.fulfillment import PreviewRequest, PreviewResult, PrintifyClient, UploadCoordinator
from ..services.references import require_hosted_url
from .rate_limit import ShopRateLimiter, client_key, get_mockup_limiter
from .utils import error_response, get_db_session, rate_limited_response

router = APIRouter(prefix="/api", tags=["mockups"])

PreviewRunner = Callable[[Merchant, PreviewRequest], Awaitable[PreviewResult]]


async def _run_preview(merchant: Merchant, request: PreviewRequest) -> PreviewResult:
    if not merchant.fulfillment_token or not merchant.fulfillment_shop_id:
        raise FulfillmentNotConfiguredError()
    async with PrintifyClient(merchant.fulfillment_token, merchant.fulfillment_shop_id) as client:
        return await UploadCoordinator(client).generate_preview(request)


def get_preview_runner() -> PreviewRunner:
    return _run_preview


@router.post("/mockups")
async def create_mockups(
    payload: MockupRequest,
    request: Request,
    limiter: ShopRateLimiter = Depends(get_mockup_limiter),
    db: DbSession = Depends(get_db_session),
    run_preview: PreviewRunner = Depends(get_preview_runner),
):
    try:
        limiter.hit(client_key(request, payload.shop))
    except RateLimitedError as exc:
        return rate_limited_response(exc)

    try:
        require_hosted_url(payload.design_image_url, field="designImageUrl")
    except InvalidReferenceError as exc:
        return error_response(exc, 400)

    resolver = ConfigurationResolver(db)
    merchant = resolver.get_merchant_by_shop(payload.shop)
    if merchant is None:
        return error_response(TrackedError(f"Unknown shop: {payload.shop}", error_type="unknown_shop"), 404)
    try:
        configuration = resolver.resolve(merchant.id, payload.configuration_id).configuration
    except ResolutionExhaustedError as exc:
        return error_response(exc, 409)
    if configuration.blueprint_id is None or configuration.provider_id is None:
        return error_response(
            TrackedError("Configuration has no fulfillment product", error_type="configuration_incomplete"),
            409,
        )

    preview = PreviewRequest(
        blueprint_id=configuration.blueprint_id,
        provider_id=configuration.provider_id,
        variant_id=payload.variant_id,
        image_url=payload.design_image_url,
        scale=payload.scale,
        x=payload.x,
        y=payload.y,
        double_sided=bool(configuration.double_sided),
    )
    try:
        result = await run_preview(merchant, preview)
    except InvalidReferenceError as exc:
        return error_response(exc, 400)
    except FulfillmentNotConfiguredError as exc:
        return error_response(exc, 409)

    return JSONResponse(status_code=200 if result.success else 502, content=result.to_dict())


__all__ = ["router", "get_preview_runner"]
