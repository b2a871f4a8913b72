from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session as DbSession

from ..exceptions import ResolutionExhaustedError, TrackedError
from ..schemas.storefront import ConfigurationResponse
from ..services.configuration_resolver import ConfigurationResolver
from .utils import error_response, get_db_session

router = APIRouter(prefix="/api/storefront", tags=["storefront"])


@router.get("/configuration", response_model=ConfigurationResponse)
def resolve_storefront_configuration(
    shop: str = Query(..., min_length=1),
    configuration_id: Optional[int] = Query(default=None, alias="configurationId"),
    handle: Optional[str] = Query(default=None),
    display_name: Optional[str] = Query(default=None, alias="displayName"),
    db: DbSession = Depends(get_db_session),
):
    resolver = ConfigurationResolver(db)
    merchant = resolver.get_merchant_by_shop(shop)
    if merchant is None:
        return error_response(TrackedError(f"Unknown shop: {shop}", error_type="unknown_shop"), 404)
    try:
        result = resolver.resolve(
            merchant.id,
            configuration_id,
            handle=handle,
            display_name=display_name,
        )
    except ResolutionExhaustedError as exc:
        return error_response(exc, 409)
    return ConfigurationResponse.model_validate(result.to_dict())


__all__ = ["router"]
