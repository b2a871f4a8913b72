from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConfigurationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    merchant_id: str = Field(alias="merchantId")
    name: str
    description: Optional[str] = None
    linked_handle: Optional[str] = Field(default=None, alias="linkedHandle")
    sizes: List[Any] = Field(default_factory=list)
    frame_colors: List[Any] = Field(default_factory=list, alias="frameColors")
    variants: Dict[str, Any] = Field(default_factory=dict)
    aspect_ratio: str = Field(alias="aspectRatio")
    blueprint_id: Optional[int] = Field(default=None, alias="blueprintId")
    provider_id: Optional[int] = Field(default=None, alias="providerId")
    double_sided: bool = Field(default=False, alias="doubleSided")
    is_active: bool = Field(default=True, alias="isActive")
    sort_order: int = Field(default=0, alias="sortOrder")
    resolved_via: str = Field(alias="resolvedVia")


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=1)
    design_id: Optional[str] = Field(default=None, alias="designId")
    shop: Optional[str] = None


class GenerateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    design_id: str = Field(alias="designId")
    image_url: str = Field(alias="imageUrl")
    hosted: bool


class MockupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shop: str
    configuration_id: int = Field(alias="configurationId")
    variant_id: int = Field(alias="variantId")
    design_image_url: str = Field(alias="designImageUrl")
    scale: float = Field(default=1.0, ge=0, le=2)
    x: float = Field(default=0.0, ge=-1, le=1)
    y: float = Field(default=0.0, ge=-1, le=1)


__all__ = [
    "ConfigurationResponse",
    "GenerateRequest",
    "GenerateResponse",
    "MockupRequest",
]
