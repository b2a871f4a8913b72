from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from ..config import get_settings
from ..exceptions import GenerationError
from .artifact_storage import ArtifactStorage, decode_image, new_design_id, to_data_url

logger = logging.getLogger(__name__)


@dataclass
class GeneratedImage:
    data: bytes
    content_type: str = "image/png"


@dataclass
class GeneratedDesign:
    design_id: str
    image_url: str
    hosted: bool

    def to_dict(self) -> dict:
        return {"designId": self.design_id, "imageUrl": self.image_url, "hosted": self.hosted}


class ImageGenerator(Protocol):
    async def generate(self, prompt: str) -> GeneratedImage: ...


def _first_image_field(data: Any) -> Optional[str]:
    if isinstance(data, str):
        return data
    if isinstance(data, list):
        for item in data:
            found = _first_image_field(item)
            if found:
                return found
        return None
    if isinstance(data, dict):
        for key in ("b64_json", "image", "images", "data", "output", "url"):
            if key in data:
                found = _first_image_field(data[key])
                if found:
                    return found
    return None


class HttpImageGenerator:
    """Calls an external text-to-image endpoint that answers with base64 or an image URL."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.url = url or settings.image_generator_url
        self.api_key = api_key or settings.image_generator_key
        self.timeout = timeout if timeout is not None else settings.image_generator_timeout_seconds
        self._transport = transport

    async def generate(self, prompt: str) -> GeneratedImage:
        if not self.url:
            raise GenerationError("Image generation is not configured", error_type="generator_not_configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(self.url, json={"prompt": prompt}, headers=headers)
                response.raise_for_status()
                image = _first_image_field(response.json())
                if image and image.startswith(("http://", "https://")):
                    fetched = await client.get(image)
                    fetched.raise_for_status()
                    content_type = fetched.headers.get("content-type", "image/png").split(";")[0]
                    return GeneratedImage(fetched.content, content_type)
            except (httpx.HTTPError, ValueError) as exc:
                raise GenerationError(f"Image generation failed: {exc}") from exc
        if not image:
            raise GenerationError("Image generation returned no image")
        try:
            raw, content_type = decode_image(image)
        except ValueError as exc:
            raise GenerationError(f"Image generation returned unreadable data: {exc}") from exc
        return GeneratedImage(raw, content_type)


class GenerationService:
    def __init__(self, generator: ImageGenerator, storage: ArtifactStorage) -> None:
        self.generator = generator
        self.storage = storage

    async def generate(self, prompt: str, design_id: Optional[str] = None) -> GeneratedDesign:
        """Generate artwork and persist it.

        When durable storage keeps failing the artwork is returned inline with
        ``hosted=False``; mockup and cart steps will refuse such a reference.
        """
        resolved_prompt = (prompt or "").strip()
        if not resolved_prompt:
            raise GenerationError("prompt is required", error_type="invalid_prompt")
        resolved_id = design_id or new_design_id()
        image = await self.generator.generate(resolved_prompt)
        try:
            stored = await self.storage.save(image.data, image.content_type, resolved_id)
        except OSError as exc:
            logger.error("Artwork %s could not be persisted, returning inline: %s", resolved_id, exc)
            return GeneratedDesign(resolved_id, to_data_url(image.data, image.content_type), hosted=False)
        return GeneratedDesign(resolved_id, stored.url, hosted=True)


__all__ = [
    "GeneratedImage",
    "GeneratedDesign",
    "ImageGenerator",
    "HttpImageGenerator",
    "GenerationService",
]
