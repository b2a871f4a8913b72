"""Mockup previews through the print-on-demand provider.

A preview is produced by uploading the artwork, creating a temporary product
with the artwork on its front placeholder, polling that product until the
provider has rendered its mockup images and deleting the product again.
Provider calls are retried with bounded exponential backoff on 5xx and
transport failures; any 4xx is terminal after one attempt.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from urllib.parse import urljoin

import httpx
from PIL import Image, UnidentifiedImageError

from ..config import get_settings
from ..exceptions import UpstreamError, UpstreamRetryExhaustedError
from ..log import log_upload_attempt
from ..retry import RetryPolicy, with_retry
from .references import require_hosted_url

logger = logging.getLogger(__name__)

MAX_MOCKUP_VIEWS = 4
PREFERRED_LABELS = ("front", "left", "right", "close-up")
SIZE_CHART_LABEL = "size-chart"
MOCKUP_POLL_MAX_DELAY = 5.0

_CAMERA_LABEL_RE = re.compile(r"camera_label=([^&]+)")


class UploadStep(str, Enum):
    ARTIFACT_UPLOAD = "artifact_upload"
    PREVIEW_PRODUCT = "preview_product"
    MOCKUP_FETCH = "mockup_fetch"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"


@dataclass
class UploadAttempt:
    attempt_number: int
    step: UploadStep
    outcome: AttemptOutcome
    status_code: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attemptNumber": self.attempt_number,
            "step": self.step.value,
            "outcome": self.outcome.value,
            "statusCode": self.status_code,
            "error": self.error,
        }


@dataclass
class MockupImage:
    url: str
    label: str

    def to_dict(self) -> Dict[str, str]:
        return {"url": self.url, "label": self.label}


@dataclass
class PreviewRequest:
    blueprint_id: int
    provider_id: int
    variant_id: int
    image_url: str
    scale: float = 1.0
    x: float = 0.0
    y: float = 0.0
    double_sided: bool = False


@dataclass
class PreviewResult:
    success: bool
    mockup_urls: List[str] = field(default_factory=list)
    mockup_images: List[MockupImage] = field(default_factory=list)
    step: Optional[UploadStep] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    trace_id: Optional[str] = None
    attempts: List[UploadAttempt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "mockupUrls": list(self.mockup_urls),
            "mockupImages": [image.to_dict() for image in self.mockup_images],
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }
        if not self.success:
            data.update({
                "step": self.step.value if self.step else None,
                "error": self.error,
                "error_type": self.error_type,
                "trace_id": self.trace_id,
            })
        return data


def is_retryable_status(status_code: int) -> bool:
    """5xx only; every 4xx, 429 included, is terminal."""
    return status_code >= 500


def extract_camera_label(url: str) -> str:
    match = _CAMERA_LABEL_RE.search(url or "")
    return match.group(1) if match else "front"


def select_preferred_views(images: List[MockupImage], limit: int = MAX_MOCKUP_VIEWS) -> List[MockupImage]:
    """Up to ``limit`` images, preferred labels first, then in provider order."""
    selected: List[MockupImage] = []
    used: set[int] = set()
    for label in PREFERRED_LABELS:
        if len(selected) >= limit:
            break
        for index, image in enumerate(images):
            if index not in used and image.label == label:
                selected.append(image)
                used.add(index)
                break
    for index, image in enumerate(images):
        if len(selected) >= limit:
            break
        if index not in used:
            selected.append(image)
            used.add(index)
    return selected


def duplicate_side_by_side(image_bytes: bytes) -> bytes:
    """Place two copies of the artwork next to each other on a transparent PNG."""
    with Image.open(io.BytesIO(image_bytes)) as source:
        artwork = source.convert("RGBA")
    width, height = artwork.size
    canvas = Image.new("RGBA", (width * 2, height), (255, 255, 255, 0))
    canvas.paste(artwork, (0, 0))
    canvas.paste(artwork, (width, 0))
    buffer = io.BytesIO()
    canvas.save(buffer, format="PNG")
    return buffer.getvalue()


class PrintifyClient:
    """Thin async wrapper over the provider's REST API."""

    def __init__(
        self,
        api_token: str,
        shop_id: str,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.shop_id = shop_id
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.fulfillment_api_base).rstrip("/"),
            timeout=timeout if timeout is not None else settings.fulfillment_timeout_seconds,
            headers={"Authorization": f"Bearer {api_token}"},
            transport=transport,
        )

    async def __aenter__(self) -> "PrintifyClient":
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{method} {path} failed: {exc}", retryable=True) from exc
        if response.status_code >= 400:
            raise UpstreamError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                retryable=is_retryable_status(response.status_code),
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"{method} {path} returned invalid JSON",
                status_code=response.status_code,
                retryable=False,
            ) from exc

    async def upload_image(self, *, file_name: str, url: Optional[str] = None, contents: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"file_name": file_name}
        if contents is not None:
            body["contents"] = contents
        else:
            body["url"] = url
        return await self.request("POST", "/uploads/images.json", body)

    async def create_product(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", f"/shops/{self.shop_id}/products.json", body)

    async def get_product(self, product_id: Union[int, str]) -> Dict[str, Any]:
        return await self.request("GET", f"/shops/{self.shop_id}/products/{product_id}.json")

    async def delete_product(self, product_id: Union[int, str]) -> None:
        await self.request("DELETE", f"/shops/{self.shop_id}/products/{product_id}.json")


def _require_id(body: Any, what: str) -> str:
    if isinstance(body, dict) and body.get("id") not in (None, ""):
        return str(body["id"])
    raise UpstreamError(f"Provider {what} response has no id", retryable=False)


ImageLoader = Callable[[str], Awaitable[bytes]]


async def fetch_image_bytes(url: str) -> bytes:
    settings = get_settings()
    async with httpx.AsyncClient(timeout=settings.fulfillment_timeout_seconds) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.content


class UploadCoordinator:
    """Runs one preview request against the provider. Not shared between requests."""

    def __init__(
        self,
        client: PrintifyClient,
        *,
        policy: Optional[RetryPolicy] = None,
        poll_policy: Optional[RetryPolicy] = None,
        app_url: Optional[str] = None,
        image_loader: Optional[ImageLoader] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.policy = policy or RetryPolicy(
            max_retries=settings.upload_max_retries,
            base_delay=settings.upload_base_delay,
        )
        self.poll_policy = poll_policy or RetryPolicy(
            max_retries=settings.mockup_poll_attempts,
            base_delay=settings.mockup_poll_delay,
            max_delay=MOCKUP_POLL_MAX_DELAY,
        )
        self.app_url = app_url or settings.app_url
        self.image_loader = image_loader or fetch_image_bytes
        self._sleep = sleep
        self.attempts: List[UploadAttempt] = []

    async def run_step(
        self,
        step: UploadStep,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ) -> Any:
        policy = policy or self.policy
        step_attempts: List[UploadAttempt] = []

        def record(attempt: int, exc: Optional[BaseException]) -> None:
            if exc is None:
                entry = UploadAttempt(attempt, step, AttemptOutcome.SUCCESS)
            else:
                retryable = isinstance(exc, UpstreamError) and exc.retryable
                entry = UploadAttempt(
                    attempt,
                    step,
                    AttemptOutcome.RETRYABLE_FAILURE if retryable else AttemptOutcome.TERMINAL_FAILURE,
                    status_code=getattr(exc, "status_code", None),
                    error=str(exc),
                )
            step_attempts.append(entry)
            self.attempts.append(entry)
            log_upload_attempt(
                step.value,
                attempt,
                policy.attempts,
                entry.outcome.value,
                status_code=entry.status_code,
                error=entry.error,
            )

        try:
            return await with_retry(
                func,
                *args,
                policy=policy,
                should_retry=lambda exc: isinstance(exc, UpstreamError) and exc.retryable,
                on_attempt=record,
                sleep=self._sleep,
                **kwargs,
            )
        except UpstreamError as exc:
            raise UpstreamRetryExhaustedError(
                f"{step.value} failed after {len(step_attempts)} attempt(s): {exc}",
                step=step.value,
                attempts=len(step_attempts),
                status_code=exc.status_code,
            ) from exc

    async def upload_artwork(self, image_url: str, *, double_sided: bool = False) -> str:
        source_url = self._absolute(image_url)
        file_name = f"design-{int(time.time() * 1000)}.png"
        if double_sided:
            contents = await self._duplicated_contents(source_url)
            image_id = await self.run_step(
                UploadStep.ARTIFACT_UPLOAD,
                self._upload_image,
                file_name=file_name,
                contents=contents,
            )
        else:
            image_id = await self.run_step(
                UploadStep.ARTIFACT_UPLOAD,
                self._upload_image,
                file_name=file_name,
                url=source_url,
            )
        logger.info("Uploaded artwork to provider as image %s", image_id)
        return image_id

    async def create_preview_product(self, request: PreviewRequest, image_id: str) -> str:
        placeholders = [
            {
                "position": "front",
                "images": [
                    {
                        "id": image_id,
                        "x": 0.5 + request.x * 0.5,
                        "y": 0.5 + request.y * 0.5,
                        "scale": request.scale,
                        "angle": 0,
                    }
                ],
            }
        ]
        body = {
            "title": f"Mockup Preview - {int(time.time() * 1000)}",
            "description": "Temporary product for mockup generation",
            "blueprint_id": request.blueprint_id,
            "print_provider_id": request.provider_id,
            "variants": [{"id": request.variant_id, "price": 100, "is_enabled": True}],
            "print_areas": [{"variant_ids": [request.variant_id], "placeholders": placeholders}],
        }
        return await self.run_step(UploadStep.PREVIEW_PRODUCT, self._create_product, body)

    async def fetch_mockups(self, product_id: str) -> List[MockupImage]:
        return await self.run_step(
            UploadStep.MOCKUP_FETCH,
            self._read_mockups,
            product_id,
            policy=self.poll_policy,
        )

    async def delete_preview_product(self, product_id: str) -> None:
        try:
            await self.client.delete_product(product_id)
        except UpstreamError as exc:
            logger.warning("Failed to delete temporary product %s: %s", product_id, exc)

    async def generate_preview(self, request: PreviewRequest) -> PreviewResult:
        """Produce mockups for ``request``. Invalid artwork references raise before any call."""
        require_hosted_url(request.image_url, field="designImageUrl")
        product_id: Optional[str] = None
        try:
            image_id = await self.upload_artwork(request.image_url, double_sided=request.double_sided)
            product_id = await self.create_preview_product(request, image_id)
            images = select_preferred_views(await self.fetch_mockups(product_id))
        except UpstreamRetryExhaustedError as exc:
            logger.error("Mockup preview failed at %s: %s", exc.step, exc)
            return PreviewResult(
                success=False,
                step=UploadStep(exc.step),
                error=str(exc),
                error_type=exc.error_type,
                trace_id=exc.trace_id,
                attempts=list(self.attempts),
            )
        finally:
            if product_id is not None:
                await self.delete_preview_product(product_id)

        logger.info("Selected %s mockup view(s): %s", len(images), ", ".join(image.label for image in images))
        return PreviewResult(
            success=True,
            mockup_urls=[image.url for image in images],
            mockup_images=images,
            attempts=list(self.attempts),
        )

    async def _upload_image(self, **kwargs: Any) -> str:
        return _require_id(await self.client.upload_image(**kwargs), "upload")

    async def _create_product(self, body: Dict[str, Any]) -> str:
        return _require_id(await self.client.create_product(body), "product")

    async def _read_mockups(self, product_id: str) -> List[MockupImage]:
        product = await self.client.get_product(product_id) or {}
        images: List[MockupImage] = []
        for image in product.get("images") or []:
            src = image.get("src") if isinstance(image, dict) else None
            if not src:
                continue
            label = extract_camera_label(src)
            if label == SIZE_CHART_LABEL:
                continue
            images.append(MockupImage(url=src, label=label))
        if not images:
            raise UpstreamError("Mockups not ready yet", retryable=True)
        return images

    async def _duplicated_contents(self, source_url: str) -> str:
        try:
            raw = await self.image_loader(source_url)
            duplicated = duplicate_side_by_side(raw)
        except (httpx.HTTPError, OSError, UnidentifiedImageError) as exc:
            attempt = UploadAttempt(1, UploadStep.ARTIFACT_UPLOAD, AttemptOutcome.TERMINAL_FAILURE, error=str(exc))
            self.attempts.append(attempt)
            raise UpstreamRetryExhaustedError(
                f"Could not prepare double-sided artwork: {exc}",
                step=UploadStep.ARTIFACT_UPLOAD.value,
                attempts=1,
            ) from exc
        return base64.b64encode(duplicated).decode("ascii")

    def _absolute(self, url: str) -> str:
        if url.startswith("/"):
            return urljoin(self.app_url.rstrip("/") + "/", url.lstrip("/"))
        return url


__all__ = [
    "MAX_MOCKUP_VIEWS",
    "PREFERRED_LABELS",
    "UploadStep",
    "AttemptOutcome",
    "UploadAttempt",
    "MockupImage",
    "PreviewRequest",
    "PreviewResult",
    "is_retryable_status",
    "extract_camera_label",
    "select_preferred_views",
    "duplicate_side_by_side",
    "PrintifyClient",
    "UploadCoordinator",
]
