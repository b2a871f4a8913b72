from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from ..config import get_settings
from ..retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;]+);base64,(?P<data>.+)$", re.DOTALL)
_SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

_EXTENSION_BY_MIME = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

DESIGNS_FOLDER = "designs"


@dataclass
class StoredArtifact:
    id: str
    path: Path
    content_type: str
    created_at: datetime
    url: str


def decode_image(data: str) -> tuple[bytes, str]:
    """Decode a data URL or bare base64 string into (bytes, content type)."""
    if not data:
        raise ValueError("image data is required")
    content_type = "image/png"
    payload = data.strip()
    if payload.startswith("data:"):
        match = _DATA_URL_PATTERN.match(payload)
        if not match:
            raise ValueError("invalid data URL")
        content_type = match.group("mime") or content_type
        payload = match.group("data")
    payload = re.sub(r"\s+", "", payload)
    if not payload:
        raise ValueError("image data is required")
    payload += "=" * (-len(payload) % 4)
    try:
        raw = base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError("invalid base64 image data") from exc
    return raw, content_type


def to_data_url(raw: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(raw).decode('ascii')}"


def new_design_id() -> str:
    return f"design_{uuid4().hex[:16]}"


class ArtifactStorage:
    """Durable storage for generated artwork, served under the objects prefix."""

    def __init__(
        self,
        storage_dir: Optional[str] = None,
        *,
        url_prefix: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.storage_dir = Path(storage_dir or settings.storage_dir).expanduser().resolve(strict=False)
        self.url_prefix = "/" + (url_prefix or settings.objects_url_prefix).strip("/")
        self.policy = policy or RetryPolicy(max_retries=settings.storage_max_retries, base_delay=0.5)
        self._sleep = sleep

    def _folder(self, name: str) -> Path:
        path = self.storage_dir / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _extension_for(self, content_type: str) -> str:
        if not content_type:
            return ".bin"
        return _EXTENSION_BY_MIME.get(content_type.lower(), ".bin")

    def _write(self, artifact_id: str, raw: bytes, content_type: str) -> StoredArtifact:
        folder = self._folder(DESIGNS_FOLDER)
        filename = f"{artifact_id}{self._extension_for(content_type)}"
        path = folder / filename
        path.write_bytes(raw)
        created_at = datetime.now(timezone.utc)
        meta = {
            "id": artifact_id,
            "filename": filename,
            "content_type": content_type,
            "created_at": created_at.isoformat(),
        }
        (folder / f"{artifact_id}.json").write_text(json.dumps(meta), encoding="utf-8")
        return StoredArtifact(
            id=artifact_id,
            path=path,
            content_type=content_type,
            created_at=created_at,
            url=f"{self.url_prefix}/{DESIGNS_FOLDER}/{filename}",
        )

    async def _write_async(self, artifact_id: str, raw: bytes, content_type: str) -> StoredArtifact:
        return await asyncio.to_thread(self._write, artifact_id, raw, content_type)

    async def save(self, raw: bytes, content_type: str = "image/png", artifact_id: Optional[str] = None) -> StoredArtifact:
        """Persist ``raw``; OSErrors are retried and re-raised once the budget is spent."""
        resolved_id = artifact_id or new_design_id()
        if _SAFE_ID_PATTERN.fullmatch(resolved_id) is None:
            raise ValueError("artifact id must match [A-Za-z0-9_-]{1,64}")
        return await with_retry(
            self._write_async,
            resolved_id,
            raw,
            content_type,
            policy=self.policy,
            should_retry=lambda exc: isinstance(exc, OSError),
            sleep=self._sleep,
        )


__all__ = [
    "StoredArtifact",
    "ArtifactStorage",
    "decode_image",
    "to_data_url",
    "new_design_id",
]
