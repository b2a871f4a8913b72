import asyncio
import base64
import json

import pytest

from artstudio.retry import RetryPolicy
from artstudio.services.artifact_storage import (
    ArtifactStorage,
    decode_image,
    new_design_id,
    to_data_url,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


async def _no_sleep(_delay):
    return None


def _storage(tmp_path, **kwargs):
    return ArtifactStorage(
        str(tmp_path / "objects"),
        url_prefix="/objects",
        policy=RetryPolicy(max_retries=3, base_delay=0),
        sleep=_no_sleep,
        **kwargs,
    )


def test_save_writes_file_and_metadata(tmp_path):
    storage = _storage(tmp_path)
    stored = asyncio.run(storage.save(PNG_BYTES, "image/png", "design_abc"))

    assert stored.url == "/objects/designs/design_abc.png"
    assert stored.path.read_bytes() == PNG_BYTES
    meta = json.loads((stored.path.parent / "design_abc.json").read_text(encoding="utf-8"))
    assert meta["content_type"] == "image/png"
    assert meta["filename"] == "design_abc.png"


def test_save_generates_id_and_picks_extension(tmp_path):
    stored = asyncio.run(_storage(tmp_path).save(b"jpeg", "image/jpeg"))
    assert stored.id.startswith("design_")
    assert stored.url.endswith(".jpg")


def test_save_rejects_unsafe_ids(tmp_path):
    with pytest.raises(ValueError):
        asyncio.run(_storage(tmp_path).save(PNG_BYTES, "image/png", "../escape"))


def test_save_retries_os_errors_then_succeeds(tmp_path, monkeypatch):
    storage = _storage(tmp_path)
    original = ArtifactStorage._write
    calls = {"count": 0}

    def flaky(self, artifact_id, raw, content_type):
        calls["count"] += 1
        if calls["count"] < 3:
            raise OSError("disk busy")
        return original(self, artifact_id, raw, content_type)

    monkeypatch.setattr(ArtifactStorage, "_write", flaky)
    stored = asyncio.run(storage.save(PNG_BYTES, "image/png", "design_retry"))
    assert calls["count"] == 3
    assert stored.path.exists()


def test_save_reraises_when_retries_exhausted(tmp_path, monkeypatch):
    storage = _storage(tmp_path)

    def broken(self, artifact_id, raw, content_type):
        raise OSError("read-only file system")

    monkeypatch.setattr(ArtifactStorage, "_write", broken)
    with pytest.raises(OSError):
        asyncio.run(storage.save(PNG_BYTES))


def test_decode_image_accepts_data_urls_and_bare_base64():
    encoded = base64.b64encode(PNG_BYTES).decode("ascii")
    assert decode_image(f"data:image/webp;base64,{encoded}") == (PNG_BYTES, "image/webp")
    assert decode_image(encoded.rstrip("=")) == (PNG_BYTES, "image/png")
    with pytest.raises(ValueError):
        decode_image("data:image/png,not-base64")
    with pytest.raises(ValueError):
        decode_image("")


def test_to_data_url_and_new_design_id():
    assert to_data_url(b"abc", "image/png") == "data:image/png;base64,YWJj"
    design_id = new_design_id()
    assert design_id.startswith("design_")
    assert len(design_id) == len("design_") + 16
