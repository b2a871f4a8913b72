import httpx
from fastapi.testclient import TestClient

from artstudio.api.generate import get_artifact_storage, get_image_generator
from artstudio.api.mockups import get_preview_runner
from artstudio.config import refresh_settings
from artstudio.db.database import get_database, reset_database
from artstudio.db.migrations import init_db
from artstudio.db.models import Configuration, Merchant
from artstudio.retry import RetryPolicy
from artstudio.services.artifact_storage import ArtifactStorage
from artstudio.services.fulfillment import PrintifyClient, UploadCoordinator
from artstudio.services.generation import GeneratedImage

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


def _create_app(tmp_path, monkeypatch):
    db_path = tmp_path / "storefront_api.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "objects"))
    monkeypatch.setenv("APP_URL", "https://studio.example")
    refresh_settings()
    reset_database()
    init_db()
    from artstudio.main import create_app

    return create_app()


def _seed(with_configurations=True):
    with get_database().session_scope(commit=True) as session:
        session.add(Merchant(
            id="m1",
            shop_domain="shop-one.example",
            fulfillment_token="token",
            fulfillment_shop_id="555",
        ))
        session.add(Merchant(id="m2", shop_domain="empty.example"))
        session.flush()
        if with_configurations:
            session.add(Configuration(
                id=2,
                merchant_id="m1",
                name="Tumbler 20oz",
                linked_handle="custom-tumbler-20oz",
                blueprint_id=10,
                provider_id=20,
            ))
            session.add(Configuration(id=5, merchant_id="m1", name="Mug", blueprint_id=11, provider_id=21))


def test_health(tmp_path, monkeypatch):
    app = _create_app(tmp_path, monkeypatch)
    with TestClient(app) as client:
        response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "ok"


def test_configuration_lookup_reports_resolution_tier(tmp_path, monkeypatch):
    app = _create_app(tmp_path, monkeypatch)
    _seed()

    with TestClient(app) as client:
        direct = client.get("/api/storefront/configuration", params={"shop": "shop-one.example", "configurationId": 5})
        assert direct.status_code == 200
        assert direct.json()["id"] == 5
        assert direct.json()["resolvedVia"] == "direct"

        stale = client.get(
            "/api/storefront/configuration",
            params={"shop": "shop-one.example", "configurationId": 34, "handle": "custom-tumbler-20oz"},
        )
        assert stale.status_code == 200
        body = stale.json()
        assert body["id"] == 2
        assert body["merchantId"] == "m1"
        assert body["resolvedVia"] == "handle_match"

        fallback = client.get("/api/storefront/configuration", params={"shop": "shop-one.example", "configurationId": 34})
        assert fallback.json()["resolvedVia"] == "smallest_id_fallback"

        unknown = client.get("/api/storefront/configuration", params={"shop": "nope.example"})
        assert unknown.status_code == 404
        assert unknown.json()["error_type"] == "unknown_shop"

        empty = client.get("/api/storefront/configuration", params={"shop": "empty.example", "configurationId": 2})
        assert empty.status_code == 409
        assert empty.json()["error_type"] == "no_configurations"
        assert empty.json()["trace_id"]


class _StubGenerator:
    async def generate(self, prompt):
        return GeneratedImage(PNG_BYTES, "image/png")


def test_generate_persists_artwork_and_serves_it(tmp_path, monkeypatch):
    app = _create_app(tmp_path, monkeypatch)
    app.dependency_overrides[get_image_generator] = lambda: _StubGenerator()

    with TestClient(app) as client:
        response = client.post("/api/generate", json={"prompt": "a fox in the snow", "designId": "design_fox"})
        assert response.status_code == 200
        body = response.json()
        assert body == {"designId": "design_fox", "imageUrl": "/objects/designs/design_fox.png", "hosted": True}

        served = client.get(body["imageUrl"])
        assert served.status_code == 200
        assert served.content == PNG_BYTES


def test_generate_degrades_to_inline_when_storage_fails(tmp_path, monkeypatch):
    app = _create_app(tmp_path, monkeypatch)

    def broken_write(self, artifact_id, raw, content_type):
        raise OSError("disk full")

    async def no_sleep(_delay):
        return None

    monkeypatch.setattr(ArtifactStorage, "_write", broken_write)
    app.dependency_overrides[get_image_generator] = lambda: _StubGenerator()
    app.dependency_overrides[get_artifact_storage] = lambda: ArtifactStorage(sleep=no_sleep)

    with TestClient(app) as client:
        response = client.post("/api/generate", json={"prompt": "a fox"})
    body = response.json()
    assert response.status_code == 200
    assert body["hosted"] is False
    assert body["imageUrl"].startswith("data:image/png;base64,")


def test_generate_quota_is_per_shop(tmp_path, monkeypatch):
    monkeypatch.setenv("GENERATION_RATE_LIMIT", "1")
    app = _create_app(tmp_path, monkeypatch)
    app.dependency_overrides[get_image_generator] = lambda: _StubGenerator()

    with TestClient(app) as client:
        first = client.post("/api/generate", json={"prompt": "a fox", "shop": "shop-one.example"})
        second = client.post("/api/generate", json={"prompt": "a fox", "shop": "https://Shop-One.example/"})
        other = client.post("/api/generate", json={"prompt": "a fox", "shop": "empty.example"})

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json()["error_type"] == "rate_limited"
    assert int(second.headers["Retry-After"]) >= 1
    assert other.status_code == 200


def test_generate_without_generator_configured(tmp_path, monkeypatch):
    monkeypatch.delenv("IMAGE_GENERATOR_URL", raising=False)
    app = _create_app(tmp_path, monkeypatch)
    with TestClient(app) as client:
        response = client.post("/api/generate", json={"prompt": "a fox"})
    assert response.status_code == 503
    assert response.json()["error_type"] == "generator_not_configured"


def test_mockups_reject_inline_design_reference(tmp_path, monkeypatch):
    app = _create_app(tmp_path, monkeypatch)
    _seed()
    calls = []

    async def runner(merchant, request):
        calls.append(request)

    app.dependency_overrides[get_preview_runner] = lambda: runner
    with TestClient(app) as client:
        response = client.post("/api/mockups", json={
            "shop": "shop-one.example",
            "configurationId": 2,
            "variantId": 100,
            "designImageUrl": "data:image/png;base64,AAAA",
        })
    assert response.status_code == 400
    assert response.json()["error_type"] == "invalid_reference"
    assert calls == []


def _provider_runner(handler):
    async def no_sleep(_delay):
        return None

    async def runner(merchant, request):
        async with PrintifyClient(
            merchant.fulfillment_token,
            merchant.fulfillment_shop_id,
            transport=httpx.MockTransport(handler),
        ) as client:
            coordinator = UploadCoordinator(
                client,
                policy=RetryPolicy(max_retries=3, base_delay=0),
                poll_policy=RetryPolicy(max_retries=2, base_delay=0),
                sleep=no_sleep,
            )
            return await coordinator.generate_preview(request)

    return runner


def test_mockups_return_preferred_views(tmp_path, monkeypatch):
    app = _create_app(tmp_path, monkeypatch)
    _seed()
    created = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/uploads/images.json":
            return httpx.Response(200, json={"id": "img_1"})
        if request.method == "POST" and request.url.path == "/v1/shops/555/products.json":
            created["body"] = request.content
            return httpx.Response(200, json={"id": "prod_1"})
        if request.method == "GET":
            return httpx.Response(200, json={"images": [
                {"src": "https://images.example/m.jpg?camera_label=back"},
                {"src": "https://images.example/m.jpg?camera_label=front"},
            ]})
        return httpx.Response(200, json={})

    app.dependency_overrides[get_preview_runner] = lambda: _provider_runner(handler)
    with TestClient(app) as client:
        response = client.post("/api/mockups", json={
            "shop": "shop-one.example",
            "configurationId": 2,
            "variantId": 100,
            "designImageUrl": "/objects/designs/abc.png",
        })
    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert [image["label"] for image in body["mockupImages"]] == ["front", "back"]
    assert b'"blueprint_id":10' in created["body"].replace(b" ", b"")


def test_mockups_report_failing_step(tmp_path, monkeypatch):
    app = _create_app(tmp_path, monkeypatch)
    _seed()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/uploads/images.json":
            return httpx.Response(200, json={"id": "img_1"})
        return httpx.Response(401, json={"error": "unauthorized"})

    app.dependency_overrides[get_preview_runner] = lambda: _provider_runner(handler)
    with TestClient(app) as client:
        response = client.post("/api/mockups", json={
            "shop": "shop-one.example",
            "configurationId": 2,
            "variantId": 100,
            "designImageUrl": "https://cdn.example/img.png",
        })
    body = response.json()
    assert response.status_code == 502
    assert body["success"] is False
    assert body["step"] == "preview_product"
    assert body["error_type"] == "upstream_retry_exhausted"
    assert [attempt["step"] for attempt in body["attempts"]] == ["artifact_upload", "preview_product"]


def test_mockups_without_fulfillment_credentials(tmp_path, monkeypatch):
    app = _create_app(tmp_path, monkeypatch)
    _seed()
    with get_database().session_scope(commit=True) as session:
        session.add(Configuration(id=9, merchant_id="m2", name="Pillow", blueprint_id=1, provider_id=1))

    with TestClient(app) as client:
        response = client.post("/api/mockups", json={
            "shop": "empty.example",
            "configurationId": 9,
            "variantId": 1,
            "designImageUrl": "https://cdn.example/img.png",
        })
    assert response.status_code == 409
    assert response.json()["error_type"] == "fulfillment_not_configured"
