import asyncio
import base64
import io
import json

import httpx
import pytest
from PIL import Image

from artstudio.exceptions import InvalidReferenceError, UpstreamRetryExhaustedError
from artstudio.retry import RetryPolicy
from artstudio.services.fulfillment import (
    AttemptOutcome,
    MockupImage,
    PreviewRequest,
    PrintifyClient,
    UploadCoordinator,
    UploadStep,
    duplicate_side_by_side,
    extract_camera_label,
    select_preferred_views,
)


class Provider:
    """Scripted fulfillment provider behind httpx.MockTransport."""

    def __init__(self, upload_statuses=(200,), create_statuses=(200,), product_pages=None, upload_body=None):
        self.upload_statuses = list(upload_statuses)
        self.upload_body = {"id": "img_1"} if upload_body is None else upload_body
        self.create_statuses = list(create_statuses)
        self.product_pages = list(product_pages or [[
            "https://images.example/p.jpg?camera_label=front",
        ]])
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/uploads/images.json"):
            return httpx.Response(self.upload_statuses.pop(0), json=self.upload_body)
        if request.method == "POST" and path.endswith("/products.json"):
            return httpx.Response(self.create_statuses.pop(0), json={"id": "prod_1"})
        if request.method == "GET":
            page = self.product_pages.pop(0) if len(self.product_pages) > 1 else self.product_pages[0]
            return httpx.Response(200, json={"images": [{"src": src} for src in page]})
        if request.method == "DELETE":
            return httpx.Response(200)
        return httpx.Response(404)

    def paths(self, method):
        return [request.url.path for request in self.requests if request.method == method]


def _run(provider, request=None, image_loader=None):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    async def scenario():
        async with PrintifyClient("token", "555", transport=httpx.MockTransport(provider)) as client:
            coordinator = UploadCoordinator(
                client,
                policy=RetryPolicy(max_retries=3, base_delay=1.0),
                poll_policy=RetryPolicy(max_retries=3, base_delay=2.0, max_delay=5.0),
                app_url="https://studio.example",
                image_loader=image_loader,
                sleep=fake_sleep,
            )
            result = await coordinator.generate_preview(request or PreviewRequest(
                blueprint_id=10,
                provider_id=20,
                variant_id=100,
                image_url="/objects/designs/abc.png",
                scale=0.8,
                x=0.2,
                y=-0.4,
            ))
            return result

    return asyncio.run(scenario()), delays


def test_server_errors_are_retried_with_backoff():
    provider = Provider(upload_statuses=[500, 500, 200])
    result, delays = _run(provider)

    assert result.success is True
    upload_attempts = [a for a in result.attempts if a.step == UploadStep.ARTIFACT_UPLOAD]
    assert [a.outcome for a in upload_attempts] == [
        AttemptOutcome.RETRYABLE_FAILURE,
        AttemptOutcome.RETRYABLE_FAILURE,
        AttemptOutcome.SUCCESS,
    ]
    assert upload_attempts[0].status_code == 500
    assert delays[:2] == [1.0, 2.0]


def test_client_error_is_terminal_after_one_attempt():
    provider = Provider(upload_statuses=[401])
    result, delays = _run(provider)

    assert result.success is False
    assert result.step == UploadStep.ARTIFACT_UPLOAD
    assert result.error_type == "upstream_retry_exhausted"
    assert len(result.attempts) == 1
    assert result.attempts[0].outcome == AttemptOutcome.TERMINAL_FAILURE
    assert result.attempts[0].status_code == 401
    assert delays == []
    assert provider.paths("POST") == ["/v1/uploads/images.json"]


def test_rate_limited_response_is_terminal():
    provider = Provider(create_statuses=[429, 200])
    result, delays = _run(provider)

    assert result.success is False
    assert result.step == UploadStep.PREVIEW_PRODUCT
    [attempt] = [a for a in result.attempts if a.step == UploadStep.PREVIEW_PRODUCT]
    assert attempt.status_code == 429
    assert attempt.outcome == AttemptOutcome.TERMINAL_FAILURE
    assert delays == []
    assert result.to_dict()["step"] == "preview_product"


def test_server_errors_exhaust_the_attempt_budget():
    provider = Provider(create_statuses=[503, 502, 500])
    result, _ = _run(provider)

    assert result.success is False
    assert result.step == UploadStep.PREVIEW_PRODUCT
    assert [a.status_code for a in result.attempts if a.step == UploadStep.PREVIEW_PRODUCT] == [503, 502, 500]


def test_upload_response_without_id_fails_at_its_step():
    provider = Provider(upload_body={})
    result, _ = _run(provider)

    assert result.success is False
    assert result.step == UploadStep.ARTIFACT_UPLOAD
    [attempt] = result.attempts
    assert attempt.outcome == AttemptOutcome.TERMINAL_FAILURE
    assert "no id" in attempt.error
    assert provider.paths("POST") == ["/v1/uploads/images.json"]


def test_temporary_product_uses_front_placeholder_and_is_deleted():
    provider = Provider()
    result, _ = _run(provider)

    assert result.success is True
    upload_body = json.loads(provider.requests[0].content)
    assert upload_body["url"] == "https://studio.example/objects/designs/abc.png"
    create_body = json.loads(provider.requests[1].content)
    [area] = create_body["print_areas"]
    [placeholder] = area["placeholders"]
    assert placeholder["position"] == "front"
    image = placeholder["images"][0]
    assert image["id"] == "img_1"
    assert image["x"] == pytest.approx(0.6)
    assert image["y"] == pytest.approx(0.3)
    assert image["scale"] == pytest.approx(0.8)
    assert create_body["variants"] == [{"id": 100, "price": 100, "is_enabled": True}]
    assert provider.paths("DELETE") == ["/v1/shops/555/products/prod_1.json"]


def test_mockups_are_polled_until_ready_and_size_charts_skipped():
    provider = Provider(product_pages=[
        [],
        [
            "https://images.example/p.jpg?camera_label=size-chart",
            "https://images.example/p.jpg?camera_label=back",
            "https://images.example/p.jpg?camera_label=right",
            "https://images.example/p.jpg?camera_label=front",
        ],
    ])
    result, delays = _run(provider)

    assert result.success is True
    assert [image.label for image in result.mockup_images] == ["front", "right", "back"]
    assert result.mockup_urls[0].endswith("camera_label=front")
    assert 2.0 in delays


def test_mockup_fetch_failure_still_deletes_temporary_product():
    provider = Provider(product_pages=[[]])
    result, _ = _run(provider)

    assert result.success is False
    assert result.step == UploadStep.MOCKUP_FETCH
    assert provider.paths("DELETE") == ["/v1/shops/555/products/prod_1.json"]


def test_inline_reference_is_rejected_before_any_request():
    provider = Provider()
    request = PreviewRequest(blueprint_id=1, provider_id=1, variant_id=1, image_url="data:image/png;base64,AAAA")
    with pytest.raises(InvalidReferenceError):
        _run(provider, request=request)
    assert provider.requests == []


def _png(width, height, color):
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def test_double_sided_artwork_is_duplicated_and_uploaded_inline():
    provider = Provider()
    artwork = _png(4, 3, (255, 0, 0, 255))
    loaded = []

    async def loader(url):
        loaded.append(url)
        return artwork

    request = PreviewRequest(
        blueprint_id=1,
        provider_id=1,
        variant_id=1,
        image_url="https://cdn.example/art.png",
        double_sided=True,
    )
    result, _ = _run(provider, request=request, image_loader=loader)

    assert result.success is True
    assert loaded == ["https://cdn.example/art.png"]
    upload_body = json.loads(provider.requests[0].content)
    assert "url" not in upload_body
    with Image.open(io.BytesIO(base64.b64decode(upload_body["contents"]))) as uploaded:
        assert uploaded.size == (8, 3)
        assert uploaded.getpixel((5, 1)) == (255, 0, 0, 255)


def test_duplicate_side_by_side_doubles_width():
    with Image.open(io.BytesIO(duplicate_side_by_side(_png(10, 20, (0, 0, 255, 255))))) as image:
        assert image.size == (20, 20)


def test_select_preferred_views_orders_and_limits():
    images = [MockupImage(url=str(i), label=label) for i, label in enumerate(
        ["back", "lifestyle", "close-up", "left", "front", "right"]
    )]
    selected = select_preferred_views(images)
    assert [image.label for image in selected] == ["front", "left", "right", "close-up"]

    fewer = select_preferred_views(images[:2])
    assert [image.label for image in fewer] == ["back", "lifestyle"]


def test_camera_label_defaults_to_front():
    assert extract_camera_label("https://images.example/a.jpg?camera_label=left&s=1") == "left"
    assert extract_camera_label("https://images.example/a.jpg") == "front"


def test_run_step_raises_with_step_and_attempts():
    provider = Provider(upload_statuses=[500, 500, 500])

    async def no_sleep(_delay):
        return None

    async def scenario():
        async with PrintifyClient("token", "555", transport=httpx.MockTransport(provider)) as client:
            coordinator = UploadCoordinator(client, policy=RetryPolicy(max_retries=3, base_delay=0), sleep=no_sleep)
            await coordinator.upload_artwork("https://cdn.example/a.png")

    with pytest.raises(UpstreamRetryExhaustedError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.step == "artifact_upload"
    assert excinfo.value.attempts == 3
    assert excinfo.value.status_code == 500
    assert excinfo.value.to_dict()["step"] == "artifact_upload"
