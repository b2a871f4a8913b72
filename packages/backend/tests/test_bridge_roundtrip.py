import asyncio

from bs4 import BeautifulSoup

from artstudio.bridge.channel import connect_windows
from artstudio.bridge.client import BridgeClient
from artstudio.bridge.types import BridgeConnectionState
from artstudio.exceptions import CartMutationError
from artstudio.host.loader import HostLoader

APP_URL = "https://studio.example"
HOST = "https://shop.example"

PAGE = """
<html><body>
  <section class="product">
    <div class="product__media-item"><img src="https://cdn.shopify.com/s/files/1/products/mug.jpg"></div>
    <form action="/cart/add"><button>Add</button></form>
  </section>
  <div class="ai-art-studio-block">
    <div id="ai-art-studio-container-main" data-app-url="https://studio.example"
         data-product-type-id="2" data-product-handle="custom-mug" data-shop-domain="shop.example"></div>
  </div>
</body></html>
"""


class FakeCart:
    def __init__(self, fail_with=None):
        self.calls = []
        self.fail_with = fail_with

    async def add_item(self, variant_id, quantity, properties):
        self.calls.append((variant_id, quantity, properties))
        if self.fail_with is not None:
            raise self.fail_with
        return {"items": [{"id": variant_id, "quantity": quantity, "properties": properties}]}


async def _settle(loader, rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)
    await loader.drain()


async def _wire(cart):
    soup = BeautifulSoup(PAGE, "html.parser")
    container = soup.select_one("#ai-art-studio-container-main")
    host, frame = connect_windows(HOST, APP_URL)
    loader = HostLoader(soup, container, cart=cart, page_url=f"{HOST}/products/custom-mug", resize_margin=40)
    loader.mount()
    loader.attach(host)
    host.add_listener(loader.receive)
    client = BridgeClient(
        frame,
        app_url=APP_URL,
        frame_src=loader.frame_src,
        host_origins=[HOST],
        bridge_version="1.0.0",
        handshake_timeout=2,
        request_timeout=2,
    )
    frame.add_listener(client.receive)
    client.start()
    await client.handshake.wait_settled()
    await _settle(loader)
    return soup, container, loader, client


def test_handshake_and_add_to_cart_over_the_channel():
    async def scenario():
        cart = FakeCart()
        soup, container, loader, client = await _wire(cart)
        result = await client.add_to_cart(
            44,
            artwork_url="/objects/designs/abc.png",
            design_id="design_abc",
            quantity=2,
        )
        await _settle(loader)
        client.close()
        return cart, loader, client, result

    cart, loader, client, result = asyncio.run(scenario())
    assert client.state == BridgeConnectionState.READY
    assert loader.frame_connected is True
    assert result.success is True
    [(variant_id, quantity, properties)] = cart.calls
    assert variant_id == 44
    assert quantity == 2
    assert properties["_artwork_url"] == "https://studio.example/objects/designs/abc.png"
    assert properties["_design_id"] == "design_abc"
    assert properties["Artwork"] == "Custom AI Design"
    assert result.cart["items"][0]["id"] == 44


def test_cart_failure_is_reported_on_the_same_correlation_id():
    async def scenario():
        cart = FakeCart(fail_with=CartMutationError("Variant is sold out", status_code=422))
        _, _, loader, client = await _wire(cart)
        result = await client.add_to_cart(44, artwork_url="https://cdn.example/img.png", design_id="d")
        await _settle(loader)
        client.close()
        return result

    result = asyncio.run(scenario())
    assert result.success is False
    assert result.error == "Variant is sold out"
    assert result.error_type == "cart_error"


def test_resize_and_mockups_update_the_host_page():
    async def scenario():
        soup, container, loader, client = await _wire(FakeCart())
        client.send_resize(600)
        client.send_mockups(["https://cdn.example/front.png", "/objects/mockups/left.png"])
        await _settle(loader)
        client.close()
        return soup, container, loader

    soup, container, loader = asyncio.run(scenario())
    assert "height: 640px" in container["style"]
    assert loader.last_gallery_update.strategy == "selectors"
    gallery_img = soup.select_one(".product__media-item img")
    assert gallery_img["src"] == "https://cdn.example/front.png"
    panel_images = [img["src"] for img in soup.select(".ai-art-mockup-preview img")]
    assert panel_images == [
        "https://cdn.example/front.png",
        "https://studio.example/objects/mockups/left.png",
    ]


def test_ping_pong_records_liveness():
    async def scenario():
        _, _, loader, client = await _wire(FakeCart())
        timestamp = loader.ping()
        await _settle(loader)
        client.close()
        return timestamp, loader.last_pong

    timestamp, last_pong = asyncio.run(scenario())
    assert last_pong == timestamp
