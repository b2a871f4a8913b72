"""Product gallery replacement on an arbitrary storefront theme.

Detection is an ordered cascade of independent detectors. Each detector is a
pure function of the document that returns candidate elements; the first
one with any match wins and only its elements are rewritten. Whatever the
outcome, the dedicated preview panel is rendered so the mockups are always
visible.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

PREVIEW_PANEL_CLASS = "ai-art-mockup-preview"
PREVIEW_GRID_CLASS = "ai-art-mockup-preview__grid"
PREVIEW_ITEM_CLASS = "ai-art-mockup-preview__item"
STUDIO_BLOCK_CLASS = "ai-art-studio-block"

GALLERY_SELECTORS = (
    ".product__media-item img",
    ".product-gallery__image",
    ".product-single__photo img",
    ".product__photo img",
    "[data-product-featured-image]",
    ".product-featured-media img",
    ".product__main-photos img",
    ".product__media img",
    ".product-image img",
    ".product-single__media img",
    "[data-media-id] img",
    ".product-gallery img",
    ".product__images img",
    ".product-images img",
)

PRODUCT_SCOPE_SELECTORS = (
    "[data-product-media-container]",
    "[data-product-media]",
    ".product__media-list",
    ".product__media",
    ".product-media",
    ".product-gallery",
    ".product__images",
    '[data-section-type="product"]',
    ".product",
    "main",
)

ADD_TO_CART_SELECTORS = (
    'form[action*="/cart/add"]',
    "[data-product-form]",
    ".product-form",
)

CDN_HOST = "cdn.shopify.com"
CDN_PATH_MARKERS = ("/products/", "/files/")
LARGE_IMAGE_MIN_PX = 200
NEAR_CART_MIN_PX = 100

_BG_URL_RE = re.compile(r"background(?:-image)?\s*:[^;]*url\(\s*['\"]?(?P<url>[^'\")]+)", re.IGNORECASE)
_STYLE_WIDTH_RE = re.compile(r"(?:^|;)\s*width\s*:\s*(?P<value>\d+(?:\.\d+)?)px", re.IGNORECASE)
_BG_DECL_RE = re.compile(r"background-image\s*:[^;]*;?", re.IGNORECASE)

Detector = Callable[[BeautifulSoup], List[Tag]]


@dataclass
class GalleryUpdate:
    strategy: Optional[str]
    matched: int
    updated: int
    preview_rendered: bool
    rejected_urls: List[str] = field(default_factory=list)

    @property
    def fallback_only(self) -> bool:
        return self.strategy is None


def _is_cdn_product_url(url: str) -> bool:
    if not url or CDN_HOST not in url:
        return False
    return any(marker in url for marker in CDN_PATH_MARKERS) or "shopify.com/s/files" in url


def _image_source(img: Tag) -> str:
    return str(img.get("src") or img.get("data-src") or "")


def _pixel_attr(tag: Tag, name: str) -> float:
    value = tag.get(name) or tag.get(f"data-{name}")
    if value is None:
        return 0.0
    try:
        return float(str(value).strip().rstrip("px"))
    except ValueError:
        return 0.0


def _style_width(tag: Tag) -> float:
    match = _STYLE_WIDTH_RE.search(str(tag.get("style") or ""))
    return float(match.group("value")) if match else 0.0


def _style_background_url(tag: Tag) -> Optional[str]:
    match = _BG_URL_RE.search(str(tag.get("style") or ""))
    return match.group("url") if match else None


def find_product_scope(soup: BeautifulSoup) -> Optional[Tag]:
    for selector in PRODUCT_SCOPE_SELECTORS:
        found = soup.select_one(selector)
        if found is not None:
            return found
    return None


def _unique(tags: Sequence[Tag]) -> List[Tag]:
    seen: set[int] = set()
    result: List[Tag] = []
    for tag in tags:
        if id(tag) in seen:
            continue
        seen.add(id(tag))
        result.append(tag)
    return result


# Detectors. None of these mutate the document.

def detect_by_selectors(soup: BeautifulSoup) -> List[Tag]:
    for selector in GALLERY_SELECTORS:
        found = soup.select(selector)
        if found:
            logger.debug("Gallery matched selector %s", selector)
            return _unique(found)
    return []


def detect_by_cdn_pattern(soup: BeautifulSoup) -> List[Tag]:
    scope = find_product_scope(soup)
    if scope is None:
        return []
    return [img for img in scope.find_all("img") if _is_cdn_product_url(_image_source(img))]


def detect_large_images(soup: BeautifulSoup) -> List[Tag]:
    scope = find_product_scope(soup)
    if scope is None:
        return []
    return [
        img
        for img in scope.find_all("img")
        if _pixel_attr(img, "width") > LARGE_IMAGE_MIN_PX or _style_width(img) > LARGE_IMAGE_MIN_PX
    ]


def detect_media_wrappers(soup: BeautifulSoup) -> List[Tag]:
    scope = find_product_scope(soup)
    if scope is None:
        return []
    return scope.select("[data-media-id]")


def detect_background_images(soup: BeautifulSoup) -> List[Tag]:
    scope = find_product_scope(soup)
    if scope is None:
        return []
    matches: List[Tag] = []
    for element in scope.find_all(True):
        url = _style_background_url(element)
        if url and _is_cdn_product_url(url):
            matches.append(element)
    return matches


def detect_near_add_to_cart(soup: BeautifulSoup) -> List[Tag]:
    form = None
    for selector in ADD_TO_CART_SELECTORS:
        form = soup.select_one(selector)
        if form is not None:
            break
    if form is None:
        return []
    section = form.find_parent("section") or form.find_parent(class_="product")
    if section is None:
        return []
    return [
        img
        for img in section.find_all("img")
        if _pixel_attr(img, "width") > NEAR_CART_MIN_PX and _pixel_attr(img, "height") > NEAR_CART_MIN_PX
    ]


DETECTORS: tuple[tuple[str, Detector], ...] = (
    ("selectors", detect_by_selectors),
    ("cdn_pattern", detect_by_cdn_pattern),
    ("large_images", detect_large_images),
    ("media_wrappers", detect_media_wrappers),
    ("background_images", detect_background_images),
    ("near_add_to_cart", detect_near_add_to_cart),
)


def run_detectors(
    soup: BeautifulSoup,
    detectors: Sequence[tuple[str, Detector]] = DETECTORS,
) -> tuple[Optional[str], List[Tag]]:
    for name, detector in detectors:
        matches = detector(soup)
        if matches:
            logger.info("Gallery detector %s matched %s element(s)", name, len(matches))
            return name, matches
    return None, []


# Mutation helpers

def _classes(tag: Tag) -> List[str]:
    value = tag.get("class") or []
    if isinstance(value, str):
        return value.split()
    return list(value)


def _add_class(tag: Tag, name: str) -> None:
    classes = _classes(tag)
    if name not in classes:
        classes.append(name)
    tag["class"] = classes


def _remove_classes(tag: Tag, names: Sequence[str]) -> None:
    classes = [item for item in _classes(tag) if item not in names]
    if classes:
        tag["class"] = classes
    elif tag.has_attr("class"):
        del tag["class"]


def _set_background(tag: Tag, url: str) -> None:
    style = str(tag.get("style") or "")
    if not tag.has_attr("data-original-bg"):
        previous = _style_background_url(tag)
        if previous:
            tag["data-original-bg"] = previous
    style = _BG_DECL_RE.sub("", style).strip()
    if style and not style.endswith(";"):
        style += ";"
    tag["style"] = f"{style} background-image: url('{url}');".strip()


def update_image_element(soup: BeautifulSoup, img: Tag, url: str) -> None:
    if not img.has_attr("data-original-src"):
        img["data-original-src"] = str(img.get("src") or "")
        for attr in ("data-src", "data-srcset", "data-master"):
            if img.has_attr(attr):
                img[f"data-original-{attr}"] = img[attr]

    img["src"] = url
    img["srcset"] = ""
    for attr in ("data-src", "data-srcset", "data-master"):
        if img.has_attr(attr):
            img[attr] = url

    # Lazy-loading themes
    if img.has_attr("loading"):
        del img["loading"]
    _remove_classes(img, ("lazyload", "lazyloading"))
    _add_class(img, "lazyloaded")

    picture = img.find_parent("picture")
    if picture is not None:
        for source in picture.find_all("source"):
            source["srcset"] = url
            if source.has_attr("data-srcset"):
                source["data-srcset"] = url

    parent = img.parent
    if isinstance(parent, Tag) and _style_background_url(parent):
        _set_background(parent, url)


def update_media_wrapper(soup: BeautifulSoup, wrapper: Tag, url: str) -> None:
    img = wrapper.find("img")
    if img is not None:
        update_image_element(soup, img, url)
    if _style_background_url(wrapper):
        _set_background(wrapper, url)
    for name in ("model-viewer", "video"):
        media = wrapper.find(name)
        if media is not None:
            media["data-original-poster"] = str(media.get("poster") or "")
            media["poster"] = url


def _apply(soup: BeautifulSoup, strategy: str, matches: List[Tag], urls: List[str]) -> int:
    updated = 0
    for index, url in enumerate(urls):
        if index >= len(matches):
            break
        element = matches[index]
        if strategy == "media_wrappers":
            update_media_wrapper(soup, element, url)
        elif strategy == "background_images":
            _set_background(element, url)
        elif element.name == "img":
            update_image_element(soup, element, url)
        else:
            inner = element.find("img")
            if inner is not None:
                update_image_element(soup, inner, url)
            else:
                _set_background(element, url)
        updated += 1
    return updated


def render_preview_panel(soup: BeautifulSoup, container: Optional[Tag], urls: List[str]) -> Tag:
    """Create (if needed) and fill the always-visible mockup preview panel."""
    panel = soup.select_one(f".{PREVIEW_PANEL_CLASS}")
    if panel is None:
        panel = soup.new_tag("div", attrs={"class": PREVIEW_PANEL_CLASS})
        title = soup.new_tag("h4", attrs={"class": f"{PREVIEW_PANEL_CLASS}__title"})
        title.string = "Your Custom Design Preview"
        panel.append(title)
        panel.append(soup.new_tag("div", attrs={"class": PREVIEW_GRID_CLASS}))

        block = container.find_parent(class_=STUDIO_BLOCK_CLASS) if container is not None else None
        if block is not None:
            block.insert_before(panel)
        elif container is not None:
            container.insert_after(panel)
        elif soup.body is not None:
            soup.body.append(panel)
        else:
            soup.append(panel)

    panel["style"] = "display: block;"
    grid = panel.select_one(f".{PREVIEW_GRID_CLASS}")
    if grid is None:
        grid = soup.new_tag("div", attrs={"class": PREVIEW_GRID_CLASS})
        panel.append(grid)
    grid.clear()
    for url in urls:
        item = soup.new_tag("div", attrs={"class": PREVIEW_ITEM_CLASS})
        item.append(soup.new_tag("img", attrs={"src": url, "alt": "Product mockup with custom design"}))
        grid.append(item)
    return panel


def replace_gallery_images(
    soup: BeautifulSoup,
    mockup_urls: List[str],
    *,
    container: Optional[Tag] = None,
    detectors: Sequence[tuple[str, Detector]] = DETECTORS,
) -> GalleryUpdate:
    strategy, matches = run_detectors(soup, detectors)
    updated = _apply(soup, strategy, matches, mockup_urls) if strategy else 0
    render_preview_panel(soup, container, mockup_urls)
    return GalleryUpdate(
        strategy=strategy,
        matched=len(matches),
        updated=updated,
        preview_rendered=True,
    )


__all__ = [
    "PREVIEW_PANEL_CLASS",
    "GALLERY_SELECTORS",
    "DETECTORS",
    "GalleryUpdate",
    "find_product_scope",
    "detect_by_selectors",
    "detect_by_cdn_pattern",
    "detect_large_images",
    "detect_media_wrappers",
    "detect_background_images",
    "detect_near_add_to_cart",
    "run_detectors",
    "update_image_element",
    "render_preview_panel",
    "replace_gallery_images",
]
