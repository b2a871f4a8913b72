from __future__ import annotations

from typing import Iterable, List, Optional
from urllib.parse import urlsplit

from ..exceptions import InvalidReferenceError

HOSTED_URL_REQUIRED = (
    "Hosted URL required: pass an absolute https:// URL or a root-relative path "
    "(for example /objects/designs/abc.png) returned by the generate endpoint"
)

_REJECTED_SCHEMES = {
    "data": "data: URLs are not accepted",
    "blob": "blob: URLs are not accepted",
}


def is_inline_reference(value: Optional[str]) -> bool:
    if not value:
        return False
    lowered = value.strip().lower()
    return lowered.startswith("data:") or lowered.startswith("blob:")


def is_hosted_url(value: Optional[str]) -> bool:
    if not value or not isinstance(value, str):
        return False
    candidate = value.strip()
    if candidate != value or not candidate:
        return False
    if candidate.startswith("/"):
        # "//host/path" is protocol-relative, not a durable path on our origin
        return not candidate.startswith("//")
    parts = urlsplit(candidate)
    return parts.scheme.lower() == "https" and bool(parts.netloc)


def require_hosted_url(value: Optional[str], *, field: str = "imageUrl") -> str:
    """Return ``value`` unchanged if it is a durable reference, else raise."""
    if is_hosted_url(value):
        return value  # type: ignore[return-value]
    reason = "missing value"
    if isinstance(value, str) and value.strip():
        scheme = urlsplit(value.strip()).scheme.lower()
        reason = _REJECTED_SCHEMES.get(scheme, f"unsupported reference form for {field}")
    raise InvalidReferenceError(f"{HOSTED_URL_REQUIRED} ({reason})", reference=_preview(value))


def filter_hosted_urls(values: Iterable[str]) -> tuple[List[str], List[str]]:
    """Split ``values`` into (accepted, rejected) preserving order."""
    accepted: List[str] = []
    rejected: List[str] = []
    for value in values:
        if is_hosted_url(value):
            accepted.append(value)
        else:
            rejected.append(value)
    return accepted, rejected


def _preview(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if len(text) <= 80 else f"{text[:77]}..."


__all__ = [
    "HOSTED_URL_REQUIRED",
    "is_inline_reference",
    "is_hosted_url",
    "require_hosted_url",
    "filter_hosted_urls",
]
