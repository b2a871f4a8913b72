"""Maps a possibly stale configuration id to one the merchant actually owns.

Storefront blocks keep whatever configuration id they were published with,
so an id can go stale when configurations are recreated. Resolution walks a
fixed list of tiers and never returns a configuration owned by another
merchant.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session as DbSession

from ..db.models import Configuration, Merchant, normalize_shop_domain
from ..exceptions import ResolutionExhaustedError
from ..log import log_resolution


class ResolutionTier(str, Enum):
    DIRECT = "direct"
    HANDLE_MATCH = "handle_match"
    NAME_MATCH = "name_match"
    ONLY_AVAILABLE = "only_available"
    SMALLEST_ID_FALLBACK = "smallest_id_fallback"


@dataclass(frozen=True)
class ResolutionHints:
    handle: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class ResolutionResult:
    configuration: Configuration
    resolved_via: ResolutionTier

    def to_dict(self) -> dict:
        data = self.configuration.to_dict()
        data["resolvedVia"] = self.resolved_via.value
        return data


def _normalize_name(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _smallest(candidates: Sequence[Configuration]) -> Configuration:
    return min(candidates, key=lambda item: item.id)


def resolve_configuration(
    requested_id: Optional[int],
    merchant_id: str,
    configurations: Iterable[Configuration],
    hints: Optional[ResolutionHints] = None,
) -> ResolutionResult:
    """Pick the configuration to show for ``merchant_id``.

    Only configurations owned by the merchant are considered, whatever the
    caller passes in. Raises ResolutionExhaustedError when the merchant owns
    none.
    """
    hints = hints or ResolutionHints()
    owned: List[Configuration] = [item for item in configurations if item.merchant_id == merchant_id]

    if requested_id is not None:
        for item in owned:
            if item.id == requested_id:
                return ResolutionResult(item, ResolutionTier.DIRECT)

    if not owned:
        raise ResolutionExhaustedError(
            f"Merchant {merchant_id} has no product configurations",
            merchant_id=merchant_id,
        )

    handle = (hints.handle or "").strip()
    if handle:
        matches = [item for item in owned if item.linked_handle and item.linked_handle == handle]
        if matches:
            return ResolutionResult(_smallest(matches), ResolutionTier.HANDLE_MATCH)

    name = _normalize_name(hints.display_name)
    if name:
        matches = [item for item in owned if _normalize_name(item.name) == name]
        if matches:
            return ResolutionResult(_smallest(matches), ResolutionTier.NAME_MATCH)

    if len(owned) == 1:
        return ResolutionResult(owned[0], ResolutionTier.ONLY_AVAILABLE)

    return ResolutionResult(_smallest(owned), ResolutionTier.SMALLEST_ID_FALLBACK)


class ConfigurationResolver:
    def __init__(self, db: DbSession) -> None:
        self.db = db

    def get_merchant_by_shop(self, shop_domain: str) -> Optional[Merchant]:
        domain = normalize_shop_domain(shop_domain)
        if not domain:
            return None
        return self.db.query(Merchant).filter(Merchant.shop_domain == domain).first()

    def list_for_merchant(self, merchant_id: str) -> List[Configuration]:
        return (
            self.db.query(Configuration)
            .filter(Configuration.merchant_id == merchant_id)
            .order_by(Configuration.id.asc())
            .all()
        )

    def get_by_id(self, configuration_id: int) -> Optional[Configuration]:
        return self.db.get(Configuration, configuration_id)

    def resolve(
        self,
        merchant_id: str,
        requested_id: Optional[int] = None,
        *,
        handle: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> ResolutionResult:
        try:
            result = resolve_configuration(
                requested_id,
                merchant_id,
                self.list_for_merchant(merchant_id),
                ResolutionHints(handle=handle, display_name=display_name),
            )
        except ResolutionExhaustedError:
            log_resolution(merchant_id, requested_id, None, None)
            raise
        log_resolution(merchant_id, requested_id, result.configuration.id, result.resolved_via.value)
        return result


__all__ = [
    "ResolutionTier",
    "ResolutionHints",
    "ResolutionResult",
    "resolve_configuration",
    "ConfigurationResolver",
]
