from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship, validates

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Merchant(Base):
    __tablename__ = "merchants"

    id = Column(String, primary_key=True)
    shop_domain = Column(String, nullable=False, unique=True)
    store_name = Column(String, nullable=True)
    fulfillment_token = Column(Text, nullable=True)
    fulfillment_shop_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    configurations = relationship(
        "Configuration",
        back_populates="merchant",
        cascade="all, delete-orphan",
    )

    @validates("shop_domain")
    def _normalize_shop_domain(self, _key: str, value: str) -> str:
        return normalize_shop_domain(value)


class Configuration(Base):
    """A merchant's product type: sizes, variants and fulfillment ids."""

    __tablename__ = "configurations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(String, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    linked_handle = Column(String, nullable=True)
    sizes = Column(JSON, nullable=False, default=list)
    frame_colors = Column(JSON, nullable=False, default=list)
    variants = Column(JSON, nullable=False, default=dict)
    aspect_ratio = Column(String, nullable=False, default="3:4")
    blueprint_id = Column(Integer, nullable=True)
    provider_id = Column(Integer, nullable=True)
    double_sided = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    merchant = relationship("Merchant", back_populates="configurations")

    __table_args__ = (
        Index("idx_configurations_merchant", "merchant_id"),
        Index("idx_configurations_handle", "merchant_id", "linked_handle"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "merchantId": self.merchant_id,
            "name": self.name,
            "description": self.description,
            "linkedHandle": self.linked_handle,
            "sizes": list(self.sizes or []),
            "frameColors": list(self.frame_colors or []),
            "variants": dict(self.variants or {}),
            "aspectRatio": self.aspect_ratio,
            "blueprintId": self.blueprint_id,
            "providerId": self.provider_id,
            "doubleSided": bool(self.double_sided),
            "isActive": bool(self.is_active),
            "sortOrder": self.sort_order,
        }


def normalize_shop_domain(value: str) -> str:
    domain = (value or "").strip().lower()
    for prefix in ("https://", "http://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    return domain.rstrip("/")


__all__ = ["Merchant", "Configuration", "normalize_shop_domain"]
