"""
Shopify Data Models

Catalog synced from the connected store. Only what revenue attribution
needs is modelled here: product identity (id, handle, title) and variant
prices.
"""
import uuid
from sqlalchemy import Column, String, DateTime, BigInteger, ForeignKey, Numeric, Integer
from sqlalchemy.orm import relationship
from datetime import datetime

from app.models.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class ShopifyProduct(Base):
    """
    Shopify products catalog

    Synced from Shopify Admin API: GET /admin/api/2024-01/products.json
    """
    __tablename__ = "shopify_products"

    id = Column(String, primary_key=True, default=_uuid)
    website_id = Column(String, ForeignKey("websites.id"), index=True, nullable=False)

    # Shopify IDs
    shopify_id = Column(BigInteger, index=True, nullable=True)
    handle = Column(String, index=True)  # URL-friendly identifier

    # Product info
    title = Column(String, nullable=True)
    vendor = Column(String, nullable=True)
    product_type = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, index=True)

    variants = relationship("ShopifyProductVariant", back_populates="product")


class ShopifyProductVariant(Base):
    """Product variants; the first non-zero price in store order prices the product"""
    __tablename__ = "shopify_product_variants"

    id = Column(String, primary_key=True, default=_uuid)
    product_id = Column(String, ForeignKey("shopify_products.id"), index=True, nullable=False)
    shopify_id = Column(BigInteger, nullable=True)
    position = Column(Integer, nullable=True)  # Shopify variant order, 1-based
    title = Column(String, nullable=True)
    sku = Column(String, nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    inventory = Column(Integer, nullable=True)

    product = relationship("ShopifyProduct", back_populates="variants")
