# catalog_sync/catalog/models.py
# Source catalog records, as read from the Medusa API.
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CatalogImage(BaseModel):
    id: Optional[str] = None
    url: str

    class Config:
        extra = "allow"


class CatalogCategory(BaseModel):
    id: Optional[str] = None
    name: str
    handle: Optional[str] = None
    # Ancestors first, this category last; e.g. ["Dogs", "Food"]
    path: List[str] = Field(default_factory=list)

    class Config:
        extra = "allow"


class CatalogTag(BaseModel):
    id: Optional[str] = None
    value: str

    class Config:
        extra = "allow"


class VariantOption(BaseModel):
    name: str
    value: str


class MoneyAmount(BaseModel):
    """A raw, unresolved price-set entry. Never used for synchronization."""
    currency_code: str
    amount: int  # minor units

    class Config:
        extra = "allow"


class CalculatedPrice(BaseModel):
    """A price already resolved for one region/currency by the catalog's pricing rules."""
    currency_code: str
    amount: int  # minor units
    original_amount: Optional[int] = None
    region_id: Optional[str] = None


class CatalogVariant(BaseModel):
    id: str
    product_id: Optional[str] = None
    title: Optional[str] = None
    sku: Optional[str] = None
    options: List[VariantOption] = Field(default_factory=list)
    prices: List[MoneyAmount] = Field(default_factory=list)
    calculated_prices: Dict[str, CalculatedPrice] = Field(default_factory=dict)

    class Config:
        extra = "allow"

    def option_key(self) -> frozenset:
        return frozenset((o.name.strip().lower(), o.value.strip().lower()) for o in self.options)


class CatalogProduct(BaseModel):
    id: str
    title: str
    handle: Optional[str] = None
    status: str = "draft"
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    thumbnail: Optional[str] = None
    variants: List[CatalogVariant] = Field(default_factory=list)
    categories: List[CatalogCategory] = Field(default_factory=list)
    tags: List[CatalogTag] = Field(default_factory=list)
    images: List[CatalogImage] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "allow"

    @property
    def label(self) -> str:
        return self.title or self.handle or self.id

    def skus(self) -> List[str]:
        out: List[str] = []
        for v in self.variants:
            sku = (v.sku or "").strip()
            if sku and sku not in out:
                out.append(sku)
        return out


class Region(BaseModel):
    id: str
    name: Optional[str] = None
    currency_code: str
    created_at: Optional[datetime] = None

    class Config:
        extra = "allow"
