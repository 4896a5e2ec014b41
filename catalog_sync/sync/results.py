# catalog_sync/sync/results.py
# Per-run result objects. Built fresh for each run, serialised with camelCase keys.
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field
from pydantic.alias_generators import to_camel


class _Result(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ItemError(_Result):
    item_label: str
    item_id: Optional[str] = None
    error_message: str


class SkippedItem(_Result):
    item_id: str
    reason: str


class SyncResult(_Result):
    synced_products: int = 0
    created_products: int = 0
    updated_products: int = 0
    unchanged_products: int = 0
    skipped_products: int = 0
    created_attribute_lines: int = 0
    errors: List[ItemError] = Field(default_factory=list)
    skipped: List[SkippedItem] = Field(default_factory=list)

    @computed_field(alias="errorCount")
    @property
    def error_count(self) -> int:
        return len(self.errors)

    def add_error(self, label: str, item_id: Optional[str], exc: BaseException | str) -> None:
        self.errors.append(ItemError(item_label=label, item_id=item_id, error_message=str(exc)))

    def add_skip(self, item_id: str, reason: str) -> None:
        self.skipped_products += 1
        self.skipped.append(SkippedItem(item_id=item_id, reason=reason))


class PriceSyncResult(_Result):
    region_id: Optional[str] = None
    currency_code: Optional[str] = None
    synced_products: int = 0
    synced_variants: int = 0
    synced_prices: int = 0
    created_prices: int = 0
    updated_prices: int = 0
    unchanged_prices: int = 0
    skipped_products: int = 0
    skipped_variants: int = 0
    skipped_prices: int = 0
    errors: List[ItemError] = Field(default_factory=list)

    @computed_field(alias="errorCount")
    @property
    def error_count(self) -> int:
        return len(self.errors)

    def add_error(self, label: str, item_id: Optional[str], exc: BaseException | str) -> None:
        self.errors.append(ItemError(item_label=label, item_id=item_id, error_message=str(exc)))


class DuplicateGroup(_Result):
    handle: str
    survivor_id: str
    member_ids: List[str]

    @property
    def losers(self) -> List[str]:
        return [m for m in self.member_ids if m != self.survivor_id]


class FailedDeletion(_Result):
    product_id: str
    handle: str
    error_message: str


class ReconcileResult(_Result):
    deleted_count: int = 0
    remaining_duplicate_groups: int = 0
    processed_groups: int = 0
    failed_deletions: List[FailedDeletion] = Field(default_factory=list)
    kept: List[str] = Field(default_factory=list)
