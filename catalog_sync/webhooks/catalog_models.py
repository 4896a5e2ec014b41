from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class CatalogEventData(BaseModel):
    id: str = Field(..., description="Catalog product id")

    class Config:
        extra = "allow"


class CatalogWebhookPayload(BaseModel):
    event: Optional[str] = Field(None, description="e.g. product.created; the X-Catalog-Event header wins when present")
    data: CatalogEventData
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        extra = "allow"
