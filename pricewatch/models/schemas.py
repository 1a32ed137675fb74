from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional


class ExtractionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = Field(..., description="False only when the markup could not be processed at all")
    title: str = Field("Unknown Product", description="Product title")
    price: Decimal = Field(Decimal("0"), ge=0, description="Extracted price, 0 when not found")
    currency: str = Field("₺", description="Currency symbol or ISO code")
    raw_price_text: str = Field("", description="Text the price was parsed from")
    error: Optional[str] = Field(None, description="Failure reason when success is False")

    @property
    def found_price(self) -> bool:
        return self.success and self.price > 0


class PriceSample(BaseModel):
    price: Decimal
    observed_at: datetime


class TrackedProduct(BaseModel):
    id: int
    url: str
    title: str
    current_price: Decimal = Decimal("0")
    currency: str = "₺"
    history: List[PriceSample] = Field(default_factory=list, description="Most recent first")
    owner_id: Optional[int] = None
    notification_email: Optional[str] = None


class PriceCheckOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: int
    updated: bool
    title: str
    new_price: Decimal
    new_currency: str
    previous_price: Decimal
    dropped_from: Optional[Decimal] = None
    superseded: bool = Field(False, description="Another check stored a new price first; nothing was written")

    @property
    def is_drop(self) -> bool:
        return self.dropped_from is not None


class SweepSummary(BaseModel):
    total: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    notified: int = 0
    duration_seconds: float = 0.0


class PriceChange(BaseModel):
    diff: Decimal
    percent: float
