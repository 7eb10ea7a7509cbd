from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .common import RecordRead

Currency = Literal["BRL", "USD", "EUR"]
EstimateStatus = Literal["draft", "sent", "viewed", "approved", "rejected", "pending", "cancelled"]


class EstimateItem(BaseModel):
    """One line of an estimate; stored inside the JSONB ``items`` column."""
    id: str
    description: str
    quantity: float
    rate: float
    amount: float
    tax: Optional[float] = None


# PUBLIC_INTERFACE
class EstimateCreate(BaseModel):
    """Payload to create an estimate."""
    number: str = Field(..., min_length=1, description="Human-facing estimate number")
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    client_id: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    amount: Decimal = Field(..., description="Total amount")
    currency: Currency = "BRL"
    status: EstimateStatus = "draft"
    date: dt.date
    valid_until: Optional[dt.date] = None
    items: List[EstimateItem] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


# PUBLIC_INTERFACE
class EstimateUpdate(BaseModel):
    """Partial update; omitted fields keep their stored values."""
    number: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    client_id: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[Currency] = None
    status: Optional[EstimateStatus] = None
    date: Optional[dt.date] = None
    valid_until: Optional[dt.date] = None
    items: Optional[List[EstimateItem]] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    converted_to_invoice: Optional[bool] = None
    invoice_id: Optional[str] = None


class Estimate(RecordRead):
    """Stored estimate as returned by the repository."""
    number: str
    title: str
    description: Optional[str] = None
    client_id: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    date: dt.date
    valid_until: Optional[dt.date] = None
    items: List[EstimateItem] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    created_by: Optional[str] = None
    converted_to_invoice: bool = False
    invoice_id: Optional[str] = None

    class Config:
        from_attributes = True


class EstimateFilters(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=1000)
    status: Optional[EstimateStatus] = None
    search: Optional[str] = None
    tags: Optional[List[str]] = Field(default=None, description="Match estimates carrying any of these tags")
    client_id: Optional[str] = None
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None


class EstimateStats(BaseModel):
    total: int = 0
    total_amount: Decimal = Decimal("0")
    this_month_amount: Decimal = Decimal("0")
    draft: int = 0
    pending: int = 0
    sent: int = 0
    approved: int = 0
    rejected: int = 0
