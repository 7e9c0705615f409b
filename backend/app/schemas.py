from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

HoldingKind = Literal["investment", "commodity"]
AlertStatus = Literal["active", "triggered"]


def normalize_symbol(raw: object) -> str:
    return str(raw or "").strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PricePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float = Field(..., gt=0)
    change: float = 0.0
    change_percent: float = 0.0


class PriceSnapshot(BaseModel):
    """Prices for every symbol as of one completed tick.

    Instances are frozen and replaced wholesale by the engine; readers never
    see a partially built snapshot.
    """

    model_config = ConfigDict(frozen=True)

    prices: Dict[str, PricePoint] = Field(default_factory=dict)
    is_live: bool = False
    live_symbols: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)

    def price_map(self) -> Dict[str, float]:
        return {symbol: point.price for symbol, point in self.prices.items()}


class Holding(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    symbol: str
    quantity: float
    kind: HoldingKind = "investment"
    name: Optional[str] = None
    current_value: Optional[float] = Field(default=None, alias="currentValue")

    @field_validator("symbol", mode="before")
    @classmethod
    def _symbol(cls, value: object) -> str:
        return normalize_symbol(value)


class PriceAlert(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    symbol: str
    target_price: float = Field(..., alias="targetPrice")
    status: AlertStatus = "active"
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @field_validator("symbol", mode="before")
    @classmethod
    def _symbol(cls, value: object) -> str:
        return normalize_symbol(value)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: object) -> str:
        return str(value or "active").strip().lower()


class ValuationUpdate(BaseModel):
    id: str
    current_value: float


class WatchlistItem(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=16)
    name: str = ""

    @field_validator("symbol", mode="before")
    @classmethod
    def _symbol(cls, value: object) -> str:
        return normalize_symbol(value)


class AlertNotification(BaseModel):
    id: str
    alert_id: str
    symbol: str
    message: str
    read: bool = False
    created_at: str


class EngineStatus(BaseModel):
    state: Literal["running", "stopped"]
    visible: bool
    tick_count: int
    skipped_ticks: int
    tick_in_flight: bool
    last_tick_at: Optional[datetime] = None
    last_live_fetch_at: Optional[datetime] = None
    last_error: Optional[str] = None
    generated_at: Optional[datetime] = None
    snapshot_version: int = 0
    is_live: bool = False
    symbols: int = 0


class VisibilityRequest(BaseModel):
    visible: bool


class RefreshRequest(BaseModel):
    force_live: bool = False


class HoldingCreateRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=16)
    quantity: float = Field(..., ge=0)
    kind: HoldingKind = "investment"
    name: Optional[str] = Field(default=None, max_length=120)


class AlertCreateRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=16)
    target_price: float = Field(..., gt=0)
