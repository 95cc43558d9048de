from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Literal, Optional

SaleKind = Literal["sale", "return_adjustment"]
Currency = Literal["USD", "IQD"]
HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]
Trend = Literal["up", "down", "stable"]

SALE_KINDS = ("sale", "return_adjustment")
HTTP_METHODS = ("GET", "POST", "PUT", "DELETE")


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    category: str
    price: float = 0.0
    stock: int = 0


@dataclass(frozen=True)
class Sale:
    id: str
    product_id: str
    date: datetime
    quantity: int
    total: float
    profit: float
    customer_id: Optional[str] = None
    kind: SaleKind = "sale"


@dataclass(frozen=True)
class Return:
    id: str
    product_id: str
    date: datetime
    refund_amount: float


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    email: str = ""
    last_purchase: Optional[datetime] = None


@dataclass(frozen=True)
class Settings:
    currency: Currency = "USD"
    usd_to_iqd_rate: float = 1310.0


@dataclass(frozen=True)
class KPI:
    id: str
    name: str
    value: float
    target: float
    unit: str
    trend: Trend
    period: str
    growth: float = 0.0

    @property
    def progress(self) -> float:
        return (self.value / self.target) * 100 if self.target else 0.0


@dataclass(frozen=True)
class Forecast:
    product_id: str
    product_name: str
    current_stock: int
    predicted_demand: int
    recommended_order: int
    confidence: float
    period: str = "30 days"


@dataclass
class APIEndpoint:
    id: str
    name: str
    url: str
    method: HttpMethod = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    last_sync: Optional[datetime] = None


@dataclass(frozen=True)
class EndpointDraft:
    """An endpoint configuration before the collaborator has assigned an id."""

    name: str
    url: str
    method: HttpMethod = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    enabled: bool = True
