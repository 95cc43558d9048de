from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class GoalTargetsModel(BaseModel):
    customer_acquisition: float = 50.0
    profit_margin: float = 30.0
    inventory_turnover: float = 4.0


class DashboardFiltersModel(BaseModel):
    date_range: Literal["7d", "30d", "90d", "month", "year"] = "30d"
    top_n: int = 10
    goals: GoalTargetsModel = Field(default_factory=GoalTargetsModel)


class ProductModel(BaseModel):
    id: str
    name: str
    category: str
    price: float = 0.0
    stock: int = 0


class SaleModel(BaseModel):
    id: str
    product_id: str
    customer_id: Optional[str] = None
    date: datetime
    quantity: int = 0
    total: float = 0.0
    profit: float = 0.0
    kind: Literal["sale", "return_adjustment"] = "sale"


class ReturnModel(BaseModel):
    id: str
    product_id: str
    date: datetime
    refund_amount: float = 0.0


class CustomerModel(BaseModel):
    id: str
    name: str
    email: str = ""
    last_purchase: Optional[datetime] = None


class SettingsModel(BaseModel):
    currency: Literal["USD", "IQD"] = "USD"
    usd_to_iqd_rate: float = 1310.0


class DatasetModel(BaseModel):
    products: List[ProductModel] = Field(default_factory=list)
    sales: List[SaleModel] = Field(default_factory=list)
    returns: List[ReturnModel] = Field(default_factory=list)
    customers: List[CustomerModel] = Field(default_factory=list)
    settings: SettingsModel = Field(default_factory=SettingsModel)


class PanelRequest(BaseModel):
    filters: DashboardFiltersModel = Field(default_factory=DashboardFiltersModel)
    dataset: Optional[DatasetModel] = None


class EndpointDraftModel(BaseModel):
    name: str
    url: str
    method: Literal["GET", "POST", "PUT", "DELETE"] = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    enabled: bool = True


class EndpointUpdateModel(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    method: Optional[Literal["GET", "POST", "PUT", "DELETE"]] = None
    headers: Optional[Dict[str, str]] = None
    enabled: Optional[bool] = None

