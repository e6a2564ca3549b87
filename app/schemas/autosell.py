from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DeliveryType = Literal["fixed", "stock", "api"]
TriggerOn = Literal["paid", "confirmed"]


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    ALREADY_DELIVERED = "already_delivered"
    NO_RULE = "no_rule"
    CONFIG_ERROR = "config_error"
    OUT_OF_STOCK = "out_of_stock"
    API_ERROR = "api_error"
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_FAILED = "workflow_failed"
    SCHEDULED = "scheduled"
    INTERNAL_ERROR = "internal_error"


class ApiConfig(BaseModel):
    url: str = Field(min_length=1)
    method: str = "GET"
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None

    # 단일 필드 추출 (예: "data.key")
    response_field: Optional[str] = None
    # 다중 필드 템플릿 (예: "账号:{{data.login_id}} 密码:{{data.key}}")
    response_template: Optional[str] = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        method = v.strip().upper()
        if method not in ("GET", "POST", "PUT", "PATCH", "DELETE"):
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method


class DeliveryResult(BaseModel):
    success: bool
    outcome: DeliveryOutcome
    content: Optional[str] = None
    error: Optional[str] = None
    rule_name: Optional[str] = None


class StockStats(BaseModel):
    total: int = 0
    used: int = 0
    available: int = 0


class AutoSellContext(BaseModel):
    """Extra order data passed into delivery (template variables)."""

    order_id: Optional[str] = None
    account_id: Optional[str] = None
    item_id: Optional[str] = None
    buyer_user_id: Optional[str] = None
    chat_id: Optional[str] = None
    # 규격 정보, 예: "100次"
    sku_text: Optional[str] = None


# ---------------------------------------------------------
# Rule CRUD
# ---------------------------------------------------------
class AutoSellRuleBase(BaseModel):
    name: str = Field(max_length=255)
    enabled: bool = True
    account_id: Optional[str] = None
    item_id: Optional[str] = None
    sku_text: Optional[str] = None
    delivery_type: DeliveryType
    delivery_content: Optional[str] = None
    api_config: Optional[ApiConfig] = None
    trigger_on: TriggerOn = "paid"
    workflow_id: Optional[int] = None
    delay_seconds: int = Field(default=0, ge=0)


class AutoSellRuleCreate(AutoSellRuleBase):
    @model_validator(mode="after")
    def _check_backend_config(self):
        if self.delivery_type == "api" and self.api_config is None:
            raise ValueError("api_config is required for delivery_type=api")
        return self


class AutoSellRuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    enabled: Optional[bool] = None
    account_id: Optional[str] = None
    item_id: Optional[str] = None
    sku_text: Optional[str] = None
    delivery_type: Optional[DeliveryType] = None
    delivery_content: Optional[str] = None
    api_config: Optional[ApiConfig] = None
    trigger_on: Optional[TriggerOn] = None
    workflow_id: Optional[int] = None
    delay_seconds: Optional[int] = Field(default=None, ge=0)


class AutoSellRuleRead(AutoSellRuleBase):
    id: int
    created_at: datetime
    updated_at: datetime
    stock: Optional[StockStats] = None

    model_config = ConfigDict(from_attributes=True)


class StockImport(BaseModel):
    # 한 줄 = 재고 1개
    items: List[str]


class StockImportResult(BaseModel):
    added: int
    stock: StockStats


class ManualDeliveryRequest(BaseModel):
    account_id: str
    order_id: str
    item_id: Optional[str] = None
    trigger_on: TriggerOn = "paid"
    buyer_user_id: Optional[str] = None
    chat_id: Optional[str] = None
    sku_text: Optional[str] = None


class DeliveryLogRead(BaseModel):
    id: int
    rule_id: Optional[int] = None
    order_id: str
    account_id: str
    delivery_type: str
    content: str
    status: str
    error_message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
