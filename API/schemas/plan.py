"""
Plan catalog schemas.
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.billing_period import BillingCycle
from core.exceptions import BadRequestError
from .common import Money, CURRENCY_PATTERN


def _canonical_cycle(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        return BillingCycle.parse(v).value
    except BadRequestError as e:
        raise ValueError(e.message)


class PlanFeatureCreate(BaseModel):
    feature_key: str = Field(..., min_length=1, max_length=100)
    name: Optional[str] = None
    description: Optional[str] = None
    feature_value: Optional[str] = None
    is_enabled: bool = True
    display_order: Optional[int] = None


class PlanFeatureUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    feature_value: Optional[str] = None
    is_enabled: Optional[bool] = None
    display_order: Optional[int] = None


class PlanCreate(BaseModel):
    """Create a plan (platform admin)."""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Money = Field(..., ge=0)
    currency: str = Field("USD", pattern=CURRENCY_PATTERN)
    billing_cycle: str = "monthly"
    trial_days: int = Field(0, ge=0)
    max_users: Optional[int] = Field(None, ge=0)
    max_whatsapp_instances: Optional[int] = Field(None, ge=0)
    max_messages_per_month: Optional[int] = Field(None, ge=0)
    is_active: bool = True
    is_public: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)
    features: List[PlanFeatureCreate] = Field(default_factory=list)

    @field_validator("billing_cycle")
    @classmethod
    def validate_billing_cycle(cls, v: str) -> str:
        return _canonical_cycle(v)


class PlanUpdate(BaseModel):
    """Partial update; only fields sent are changed."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Money] = Field(None, ge=0)
    currency: Optional[str] = Field(None, pattern=CURRENCY_PATTERN)
    billing_cycle: Optional[str] = None
    trial_days: Optional[int] = Field(None, ge=0)
    max_users: Optional[int] = Field(None, ge=0)
    max_whatsapp_instances: Optional[int] = Field(None, ge=0)
    max_messages_per_month: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("billing_cycle")
    @classmethod
    def validate_billing_cycle(cls, v: Optional[str]) -> Optional[str]:
        return _canonical_cycle(v)


class PlanFeatureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    plan_id: int
    feature_key: str
    name: str
    description: Optional[str] = None
    feature_value: Optional[str] = None
    is_enabled: bool
    display_order: int


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    price: Money
    currency: str
    billing_cycle: str
    trial_days: int
    max_users: Optional[int] = None
    max_whatsapp_instances: Optional[int] = None
    max_messages_per_month: Optional[int] = None
    is_active: bool
    is_public: bool
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra")
    features: List[PlanFeatureResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
