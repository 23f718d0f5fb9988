"""
Subscription and usage schemas.
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common import Money


class SubscriptionCreate(BaseModel):
    tenant_id: int
    plan_id: int
    start_date: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("start_date")
    @classmethod
    def validate_start_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            raise ValueError("start_date must include a timezone offset")
        return v


class SubscriptionUpdate(BaseModel):
    """Administrative update."""

    status: Optional[str] = None
    cancel_at_period_end: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class SubscriptionCancel(BaseModel):
    cancel_at_period_end: bool = True


class SubscriptionFeatureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    plan_feature_id: Optional[int] = None
    feature_key: str
    feature_value: Optional[str] = None
    is_enabled: bool


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    plan_id: int
    status: str
    billing_anchor: datetime
    period_index: int
    current_period_start: datetime
    current_period_end: datetime
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_at_period_end: bool
    price: Money
    currency: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra")
    created_at: datetime
    updated_at: datetime


class SubscriptionDetailResponse(SubscriptionResponse):
    features: List[SubscriptionFeatureResponse] = Field(default_factory=list)


# ==================== USAGE ====================

class UsageTrack(BaseModel):
    tenant_id: int
    feature_key: str
    increment_by: int = Field(1, ge=1)
    metadata: Optional[Dict[str, Any]] = None


class UsageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    feature_key: str
    usage_count: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    period_start: datetime
    period_end: datetime


class UsageCheckResponse(BaseModel):
    allowed: bool
    current: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
