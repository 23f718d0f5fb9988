"""
FastAPI dependencies for authentication, authorization and services.
"""

from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from services.billing import BillingService
from services.notifier import Notifier, build_notifier
from services.plan_catalog import PlanCatalogService
from services.subscription import SubscriptionService
from services.usage import UsageService
from .access import TenantAccessGuard
from .security import verify_access_token, is_super_admin_token, get_user_id


# HTTP Bearer token scheme (missing header handled below as 401)
security = HTTPBearer(auto_error=False)

_notifier: Optional[Notifier] = None


# ==================== AUTH ====================

async def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Validated JWT payload of the caller."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        raise credentials_exception
    return payload


async def get_current_user_id(payload: dict = Depends(get_token_payload)) -> int:
    """Id of the authenticated user (the 'sub' claim)."""
    user_id = get_user_id(payload)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


async def require_platform_admin(payload: dict = Depends(get_token_payload)) -> dict:
    """
    Platform (super) admin only.
    Used for plan catalog maintenance.
    """
    if not is_super_admin_token(payload):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform admin only"
        )
    return payload


# ==================== SERVICES ====================

def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier


def get_access_guard(db: Session = Depends(get_db)) -> TenantAccessGuard:
    return TenantAccessGuard(db)


def get_plan_service(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> PlanCatalogService:
    return PlanCatalogService(db, notifier)


def get_subscription_service(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> SubscriptionService:
    return SubscriptionService(db, notifier)


def get_billing_service(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> BillingService:
    return BillingService(db, notifier)


def get_usage_service(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> UsageService:
    return UsageService(db, notifier)
