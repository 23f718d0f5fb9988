"""
Usage metering: track consumption and read quotas.
Endpoint: /api/v1/usage/...
"""

from fastapi import APIRouter, Depends, Query

from core.access import TenantAccessGuard, READ_ROLES
from core.dependencies import get_current_user_id, get_access_guard, get_usage_service
from schemas.subscription import UsageTrack, UsageResponse, UsageCheckResponse
from services.usage import UsageService

router = APIRouter(prefix="/usage", tags=["Usage"])


@router.post("/track")
async def track_usage(
    body: UsageTrack,
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: UsageService = Depends(get_usage_service),
):
    """Count usage against the current period. 429 when the quota is used up."""
    guard.authorize(user_id, body.tenant_id, READ_ROLES)
    usage = service.track_usage(
        body.tenant_id, body.feature_key,
        increment_by=body.increment_by,
        metadata=body.metadata,
    )
    return {"success": True, "data": UsageResponse.model_validate(usage)}


@router.get("/check")
async def check_usage(
    tenant_id: int = Query(...),
    feature_key: str = Query(...),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: UsageService = Depends(get_usage_service),
):
    guard.authorize(user_id, tenant_id, READ_ROLES)
    return {"data": UsageCheckResponse(**service.check_usage_limit(tenant_id, feature_key))}


@router.get("/stats")
async def usage_stats(
    tenant_id: int = Query(...),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: UsageService = Depends(get_usage_service),
):
    guard.authorize(user_id, tenant_id, READ_ROLES)
    stats = service.get_usage_stats(tenant_id)
    return {"data": [UsageResponse(**s) for s in stats], "count": len(stats)}


@router.get("/history")
async def usage_history(
    tenant_id: int = Query(...),
    subscription_id: int = Query(...),
    user_id: int = Depends(get_current_user_id),
    guard: TenantAccessGuard = Depends(get_access_guard),
    service: UsageService = Depends(get_usage_service),
):
    """Counters of every period, including closed ones."""
    guard.authorize(user_id, tenant_id, READ_ROLES)
    history = service.get_usage_history(tenant_id, subscription_id)
    return {"data": [UsageResponse(**h) for h in history], "count": len(history)}
