"""
Plans: public catalog reads, platform-admin maintenance.
Endpoint: /api/v1/plans/...
"""

from fastapi import APIRouter, Depends, Query, status

from core.dependencies import get_token_payload, require_platform_admin, get_plan_service
from core.exceptions import NotFoundError
from core.security import is_super_admin_token
from schemas.plan import (
    PlanCreate, PlanUpdate, PlanFeatureCreate, PlanFeatureUpdate,
    PlanResponse, PlanFeatureResponse,
)
from services.plan_catalog import PlanCatalogService

router = APIRouter(prefix="/plans", tags=["Plans"])


# ==================== CATALOG ====================

@router.get("")
async def list_plans(
    include_inactive: bool = Query(False, description="Platform admins only"),
    payload: dict = Depends(get_token_payload),
    service: PlanCatalogService = Depends(get_plan_service),
):
    """Active public plans; admins may also see inactive and private ones."""
    is_admin = is_super_admin_token(payload)
    plans = service.list_plans(
        active_only=not (include_inactive and is_admin),
        public_only=not is_admin,
    )
    return {"data": [PlanResponse.model_validate(p) for p in plans], "count": len(plans)}


@router.get("/{plan_id}")
async def get_plan(
    plan_id: int,
    payload: dict = Depends(get_token_payload),
    service: PlanCatalogService = Depends(get_plan_service),
):
    plan = service.get_plan(plan_id)
    if not is_super_admin_token(payload) and not (plan.is_active and plan.is_public):
        raise NotFoundError("Plan not found", context={"plan_id": plan_id})
    return {"data": PlanResponse.model_validate(plan)}


# ==================== ADMIN ====================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_plan(
    body: PlanCreate,
    admin: dict = Depends(require_platform_admin),
    service: PlanCatalogService = Depends(get_plan_service),
):
    data = body.model_dump(exclude={"features"})
    features = [f.model_dump() for f in body.features]
    plan = service.create_plan(data, features=features)
    return {"success": True, "data": PlanResponse.model_validate(plan)}


@router.patch("/{plan_id}")
async def update_plan(
    plan_id: int,
    body: PlanUpdate,
    admin: dict = Depends(require_platform_admin),
    service: PlanCatalogService = Depends(get_plan_service),
):
    plan = service.update_plan(plan_id, body.model_dump(exclude_unset=True))
    return {"success": True, "data": PlanResponse.model_validate(plan)}


@router.delete("/{plan_id}")
async def delete_plan(
    plan_id: int,
    admin: dict = Depends(require_platform_admin),
    service: PlanCatalogService = Depends(get_plan_service),
):
    """Retire a plan. Subscriptions already on it are not affected."""
    service.delete_plan(plan_id)
    return {"success": True, "message": "Plan deleted"}


@router.post("/{plan_id}/features", status_code=status.HTTP_201_CREATED)
async def add_plan_feature(
    plan_id: int,
    body: PlanFeatureCreate,
    admin: dict = Depends(require_platform_admin),
    service: PlanCatalogService = Depends(get_plan_service),
):
    data = body.model_dump(exclude_none=True)
    feature = service.add_feature(plan_id, data)
    return {"success": True, "data": PlanFeatureResponse.model_validate(feature)}


@router.patch("/{plan_id}/features/{feature_id}")
async def update_plan_feature(
    plan_id: int,
    feature_id: int,
    body: PlanFeatureUpdate,
    admin: dict = Depends(require_platform_admin),
    service: PlanCatalogService = Depends(get_plan_service),
):
    feature = service.update_feature(plan_id, feature_id, body.model_dump(exclude_unset=True))
    return {"success": True, "data": PlanFeatureResponse.model_validate(feature)}


@router.delete("/{plan_id}/features/{feature_id}")
async def delete_plan_feature(
    plan_id: int,
    feature_id: int,
    admin: dict = Depends(require_platform_admin),
    service: PlanCatalogService = Depends(get_plan_service),
):
    service.delete_feature(plan_id, feature_id)
    return {"success": True, "message": "Feature deleted"}
