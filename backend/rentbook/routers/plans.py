"""公開プランAPI"""
from fastapi import APIRouter

from rentbook.services.plan_registry import get_all_plan_configs, get_enabled_features

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("")
async def list_public_plans():
    """公開プラン一覧 (価格・上限・機能)"""
    return [
        {
            "id": p.id,
            "name": p.name,
            "description": p.description,
            "monthly_price": p.monthly_price,
            "yearly_price": p.yearly_price,
            "limits": dict(p.limits),
            "features": get_enabled_features(p.id),
            "popular": p.popular,
        }
        for p in get_all_plan_configs()
    ]
