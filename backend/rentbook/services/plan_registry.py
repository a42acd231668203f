"""プラン定義: Price ID・リソース上限・機能フラグの静的テーブル

実行時は読み取り専用。起動時に validate_plan_registry() で全プランが
全リソース種別の上限を定義していることを検証する。
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from rentbook.core.config import settings
from rentbook.core.exceptions import InvalidPlanError, PlanRegistryError

RESOURCE_TYPES = ("properties", "transactions", "storage", "api_calls", "team_members")
BILLING_PERIODS = ("monthly", "yearly")

# 下位 → 上位の順
PLAN_HIERARCHY = ("STARTER", "PRO", "BUSINESS")

# ソフトリミット: アップグレード誘導のみに使う (拒否には使わない)
SOFT_LIMIT_THRESHOLDS = MappingProxyType({"warning": 0.8, "critical": 0.95})


@dataclass(frozen=True)
class PlanConfig:
    id: str
    name: str
    description: str
    monthly_price_id: str
    yearly_price_id: str
    monthly_price: int
    yearly_price: int
    limits: Mapping[str, int]
    features: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))
    popular: bool = False

    def price_id(self, billing_period: str) -> str:
        return self.yearly_price_id if billing_period == "yearly" else self.monthly_price_id


def _plan(**kwargs) -> PlanConfig:
    kwargs["limits"] = MappingProxyType(dict(kwargs["limits"]))
    kwargs["features"] = MappingProxyType(dict(kwargs.get("features", {})))
    return PlanConfig(**kwargs)


def build_plan_registry() -> Mapping[str, PlanConfig]:
    """設定値 (Price ID) からプランテーブルを組み立てる"""
    return MappingProxyType({
        "STARTER": _plan(
            id="STARTER",
            name="Starter",
            description="まずは小さく始めたい方に",
            monthly_price_id=settings.STRIPE_STARTER_MONTHLY_PRICE_ID,
            yearly_price_id=settings.STRIPE_STARTER_YEARLY_PRICE_ID,
            monthly_price=9,
            yearly_price=90,
            limits={
                "properties": 10,
                "transactions": 1000,
                "storage": 1024,  # MB
                "api_calls": 10000,
                "team_members": 1,
            },
            features={
                "advanced_analytics": False,
                "api_access": False,
                "priority_support": False,
                "custom_branding": False,
                "data_export": True,
                "bulk_operations": True,
            },
        ),
        "PRO": _plan(
            id="PRO",
            name="Pro",
            description="物件数が増えてきた方に",
            monthly_price_id=settings.STRIPE_PRO_MONTHLY_PRICE_ID,
            yearly_price_id=settings.STRIPE_PRO_YEARLY_PRICE_ID,
            monthly_price=29,
            yearly_price=290,
            limits={
                "properties": 50,
                "transactions": 5000,
                "storage": 5120,
                "api_calls": 50000,
                "team_members": 3,
            },
            features={
                "advanced_analytics": True,
                "api_access": True,
                "priority_support": True,
                "custom_branding": False,
                "data_export": True,
                "bulk_operations": True,
            },
            popular=True,
        ),
        "BUSINESS": _plan(
            id="BUSINESS",
            name="Business",
            description="本格的に運用する投資家向け",
            monthly_price_id=settings.STRIPE_BUSINESS_MONTHLY_PRICE_ID,
            yearly_price_id=settings.STRIPE_BUSINESS_YEARLY_PRICE_ID,
            monthly_price=49,
            yearly_price=490,
            limits={
                "properties": 999,  # 実質無制限
                "transactions": 50000,
                "storage": 20480,
                "api_calls": 200000,
                "team_members": 10,
            },
            features={
                "advanced_analytics": True,
                "api_access": True,
                "priority_support": True,
                "custom_branding": True,
                "data_export": True,
                "bulk_operations": True,
            },
        ),
    })


def validate_plan_registry(
    registry: Mapping[str, PlanConfig],
    resource_types: Iterable[str] = RESOURCE_TYPES,
) -> None:
    """全プランが全リソース種別の上限を持つか検証。不備があれば起動失敗させる"""
    problems = []
    for plan_id in PLAN_HIERARCHY:
        if plan_id not in registry:
            problems.append(f"{plan_id}: プラン定義なし")
    for plan_id, config in registry.items():
        if config.id != plan_id:
            problems.append(f"{plan_id}: idが一致しません ({config.id})")
        for resource_type in resource_types:
            limit = config.limits.get(resource_type)
            if limit is None:
                problems.append(f"{plan_id}: {resource_type} の上限が未定義")
            elif not isinstance(limit, int) or limit < 0:
                problems.append(f"{plan_id}: {resource_type} の上限が不正 ({limit!r})")
    if problems:
        raise PlanRegistryError("プラン定義が不正です: " + "; ".join(problems))


PLAN_CONFIGS = build_plan_registry()
validate_plan_registry(PLAN_CONFIGS)


def get_plan_config(plan: str) -> PlanConfig:
    config = PLAN_CONFIGS.get(plan)
    if config is None:
        raise InvalidPlanError(str(plan))
    return config


def get_all_plan_configs() -> list[PlanConfig]:
    return [PLAN_CONFIGS[p] for p in PLAN_HIERARCHY]


def get_resource_limit(plan: str, resource_type: str) -> int:
    """プラン × リソース種別の上限。未定義は設定不備なのでKeyErrorで落とす"""
    config = get_plan_config(plan)
    return config.limits[resource_type]


def get_plan_limits(plan: str) -> dict[str, int]:
    return dict(get_plan_config(plan).limits)


def get_price_id(plan: str, billing_period: str) -> Optional[str]:
    if billing_period not in BILLING_PERIODS:
        return None
    return get_plan_config(plan).price_id(billing_period) or None


def get_plan_for_price_id(price_id: str) -> Optional[str]:
    """Price ID → プランID逆引き (未設定の空文字にはマッチさせない)"""
    if not price_id:
        return None
    for config in PLAN_CONFIGS.values():
        if price_id in (config.monthly_price_id, config.yearly_price_id):
            return config.id
    return None


def compare_plans(plan_a: str, plan_b: str) -> int:
    """plan_a が上位なら正、同じなら0、下位なら負"""
    get_plan_config(plan_a)
    get_plan_config(plan_b)
    return PLAN_HIERARCHY.index(plan_a) - PLAN_HIERARCHY.index(plan_b)


def is_upgrade_needed(current_plan: str, target_plan: str) -> bool:
    return compare_plans(target_plan, current_plan) > 0


def get_next_plan(current_plan: str) -> Optional[str]:
    if current_plan not in PLAN_HIERARCHY:
        return None
    index = PLAN_HIERARCHY.index(current_plan)
    if index == len(PLAN_HIERARCHY) - 1:
        return None
    return PLAN_HIERARCHY[index + 1]


def get_recommended_plan(resource_type: str, required_amount: float) -> Optional[str]:
    """必要量を満たす最も安いプラン"""
    for config in get_all_plan_configs():
        limit = config.limits.get(resource_type)
        if limit is not None and limit >= required_amount:
            return config.id
    return None


def is_feature_enabled(plan: str, feature: str) -> bool:
    config = PLAN_CONFIGS.get(plan)
    if config is None:
        return False
    return config.features.get(feature, False)


def get_enabled_features(plan: str) -> list[str]:
    config = PLAN_CONFIGS.get(plan)
    if config is None:
        return []
    return [key for key, enabled in config.features.items() if enabled]


def soft_limit_status(current_usage: float, limit: int) -> dict:
    """使用率がソフトリミットに達しているか"""
    percentage = current_usage / limit if limit > 0 else 0
    return {
        "warning": percentage >= SOFT_LIMIT_THRESHOLDS["warning"],
        "critical": percentage >= SOFT_LIMIT_THRESHOLDS["critical"],
        "percentage": percentage,
    }
