import math
from dataclasses import dataclass

GB = 1024 * 1024 * 1024


@dataclass(frozen=True)
class PlanLimits:
    storage_bytes: float
    image_count: float


PLAN_LIMITS = {
    "free": PlanLimits(storage_bytes=2 * GB, image_count=150),
    "basic": PlanLimits(storage_bytes=25 * GB, image_count=2_000),
    "pro": PlanLimits(storage_bytes=100 * GB, image_count=25_000),
    "studio": PlanLimits(storage_bytes=math.inf, image_count=math.inf),
}

DEFAULT_PLAN = "free"


def normalize_plan_id(plan: str | None) -> str:
    if not plan:
        return DEFAULT_PLAN
    plan = plan.strip().lower()
    return plan if plan in PLAN_LIMITS else DEFAULT_PLAN


def get_storage_limit_bytes(plan: str | None) -> float:
    return PLAN_LIMITS[normalize_plan_id(plan)].storage_bytes


def get_image_limit(plan: str | None) -> float:
    return PLAN_LIMITS[normalize_plan_id(plan)].image_count
