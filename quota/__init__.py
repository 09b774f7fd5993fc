from .costs import WOOF_COSTS, woof_cost
from .ledger import QuotaCheck, check_quota, consume, period_key, quota_status, refund

__all__ = [
    "WOOF_COSTS",
    "woof_cost",
    "QuotaCheck",
    "check_quota",
    "consume",
    "period_key",
    "quota_status",
    "refund",
]
