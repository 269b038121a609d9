"""Token 估算与预算账本。"""

from chronicle.budget.estimator import estimate_object_tokens, estimate_tokens
from chronicle.budget.ledger import (
    LADDER,
    BudgetLedger,
    summarize_factions,
    truncate_to_token_limit,
)

__all__ = [
    "BudgetLedger",
    "LADDER",
    "estimate_object_tokens",
    "estimate_tokens",
    "summarize_factions",
    "truncate_to_token_limit",
]
