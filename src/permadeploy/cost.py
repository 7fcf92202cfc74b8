"""Upload cost estimates for permanent storage."""

from pydantic import BaseModel

from .differ import ChangeSet

BYTES_PER_MB = 1024 * 1024
COST_PER_MB_AR = 0.0001  # Approximate base rate
COST_PER_MB_USD = 0.10  # Approximate base rate
DEFAULT_AR_PRICE_USD = 10.0


class CostEstimate(BaseModel):
    """Estimated cost of uploading a number of bytes."""

    size_bytes: int = 0
    size_kb: float = 0.0
    size_mb: float = 0.0
    cost_ar: float = 0.0
    cost_usd: float = 0.0
    cost_usd_approx: float = 0.0
    ar_price_usd: float = DEFAULT_AR_PRICE_USD


def estimate_cost(size_bytes: int, ar_price_usd: float = DEFAULT_AR_PRICE_USD) -> CostEstimate:
    """Estimate the cost of storing ``size_bytes`` at the given token price."""
    size_mb = size_bytes / BYTES_PER_MB
    cost_ar = size_mb * COST_PER_MB_AR

    return CostEstimate(
        size_bytes=size_bytes,
        size_kb=round(size_bytes / 1024, 2),
        size_mb=round(size_mb, 4),
        cost_ar=round(cost_ar, 8),
        cost_usd=round(cost_ar * ar_price_usd, 4),
        cost_usd_approx=round(size_mb * COST_PER_MB_USD, 4),
        ar_price_usd=round(ar_price_usd, 2),
    )


def estimate_changeset_cost(
    changeset: ChangeSet, ar_price_usd: float = DEFAULT_AR_PRICE_USD
) -> CostEstimate:
    """Estimate the cost of uploading the changed files of a diff."""
    return estimate_cost(changeset.upload_bytes, ar_price_usd)


def format_cost(cost: CostEstimate) -> str:
    """Format a cost estimate for display."""
    if cost.size_mb < 1:
        size = f"{cost.size_kb} KB"
    else:
        size = f"{cost.size_mb:.2f} MB"
    return f"{size} - {cost.cost_ar:.6f} AR (~${cost.cost_usd:.4f} USD)"
