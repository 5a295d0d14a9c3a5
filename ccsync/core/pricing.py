"""Model pricing and session cost estimation."""

from typing import Dict, Optional

# Model pricing for cost estimation (USD per 1M tokens)
# Source: https://www.anthropic.com/pricing
# Cache writes bill at 1.25x input, cache reads at 0.1x input.
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    # Claude 4.5 series
    "claude-opus-4-5-20251101": {"input": 5.0, "output": 25.0, "cache_write": 6.25, "cache_read": 0.50},
    "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0, "cache_write": 3.75, "cache_read": 0.30},
    "claude-haiku-4-5-20251001": {"input": 1.0, "output": 5.0, "cache_write": 1.25, "cache_read": 0.10},
    # Claude 4.1 / 4 series
    "claude-opus-4-1-20250805": {"input": 15.0, "output": 75.0, "cache_write": 18.75, "cache_read": 1.50},
    "claude-opus-4-20250514": {"input": 15.0, "output": 75.0, "cache_write": 18.75, "cache_read": 1.50},
    "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0, "cache_write": 3.75, "cache_read": 0.30},
    # Claude 3.7 / 3.5 series
    "claude-3-7-sonnet-20250219": {"input": 3.0, "output": 15.0, "cache_write": 3.75, "cache_read": 0.30},
    "claude-3-5-sonnet-20241022": {"input": 3.0, "output": 15.0, "cache_write": 3.75, "cache_read": 0.30},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.0, "cache_write": 1.00, "cache_read": 0.08},
    # Claude 3 series
    "claude-3-opus-20240229": {"input": 15.0, "output": 75.0, "cache_write": 18.75, "cache_read": 1.50},
    "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25, "cache_write": 0.30, "cache_read": 0.03},
}


def lookup_pricing(model: Optional[str]) -> Optional[Dict[str, float]]:
    """Find pricing for a model name.

    Tries an exact match first, then the first table key that contains the
    model name or is contained in it.

    Returns:
        Pricing dict, or None if the model is unknown
    """
    if not model:
        return None

    pricing = MODEL_PRICING.get(model)
    if pricing is not None:
        return pricing

    for key, candidate in MODEL_PRICING.items():
        if model in key or key in model:
            return candidate
    return None


def calculate_cost(
    model: Optional[str],
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_write_tokens: int = 0,
    cache_read_tokens: int = 0,
) -> float:
    """Estimate the dollar cost of a session's token usage.

    Args:
        model: Model name (exact id or a name overlapping a known id)
        input_tokens: Uncached input tokens
        output_tokens: Output tokens
        cache_write_tokens: Cache creation input tokens
        cache_read_tokens: Cache read input tokens

    Returns:
        Estimated cost in USD, 0.0 if the model is unknown
    """
    pricing = lookup_pricing(model)
    if pricing is None:
        return 0.0

    # Handle None or negative values gracefully
    input_tokens = max(0, input_tokens or 0)
    output_tokens = max(0, output_tokens or 0)
    cache_write_tokens = max(0, cache_write_tokens or 0)
    cache_read_tokens = max(0, cache_read_tokens or 0)

    total = (
        input_tokens * pricing["input"]
        + cache_write_tokens * pricing.get("cache_write", pricing["input"])
        + cache_read_tokens * pricing.get("cache_read", pricing["input"])
        + output_tokens * pricing["output"]
    )
    return total / 1_000_000
