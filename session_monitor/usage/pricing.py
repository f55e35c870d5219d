"""Per-model token pricing (USD per million tokens)."""

from __future__ import annotations

import math
from dataclasses import dataclass

from session_monitor.usage.log_reader import TokenCounts


@dataclass(frozen=True)
class ModelPricing:
    input: float
    output: float
    cache_read: float
    cache_creation: float


OPUS_4 = ModelPricing(input=15.00, output=75.00, cache_read=1.50, cache_creation=18.75)
OPUS_4_5 = ModelPricing(input=5.00, output=25.00, cache_read=0.50, cache_creation=6.25)
SONNET = ModelPricing(input=3.00, output=15.00, cache_read=0.30, cache_creation=3.75)
HAIKU_4_5 = ModelPricing(input=1.00, output=5.00, cache_read=0.10, cache_creation=1.25)
HAIKU_3_5 = ModelPricing(input=0.80, output=4.00, cache_read=0.08, cache_creation=1.00)
HAIKU_3 = ModelPricing(input=0.25, output=1.25, cache_read=0.03, cache_creation=0.30)

DEFAULT_PRICING = SONNET

MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-opus-4-6": OPUS_4_5,
    "claude-opus-4-5": OPUS_4_5,
    "claude-opus-4-5-20251101": OPUS_4_5,
    "claude-opus-4-1": OPUS_4,
    "claude-opus-4-1-20250805": OPUS_4,
    "claude-opus-4-20250514": OPUS_4,
    "claude-sonnet-4-6": SONNET,
    "claude-sonnet-4-5": SONNET,
    "claude-sonnet-4-5-20250929": SONNET,
    "claude-sonnet-4-20250514": SONNET,
    "claude-3-7-sonnet-20250219": SONNET,
    "claude-haiku-4-5": HAIKU_4_5,
    "claude-haiku-4-5-20251001": HAIKU_4_5,
    "claude-3-5-haiku-20241022": HAIKU_3_5,
    "claude-3-haiku-20240307": HAIKU_3,
}


def pricing_for(model: str) -> ModelPricing:
    """Return pricing for a model id, falling back by family then to default."""
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    low = model.lower()
    if "opus" in low:
        if "opus-4-5" in low or "opus-4-6" in low:
            return OPUS_4_5
        return OPUS_4
    if "sonnet" in low:
        return SONNET
    if "haiku" in low:
        if "haiku-4" in low:
            return HAIKU_4_5
        if "3-5-haiku" in low:
            return HAIKU_3_5
        return HAIKU_3
    return DEFAULT_PRICING


def cost_of(counts: TokenCounts, model: str) -> float:
    """USD cost of a token bundle for one model. Never negative or NaN."""
    p = pricing_for(model)
    cost = (
        counts.input_tokens * p.input
        + counts.output_tokens * p.output
        + counts.cache_read_tokens * p.cache_read
        + counts.cache_creation_tokens * p.cache_creation
    ) / 1_000_000
    if math.isnan(cost) or cost < 0:
        return 0.0
    return cost


def cost_by_model(by_model: dict[str, TokenCounts]) -> float:
    return sum(cost_of(counts, model) for model, counts in by_model.items())
