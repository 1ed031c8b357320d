"""Pricing collaborator for token cost computation.

The store only accumulates raw token counts. Cost is computed on demand by a
pluggable ``PricingFn``; ``StaticPricing`` is the table-driven default.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

TOKENS_PER_UNIT = 1_000_000


class PricingFn(Protocol):
    """Compute the cost of a token count for a provider/model pair."""

    def __call__(
        self,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
    ) -> float: ...


@dataclass(frozen=True, slots=True)
class ModelPrice:
    """Price in USD per million input and output tokens."""

    input: float
    output: float


DEFAULT_PRICES: dict[str, dict[str, ModelPrice]] = {
    "anthropic": {
        "claude-sonnet-4-20250514": ModelPrice(3.0, 15.0),
        "claude-3-5-sonnet-latest": ModelPrice(3.0, 15.0),
        "claude-3-5-sonnet-20241022": ModelPrice(3.0, 15.0),
        "claude-3-5-haiku-latest": ModelPrice(0.8, 4.0),
        "claude-3-opus-latest": ModelPrice(15.0, 75.0),
    },
    "openai": {
        "gpt-4o": ModelPrice(5.0, 15.0),
        "gpt-4o-mini": ModelPrice(0.15, 0.6),
        "gpt-4-turbo": ModelPrice(10.0, 30.0),
        "gpt-4": ModelPrice(30.0, 60.0),
        "gpt-3.5-turbo": ModelPrice(0.5, 1.5),
    },
    # Local models cost nothing per token.
    "ollama": {},
}

FREE_PROVIDERS = frozenset({"ollama"})


@dataclass(frozen=True, slots=True)
class StaticPricing:
    """Table-driven ``PricingFn``.

    Unknown models of a paid provider fall back to ``fallback``. Providers in
    ``free_providers`` are always priced at zero.

    Example:
        pricing = StaticPricing()
        pricing("anthropic", "claude-3-5-sonnet-20241022", 1_000_000, 0)  # 3.0
    """

    prices: Mapping[str, Mapping[str, ModelPrice]] = field(
        default_factory=lambda: DEFAULT_PRICES
    )
    fallback: ModelPrice = ModelPrice(10.0, 10.0)
    free_providers: frozenset[str] = FREE_PROVIDERS

    def price_for(self, provider: str, model: str) -> ModelPrice:
        if provider in self.free_providers:
            return ModelPrice(0.0, 0.0)
        return self.prices.get(provider, {}).get(model, self.fallback)

    def __call__(
        self,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
    ) -> float:
        price = self.price_for(provider, model)
        return (
            input_tokens / TOKENS_PER_UNIT * price.input
            + output_tokens / TOKENS_PER_UNIT * price.output
        )
