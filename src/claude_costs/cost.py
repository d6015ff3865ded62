"""Cost calculation for assistant messages based on per-model API pricing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from claude_costs.models import UsageTokens


@dataclass(frozen=True)
class ModelRates:
    """USD per million tokens for each token category."""

    input: float
    output: float
    cache_write: float
    cache_read: float

    @classmethod
    def from_mapping(cls, data: Mapping) -> ModelRates:
        return cls(
            input=float(data["input"]),
            output=float(data["output"]),
            cache_write=float(data["cache_write"]),
            cache_read=float(data["cache_read"]),
        )


_OPUS = ModelRates(input=15.0, output=75.0, cache_write=18.75, cache_read=1.5)
_SONNET = ModelRates(input=3.0, output=15.0, cache_write=3.75, cache_read=0.3)
_HAIKU_35 = ModelRates(input=0.8, output=4.0, cache_write=1.0, cache_read=0.08)
_HAIKU_3 = ModelRates(input=0.25, output=1.25, cache_write=0.3, cache_read=0.03)

DEFAULT_MODEL = "default"

# Pricing per million tokens. Unknown models fall back to "default" (Sonnet-level).
DEFAULT_PRICING: dict[str, ModelRates] = {
    "claude-opus-4-20250514": _OPUS,
    "claude-sonnet-4-20250514": _SONNET,
    "claude-3-7-sonnet-20250219": _SONNET,
    "claude-3-7-sonnet-latest": _SONNET,
    "claude-3-5-sonnet-20241022": _SONNET,
    "claude-3-5-sonnet-20240620": _SONNET,
    "claude-3-5-sonnet-latest": _SONNET,
    "claude-3-5-haiku-20241022": _HAIKU_35,
    "claude-3-5-haiku-latest": _HAIKU_35,
    "claude-3-opus-20240229": _OPUS,
    "claude-3-opus-latest": _OPUS,
    "claude-3-sonnet-20240229": _SONNET,
    "claude-3-haiku-20240307": _HAIKU_3,
    DEFAULT_MODEL: _SONNET,
}


class PricingTable:
    """Resolves a model identifier to its rates.

    Lookups never fail: a model missing from the table is priced with the
    mandatory ``default`` entry.
    """

    def __init__(self, table: Mapping[str, ModelRates] | None = None):
        table = dict(DEFAULT_PRICING if table is None else table)
        if DEFAULT_MODEL not in table:
            raise ValueError("pricing table needs a 'default' entry")
        self._table = table

    def rate(self, model: str | None) -> ModelRates:
        if model and model in self._table:
            return self._table[model]
        return self._table[DEFAULT_MODEL]

    def with_overrides(self, overrides: Mapping[str, Mapping]) -> PricingTable:
        """Return a new table with custom rates merged over this one."""
        merged = dict(self._table)
        for model, rates in overrides.items():
            merged[model] = rates if isinstance(rates, ModelRates) else ModelRates.from_mapping(rates)
        return PricingTable(merged)

    def __contains__(self, model: str) -> bool:
        return model in self._table

    @property
    def models(self) -> list[str]:
        return sorted(self._table)


def calculate_cost(tokens: UsageTokens, rates: ModelRates) -> float:
    """Cost in USD for the given token counts. Not rounded."""
    return (
        tokens.input * rates.input
        + tokens.output * rates.output
        + tokens.cache_write * rates.cache_write
        + tokens.cache_read * rates.cache_read
    ) / 1_000_000
