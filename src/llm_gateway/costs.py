"""Per-model token pricing."""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from llm_gateway.types import CostBreakdown

_TOKENS_PER_UNIT = 1_000_000


class ModelRates(BaseModel):
    """USD per million tokens."""

    model_config = ConfigDict(frozen=True)

    input_rate: float = Field(default=0.0, ge=0)
    output_rate: float = Field(default=0.0, ge=0)


FREE = ModelRates()

DEFAULT_RATES: dict[str, ModelRates] = {
    "gpt-4o": ModelRates(input_rate=2.5, output_rate=10.0),
    "gpt-4o-mini": ModelRates(input_rate=0.15, output_rate=0.6),
    "gpt-4.1": ModelRates(input_rate=2.0, output_rate=8.0),
    "gpt-4.1-mini": ModelRates(input_rate=0.4, output_rate=1.6),
    "gpt-4": ModelRates(input_rate=30.0, output_rate=60.0),
    "meta-llama/Llama-3.3-70B-Instruct-Turbo": ModelRates(input_rate=0.88, output_rate=0.88),
}


class CostTable:
    """Lookup of model rates; unknown models (local ones included) are free."""

    def __init__(self, rates: Mapping[str, ModelRates] | None = None) -> None:
        self._rates = dict(DEFAULT_RATES if rates is None else rates)

    def rates(self, model: str) -> ModelRates:
        if model in self._rates:
            return self._rates[model]
        # "provider/model" names fall back to the bare model id
        _, _, bare = model.partition("/")
        if bare and bare in self._rates:
            return self._rates[bare]
        return FREE

    def cost(self, model: str, input_tokens: int, output_tokens: int) -> CostBreakdown:
        return calculate_cost(self.rates(model), input_tokens, output_tokens)


def calculate_cost(rates: ModelRates, input_tokens: int, output_tokens: int) -> CostBreakdown:
    input_cost = max(input_tokens, 0) * rates.input_rate / _TOKENS_PER_UNIT
    output_cost = max(output_tokens, 0) * rates.output_rate / _TOKENS_PER_UNIT
    return CostBreakdown(
        input=round(input_cost, 8),
        output=round(output_cost, 8),
        total=round(input_cost + output_cost, 8),
    )
