"""Token accounting for completion calls, grouped by model and pipeline stage."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping

from .extraction import RawResponse

__all__ = [
    "MODEL_PRICING",
    "ModelPricing",
    "TokenUsage",
    "CostSnapshot",
    "CostTracker",
    "usage_from_response",
]


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """USD per thousand prompt and completion tokens."""

    prompt_per_1k: float
    completion_per_1k: float

    def price(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens * self.prompt_per_1k + completion_tokens * self.completion_per_1k) / 1000


MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o-mini": ModelPricing(0.00015, 0.0006),
    "gpt-4o": ModelPricing(0.005, 0.015),
    "gpt-4.1-mini": ModelPricing(0.0004, 0.0016),
}


@dataclass(frozen=True, slots=True)
class CostSnapshot:
    """One priced completion call."""

    model: str
    stage: str
    prompt_tokens: int
    completion_tokens: int
    cost_usd: float


@dataclass(slots=True)
class TokenUsage:
    """Totals folded from a group of snapshots."""

    calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0

    @classmethod
    def fold(cls, snapshots: Iterable[CostSnapshot]) -> "TokenUsage":
        usage = cls()
        for snap in snapshots:
            usage.calls += 1
            usage.prompt_tokens += snap.prompt_tokens
            usage.completion_tokens += snap.completion_tokens
            usage.cost_usd += snap.cost_usd
        return usage

    def to_dict(self) -> dict[str, float | int]:
        return {
            "calls": self.calls,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.prompt_tokens + self.completion_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass(slots=True)
class CostTracker:
    """Append-only ledger of priced calls for one process.

    Models missing from ``pricing`` are still counted, at zero cost.
    """

    pricing: Mapping[str, ModelPricing] = field(default_factory=lambda: MODEL_PRICING)
    ledger: List[CostSnapshot] = field(default_factory=list, init=False, repr=False)

    @property
    def total_cost(self) -> float:
        return sum(snap.cost_usd for snap in self.ledger)

    def record(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        *,
        stage: str = "completion",
    ) -> CostSnapshot:
        rate = self.pricing.get(model)
        snapshot = CostSnapshot(
            model=model,
            stage=stage,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=rate.price(prompt_tokens, completion_tokens) if rate else 0.0,
        )
        self.ledger.append(snapshot)
        return snapshot

    def usage_for(self, model: str) -> TokenUsage | None:
        return self._usage(lambda snap: snap.model == model)

    def usage_for_stage(self, stage: str) -> TokenUsage | None:
        return self._usage(lambda snap: snap.stage == stage)

    def _usage(self, predicate: Callable[[CostSnapshot], bool]) -> TokenUsage | None:
        matching = [snap for snap in self.ledger if predicate(snap)]
        return TokenUsage.fold(matching) if matching else None

    def _grouped(self, key: Callable[[CostSnapshot], str]) -> dict[str, dict[str, float | int]]:
        groups: dict[str, list[CostSnapshot]] = {}
        for snap in self.ledger:
            groups.setdefault(key(snap), []).append(snap)
        return {name: TokenUsage.fold(groups[name]).to_dict() for name in sorted(groups)}

    def reset(self) -> None:
        self.ledger.clear()

    def to_dict(self) -> dict[str, object]:
        return {
            "total_cost": round(self.total_cost, 6),
            "models": self._grouped(lambda snap: snap.model),
            "stages": self._grouped(lambda snap: snap.stage),
        }

    def to_json(self, *, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


# (container key, prompt field, completion field) as reported by LangChain,
# the OpenAI REST payload and Gemini-style payloads.
_USAGE_SHAPES = (
    (("usage_metadata",), "input_tokens", "output_tokens"),
    (("response_metadata", "token_usage"), "prompt_tokens", "completion_tokens"),
    (("usage",), "prompt_tokens", "completion_tokens"),
    (("usageMetadata",), "promptTokenCount", "candidatesTokenCount"),
)


def usage_from_response(payload: Any) -> tuple[int, int] | None:
    """Pull ``(prompt_tokens, completion_tokens)`` from a raw backend response."""

    response = RawResponse(payload)
    for path, prompt_key, completion_key in _USAGE_SHAPES:
        container = response.lookup(*path)
        if not container:
            continue
        counts = RawResponse(container)
        prompt, completion = counts.lookup(prompt_key), counts.lookup(completion_key)
        if isinstance(prompt, int) and isinstance(completion, int):
            return prompt, completion
    return None
