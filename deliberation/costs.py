"""
Cost estimation and budget enforcement for deliberation sessions.

Prices are USD per one million tokens. Estimates are deliberately rough:
they exist to refuse obviously unaffordable sessions before any backend is
called, not to bill anyone.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from .errors import BudgetExceeded

MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "openai/gpt-4o": (2.50, 10.00),
    "openai/gpt-4o-mini": (0.15, 0.60),
    "openai/gpt-4-turbo": (10.00, 30.00),
    "anthropic/claude-3.5-sonnet": (3.00, 15.00),
    "anthropic/claude-3-opus": (15.00, 75.00),
    "anthropic/claude-3-haiku": (0.25, 1.25),
    "google/gemini-2.0-flash-exp": (0.00, 0.00),
    "google/gemini-1.5-pro": (1.25, 5.00),
    "meta-llama/llama-3.1-70b-instruct": (0.52, 0.75),
    "meta-llama/llama-3.1-8b-instruct": (0.06, 0.06),
    "mistralai/mistral-large": (2.00, 6.00),
}
DEFAULT_PRICING = (2.50, 10.00)

RESPONSE_TOKENS = 500
REVIEW_TOKENS = 300
SYNTHESIS_TOKENS = 800
INSTRUCTION_TOKENS = 200


def estimate_tokens(text: str) -> int:
    """About four characters per token for English text."""
    if not text:
        return 0
    return -(-len(text) // 4)


def get_model_pricing(model: str) -> Tuple[float, float]:
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    base = model.split("/")[-1]
    for key, pricing in MODEL_PRICING.items():
        if key.split("/")[-1] == base:
            return pricing
    # Local models (e.g. served by Ollama) carry no per-token price.
    if "/" not in model:
        return (0.0, 0.0)
    logger.debug(f"Unknown model pricing for {model}, using default")
    return DEFAULT_PRICING


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = get_model_pricing(model)
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price


@dataclass
class CostEstimate:
    estimated: float
    breakdown: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimated": round(self.estimated, 4),
            "breakdown": {k: round(v, 6) for k, v in self.breakdown.items()},
        }


def estimate_session_cost(
    question: str,
    participants: List[str],
    chairman: Optional[str] = None
) -> CostEstimate:
    """Estimate collection, review by every participant, and one synthesis."""
    question_tokens = estimate_tokens(question)
    n = len(participants)
    review_prompt = question_tokens + RESPONSE_TOKENS * n + INSTRUCTION_TOKENS
    synthesis_prompt = question_tokens + RESPONSE_TOKENS * n + INSTRUCTION_TOKENS * 2

    breakdown: Dict[str, float] = {}
    for model in participants:
        breakdown[f"{model}:response"] = calculate_cost(model, question_tokens, RESPONSE_TOKENS)
        breakdown[f"{model}:review"] = calculate_cost(model, review_prompt, REVIEW_TOKENS)

    # Without a designated chairman assume the most expensive participant.
    if chairman is None and participants:
        chairman = max(participants, key=lambda m: calculate_cost(m, synthesis_prompt, SYNTHESIS_TOKENS))
    if chairman:
        breakdown[f"{chairman}:synthesis"] = calculate_cost(chairman, synthesis_prompt, SYNTHESIS_TOKENS)

    return CostEstimate(estimated=sum(breakdown.values()), breakdown=breakdown)


@dataclass
class SpendWindow:
    key: str
    total_cost: float = 0.0
    request_count: int = 0
    session_count: int = 0
    by_model: Dict[str, float] = field(default_factory=dict)


class CostController:
    """
    Tracks spend per day and per month and refuses sessions whose
    estimate would exceed a limit.

    An admitted session holds its estimate as a reservation until it is
    released, so concurrent admissions cannot overrun a limit before any
    usage is recorded. Reserved amounts count against the daily and monthly
    remaining alongside recorded spend.
    """

    def __init__(
        self,
        per_session: float = 2.00,
        daily: float = 10.00,
        monthly: float = 200.00,
        enabled: bool = True,
        today: Callable[[], date] = date.today
    ):
        self.limits = {"per_session": per_session, "daily": daily, "monthly": monthly}
        self.enabled = enabled
        self._today = today
        self._daily = SpendWindow(self._day_key())
        self._monthly = SpendWindow(self._month_key())
        self._reservations: Dict[str, float] = {}

    @property
    def reserved(self) -> float:
        return sum(self._reservations.values())

    def _day_key(self) -> str:
        return self._today().isoformat()

    def _month_key(self) -> str:
        return self._today().isoformat()[:7]

    def _roll(self):
        if self._daily.key != self._day_key():
            self._daily = SpendWindow(self._day_key())
        if self._monthly.key != self._month_key():
            self._monthly = SpendWindow(self._month_key())

    def remaining(self) -> Dict[str, float]:
        self._roll()
        reserved = self.reserved
        return {
            "daily": self.limits["daily"] - self._daily.total_cost - reserved,
            "monthly": self.limits["monthly"] - self._monthly.total_cost - reserved,
            "per_session": self.limits["per_session"],
        }

    def preflight(self, estimate: CostEstimate):
        """Raise ``BudgetExceeded`` if the estimate breaks any limit."""
        if not self.enabled:
            return
        remaining = self.remaining()
        cost = estimate.estimated

        if cost > self.limits["per_session"]:
            raise BudgetExceeded(
                f"Estimated cost (${cost:.4f}) exceeds per-session limit (${self.limits['per_session']:.2f})",
                cost, remaining["per_session"]
            )
        if cost > remaining["daily"]:
            raise BudgetExceeded(
                f"Would exceed daily budget. Spent: ${self._daily.total_cost:.2f}, "
                f"reserved: ${self.reserved:.2f}, limit: ${self.limits['daily']:.2f}",
                cost, remaining["daily"]
            )
        if cost > remaining["monthly"]:
            raise BudgetExceeded(
                f"Would exceed monthly budget. Spent: ${self._monthly.total_cost:.2f}, "
                f"reserved: ${self.reserved:.2f}, limit: ${self.limits['monthly']:.2f}",
                cost, remaining["monthly"]
            )

    def record_usage(self, model: str, input_tokens: int, output_tokens: int):
        """Usage hook for the backend manager."""
        self._roll()
        cost = calculate_cost(model, input_tokens, output_tokens)
        for window in (self._daily, self._monthly):
            window.total_cost += cost
            window.request_count += 1
            window.by_model[model] = window.by_model.get(model, 0.0) + cost
        if self.enabled and self._daily.total_cost > self.limits["daily"] * 0.75:
            logger.warning(f"Daily spend at ${self._daily.total_cost:.2f} of ${self.limits['daily']:.2f}")

    def reserve(self, session_id: str, estimate: CostEstimate):
        """Admit a session: check its estimate, then hold it until ``release``."""
        self.preflight(estimate)
        self._roll()
        self._daily.session_count += 1
        self._monthly.session_count += 1
        if self.enabled:
            self._reservations[session_id] = estimate.estimated

    def release(self, session_id: str):
        """Drop a finished session's reservation; its real usage is already recorded."""
        self._reservations.pop(session_id, None)

    def summary(self) -> Dict[str, Any]:
        self._roll()
        return {
            "limits": dict(self.limits),
            "daily": {
                "date": self._daily.key,
                "spent": round(self._daily.total_cost, 4),
                "sessions": self._daily.session_count,
                "requests": self._daily.request_count,
            },
            "monthly": {
                "month": self._monthly.key,
                "spent": round(self._monthly.total_cost, 4),
                "sessions": self._monthly.session_count,
                "requests": self._monthly.request_count,
            },
            "reserved": round(self.reserved, 4),
            "remaining": {k: round(v, 4) for k, v in self.remaining().items()},
        }
