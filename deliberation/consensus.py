"""
Stage 4: chairman synthesis weighted by the consensus ranking.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from .collector import ModelResponse
from .errors import DeliberationFailed, ErrorKind, GatewayError
from .models import ModelManager
from .prompts import SYNTHESIS_SYSTEM_PROMPT, format_synthesis_prompt
from .session import DeliberationSession
from .utils import clean_response
from .voting import AggregateRanking

MAX_CHAIRMAN_ATTEMPTS = 2


@dataclass(frozen=True)
class SynthesisResult:
    """The deliverable of a deliberation. Immutable once created."""
    final_answer: str
    weights: Mapping[str, int]
    chairman_model_id: str
    session_id: str
    completed_at: datetime
    attempted_chairmen: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))
        object.__setattr__(self, "attempted_chairmen", tuple(self.attempted_chairmen))

    @property
    def normalized_weights(self) -> Dict[str, float]:
        total = sum(self.weights.values())
        if total == 0:
            return {model_id: 0.0 for model_id in self.weights}
        return {model_id: score / total for model_id, score in self.weights.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "finalAnswer": self.final_answer,
            "chairmanModelId": self.chairman_model_id,
            "weights": dict(self.weights),
            "normalizedWeights": {k: round(v, 4) for k, v in self.normalized_weights.items()},
            "attemptedChairmen": list(self.attempted_chairmen),
            "completedAt": self.completed_at.isoformat(),
        }


class ChairmanSynthesizer:
    """
    Asks one model to write the final answer from all responses and their
    Borda weights.

    The chairman is the designated model when one is configured, otherwise
    the top-scored model. If the chairman fails, the highest-scored other
    model gets exactly one more try; a second failure ends the session with
    SYNTHESIS_UNAVAILABLE.
    """

    def __init__(
        self,
        model_manager: ModelManager,
        designated_chairman: Optional[str] = None,
        max_call_timeout: float = 120.0,
        temperature: float = 0.5
    ):
        self.model_manager = model_manager
        self.designated_chairman = designated_chairman
        self.max_call_timeout = max_call_timeout
        self.temperature = temperature

    def chairman_ladder(
        self,
        aggregate: AggregateRanking,
        designated: Optional[str] = None
    ) -> List[str]:
        """Chairman first, then the single fallback."""
        ranked = aggregate.ordered_model_ids()
        first = designated or self.designated_chairman or (ranked[0] if ranked else None)
        if first is None:
            return []
        fallback = next((m for m in ranked if m != first), None)
        return [first] if fallback is None else [first, fallback]

    def build_prompt(
        self,
        question: str,
        aggregate: AggregateRanking,
        responses: Sequence[ModelResponse]
    ) -> str:
        texts = {r.model_id: r.text for r in responses if r.succeeded}
        total = aggregate.total_points
        sources = [
            (
                m.model_id,
                texts.get(m.model_id, ""),
                m.borda_score,
                m.borda_score / total if total else 0.0
            )
            for m in aggregate.scored_models
            if m.model_id in texts
        ]
        return format_synthesis_prompt(question, sources)

    async def synthesize(
        self,
        session: DeliberationSession,
        aggregate: AggregateRanking,
        responses: Sequence[ModelResponse]
    ) -> SynthesisResult:
        prompt = self.build_prompt(session.question, aggregate, responses)
        ladder = self.chairman_ladder(aggregate, session.chairman_model_id)
        attempted: List[str] = []

        for model_id in ladder[:MAX_CHAIRMAN_ATTEMPTS]:
            attempted.append(model_id)
            chairman = self.model_manager.get_member(model_id)
            logger.info(f"Session {session.id}: synthesis by chairman {model_id}")
            try:
                answer = await chairman.complete(
                    prompt,
                    timeout=min(chairman.timeout, self.max_call_timeout),
                    system_prompt=SYNTHESIS_SYSTEM_PROMPT,
                    temperature=self.temperature
                )
            except GatewayError as e:
                logger.warning(f"Session {session.id}: chairman {model_id} failed ({e.kind.value})")
                continue

            return SynthesisResult(
                final_answer=clean_response(answer),
                weights=aggregate.weights,
                chairman_model_id=model_id,
                session_id=session.id,
                completed_at=datetime.now(timezone.utc),
                attempted_chairmen=attempted,
            )

        raise DeliberationFailed(
            ErrorKind.SYNTHESIS_UNAVAILABLE,
            f"Chairman attempts failed: {', '.join(attempted) or 'no candidate'}"
        )
