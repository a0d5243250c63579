"""
Stage 3: Borda aggregation of peer rankings with self-preference detection.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from statistics import mean
from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger

from .review import PeerRanking, validate_ranking


class BordaScheme(Enum):
    """Points awarded for a 0-indexed ``position`` among ``n`` entries."""
    LINEAR = "linear"          # n - position: first gets n, last gets 1
    ZERO_BASED = "zero_based"  # n - 1 - position: first gets n-1, last gets 0

    def points(self, n: int, position: int) -> int:
        if self is BordaScheme.ZERO_BASED:
            return n - 1 - position
        return n - position

    def total_per_judge(self, n: int) -> int:
        return sum(self.points(n, p) for p in range(n))


@dataclass(frozen=True)
class ScoredModel:
    model_id: str
    borda_score: int
    self_preference_flag: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "borda_score": self.borda_score,
            "self_preference_flag": self.self_preference_flag,
        }


@dataclass(frozen=True)
class BiasReportEntry:
    """How a judge placed its own response, next to how its peers placed it."""
    model_id: str
    self_position: int
    peer_mean_position: Optional[float]
    ranked_self_first: bool

    @property
    def self_advantage(self) -> Optional[float]:
        """Positions gained by self-assessment; positive means self-favoring."""
        if self.peer_mean_position is None:
            return None
        return self.peer_mean_position - self.self_position

    def to_dict(self) -> Dict[str, Any]:
        advantage = self.self_advantage
        return {
            "model_id": self.model_id,
            "self_position": self.self_position,
            "peer_mean_position": None if self.peer_mean_position is None else round(self.peer_mean_position, 4),
            "self_advantage": None if advantage is None else round(advantage, 4),
            "ranked_self_first": self.ranked_self_first,
        }


@dataclass(frozen=True)
class AggregateRanking:
    """Consensus ranking, sorted by descending score then model id."""
    scored_models: List[ScoredModel]
    num_entries: int
    num_judges: int
    scheme: BordaScheme = BordaScheme.LINEAR
    bias_report: List[BiasReportEntry] = field(default_factory=list)
    excluded_judges: List[str] = field(default_factory=list)

    @property
    def total_points(self) -> int:
        return sum(m.borda_score for m in self.scored_models)

    @property
    def weights(self) -> Dict[str, int]:
        return {m.model_id: m.borda_score for m in self.scored_models}

    def ordered_model_ids(self) -> List[str]:
        return [m.model_id for m in self.scored_models]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": self.scheme.value,
            "num_entries": self.num_entries,
            "num_judges": self.num_judges,
            "total_points": self.total_points,
            "scored_models": [m.to_dict() for m in self.scored_models],
            "bias_report": [b.to_dict() for b in self.bias_report],
            "excluded_judges": list(self.excluded_judges),
        }

    def to_json(self) -> str:
        """Canonical serialization: identical inputs give identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


class RankAggregator:
    """
    Turns valid peer rankings into one consensus ranking.

    ``aggregate`` is a pure function of its inputs. Ties are broken by
    lexicographic model id so identical inputs always give the same order.
    A judge that ranks its own response first is flagged; its vote still
    counts in full.
    """

    def __init__(self, scheme: BordaScheme = BordaScheme.LINEAR):
        self.scheme = scheme

    def aggregate(
        self,
        rankings: Sequence[PeerRanking],
        mapping: Mapping[str, str]
    ) -> AggregateRanking:
        labels = list(mapping)
        n = len(labels)
        scores: Dict[str, int] = {model_id: 0 for model_id in mapping.values()}
        positions: Dict[str, Dict[str, int]] = {model_id: {} for model_id in mapping.values()}
        excluded: List[str] = []
        counted = 0

        for ranking in rankings:
            if validate_ranking(ranking.ordered_labels, labels):
                excluded.append(ranking.judge_model_id)
                continue
            counted += 1
            for position, label in enumerate(ranking.ordered_labels):
                model_id = mapping[label]
                scores[model_id] += self.scheme.points(n, position)
                positions[model_id][ranking.judge_model_id] = position

        if excluded:
            logger.warning(f"Aggregation excluded invalid rankings from: {', '.join(sorted(excluded))}")

        bias_report = self._bias_report(positions)
        flagged = {b.model_id for b in bias_report if b.ranked_self_first}

        scored = [
            ScoredModel(model_id, score, model_id in flagged)
            for model_id, score in scores.items()
        ]
        scored.sort(key=lambda m: (-m.borda_score, m.model_id))

        return AggregateRanking(
            scored_models=scored,
            num_entries=n,
            num_judges=counted,
            scheme=self.scheme,
            bias_report=bias_report,
            excluded_judges=sorted(excluded),
        )

    @staticmethod
    def _bias_report(positions: Dict[str, Dict[str, int]]) -> List[BiasReportEntry]:
        report = []
        for model_id in sorted(positions):
            by_judge = positions[model_id]
            if model_id not in by_judge:
                continue
            own = by_judge[model_id]
            peers = [p for judge, p in by_judge.items() if judge != model_id]
            report.append(BiasReportEntry(
                model_id=model_id,
                self_position=own,
                peer_mean_position=mean(peers) if peers else None,
                ranked_self_first=own == 0,
            ))
        return report
