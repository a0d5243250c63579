"""
Stage 2b: blind peer review. Every participant ranks every anonymized entry.
"""
import asyncio
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .anonymizer import AnonymizedEntry, Anonymizer
from .errors import ErrorKind, GatewayError
from .models import CouncilMember
from .prompts import REVIEW_SYSTEM_PROMPT, format_review_prompt
from .utils import extract_json

RANKING_PATTERN = re.compile(r"FINAL\s+RANKING\s*:?\s*\[([^\]]*)\]", re.IGNORECASE)
LABEL_NOISE = re.compile(r"^[\s\"'`*]*(?:RESPONSE\s+)?[\s\"'`*]*|[\s\"'`*.]*$", re.IGNORECASE)


@dataclass(frozen=True)
class PeerRanking:
    """One judge's total order over the submitted labels, best first."""
    judge_model_id: str
    ordered_labels: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "judge_model_id": self.judge_model_id,
            "ordered_labels": list(self.ordered_labels),
        }


@dataclass
class RejectedRanking:
    """A judge output that failed validation; kept for diagnostics only."""
    judge_model_id: str
    defects: List[str]
    parsed_labels: Optional[List[str]] = None
    kind: ErrorKind = ErrorKind.MALFORMED_RANKING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "judge_model_id": self.judge_model_id,
            "kind": self.kind.value,
            "defects": list(self.defects),
            "parsed_labels": self.parsed_labels,
        }


@dataclass
class ReviewResult:
    rankings: List[PeerRanking] = field(default_factory=list)
    rejected: List[RejectedRanking] = field(default_factory=list)
    failed_judges: Dict[str, str] = field(default_factory=dict)


def _clean_label(raw: str) -> str:
    return LABEL_NOISE.sub("", raw).upper()


def parse_ranking(text: str) -> Optional[List[str]]:
    """
    Extract an ordered label list from a judge's answer.

    The last ``FINAL RANKING: [..]`` line wins; a JSON object with a
    ``ranking`` list is accepted when no such line exists.
    """
    matches = RANKING_PATTERN.findall(text or "")
    if matches:
        return [_clean_label(part) for part in matches[-1].split(",") if part.strip()]

    data = extract_json(text or "")
    if data and isinstance(data.get("ranking"), list):
        return [_clean_label(str(part)) for part in data["ranking"]]

    return None


def validate_ranking(labels: Sequence[str], expected: Sequence[str]) -> List[str]:
    """
    Return the defects that stop ``labels`` from being a permutation of
    ``expected``. An empty list means the ranking is valid.
    """
    expected_set = set(expected)
    counts = Counter(labels)
    defects = []

    duplicates = sorted(label for label, n in counts.items() if n > 1)
    if duplicates:
        defects.append(f"duplicate: {', '.join(duplicates)}")

    foreign = sorted(label for label in counts if label not in expected_set)
    if foreign:
        defects.append(f"foreign: {', '.join(foreign)}")

    missing = sorted(expected_set - set(counts))
    if missing:
        defects.append(f"missing: {', '.join(missing)}")

    return defects


class PeerReviewer:
    """
    Sends the anonymized entry set to every participant and collects rankings.

    Every judge sees identical content in its own random order. A judge
    that fails to answer loses its vote but its response stays eligible;
    a malformed ranking is discarded and recorded.
    """

    def __init__(
        self,
        anonymizer: Anonymizer,
        max_call_timeout: float = 60.0,
        temperature: float = 0.3
    ):
        self.anonymizer = anonymizer
        self.max_call_timeout = max_call_timeout
        self.temperature = temperature

    async def _review_one(
        self,
        question: str,
        entries: List[AnonymizedEntry],
        judge: CouncilMember
    ) -> Tuple[CouncilMember, Optional[str], Optional[GatewayError]]:
        ordered = self.anonymizer.presentation_order(entries)
        prompt = format_review_prompt(question, [(e.label, e.text) for e in ordered])
        try:
            answer = await judge.complete(
                prompt,
                timeout=min(judge.timeout, self.max_call_timeout),
                system_prompt=REVIEW_SYSTEM_PROMPT,
                temperature=self.temperature
            )
        except GatewayError as e:
            return judge, None, e
        return judge, answer, None

    async def review(
        self,
        question: str,
        entries: List[AnonymizedEntry],
        judges: List[CouncilMember]
    ) -> ReviewResult:
        """Attempt every judge once and sort the outcomes."""
        logger.info(f"Peer review starting: {len(judges)} judges, {len(entries)} entries")
        expected = [e.label for e in entries]

        tasks = [asyncio.create_task(self._review_one(question, entries, j)) for j in judges]
        try:
            outcomes = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        result = ReviewResult()
        for judge, answer, error in outcomes:
            if error is not None:
                logger.warning(f"Judge {judge.name} failed ({error.kind.value}); vote dropped")
                result.failed_judges[judge.name] = error.kind.value
                continue

            labels = parse_ranking(answer)
            if labels is None:
                defects = ["no ranking found"]
            else:
                defects = validate_ranking(labels, expected)

            if defects:
                logger.warning(
                    f"{ErrorKind.MALFORMED_RANKING.value} from {judge.name}: {'; '.join(defects)}"
                )
                result.rejected.append(RejectedRanking(judge.name, defects, labels))
                continue

            result.rankings.append(PeerRanking(judge.name, tuple(labels)))

        logger.info(
            f"Peer review complete: {len(result.rankings)} valid, "
            f"{len(result.rejected)} malformed, {len(result.failed_judges)} failed"
        )
        return result
