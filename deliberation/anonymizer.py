"""
Stage 2a: strip model identity from responses before peer review.
"""
import random
import re
import secrets
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .collector import ModelResponse

# No 0/O, 1/I/L: judges copy labels by hand.
LABEL_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
LABEL_LENGTH = 6
REDACTION_TOKEN = "[a model]"


@dataclass(frozen=True)
class AnonymizedEntry:
    """The judging unit: an opaque label and the response text."""
    label: str
    text: str


@dataclass
class AnonymizationResult:
    entries: List[AnonymizedEntry] = field(default_factory=list)
    mapping: Dict[str, str] = field(default_factory=dict)

    @property
    def labels(self) -> List[str]:
        return [e.label for e in self.entries]


def generate_label(length: int = LABEL_LENGTH) -> str:
    return "".join(secrets.choice(LABEL_ALPHABET) for _ in range(length))


def redact_identities(text: str, identities: Iterable[str]) -> str:
    """Replace every known model identifier in ``text`` with a neutral token."""
    names = sorted({i for i in identities if i}, key=len, reverse=True)
    if not names:
        return text
    pattern = re.compile("|".join(re.escape(n) for n in names), re.IGNORECASE)
    return pattern.sub(REDACTION_TOKEN, text)


class Anonymizer:
    """
    Assigns random labels to successful responses.

    Labels are drawn from ``secrets`` and carry no information about the
    model that produced the text. The presentation order for each judge is
    reshuffled on every call to ``presentation_order``.
    """

    def __init__(
        self,
        redact: bool = True,
        label_length: int = LABEL_LENGTH,
        rng: Optional[random.Random] = None
    ):
        self.redact = redact
        self.label_length = label_length
        self._rng = rng or random.SystemRandom()

    def _unique_label(self, taken: set) -> str:
        label = generate_label(self.label_length)
        while label in taken:
            logger.debug("Label collision, regenerating")
            label = generate_label(self.label_length)
        return label

    def scrub(self, text: str, identities: Iterable[str]) -> str:
        """``text`` with model ids redacted, for anything a judge will read."""
        return redact_identities(text, identities) if self.redact else text

    def anonymize(
        self,
        responses: List[ModelResponse],
        identities: Optional[Iterable[str]] = None
    ) -> AnonymizationResult:
        """
        Label every successful response.

        ``identities`` is the full set of model ids to scrub from the texts;
        it defaults to the ids of the given responses.
        """
        successful = [r for r in responses if r.succeeded]
        known = list(identities) if identities is not None else [r.model_id for r in responses]

        result = AnonymizationResult()
        for response in successful:
            label = self._unique_label(set(result.mapping))
            result.entries.append(AnonymizedEntry(label=label, text=self.scrub(response.text, known)))
            result.mapping[label] = response.model_id

        # Entry order must not mirror participant order.
        self._rng.shuffle(result.entries)
        return result

    def presentation_order(self, entries: List[AnonymizedEntry]) -> List[AnonymizedEntry]:
        """A freshly shuffled copy for one judge request."""
        ordered = list(entries)
        self._rng.shuffle(ordered)
        return ordered
