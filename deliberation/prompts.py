"""
Prompt templates for the deliberation stages.
"""
from typing import List, Sequence, Tuple

COLLECTION_SYSTEM_PROMPT = """You are a thoughtful and balanced expert participating in a council of advisors.
Provide a well-reasoned answer that considers multiple perspectives.
Be thorough but concise. Acknowledge uncertainty when appropriate."""

REVIEW_SYSTEM_PROMPT = """You are an expert evaluator. Be thorough but concise.
Always end with a line of the form FINAL RANKING: [X, Y, Z]."""

# Placeholder only; never drawn from a judge's labels.
RANKING_EXAMPLE = "Q, X, M"

REVIEW_PROMPT = """You are evaluating responses to the following question:

**QUESTION:** {question}

---

{responses}

---

**Your Task:**
Evaluate each response for:
1. Accuracy - Is the information correct?
2. Completeness - Does it fully address the question?
3. Clarity - Is it well-structured and easy to understand?
4. Usefulness - Would this be helpful to someone asking this question?

After your evaluation, you MUST provide your final ranking in this exact format on its own line:

FINAL RANKING: [Best, Second, Third, ...]

For example: FINAL RANKING: [{example}]
(The example labels are placeholders, not a suggested order.)

Rank from BEST to WORST. Use the response labels exactly as written.
Include ALL {count} responses, each exactly once."""

SYNTHESIS_SYSTEM_PROMPT = """You are the Chairman of an expert council.
Synthesize the best insights from all responses, giving more weight to
higher-ranked responses. Be comprehensive but concise."""

SYNTHESIS_PROMPT = """You are the Chairman of a council of models tasked with synthesizing the best possible answer.

**ORIGINAL QUESTION:**
{question}

---

**COUNCIL RESPONSES (with peer-review weight):**

{responses}

---

**PEER RANKING (Borda score, higher is better):**
{ranking}

---

**Your Task as Chairman:**
1. Weight each response by its score: where responses conflict, favor the higher-weighted source.
2. Do not discard the lower-weighted responses wholesale; keep any correct insight they add.
3. Identify areas of agreement across responses.
4. Produce one comprehensive, authoritative answer that represents the council's collective judgment.

Provide your synthesized answer now:"""


def format_review_responses(entries: Sequence[Tuple[str, str]]) -> str:
    """Render ``(label, text)`` pairs for a judge."""
    return "\n\n---\n\n".join(
        f"### Response {label}\n{text}" for label, text in entries
    )


def format_review_prompt(question: str, entries: Sequence[Tuple[str, str]]) -> str:
    """Format the peer review prompt. Only labels and texts reach the judge."""
    return REVIEW_PROMPT.format(
        question=question,
        responses=format_review_responses(entries),
        example=RANKING_EXAMPLE,
        count=len(entries)
    )


def format_synthesis_prompt(
    question: str,
    sources: List[Tuple[str, str, float, float]],
) -> str:
    """
    Format the chairman prompt.

    ``sources`` holds ``(model_id, text, borda_score, share)`` ordered by
    descending score.
    """
    responses = "\n\n---\n\n".join(
        f"**{model_id}** (score {score:g}, weight {share:.0%}):\n{text}"
        for model_id, text, score, share in sources
    )
    ranking = "\n".join(
        f"{i}. {model_id} - Score: {score:g}"
        for i, (model_id, _, score, _) in enumerate(sources, 1)
    )
    return SYNTHESIS_PROMPT.format(
        question=question,
        responses=responses,
        ranking=ranking
    )
