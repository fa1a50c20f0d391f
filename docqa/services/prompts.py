# =============================================================================
# Prompt Construction — Grounding Gate, System Prompts, Completion Payload
# =============================================================================
#
# Two answer framings:
#
#   GROUNDED   — strict rules: answer only from the documents, cite sources,
#                cross-check, conclusion first. Context appended.
#   INFERENCE  — best-effort answer labelled as inference, with whatever
#                partial evidence the context provides (possibly none).
#
# The gate picks INFERENCE when there is no context at all, or when the
# context came from embedding search and even the best chunk scored below
# the relevance threshold. Raw-snapshot context is whole documents, so it
# is always treated as grounded.
# =============================================================================

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from docqa.services.retrieval import RetrievalMode, RetrievalResult

GROUNDED_RULES = (
    "-Respond as complete and concise as possible, make sure the information "
    "given is accurate. \n"
    "-Do not answer questions outside of the knowledge files. \n"
    "-For each response, give source, reference, and page number at the end of "
    "each response for each information mentioned (reference to the documents "
    "within the documents because each file uploaded may contain multiple "
    "documents).\n"
    "-Crosscheck all of the information in the response with the reference. \n"
    "-Give the short conclusion first and follow with the explanation\n"
    "-Crosscheck and validate all responses strictly against the uploaded "
    "document sources before replying. Do not provide any response unless it "
    "can be fully supported with evidence from the documents.\n"
    "-If the sources state a numeric rule/ratio (e.g., '1 A requires 1 B'), USE "
    "that rule to compute implied quantities for the user's asked amount using "
    "basic arithmetic. Show the calculation steps and cite the rule's source. "
    "Do not invent rules."
)

GROUNDED_NO_CONTEXT = "You are a helpful assistant. Answer concisely."

INFERENCE_RULES = (
    "-When sources are insufficient to fully answer, provide the best-effort "
    "inferred answer using clear assumptions and basic arithmetic/logic.\n"
    "-Label it as 'Best-effort inference' and prefer any partial evidence "
    "available.\n"
    "-If a numeric rule/ratio exists, scale it to the asked quantity and show "
    "steps.\n"
    "-If later documents contradict assumptions, state that the document rule "
    "should prevail."
)

INFERENCE_NO_CONTEXT = (
    "-No direct document evidence found. Provide a best-effort inferred answer "
    "using clear assumptions and basic arithmetic/logic. Keep it concise and "
    "label as 'Best-effort inference'. Ask for missing details if necessary."
)

HISTORY_ROLES = frozenset({"user", "assistant"})


def should_use_inference(result: RetrievalResult, score_threshold: float) -> bool:
    """True when the answer may not be strictly grounded in the context."""
    if not result.has_context:
        return True
    if result.mode is RetrievalMode.EMBEDDING:
        return result.best_score is None or result.best_score < score_threshold
    return False


def build_system_prompt(context: str, *, inference: bool) -> str:
    if inference:
        return f"{INFERENCE_RULES}\n\n{context}" if context else INFERENCE_NO_CONTEXT
    return f"{GROUNDED_RULES}\n\n{context}" if context else GROUNDED_NO_CONTEXT


def filter_history(history: Iterable[Any] | None) -> list[dict[str, str]]:
    """Keep only user/assistant turns whose content is a string."""
    if not history:
        return []
    kept: list[dict[str, str]] = []
    for item in history:
        if not isinstance(item, Mapping):
            continue
        role = item.get("role")
        content = item.get("content")
        if role in HISTORY_ROLES and isinstance(content, str):
            kept.append({"role": role, "content": content})
    return kept


def build_messages(
    message: str,
    result: RetrievalResult,
    history: Iterable[Any] | None = None,
    *,
    score_threshold: float = 0.22,
) -> list[dict[str, str]]:
    inference = should_use_inference(result, score_threshold)
    return [
        {"role": "system", "content": build_system_prompt(result.context, inference=inference)},
        *filter_history(history),
        {"role": "user", "content": message},
    ]


def build_completion_payload(
    model: str,
    messages: list[dict[str, str]],
    *,
    reasoning_effort: str | None = "high",
    max_completion_tokens: int = 2500,
    temperature: float = 0.1,
    stream: bool = False,
) -> dict[str, Any]:
    """Wire-shape chat completion request."""
    payload: dict[str, Any] = {"model": model, "messages": messages}
    if reasoning_effort:
        payload["reasoning"] = {"effort": reasoning_effort}
    payload["max_completion_tokens"] = max_completion_tokens
    payload["temperature"] = temperature
    if stream:
        payload["stream"] = True
    return payload
