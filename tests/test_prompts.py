# =============================================================================
# Unit Tests — Grounding Gate and Prompt Construction
# =============================================================================

from docqa.services.prompts import (
    GROUNDED_NO_CONTEXT,
    INFERENCE_NO_CONTEXT,
    build_completion_payload,
    build_system_prompt,
    filter_history,
    should_use_inference,
)
from docqa.services.retrieval import RetrievalMode, RetrievalResult


class TestShouldUseInference:
    def test_no_context(self):
        assert should_use_inference(RetrievalResult(mode=RetrievalMode.NONE), 0.22)

    def test_embedding_below_threshold(self):
        result = RetrievalResult(mode=RetrievalMode.EMBEDDING, context="c", best_score=0.21)
        assert should_use_inference(result, 0.22)

    def test_embedding_at_threshold_is_grounded(self):
        result = RetrievalResult(mode=RetrievalMode.EMBEDDING, context="c", best_score=0.22)
        assert not should_use_inference(result, 0.22)

    def test_raw_context_ignores_scores(self):
        result = RetrievalResult(mode=RetrievalMode.RAW, context="c")
        assert not should_use_inference(result, 0.22)


class TestSystemPrompt:
    def test_context_is_appended(self):
        assert build_system_prompt("CTX", inference=False).endswith("\n\nCTX")
        assert build_system_prompt("CTX", inference=True).endswith("\n\nCTX")

    def test_no_context_variants(self):
        assert build_system_prompt("", inference=True) == INFERENCE_NO_CONTEXT
        assert build_system_prompt("", inference=False) == GROUNDED_NO_CONTEXT


class TestFilterHistory:
    def test_none(self):
        assert filter_history(None) == []

    def test_keeps_user_and_assistant_strings_only(self):
        history = [
            {"role": "user", "content": "a", "extra": 1},
            {"role": "tool", "content": "b"},
            {"role": "assistant", "content": None},
            42,
        ]
        assert filter_history(history) == [{"role": "user", "content": "a"}]


class TestCompletionPayload:
    def test_reasoning_omitted_when_disabled(self):
        payload = build_completion_payload("o3", [], reasoning_effort=None)
        assert "reasoning" not in payload
        assert payload["max_completion_tokens"] == 2500

    def test_stream_flag(self):
        assert build_completion_payload("o3", [], stream=True)["stream"] is True
        assert "stream" not in build_completion_payload("o3", [])
