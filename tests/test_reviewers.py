"""Tests for reviewer reply parsing and the LLM reviewer clients."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from ancestor_engine.review.llm import (
    AnthropicReviewer,
    MockReviewer,
    OpenAIReviewer,
    ReviewerError,
    parse_review,
    strip_code_fences,
)

VALID = json.dumps({"ancestor_reviews": [{"asc": 4, "confidence_adjustment": -2}]})


class TestParseReview:
    """Replies are untrusted and validated strictly."""

    def test_plain_json(self):
        review = parse_review(VALID, "claude")
        assert review.reviewer == "claude"
        assert review.for_position(4).confidence_adjustment == -2

    def test_fenced_json(self):
        review = parse_review(f"Here you go:\n```json\n{VALID}\n```", "gpt")
        assert review.for_position(4) is not None

    def test_strip_code_fences_passthrough(self):
        assert strip_code_fences("  {}  ") == "{}"

    def test_reviewer_name_in_reply_kept(self):
        review = parse_review(json.dumps({"reviewer": "opus"}), "claude")
        assert review.reviewer == "opus"

    @pytest.mark.parametrize(
        "text,message",
        [
            ("", "Empty reply"),
            ("not json", "Invalid JSON"),
            ("[1, 2]", "not a JSON object"),
            (json.dumps({"ancestor_reviews": [{"asc": 4, "confidence_adjustment": 25}]}), "schema"),
            (json.dumps({"verdict": "ok"}), "schema"),
        ],
    )
    def test_rejected(self, text, message):
        with pytest.raises(ReviewerError, match=message):
            parse_review(text, "claude")

    def test_oversized_reply(self):
        with pytest.raises(ReviewerError, match="exceeds limit"):
            parse_review(VALID, "claude", max_chars=10)


class TestAnthropicReviewer:
    """Test the Claude reviewer with a mocked client."""

    @pytest.mark.asyncio
    async def test_review(self):
        client = MagicMock()
        response = MagicMock()
        response.content = [MagicMock(text=VALID)]
        response.usage.input_tokens = 100
        response.usage.output_tokens = 20
        client.messages.create = AsyncMock(return_value=response)

        reviewer = AnthropicReviewer(client=client, model="claude-test")
        review = await reviewer.review("system", "payload")

        assert review.reviewer == "claude"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "payload"}]

    def test_unavailable_without_key(self):
        assert not AnthropicReviewer().is_available()
        assert AnthropicReviewer(api_key="sk-test").is_available()

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(ReviewerError, match="not configured"):
            await AnthropicReviewer().review("system", "payload")

    @pytest.mark.asyncio
    async def test_request_failure_wrapped(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=RuntimeError("overloaded"))
        with pytest.raises(ReviewerError, match="Request failed: overloaded"):
            await AnthropicReviewer(client=client).review("system", "payload")


class TestOpenAIReviewer:
    """Test the GPT reviewer with a mocked client."""

    @pytest.mark.asyncio
    async def test_review_uses_json_mode(self):
        client = MagicMock()
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content=VALID))]
        response.usage.prompt_tokens = 100
        response.usage.completion_tokens = 20
        client.chat.completions.create = AsyncMock(return_value=response)

        review = await OpenAIReviewer(client=client).review("system", "payload")

        assert review.reviewer == "gpt"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_empty_content(self):
        client = MagicMock()
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content=None))]
        client.chat.completions.create = AsyncMock(return_value=response)

        with pytest.raises(ReviewerError, match="Empty reply"):
            await OpenAIReviewer(client=client).review("system", "payload")


class TestMockReviewer:
    @pytest.mark.asyncio
    async def test_records_calls(self):
        reviewer = MockReviewer("claude", {"ancestor_reviews": []})
        await reviewer.review("system", "payload")
        assert reviewer.calls == [("system", "payload")]
