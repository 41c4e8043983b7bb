"""Tree reviewer clients.

A reviewer takes the system prompt and a JSON payload and returns a validated
``TreeReview``. Replies are untrusted: code fences are stripped, the size is
checked and the JSON must match the strict schema, otherwise ``ReviewerError``.
"""
from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from ..models.review import TreeReview

if TYPE_CHECKING:
    from anthropic import AsyncAnthropic
    from openai import AsyncOpenAI

logger = structlog.get_logger(__name__)

DEFAULT_MAX_REPLY_CHARS = 200_000

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class ReviewerError(Exception):
    """A reviewer failed or returned an unusable reply."""

    def __init__(self, message: str, reviewer: str = "") -> None:
        self.reviewer = reviewer
        super().__init__(f"[{reviewer}] {message}" if reviewer else message)


def strip_code_fences(text: str) -> str:
    match = _FENCE_RE.search(text or "")
    return match.group(1).strip() if match else (text or "").strip()


def parse_review(text: str, reviewer: str, max_chars: int = DEFAULT_MAX_REPLY_CHARS) -> TreeReview:
    """Validate one raw reply into a ``TreeReview``."""
    if not text or not text.strip():
        raise ReviewerError("Empty reply", reviewer)
    if len(text) > max_chars:
        raise ReviewerError(f"Reply of {len(text)} characters exceeds limit of {max_chars}", reviewer)

    body = strip_code_fences(text)
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise ReviewerError(f"Invalid JSON in reply: {e}", reviewer) from e
    if not isinstance(data, dict):
        raise ReviewerError("Reply is not a JSON object", reviewer)

    try:
        review = TreeReview.model_validate(data)
    except ValidationError as e:
        raise ReviewerError(f"Reply doesn't match schema: {e.error_count()} errors", reviewer) from e
    if not review.reviewer:
        review.reviewer = reviewer
    return review


class ReviewerClient(ABC):
    """Abstract base class for tree reviewers."""

    name: str = "reviewer"

    @abstractmethod
    async def complete(self, system_prompt: str, user_message: str) -> str:
        """Send one request and return the raw reply text."""
        ...

    def is_available(self) -> bool:
        return True

    async def review(
        self, system_prompt: str, user_message: str, max_chars: int = DEFAULT_MAX_REPLY_CHARS
    ) -> TreeReview:
        try:
            text = await self.complete(system_prompt, user_message)
        except ReviewerError:
            raise
        except Exception as e:
            raise ReviewerError(f"Request failed: {e}", self.name) from e
        review = parse_review(text, self.name, max_chars)
        logger.info(
            "review.reply_validated",
            reviewer=self.name,
            ancestors=len(review.ancestor_reviews),
            gaps=len(review.gap_analysis),
        )
        return review


class AnthropicReviewer(ReviewerClient):
    """Claude reviewer."""

    name = "claude"

    def __init__(
        self,
        api_key: str | None = None,
        client: "AsyncAnthropic | None" = None,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 8000,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self.model = model
        self.max_tokens = max_tokens

    def is_available(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> "AsyncAnthropic":
        if self._client is None:
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def complete(self, system_prompt: str, user_message: str) -> str:
        if not self.is_available():
            raise ReviewerError("Anthropic API key not configured", self.name)
        response = await self._get_client().messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        )
        logger.debug(
            "review.usage",
            reviewer=self.name,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        if response.content and len(response.content) > 0:
            return response.content[0].text
        return ""


class OpenAIReviewer(ReviewerClient):
    """GPT reviewer using JSON mode."""

    name = "gpt"

    def __init__(
        self,
        api_key: str | None = None,
        client: "AsyncOpenAI | None" = None,
        model: str = "gpt-4o",
        temperature: float = 0.2,
        max_tokens: int = 4000,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def is_available(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> "AsyncOpenAI":
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def complete(self, system_prompt: str, user_message: str) -> str:
        if not self.is_available():
            raise ReviewerError("OpenAI API key not configured", self.name)
        response = await self._get_client().chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        )
        if response.usage:
            logger.debug(
                "review.usage",
                reviewer=self.name,
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )
        return response.choices[0].message.content or ""


class MockReviewer(ReviewerClient):
    """Scripted reviewer for tests and offline runs."""

    def __init__(self, name: str, reply: str | dict | Exception) -> None:
        self.name = name
        self._reply = reply
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_message: str) -> str:
        self.calls.append((system_prompt, user_message))
        if isinstance(self._reply, Exception):
            raise self._reply
        if isinstance(self._reply, dict):
            return json.dumps(self._reply)
        return self._reply
