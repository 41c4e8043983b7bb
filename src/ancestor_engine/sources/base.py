"""Base interface for genealogy record sources."""
from __future__ import annotations

import asyncio
import random
from abc import ABC
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from ..net import AdapterGuard, RateLimitConfig

if TYPE_CHECKING:
    from ..models.candidate import Candidate, ParentPair, SearchQuery, VitalEntry

logger = structlog.get_logger(__name__)

TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.TransportError, httpx.HTTPStatusError)


class Capability(str, Enum):
    """What a source can be asked to do."""

    SEARCH = "search"
    TREE = "tree"
    CONFIRM = "confirm"
    CITATIONS = "citations"


class SourceError(Exception):
    """Base exception for source adapter errors."""

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.source = source


class RateLimitError(SourceError):
    """The provider kept answering 429 after every backoff retry."""


class AuthenticationError(SourceError):
    """Credentials missing, expired or refused."""


class SourceUnavailableError(SourceError):
    """The adapter is disabled, degraded, circuit-broken or unreachable."""


class SourceResponseError(SourceError):
    """The provider answered with an error or an unparseable payload."""

    def __init__(self, message: str, source: str = "", status_code: int | None = None) -> None:
        super().__init__(message, source)
        self.status_code = status_code


@runtime_checkable
class RecordSource(Protocol):
    """Protocol every provider adapter satisfies.

    Callers check ``capabilities`` (and ``is_available()``) before calling an
    operation; an adapter without a capability raises ``SourceError`` for it.
    """

    name: str
    capabilities: frozenset[Capability]

    def is_available(self) -> bool:
        ...

    async def search_person(self, query: SearchQuery) -> list[Candidate]:
        ...

    async def get_parents(self, person_id: str) -> ParentPair:
        ...

    async def get_ancestry(self, person_id: str, generations: int = 1) -> list[Candidate]:
        ...

    async def get_person_sources(self, person_id: str) -> list[dict[str, str]]:
        ...

    async def confirm_birth(
        self, first_name: str, last_name: str, year: int, place: str = ""
    ) -> VitalEntry | None:
        ...

    async def confirm_death(self, first_name: str, last_name: str, year: int) -> VitalEntry | None:
        ...

    async def find_marriage(
        self,
        surname: str,
        first_name: str,
        spouse_surname: str = "",
        year_from: int | None = None,
        year_to: int | None = None,
        district: str = "",
    ) -> VitalEntry | None:
        ...


class BaseSource(ABC):
    """Shared HTTP plumbing for provider adapters.

    Each instance owns its ``AdapterGuard``; the registry builds fresh
    instances per job so rate-limit state never leaks between jobs.
    """

    name: str = "base"
    base_url: str = ""
    capabilities: frozenset[Capability] = frozenset()
    default_rate_limit = RateLimitConfig()

    def __init__(
        self,
        access_token: str | None = None,
        guard: AdapterGuard | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.access_token = access_token
        self.guard = guard or AdapterGuard(self.name.lower(), self.default_rate_limit)
        self._client = client
        self._timeout = timeout
        self.retry_wait = wait_exponential_jitter(initial=0.5, max=4.0)
        self.jitter = (0.05, 0.2)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def requires_auth(self) -> bool:
        return False

    def is_configured(self) -> bool:
        if self.requires_auth():
            return bool(self.access_token)
        return True

    def is_available(self) -> bool:
        return self.is_configured() and self.guard.is_open()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    # ------------------------------------------------------------------
    # Capability defaults
    # ------------------------------------------------------------------

    def _unsupported(self, operation: str) -> SourceError:
        return SourceError(f"{self.name} does not support {operation}", self.name)

    async def search_person(self, query: SearchQuery) -> list[Candidate]:
        raise self._unsupported("search")

    async def get_parents(self, person_id: str) -> ParentPair:
        raise self._unsupported("parent lookup")

    async def get_ancestry(self, person_id: str, generations: int = 1) -> list[Candidate]:
        raise self._unsupported("ancestry lookup")

    async def get_person_sources(self, person_id: str) -> list[dict[str, str]]:
        raise self._unsupported("citations")

    async def confirm_birth(self, first_name: str, last_name: str, year: int, place: str = "") -> VitalEntry | None:
        raise self._unsupported("birth confirmation")

    async def confirm_death(self, first_name: str, last_name: str, year: int) -> VitalEntry | None:
        raise self._unsupported("death confirmation")

    async def find_marriage(
        self,
        surname: str,
        first_name: str,
        spouse_surname: str = "",
        year_from: int | None = None,
        year_to: int | None = None,
        district: str = "",
    ) -> VitalEntry | None:
        raise self._unsupported("marriage lookup")

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """One HTTP exchange with transient-error retry (timeouts, 5xx)."""
        client = self._get_client()

        @retry(
            reraise=True,
            stop=stop_after_attempt(3),
            wait=self.retry_wait,
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
        )
        async def _do() -> httpx.Response:
            # Small jitter to avoid herding
            await asyncio.sleep(random.uniform(*self.jitter))
            resp = await client.request(method, url, **kwargs)
            if resp.status_code >= 500:
                resp.raise_for_status()
            return resp

        return await _do()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        expect: str = "json",
    ) -> Any:
        """Guarded request: availability check, rate limit, 429 backoff, auth errors.

        Returns parsed JSON (``{}`` for 204), text when ``expect="text"``, or
        None for 404.
        """
        if not self.guard.is_open():
            raise SourceUnavailableError(f"{self.name} is not accepting calls", self.name)

        merged_headers = {**self._headers(), **(headers or {})}
        max_retries = self.guard.config.max_retries
        for attempt in range(max_retries + 1):
            await self.guard.limiter.acquire()
            try:
                resp = await self._send(method, url, params=params, data=data, headers=merged_headers)
            except TRANSIENT_ERRORS as e:
                self.guard.note_failure()
                raise SourceUnavailableError(f"{self.name} request failed: {e}", self.name) from e

            if resp.status_code == 429:
                if attempt < max_retries:
                    logger.warning("source.rate_limited", source=self.name, attempt=attempt + 1, max_retries=max_retries)
                    await self.guard.backoff(attempt)
                    continue
                self.guard.note_rate_limited()
                raise RateLimitError(f"{self.name} rate limit exceeded after {max_retries} retries", self.name)

            if resp.status_code in (401, 403):
                raise AuthenticationError(f"{self.name} refused credentials ({resp.status_code})", self.name)
            if resp.status_code == 404:
                self.guard.note_success()
                return None
            if resp.status_code >= 400:
                self.guard.note_failure()
                raise SourceResponseError(
                    f"{self.name} API error ({resp.status_code}): {resp.text[:200]}",
                    self.name,
                    status_code=resp.status_code,
                )

            self.guard.note_success()
            if expect == "text":
                return resp.text
            if resp.status_code == 204 or not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as e:
                raise SourceResponseError(f"{self.name} returned invalid JSON", self.name) from e

        raise RateLimitError(f"{self.name} rate limit exceeded", self.name)

    async def close(self) -> None:
        """Close HTTP client connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> BaseSource:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        """Async context manager exit - ensures connection cleanup."""
        await self.close()
        return False
