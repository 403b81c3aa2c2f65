"""Helpdesk HTTP Request Executor.

Low-level HTTP client shared by every connector.
Handles auth injection, 429 backoff, error mapping and response decoding
(JSON, or XML with the array-coercion allowlist).

One call is in flight at a time; the only suspension points are the
network round trip and the backoff sleep.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import aiohttp

from connectors.auth import AuthStrategy, PreparedRequest
from connectors.errors import ApiError, MalformedResponse, RateLimitExceeded
from connectors.normalizer import parse_xml
from core.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    ``max_retries`` bounds the number of 429 retries per call. ``max_total_wait``
    optionally caps the cumulative backoff sleep of one call (None = no cap).
    """
    max_retries: int = 5
    default_retry_after: float = 10.0
    rate_limit_statuses: Tuple[int, ...] = (429,)
    max_total_wait: Optional[float] = None
    # Transport errors (connection reset, timeout) back off exponentially
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a transport-error retry (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)

    def parse_retry_after(self, value: Optional[str]) -> float:
        """Seconds from a Retry-After header, default when absent or unparseable."""
        if value is None:
            return self.default_retry_after
        try:
            seconds = float(value.strip())
        except (TypeError, ValueError):
            return self.default_retry_after
        if seconds < 0:
            return self.default_retry_after
        return seconds


@dataclass
class ExecutorConfig:
    """Per-connector transport settings.

    Attributes:
        base_url: Scheme + host (+ path prefix) for relative endpoints
        source_name: Platform name used in error messages
        response_format: "json" or "xml"
        body_format: "json" or "form"
        endpoint_param: When set, the endpoint is sent as this query parameter
            against ``base_url`` (Kayako Classic's ``?e=/Tickets/...``)
        xml_array_tags: Element names always materialized as lists
        extra_headers: Headers sent on every request
        timeout_seconds: Total timeout of one attempt
    """
    base_url: str
    source_name: str
    response_format: str = "json"
    body_format: str = "json"
    endpoint_param: Optional[str] = None
    xml_array_tags: FrozenSet[str] = frozenset()
    extra_headers: Dict[str, str] = field(default_factory=dict)
    timeout_seconds: int = 30
    retry_config: RetryConfig = field(default_factory=RetryConfig)


class RequestExecutor:
    """Authenticated request executor for one connector.

    Usage:
        executor = RequestExecutor(config, BearerAuth(token))
        async with executor:
            data = await executor.execute("/tickets?page=1")
    """

    def __init__(
        self,
        config: ExecutorConfig,
        auth: AuthStrategy,
        session: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize executor.

        Args:
            config: Transport settings
            auth: Auth strategy applied on every attempt
            session: Optional pre-built aiohttp-compatible session (tests)
            sleep: Backoff sleep coroutine
        """
        self.config = config
        self.auth = auth
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self.request_count = 0

    async def connect(self) -> None:
        """Create the HTTP session if none was injected."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def disconnect(self) -> None:
        """Close the HTTP session if this executor created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "RequestExecutor":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # -------------------------------------------------------------------------
    # Request building
    # -------------------------------------------------------------------------

    def _build_request(self, endpoint: str, method: str, body: Optional[Any]) -> PreparedRequest:
        method = method.upper()

        if self.config.endpoint_param:
            request = PreparedRequest(method=method, url=self.config.base_url)
            request.params[self.config.endpoint_param] = endpoint
        else:
            raw = endpoint if endpoint.startswith(("http://", "https://")) else self.config.base_url.rstrip("/") + endpoint
            parts = urlsplit(raw)
            request = PreparedRequest(
                method=method,
                url=urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")),
                params=dict(parse_qsl(parts.query, keep_blank_values=True)),
            )

        request.headers.update(self.config.extra_headers)
        if self.config.response_format == "json":
            request.headers.setdefault("Accept", "application/json")

        if body is not None:
            if self.config.body_format == "form":
                request.data = {str(k): str(v) for k, v in body.items()}
            else:
                request.json = body
        return request

    def _decode(self, text: str, endpoint: str) -> Any:
        if not text or not text.strip():
            return {}
        if self.config.response_format == "xml":
            try:
                return parse_xml(text, self.config.xml_array_tags)
            except ValueError as e:
                raise MalformedResponse(
                    f"Failed to parse XML response from {endpoint}: {e}", endpoint, text
                ) from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedResponse(
                f"Failed to parse JSON response from {endpoint}: {e}", endpoint, text
            ) from e

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(self, endpoint: str, method: str = "GET", body: Optional[Any] = None) -> Any:
        """Make an authenticated API request with 429 backoff.

        Args:
            endpoint: Path (optionally with query) or absolute URL
            method: HTTP method
            body: JSON body, or form fields for form-encoded platforms

        Returns:
            Decoded response (``{}`` for an empty body)

        Raises:
            AuthError: 401/403
            NotFoundError: 404
            RateLimitExceeded: Still rate limited after ``max_retries`` retries
            ApiError: Any other non-2xx status or transport failure
            MalformedResponse: Body could not be decoded
        """
        if self._session is None:
            await self.connect()

        retry_config = self.config.retry_config
        rate_limit_retries = 0
        transport_retries = 0
        waited = 0.0

        while True:
            # Auth is re-applied per attempt so HMAC salts are never replayed
            request = self._build_request(endpoint, method, body)
            self.auth.apply(request)
            self.request_count += 1

            try:
                async with self._session.request(
                    request.method,
                    request.url,
                    params=request.params or None,
                    headers=request.headers,
                    json=request.json,
                    data=request.data,
                ) as response:
                    status = response.status
                    retry_after_header = response.headers.get("Retry-After")
                    response_text = await response.text()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if transport_retries < retry_config.max_retries:
                    delay = retry_config.get_delay(transport_retries)
                    transport_retries += 1
                    logger.warning(
                        f"{self.config.source_name} request to {endpoint} failed with "
                        f"{type(e).__name__}: {e}, retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                    continue
                raise ApiError(
                    f"{self.config.source_name} request failed after {retry_config.max_retries} retries: {e}",
                    0,
                    endpoint,
                ) from e

            if status in retry_config.rate_limit_statuses:
                retry_after = retry_config.parse_retry_after(retry_after_header)
                over_budget = (
                    retry_config.max_total_wait is not None
                    and waited + retry_after > retry_config.max_total_wait
                )
                if rate_limit_retries >= retry_config.max_retries or over_budget:
                    raise RateLimitExceeded(
                        f"{self.config.source_name} rate limit exceeded after "
                        f"{rate_limit_retries} retries for {endpoint}",
                        endpoint,
                        rate_limit_retries,
                    )
                rate_limit_retries += 1
                waited += retry_after
                logger.warning(
                    f"[rate-limit {status}] {self.config.source_name} retry "
                    f"{rate_limit_retries}/{retry_config.max_retries}, waiting {retry_after:g}s"
                )
                await self._sleep(retry_after)
                continue

            if not 200 <= status < 300:
                raise ApiError.from_response(self.config.source_name, status, endpoint, response_text)

            return self._decode(response_text, endpoint)
