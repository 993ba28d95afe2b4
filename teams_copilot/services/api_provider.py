"""
Retrying HTTP client for the AI and API backends the bot depends on.

ApiProvider wraps an httpx.AsyncClient and adds:
- auth header injection on every request except token requests
- a per-URL retry counter with exponential backoff (2^n * 500 ms)
- auth header refresh before a retry when Authorization is missing
- quiet logging of benign backend errors

Subclasses implement retrieve_auth_headers().
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from teams_copilot.models.errors import HttpFailureKind, MissingAuthHeadersError, TerminalHttpError
from teams_copilot.utils.telemetry import MetricNames, TelemetryHelper

logger = logging.getLogger(__name__)

# Matches the copilot backend timeout
DEFAULT_TIMEOUT_SECONDS = 120.0
MAX_RETRY_ATTEMPTS = 3
INITIAL_RETRY_DELAY_MS = 500

RETRYABLE_STATUS_CODES = frozenset({
    401,  # Unauthorized
    403,  # Forbidden
    404,  # Not Found
    408,  # Request Timeout
    413,  # Payload Too Large
    422,  # Unprocessable Entity
    429,  # Too Many Requests
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
})

TOKEN_URL_MARKERS = ("access-token", "token", "jwt")

# Expected backend outcomes that are not worth an error log
BENIGN_ERROR_MESSAGES = (
    "No news can be found from NewsEdge",
    "Azure has not provided the response due to a content filter being triggered",
    "no data found",
)


def is_token_request(url: Optional[str]) -> bool:
    if not url:
        return False
    return any(marker in url for marker in TOKEN_URL_MARKERS)


class ApiProvider(ABC):
    """
    Base class for outbound JSON APIs.

    Retry bookkeeping is keyed by the request URL as passed to request(), so
    concurrent calls to the same URL share one counter.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retry_attempts: int = MAX_RETRY_ATTEMPTS,
        initial_retry_delay_ms: int = INITIAL_RETRY_DELAY_MS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        telemetry: Optional[TelemetryHelper] = None
    ):
        """
        Initialize the provider.

        Args:
            base_url: Base URL of the API
            timeout: Per-attempt timeout in seconds
            max_retry_attempts: Retry budget per URL
            initial_retry_delay_ms: Base of the exponential backoff
            transport: Optional httpx transport (tests use httpx.MockTransport)
            telemetry: Optional telemetry helper for exhausted retries
        """
        self.base_url = base_url
        self.max_retry_attempts = max_retry_attempts
        self.initial_retry_delay_ms = initial_retry_delay_ms
        self.retry_counts: Dict[str, int] = {}
        self.telemetry = telemetry or TelemetryHelper()

        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
            event_hooks={"request": [self._inject_auth_headers]}
        )

    @abstractmethod
    async def retrieve_auth_headers(self) -> Optional[Dict[str, str]]:
        """Return the headers that authorize a request, or None if unavailable."""

    async def _inject_auth_headers(self, request: httpx.Request) -> None:
        if is_token_request(request.url.raw_path.decode()):
            return

        headers = await self.retrieve_auth_headers()
        if not headers:
            raise MissingAuthHeadersError("No authorization header found in the request config.")
        request.headers.update(headers)

    def get_retry_count(self, url: str) -> int:
        return self.retry_counts.get(url, 0)

    def increment_retry_count(self, url: str) -> int:
        count = self.get_retry_count(url) + 1
        self.retry_counts[url] = count
        return count

    def get_retry_delay_ms(self, retry_count: int) -> int:
        return 2 ** retry_count * self.initial_retry_delay_ms

    def should_retry(self, error: BaseException, url: str) -> bool:
        """
        Whether a failed attempt may be retried.

        Requests that got no response are retryable, responses only when the
        status is in RETRYABLE_STATUS_CODES; either way while the URL's counter
        is below max_retry_attempts.
        """
        if self.get_retry_count(url) >= self.max_retry_attempts:
            return False
        if isinstance(error, httpx.TransportError):
            return True
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code in RETRYABLE_STATUS_CODES
        return False

    def _retrying(self, url: str) -> AsyncRetrying:
        def retry_permitted(error: BaseException) -> bool:
            return self.should_retry(error, url) and self.get_retry_count(url) <= self.max_retry_attempts

        def next_delay(retry_state: RetryCallState) -> float:
            return self.get_retry_delay_ms(self.increment_retry_count(url)) / 1000

        return AsyncRetrying(
            retry=retry_if_exception(retry_permitted),
            wait=next_delay,
            sleep=self._sleep,
            reraise=True
        )

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _refresh_authorization(self, request: httpx.Request, url: str) -> None:
        if is_token_request(url) or request.headers.get("Authorization"):
            return
        headers = await self.retrieve_auth_headers()
        token = (headers or {}).get("Authorization")
        if token:
            request.headers["Authorization"] = token if token.startswith("Bearer ") else f"Bearer {token}"

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Args:
            method: HTTP method
            url: URL relative to the base URL
            **kwargs: Passed to httpx.AsyncClient.build_request (json, params, headers...)

        Returns:
            The successful response

        Raises:
            TerminalHttpError: The request failed and will not be retried
            MissingAuthHeadersError: No auth headers were available
        """
        request = self.client.build_request(method, url, **kwargs)
        response = None
        try:
            async for attempt in self._retrying(url):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        await self._refresh_authorization(request, url)
                        logger.warning(f"retrying {request.url} for {self.get_retry_count(url)} time....")
                    response = await self.client.send(request)
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._terminal_error(url, e) from e
        except httpx.TransportError as e:
            raise self._terminal_error(url, e) from e
        finally:
            self.retry_counts.pop(url, None)

        return response

    def _terminal_error(self, url: str, error: httpx.HTTPError) -> TerminalHttpError:
        attempts = self.get_retry_count(url) + 1

        if isinstance(error, httpx.HTTPStatusError):
            status_code = error.response.status_code
            if status_code in RETRYABLE_STATUS_CODES:
                kind = HttpFailureKind.RETRIES_EXHAUSTED
                self.telemetry.track_metric(MetricNames.HTTP_RETRIES_EXHAUSTED, 1, {"url": url})
            else:
                kind = HttpFailureKind.NON_RETRYABLE
            body = error.response.text
        else:
            status_code = None
            kind = HttpFailureKind.TRANSPORT
            body = ""

        message = f"{error} {body}".strip()
        if self.is_benign_error(message):
            logger.info(f"Request to {url} failed: {message}")
        else:
            logger.error(f"Request to {url} failed after {attempts} attempt(s): {message}")

        return TerminalHttpError(kind, url, status_code=status_code, message=message, attempts=attempts)

    @staticmethod
    def is_benign_error(message: str) -> bool:
        lowered = message.lower()
        return any(benign.lower() in lowered for benign in BENIGN_ERROR_MESSAGES)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def close(self) -> None:
        await self.client.aclose()
