"""
Rate-limit retry policy for backend skills.

Applied explicitly at the call site:

    result = await call_with_rate_limit_policy(copilot.complete_chat, messages)
"""
import logging
from typing import Any, Awaitable, Callable, TypeVar

from openai import RateLimitError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_none

from teams_copilot.models.errors import TerminalHttpError

logger = logging.getLogger(__name__)

RATE_LIMIT_MAX_ATTEMPTS = 3

T = TypeVar("T")


def is_rate_limited(error: BaseException) -> bool:
    """HTTP 429 from the copilot backend or the OpenAI API."""
    if isinstance(error, TerminalHttpError):
        return error.is_rate_limited
    return isinstance(error, RateLimitError)


async def call_with_rate_limit_policy(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS,
    **kwargs: Any
) -> T:
    """
    Call `func`, retrying up to `max_attempts` times while it is rate limited.

    Any other error propagates on the first attempt.
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_rate_limited),
        stop=stop_after_attempt(max_attempts),
        wait=wait_none(),
        reraise=True
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(f"Rate limited, attempt {attempt.retry_state.attempt_number} of {max_attempts}")
            return await func(*args, **kwargs)
