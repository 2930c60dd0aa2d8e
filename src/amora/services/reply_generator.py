"""HTTP client for the bot reply service."""

import asyncio
from typing import Awaitable, Callable, Optional

import httpx
from loguru import logger

from ..config import settings
from ..core.exceptions import ReplyGeneratorError
from ..core.resilience import AsyncCircuitBreaker, CircuitBreakerConfig, CircuitBreakerOpen

# generate_reply(chat_id, last_human_text) -> reply text
ReplyFunc = Callable[[int, str], Awaitable[str]]

_breaker: Optional[AsyncCircuitBreaker] = None


def get_reply_breaker() -> AsyncCircuitBreaker:
    """Process-wide breaker shared by every client instance."""
    global _breaker
    if _breaker is None:
        _breaker = AsyncCircuitBreaker(CircuitBreakerConfig(
            failure_threshold=settings.REPLY_FAILURE_THRESHOLD,
            recovery_timeout=settings.REPLY_RECOVERY_TIMEOUT,
            call_timeout=settings.REPLY_TIMEOUT_SECONDS,
            name="reply-generator",
        ))
    return _breaker


class ReplyGeneratorClient:
    """
    Calls ``POST {base_url}/replies`` with ``{"chat_id", "message"}`` and
    reads ``{"reply": text}`` back.

    Every failure (transport error, non-2xx status, malformed body, open
    circuit, timeout) surfaces as ReplyGeneratorError.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        breaker: Optional[AsyncCircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.REPLY_SERVICE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REPLY_TIMEOUT_SECONDS
        self.breaker = breaker or get_reply_breaker()
        self._transport = transport

    async def __call__(self, chat_id: int, text: str) -> str:
        return await self.generate_reply(chat_id, text)

    async def generate_reply(self, chat_id: int, text: str) -> str:
        try:
            return await self.breaker.call(self._request, chat_id, text)
        except CircuitBreakerOpen as e:
            raise ReplyGeneratorError(str(e)) from e
        except asyncio.TimeoutError as e:
            raise ReplyGeneratorError(f"no reply within {self.timeout}s") from e

    async def _request(self, chat_id: int, text: str) -> str:
        payload = {"chat_id": chat_id, "message": text}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/replies", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            raise ReplyGeneratorError(f"status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ReplyGeneratorError(f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise ReplyGeneratorError("response is not JSON") from e

        reply = data.get("reply") if isinstance(data, dict) else None
        if not isinstance(reply, str) or not reply.strip():
            raise ReplyGeneratorError("response has no reply text")

        logger.debug(f"Reply generated for chat {chat_id} ({len(reply)} chars)")
        return reply.strip()
