"""
Ollama backend for JSON requests.

Sends each JSONPrompt to ``/api/chat`` on a local Ollama server with
``format: "json"`` and streaming off.
"""

import time
from typing import Any

import aiohttp
from aiohttp import ClientTimeout

from adaptive_scraper.filter.provider import JSONPrompt, LLMReply, ReplyStatus
from adaptive_scraper.utils.config import get_settings
from adaptive_scraper.utils.logging import get_logger

logger = get_logger(__name__)


class OllamaProvider:
    """
    Ollama LLM provider.

    Example:
        provider = OllamaProvider()
        reply = await provider.complete_json(JSONPrompt(system="...", prompt="..."))
        await provider.close()

    Args:
        host: Ollama API host URL (default: from settings).
        model: Model name (default: from settings).
        timeout: Default request timeout in seconds.
    """

    name = "ollama"

    def __init__(
        self,
        host: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        llm = get_settings().llm
        self.host = (host or llm.ollama_host).rstrip("/")
        self.model = model or llm.model
        self._timeout = timeout or llm.timeout
        self._temperature = llm.temperature
        self._session: aiohttp.ClientSession | None = None
        self._closed = False

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=ClientTimeout(total=self._timeout))
        return self._session

    def _payload(self, request: JSONPrompt) -> dict[str, Any]:
        temperature = self._temperature if request.temperature is None else request.temperature
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.prompt},
            ],
            "format": "json",
            "stream": False,
            "options": {"temperature": temperature},
        }

    def _failed(self, error: str, status: ReplyStatus = ReplyStatus.ERROR) -> LLMReply:
        return LLMReply.failed(error, model=self.model, provider=self.name, status=status)

    async def complete_json(self, request: JSONPrompt) -> LLMReply:
        """Send one JSON-mode request.

        Raises:
            RuntimeError: When called after close().
        """
        if self._closed:
            raise RuntimeError("Ollama provider is closed")

        session = await self._get_session()
        start = time.perf_counter()
        try:
            async with session.post(
                f"{self.host}/api/chat",
                json=self._payload(request),
                timeout=ClientTimeout(total=request.timeout or self._timeout),
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error("Ollama request rejected", status=response.status, error=body[:200])
                    return self._failed(
                        f"Ollama error {response.status}: {body[:500]}",
                        ReplyStatus.RATE_LIMITED if response.status == 429 else ReplyStatus.ERROR,
                    )
                data = await response.json()
        except (TimeoutError, aiohttp.ServerTimeoutError):
            logger.error("Ollama request timed out", model=self.model)
            return self._failed("Request timeout", ReplyStatus.TIMEOUT)
        except aiohttp.ClientError as e:
            logger.error("Ollama request failed", error=str(e))
            return self._failed(str(e))

        return LLMReply(
            text=(data.get("message") or {}).get("content", ""),
            status=ReplyStatus.OK,
            model=self.model,
            provider=self.name,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )

    async def close(self) -> None:
        """Close the HTTP session; later requests raise."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._closed = True
