"""
LLM provider interface.

Both LLM uses in the scraper (selector inference and topic link filtering)
send one system prompt plus one user prompt and expect a JSON object back.
A provider only has to answer that request shape, which keeps mocks small
and lets the local Ollama backend be swapped.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class ReplyStatus(str, Enum):
    """Outcome of a JSON request."""

    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"


@dataclass
class JSONPrompt:
    """A single JSON-mode request.

    Attributes:
        system: Role instructions for the model.
        prompt: Task text (page excerpt or link list).
        temperature: Overrides the provider default when set.
        timeout: Overrides the provider default (seconds) when set.
    """

    system: str
    prompt: str
    temperature: float | None = None
    timeout: float | None = None


@dataclass
class LLMReply:
    """Raw model reply. ``text`` is untrusted and may not be JSON at all."""

    text: str
    status: ReplyStatus
    model: str
    provider: str
    elapsed_ms: float = 0.0
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ReplyStatus.OK

    @classmethod
    def failed(
        cls,
        error: str,
        *,
        model: str,
        provider: str,
        status: ReplyStatus = ReplyStatus.ERROR,
    ) -> "LLMReply":
        return cls(text="", status=status, model=model, provider=provider, error_message=error)


@runtime_checkable
class LLMProvider(Protocol):
    """Anything that can answer a JSONPrompt."""

    @property
    def name(self) -> str: ...

    async def complete_json(self, request: JSONPrompt) -> LLMReply:
        """Send one request. Transport failures come back as failed replies."""
        ...

    async def close(self) -> None: ...
