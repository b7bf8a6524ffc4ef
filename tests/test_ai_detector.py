"""
Tests for LLM-backed structure inference.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-N-01 | Plain JSON reply | Equivalence – normal | Known keys returned | - |
| TC-N-02 | Fenced JSON with extra keys | Equivalence – normal | Extra keys dropped | - |
| TC-N-03 | Request fields | Equivalence – normal | System prompt, excerpt, temperature | - |
| TC-A-01 | Provider error response | Equivalence – abnormal | ScrapeError(ai) | - |
| TC-A-02 | Prose reply without JSON | Equivalence – abnormal | ScrapeError(ai) | - |
| TC-A-03 | Empty reply | Boundary – empty | ScrapeError(ai) | - |
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from adaptive_scraper.extractor.ai_detector import STRUCTURE_SYSTEM_PROMPT, LLMStructureInference
from adaptive_scraper.filter.provider import LLMReply, ReplyStatus
from adaptive_scraper.pipeline.errors import ErrorKind, ScrapeError
from adaptive_scraper.utils.config import LLMConfig

URL = "https://blog.example.org/post/1"


def _ok(text: str) -> LLMReply:
    return LLMReply(text=text, status=ReplyStatus.OK, model="m", provider="mock")


def _provider(response: LLMReply) -> MagicMock:
    provider = MagicMock()
    provider.name = "mock"
    provider.complete_json = AsyncMock(return_value=response)
    return provider


class TestLLMStructureInference:
    """Tests for LLMStructureInference.infer()."""

    # =========================================================================
    # TC-N-01: Plain JSON
    # =========================================================================
    @pytest.mark.asyncio
    async def test_plain_json(self) -> None:
        """
        Given: The model replies with a JSON object
        When: infer() is called
        Then: The selector fields are returned as-is
        """
        provider = _provider(
            _ok(
                '{"titleSelector": "h1", "contentSelector": ".post", "authorSelector": null, "confidence": 0.8}'
            )
        )

        result = await LLMStructureInference(provider, LLMConfig()).infer("<h1>x</h1>", URL)

        assert result == {
            "titleSelector": "h1",
            "contentSelector": ".post",
            "authorSelector": None,
            "confidence": 0.8,
        }

    # =========================================================================
    # TC-N-02: Fenced JSON
    # =========================================================================
    @pytest.mark.asyncio
    async def test_fenced_json_extra_keys(self) -> None:
        """
        Given: A Markdown-fenced reply with unexpected keys
        When: infer() is called
        Then: Only the known keys survive
        """
        text = 'Here you go:\n```json\n{"titleSelector": "h1", "contentSelector": "article", "notes": "x"}\n```'
        provider = _provider(_ok(text))

        result = await LLMStructureInference(provider, LLMConfig()).infer("<p/>", URL)

        assert result == {"titleSelector": "h1", "contentSelector": "article"}

    # =========================================================================
    # TC-N-03: Request fields
    # =========================================================================
    @pytest.mark.asyncio
    async def test_request_fields(self) -> None:
        """
        Given: A configured temperature
        When: infer() is called
        Then: The prompt carries URL and excerpt with the structure system prompt
        """
        provider = _provider(_ok('{"titleSelector": "h1"}'))

        await LLMStructureInference(provider, LLMConfig(temperature=0.1)).infer("<main>EXCERPT</main>", URL)

        request = provider.complete_json.await_args.args[0]
        assert URL in request.prompt
        assert "<main>EXCERPT</main>" in request.prompt
        assert request.system == STRUCTURE_SYSTEM_PROMPT
        assert request.temperature == 0.1

    # =========================================================================
    # TC-A-01: Provider error
    # =========================================================================
    @pytest.mark.asyncio
    async def test_provider_error(self) -> None:
        """
        Given: The provider returns an error response
        When: infer() is called
        Then: ScrapeError of kind ai is raised
        """
        provider = _provider(LLMReply.failed("connection refused", model="m", provider="mock"))

        with pytest.raises(ScrapeError) as exc_info:
            await LLMStructureInference(provider, LLMConfig()).infer("<p/>", URL)

        assert exc_info.value.kind is ErrorKind.AI
        assert "connection refused" in exc_info.value.message
        assert exc_info.value.retryable is False

    # =========================================================================
    # TC-A-02 / TC-A-03: Unusable reply
    # =========================================================================
    @pytest.mark.parametrize(
        "text",
        [
            "I cannot determine the selectors for this page.",
            "",
        ],
    )
    @pytest.mark.asyncio
    async def test_unusable_reply(self, text: str) -> None:
        """
        Given: A reply that holds no JSON object
        When: infer() is called
        Then: ScrapeError of kind ai is raised
        """
        provider = _provider(_ok(text))

        with pytest.raises(ScrapeError) as exc_info:
            await LLMStructureInference(provider, LLMConfig()).infer("<p/>", URL)

        assert exc_info.value.kind is ErrorKind.AI
