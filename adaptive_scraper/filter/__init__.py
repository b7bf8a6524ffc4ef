"""
LLM-backed filtering: provider interface and topic link filter.
"""

from adaptive_scraper.filter.link_filter import TopicLinkFilter
from adaptive_scraper.filter.ollama_provider import OllamaProvider
from adaptive_scraper.filter.provider import JSONPrompt, LLMProvider, LLMReply, ReplyStatus

__all__ = [
    "JSONPrompt",
    "LLMProvider",
    "LLMReply",
    "OllamaProvider",
    "ReplyStatus",
    "TopicLinkFilter",
]
