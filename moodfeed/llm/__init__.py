"""LLM module for the reasoning service."""

from moodfeed.llm.llm_adapter import LLMClient, LLMDisabledError, LLMError, LLMRateLimitError

__all__ = ["LLMClient", "LLMDisabledError", "LLMError", "LLMRateLimitError"]
