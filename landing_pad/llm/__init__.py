"""LLM module."""

from .llm_provider import ILLMProvider, LLMProvider, build_llm_provider

__all__ = ["ILLMProvider", "LLMProvider", "build_llm_provider"]
