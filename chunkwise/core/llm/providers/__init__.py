"""
LLM provider implementations
"""
from chunkwise.core.llm.providers.gemini import GeminiProvider

__all__ = ['GeminiProvider']
