"""
LLM provider boundary
"""
from chunkwise.core.llm.base import (
    LLMProvider,
    LLMResponse,
    GenerationConfig,
    ChatMessage,
    RequestRateGate,
    merge_consecutive_roles,
    history_from_config,
    prepare_chat_messages,
)
from chunkwise.core.llm.providers.gemini import GeminiProvider

__all__ = [
    'LLMProvider',
    'LLMResponse',
    'GenerationConfig',
    'ChatMessage',
    'RequestRateGate',
    'merge_consecutive_roles',
    'history_from_config',
    'prepare_chat_messages',
    'GeminiProvider',
]
