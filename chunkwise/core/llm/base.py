"""
Base classes and data structures for LLM providers.

This module defines the abstract base class that providers implement, the
response/generation-config records, the per-provider request rate gate,
and the chat-history helpers used for prefill translation.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Tuple
import httpx

from chunkwise.config import REQUEST_TIMEOUT
from chunkwise.utils.unified_logger import get_logger


@dataclass
class LLMResponse:
    """Response from LLM with token usage information"""
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    finish_reason: Optional[str] = None


@dataclass
class GenerationConfig:
    """Sampling and output parameters for one request"""
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    max_output_tokens: int = 65536
    response_mime_type: Optional[str] = None
    response_schema: Optional[Dict[str, Any]] = None
    stop_sequences: Optional[List[str]] = None
    # None means "model default"; only an explicit False turns thinking off
    enable_thinking: Optional[bool] = None
    thinking_budget: Optional[int] = None
    thinking_level: Optional[str] = None


@dataclass
class ChatMessage:
    role: str  # 'user' or 'model'
    content: str


class RequestRateGate:
    """
    Spaces requests ``60 / requests_per_minute`` seconds apart.

    Slots are reserved before sleeping, so concurrent callers queue up
    behind each other instead of all waking at once.
    """

    def __init__(self, requests_per_minute: int = 0, logger=None):
        self.logger = logger or get_logger()
        self._last_slot = 0.0
        self.set_requests_per_minute(requests_per_minute)

    def set_requests_per_minute(self, rpm: int) -> None:
        self.requests_per_minute = rpm
        self.delay = 60.0 / rpm if rpm > 0 else 0.0

    def reserve(self, now: Optional[float] = None) -> float:
        """Reserve the next slot and return how long the caller must wait."""
        if self.delay <= 0:
            return 0.0
        now = time.monotonic() if now is None else now
        next_slot = max(self._last_slot + self.delay, now)
        self._last_slot = next_slot
        return next_slot - now

    async def wait(self) -> None:
        sleep_time = self.reserve()
        if sleep_time > 0:
            if sleep_time >= 1:
                self.logger.debug(f"RPM({self.requests_per_minute}) gate: waiting {sleep_time:.2f}s")
            await asyncio.sleep(sleep_time)


def merge_consecutive_roles(history: List[ChatMessage]) -> List[ChatMessage]:
    """Merge adjacent turns from the same role, joining their text with a blank line."""
    if not history:
        return []

    merged = []
    current = ChatMessage(history[0].role, history[0].content)
    for message in history[1:]:
        if message.role == current.role:
            current.content += f"\n\n{message.content}"
        else:
            merged.append(current)
            current = ChatMessage(message.role, message.content)
    merged.append(current)
    return merged


def history_from_config(items: List[Dict[str, Any]]) -> List[ChatMessage]:
    """Convert configured prefill items (``{role, parts}`` or ``{role, content}``) to messages."""
    messages = []
    for item in items or []:
        if 'parts' in item:
            content = '\n'.join(str(part) for part in item['parts'])
        else:
            content = str(item.get('content', ''))
        messages.append(ChatMessage(role=item.get('role', 'user'), content=content))
    return merge_consecutive_roles(messages)


def prepare_chat_messages(prompt: str,
                          history: List[ChatMessage],
                          replacements: Dict[str, str]) -> Tuple[List[ChatMessage], str]:
    """
    Apply template substitutions to a prefill history.

    When any placeholder was replaced and the history ends with a user turn,
    that turn becomes the message to send. Otherwise ``prompt`` is sent
    after the unchanged history.

    Returns:
        (history to send, message to send)
    """
    replaced = False
    messages = []
    for message in history:
        content = message.content
        for key, value in replacements.items():
            if key in content:
                content = content.replace(key, value)
                replaced = True
        messages.append(ChatMessage(message.role, content))

    if not replaced:
        return messages, prompt
    if messages and messages[-1].role == 'user':
        last = messages.pop()
        return messages, last.content
    return messages, " "


class LLMProvider(ABC):
    """Abstract base class for LLM providers"""

    def __init__(self, model: str, requests_per_minute: int = 0, timeout: int = REQUEST_TIMEOUT):
        """
        Initialize the LLM provider.

        Args:
            model: Default model name/identifier
            requests_per_minute: Request rate limit (0 disables the gate)
            timeout: Request timeout in seconds
        """
        self.model = model
        self.timeout = timeout
        self.rate_gate = RequestRateGate(requests_per_minute)
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a persistent HTTP client with connection pooling"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def generate(self, prompt: str,
                       model: Optional[str] = None,
                       system_prompt: Optional[str] = None,
                       config: Optional[GenerationConfig] = None,
                       history: Optional[List[ChatMessage]] = None) -> LLMResponse:
        """
        Generate text from prompt.

        Args:
            prompt: The user prompt (content to process)
            model: Model override for this request
            system_prompt: Optional system prompt (role/instructions)
            config: Generation parameters
            history: Prior chat turns sent before the prompt

        Returns:
            LLMResponse with content and token usage

        Raises:
            LLMError subclasses, classified from the provider's error
        """

    async def generate_text(self, prompt: str,
                            model: Optional[str] = None,
                            system_prompt: Optional[str] = None,
                            config: Optional[GenerationConfig] = None,
                            history: Optional[List[ChatMessage]] = None) -> str:
        """Generate and return only the reply text"""
        response = await self.generate(prompt, model, system_prompt, config, history)
        return response.content
