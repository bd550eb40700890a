"""
Google Gemini provider implementation.

This module provides the GeminiProvider class for the Gemini REST API
(``generateContent``), with permissive safety settings for literary text,
thinking configuration for 2.5/3 models and typed error classification.
"""

import base64
from typing import Optional, List, Dict, Any
import httpx

from chunkwise.config import REQUEST_TIMEOUT
from chunkwise.core.exceptions import (
    LLMError,
    LLMConnectionError,
    LLMContentSafetyError,
    LLMResponseError,
    classify_error,
)
from chunkwise.core.llm.base import LLMProvider, LLMResponse, GenerationConfig, ChatMessage
from chunkwise.utils.unified_logger import LogType, get_logger

API_BASE = "https://generativelanguage.googleapis.com/v1beta"

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_CIVIC_INTEGRITY", "threshold": "BLOCK_NONE"},
]

DEFAULT_MODELS = [
    'gemini-2.0-flash',
    'gemini-2.0-flash-lite',
    'gemini-2.5-flash',
    'gemini-2.5-pro',
    'gemini-3-flash-preview',
]


def thinking_config_for(model: str, config: Optional[GenerationConfig]) -> Optional[Dict[str, Any]]:
    """Thinking parameters for models that support them, or None."""
    if config is not None and config.enable_thinking is False:
        return None
    if "gemini-3" in model:
        return {"thinkingLevel": (config.thinking_level if config else None) or "HIGH"}
    if "gemini-2.5" in model:
        budget = config.thinking_budget if config else None
        # -1 lets the model pick its own budget
        return {"thinkingBudget": budget if budget is not None and budget >= 0 else -1}
    return None


class GeminiProvider(LLMProvider):
    """
    Provider for Google Gemini API.

    Configuration:
        api_key: Google AI API key (required)
        model: Default Gemini model name
        requests_per_minute: Spacing applied to every request

    Example:
        >>> provider = GeminiProvider(api_key="AI...", model="gemini-2.5-flash")
        >>> text = await provider.generate_text("Translate: Hello")
    """

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash",
                 requests_per_minute: int = 10, timeout: int = REQUEST_TIMEOUT,
                 logger=None):
        super().__init__(model, requests_per_minute, timeout)
        self.api_key = api_key
        self.logger = logger or get_logger()

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    def _endpoint(self, model: str) -> str:
        return f"{API_BASE}/models/{model}:generateContent"

    def build_payload(self, prompt: str, model: str,
                      system_prompt: Optional[str] = None,
                      config: Optional[GenerationConfig] = None,
                      history: Optional[List[ChatMessage]] = None) -> Dict[str, Any]:
        config = config or GenerationConfig()

        contents = [
            {"role": message.role, "parts": [{"text": message.content}]}
            for message in (history or [])
        ]
        contents.append({"role": "user", "parts": [{"text": prompt}]})

        generation_config: Dict[str, Any] = {
            "temperature": config.temperature,
            "topP": config.top_p,
            "topK": config.top_k,
            "maxOutputTokens": config.max_output_tokens,
        }
        if config.stop_sequences:
            generation_config["stopSequences"] = config.stop_sequences
        if config.response_mime_type:
            generation_config["responseMimeType"] = config.response_mime_type
        if config.response_schema:
            generation_config["responseSchema"] = config.response_schema

        thinking = thinking_config_for(model, config)
        if thinking:
            generation_config["thinkingConfig"] = thinking

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
            "safetySettings": SAFETY_SETTINGS,
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return payload

    async def _post(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        await self.rate_gate.wait()
        client = await self._get_client()
        try:
            response = await client.post(self._endpoint(model), headers=self._headers(), json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise LLMConnectionError(f"Gemini API timeout: {e}", {'model': model}) from e
        except httpx.HTTPStatusError as e:
            body = e.response.text[:500] if e.response is not None else ""
            message = f"{e.response.status_code} {e.response.reason_phrase}: {body}"
            raise classify_error(message, {'model': model, 'status': e.response.status_code}) from e
        except httpx.RequestError as e:
            raise LLMConnectionError(f"Gemini API connection error: {e}", {'model': model}) from e
        except ValueError as e:
            raise LLMResponseError(f"Gemini API returned invalid JSON: {e}", {'model': model}) from e

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> LLMResponse:
        block_reason = data.get("promptFeedback", {}).get("blockReason")
        if block_reason:
            raise LLMContentSafetyError(f"Prompt blocked: BLOCKED_PROMPT ({block_reason})")

        text = ""
        finish_reason = None
        candidates = data.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            finish_reason = candidate.get("finishReason")
            parts = candidate.get("content", {}).get("parts", [])
            # Thought summaries are not part of the reply
            text = "".join(part.get("text", "") for part in parts if not part.get("thought"))

        usage = data.get("usageMetadata", {})
        prompt_tokens = usage.get("promptTokenCount", 0)
        completion_tokens = usage.get("candidatesTokenCount", 0)
        return LLMResponse(
            content=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=usage.get("totalTokenCount", prompt_tokens + completion_tokens),
            finish_reason=finish_reason,
        )

    async def generate(self, prompt: str,
                       model: Optional[str] = None,
                       system_prompt: Optional[str] = None,
                       config: Optional[GenerationConfig] = None,
                       history: Optional[List[ChatMessage]] = None) -> LLMResponse:
        """
        Generate text using Gemini API.

        Raises:
            LLMContentSafetyError: The prompt was blocked or the reply came back empty
            LLMRateLimitError: Quota exhausted (429 / RESOURCE_EXHAUSTED)
            LLMInvalidRequestError: Bad key, unknown model or invalid argument
            LLMConnectionError: Timeout or transport failure
        """
        model = model or self.model
        payload = self.build_payload(prompt, model, system_prompt, config, history)

        try:
            result = self._parse_response(await self._post(model, payload))
        except LLMError:
            raise
        except (KeyError, TypeError, AttributeError) as e:
            raise LLMResponseError(f"Unexpected Gemini response structure: {e}", {'model': model}) from e

        if not result.content and prompt.strip():
            raise LLMContentSafetyError(
                "API returned an empty response",
                {'model': model, 'finish_reason': result.finish_reason},
            )
        self.logger.debug("Token usage", LogType.TOKEN_USAGE, {
            'prompt_tokens': result.prompt_tokens,
            'response_tokens': result.completion_tokens,
            'total_tokens': result.total_tokens,
        })
        return result

    async def generate_image_description(self, image_data: bytes, mime_type: str,
                                         prompt: str = "Describe this image in detail.",
                                         model: str = "gemini-2.5-flash") -> str:
        """Describe an image; low temperature since the description should be factual."""
        payload = {
            "contents": [{
                "role": "user",
                "parts": [
                    {"text": prompt},
                    {"inlineData": {"mimeType": mime_type,
                                    "data": base64.b64encode(image_data).decode('ascii')}},
                ],
            }],
            "generationConfig": {"temperature": 0.4},
            "safetySettings": SAFETY_SETTINGS,
        }
        result = self._parse_response(await self._post(model, payload))
        if not result.content:
            raise LLMContentSafetyError("API returned an empty response", {'model': model})
        return result.content

    async def get_available_models(self) -> List[str]:
        """
        Fetch Gemini model names from the API.

        Falls back to a built-in list when the listing fails or is empty.
        """
        client = await self._get_client()
        try:
            response = await client.get(f"{API_BASE}/models", headers=self._headers(), timeout=10)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning(f"Error fetching Gemini models: {e}")
            return list(DEFAULT_MODELS)

        models = [
            model.get("name", "").replace("models/", "")
            for model in data.get("models", [])
            if "gemini" in model.get("name", "")
        ]
        return models or list(DEFAULT_MODELS)
