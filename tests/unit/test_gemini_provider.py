"""
Unit tests for the Gemini provider and the provider helpers, using
httpx.MockTransport in place of the network.
"""
import json

import httpx
import pytest

from chunkwise.core.exceptions import (
    LLMConnectionError,
    LLMContentSafetyError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from chunkwise.core.llm.base import (
    ChatMessage,
    GenerationConfig,
    RequestRateGate,
    history_from_config,
    merge_consecutive_roles,
    prepare_chat_messages,
)
from chunkwise.core.llm.providers.gemini import DEFAULT_MODELS, GeminiProvider, thinking_config_for


def make_provider(handler, quiet_logger, model="gemini-2.5-flash"):
    provider = GeminiProvider(api_key="test-key", model=model, requests_per_minute=0, logger=quiet_logger)
    provider._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return provider


def reply(text, thought=None):
    parts = [{"text": text}]
    if thought:
        parts.insert(0, {"text": thought, "thought": True})
    return {
        "candidates": [{"content": {"parts": parts}, "finishReason": "STOP"}],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 5, "totalTokenCount": 17},
    }


class TestBuildPayload:
    """Tests for request payload construction"""

    def test_history_system_prompt_and_schema(self, quiet_logger):
        """Should send history before the prompt with the system instruction"""
        provider = GeminiProvider(api_key="k", requests_per_minute=0, logger=quiet_logger)
        config = GenerationConfig(response_mime_type="application/json", response_schema={"type": "ARRAY"})
        history = [ChatMessage("user", "hi"), ChatMessage("model", "hello")]

        payload = provider.build_payload("Translate", "gemini-2.0-flash", "Be terse", config, history)

        assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
        assert payload["contents"][-1]["parts"][0]["text"] == "Translate"
        assert payload["systemInstruction"] == {"parts": [{"text": "Be terse"}]}
        assert payload["generationConfig"]["responseMimeType"] == "application/json"
        assert "thinkingConfig" not in payload["generationConfig"]
        assert all(s["threshold"] == "BLOCK_NONE" for s in payload["safetySettings"])

    def test_thinking_config(self):
        """Should pick thinking parameters by model family"""
        assert thinking_config_for("gemini-2.5-pro", GenerationConfig()) == {"thinkingBudget": -1}
        assert thinking_config_for("gemini-2.5-pro", GenerationConfig(thinking_budget=512)) == {
            "thinkingBudget": 512}
        assert thinking_config_for("gemini-3-flash-preview", None) == {"thinkingLevel": "HIGH"}
        assert thinking_config_for("gemini-3-pro", GenerationConfig(thinking_level="LOW")) == {
            "thinkingLevel": "LOW"}
        assert thinking_config_for("gemini-2.5-flash", GenerationConfig(enable_thinking=False)) is None
        assert thinking_config_for("gemini-2.0-flash", GenerationConfig()) is None


class TestGenerate:
    """Tests for generate and error classification"""

    @pytest.mark.asyncio
    async def test_success(self, quiet_logger):
        """Should post to generateContent and return the non-thought text"""
        seen = {}

        def handler(request):
            seen['url'] = str(request.url)
            seen['key'] = request.headers["x-goog-api-key"]
            seen['body'] = json.loads(request.content)
            return httpx.Response(200, json=reply("안녕하세요", thought="thinking..."))

        provider = make_provider(handler, quiet_logger)

        response = await provider.generate("Hello")
        await provider.close()

        assert response.content == "안녕하세요"
        assert response.total_tokens == 17
        assert response.finish_reason == "STOP"
        assert seen['url'].endswith("/models/gemini-2.5-flash:generateContent")
        assert seen['key'] == "test-key"
        assert seen['body']["generationConfig"]["thinkingConfig"] == {"thinkingBudget": -1}

    @pytest.mark.asyncio
    async def test_generate_text_uses_model_override(self, quiet_logger):
        """Should send the request to the overriding model"""
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(200, json=reply("ok"))

        provider = make_provider(handler, quiet_logger)

        assert await provider.generate_text("Hello", model="gemini-2.0-flash") == "ok"
        assert urls[0].endswith("/models/gemini-2.0-flash:generateContent")

    @pytest.mark.asyncio
    async def test_rate_limit(self, quiet_logger):
        """Should raise LLMRateLimitError on 429"""
        provider = make_provider(
            lambda request: httpx.Response(429, json={"error": {"status": "RESOURCE_EXHAUSTED"}}),
            quiet_logger,
        )

        with pytest.raises(LLMRateLimitError):
            await provider.generate("Hello")

    @pytest.mark.asyncio
    async def test_invalid_key(self, quiet_logger):
        """Should raise LLMInvalidRequestError for a rejected key"""
        provider = make_provider(
            lambda request: httpx.Response(400, json={"error": {"message": "API key not valid"}}),
            quiet_logger,
        )

        with pytest.raises(LLMInvalidRequestError):
            await provider.generate("Hello")

    @pytest.mark.asyncio
    async def test_blocked_prompt(self, quiet_logger):
        """Should raise LLMContentSafetyError when the prompt is blocked"""
        provider = make_provider(
            lambda request: httpx.Response(200, json={"promptFeedback": {"blockReason": "OTHER"}}),
            quiet_logger,
        )

        with pytest.raises(LLMContentSafetyError):
            await provider.generate("Hello")

    @pytest.mark.asyncio
    async def test_empty_reply(self, quiet_logger):
        """Should raise LLMContentSafetyError when no text comes back"""
        provider = make_provider(lambda request: httpx.Response(200, json={"candidates": []}), quiet_logger)

        with pytest.raises(LLMContentSafetyError):
            await provider.generate("Hello")

    @pytest.mark.asyncio
    async def test_connection_error(self, quiet_logger):
        """Should wrap transport failures in LLMConnectionError"""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = make_provider(handler, quiet_logger)

        with pytest.raises(LLMConnectionError):
            await provider.generate("Hello")

    @pytest.mark.asyncio
    async def test_image_description(self, quiet_logger):
        """Should send the image inline and return the description"""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=reply("A red door"))

        provider = make_provider(handler, quiet_logger)

        text = await provider.generate_image_description(b"\x89PNG", "image/png")

        assert text == "A red door"
        inline = bodies[0]["contents"][0]["parts"][1]["inlineData"]
        assert inline == {"mimeType": "image/png", "data": "iVBORw=="}


class TestAvailableModels:

    @pytest.mark.asyncio
    async def test_lists_gemini_models(self, quiet_logger):
        """Should strip the models/ prefix and skip non-Gemini models"""
        listing = {"models": [{"name": "models/gemini-2.5-pro"}, {"name": "models/embedding-001"}]}
        provider = make_provider(lambda request: httpx.Response(200, json=listing), quiet_logger)

        assert await provider.get_available_models() == ["gemini-2.5-pro"]

    @pytest.mark.asyncio
    async def test_falls_back_on_error(self, quiet_logger):
        """Should return the built-in list when the listing fails"""
        provider = make_provider(lambda request: httpx.Response(500), quiet_logger)

        assert await provider.get_available_models() == DEFAULT_MODELS


class TestHelpers:
    """Tests for the rate gate and chat-history helpers"""

    def test_rate_gate_spaces_requests(self, quiet_logger):
        """Should reserve slots 60/rpm seconds apart"""
        gate = RequestRateGate(60, logger=quiet_logger)

        assert gate.reserve(now=100.0) == 0.0
        assert gate.reserve(now=100.0) == 1.0
        assert gate.reserve(now=100.5) == 1.5
        assert gate.reserve(now=200.0) == 0.0

    def test_unlimited_gate(self, quiet_logger):
        """Should never wait when rpm is zero"""
        gate = RequestRateGate(0, logger=quiet_logger)

        assert gate.reserve(now=1.0) == 0.0
        assert gate.reserve(now=1.0) == 0.0

    def test_merge_consecutive_roles(self):
        """Should join adjacent turns from the same role"""
        merged = merge_consecutive_roles([
            ChatMessage("user", "a"), ChatMessage("user", "b"), ChatMessage("model", "c"),
        ])

        assert [(m.role, m.content) for m in merged] == [("user", "a\n\nb"), ("model", "c")]

    def test_history_from_config(self):
        """Should accept parts or content items"""
        history = history_from_config([
            {'role': 'user', 'parts': ['one', 'two']},
            {'role': 'model', 'content': 'ok'},
        ])

        assert [(m.role, m.content) for m in history] == [("user", "one\ntwo"), ("model", "ok")]

    def test_prepare_chat_messages_uses_last_user_turn(self):
        """Should send the substituted final user turn as the message"""
        history = [ChatMessage("model", "Ready."), ChatMessage("user", "Translate: {{slot}}")]

        sent_history, message = prepare_chat_messages("full prompt", history, {'{{slot}}': "Hello"})

        assert [m.content for m in sent_history] == ["Ready."]
        assert message == "Translate: Hello"

    def test_prepare_chat_messages_without_placeholders(self):
        """Should send the prompt after the unchanged history"""
        history = [ChatMessage("user", "Rules"), ChatMessage("model", "OK")]

        sent_history, message = prepare_chat_messages("full prompt", history, {'{{slot}}': "Hello"})

        assert len(sent_history) == 2
        assert message == "full prompt"
