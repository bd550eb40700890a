"""
Translation unit executor.

Translates one plain-text chunk or one batch of document nodes through the
LLM provider. Blocked or empty replies are recovered by recursive
sub-division, bounded by ``max_retry_attempts``; a quota error stops the
whole run through the shared cancellation token.
"""
import json
import math
import re
import time
from typing import Dict, List, Optional

from chunkwise.core.chunking.text_chunker import split_by_sentences, split_recursively
from chunkwise.core.exceptions import (
    LLMContentSafetyError,
    LLMResponseError,
    TranslationCancelledError,
    TranslationError,
    is_content_safety_error,
    is_rate_limit_error,
)
from chunkwise.core.llm.base import history_from_config, prepare_chat_messages
from chunkwise.core.models import EpubNode, TranslationContext, TranslationResult
from chunkwise.core.translation.cancellation import CancellationToken
from chunkwise.core.translation.prompt_context import (
    NO_GLOSSARY_CONTEXT,
    NO_STORY_BIBLE_CONTEXT,
    build_previous_context_section,
    build_prompt,
    format_glossary_for_prompt,
    format_story_bible,
    post_process,
)
from chunkwise.utils.unified_logger import LogType, get_logger

RATE_LIMIT_STOP_REASON = "Auto-stopped: API quota exceeded (429)"
CANCELLED_REASON = "Stopped by user"
EMPTY_RESPONSE_ERROR = "API response empty"
STOPPED_MARKER = "[Stopped]"

MAX_ATTEMPTS_PLACEHOLDER = "[Translation failed: max split attempts exceeded]"
UNSPLITTABLE_PLACEHOLDER = "[Translation failed: text could not be split further]"

NODE_RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "id": {"type": "STRING"},
            "translated_text": {"type": "STRING"},
        },
        "required": ["id", "translated_text"],
    },
}

_CODE_FENCE = re.compile(r'^```(?:json)?\s*|\s*```$')


def min_size_placeholder(text: str) -> str:
    return f"[Translation failed (minimum size reached): {text.strip()[:30]}...]"


class TranslationUnitExecutor:
    """
    Runs single translation units against a provider.

    Args:
        provider: LLMProvider (anything with an async ``generate_text``)
        config: TranslationConfig
        logger: UnifiedLogger, defaults to the global logger
        cancellation: Token shared with the scheduler; a fresh one is made if omitted
    """

    def __init__(self, provider, config, logger=None, cancellation: Optional[CancellationToken] = None):
        self.provider = provider
        self.config = config
        self.logger = logger or get_logger()
        self.cancellation = cancellation or CancellationToken()
        self._prefill_history = (history_from_config(config.prefill_history)
                                 if config.enable_prefill_translation else [])

    # === Stop control ===

    @property
    def stop_requested(self) -> bool:
        return self.cancellation.is_cancelled

    def request_stop(self, reason: str = CANCELLED_REASON) -> None:
        if not self.cancellation.is_cancelled:
            self.logger.warning(f"Stop requested: {reason}")
        self.cancellation.cancel(reason)

    def reset_stop(self) -> None:
        self.cancellation.reset()

    # === Prompt assembly ===

    def _context_sections(self, chunk: str,
                          context: Optional[TranslationContext],
                          previous_context: Optional[str],
                          is_previous_translated: bool) -> Dict[str, str]:
        glossary = NO_GLOSSARY_CONTEXT
        if self.config.enable_dynamic_glossary_injection and context and context.glossary_entries:
            glossary = format_glossary_for_prompt(
                context.glossary_entries, chunk,
                self.config.max_glossary_entries_in_prompt,
                self.config.max_glossary_chars_in_prompt,
            )

        story_bible = NO_STORY_BIBLE_CONTEXT
        if self.config.enable_story_bible_injection and context and context.story_bible:
            story_bible = format_story_bible(context.story_bible, chunk)

        previous = ""
        if self.config.enable_sliding_window:
            previous = build_previous_context_section(previous_context, is_previous_translated)

        return {
            'glossary_context': glossary,
            'story_bible_context': story_bible,
            'previous_section': previous,
        }

    async def _call_model(self, chunk: str,
                          context: Optional[TranslationContext],
                          chunk_index: int,
                          previous_context: Optional[str] = None,
                          is_previous_translated: bool = False,
                          system_prompt: Optional[str] = None,
                          generation=None) -> str:
        sections = self._context_sections(chunk, context, previous_context, is_previous_translated)
        prompt = build_prompt(
            self.config.prompt_template, chunk,
            source_language=self.config.source_language,
            target_language=self.config.target_language,
            **sections,
        )

        history = []
        message = prompt
        if self._prefill_history:
            history, message = prepare_chat_messages(prompt, self._prefill_history, {
                '{{slot}}': chunk,
                '{{glossary_context}}': sections['glossary_context'],
                '{{story_bible}}': sections['story_bible_context'],
                '{{previous_context_section}}': sections['previous_section'],
            })

        self.logger.debug("Sending request to LLM", LogType.LLM_REQUEST, {
            'chunk_index': chunk_index,
            'model': self.config.model,
            'system_prompt': system_prompt,
            'prompt': message,
        })
        start_time = time.monotonic()

        reply = await self.cancellation.race(self.provider.generate_text(
            message,
            model=self.config.model,
            system_prompt=system_prompt,
            config=generation or self.config.generation_config(),
            history=history or None,
        ))

        self.logger.debug("LLM response received", LogType.LLM_RESPONSE, {
            'chunk_index': chunk_index,
            'response': reply,
            'execution_time': time.monotonic() - start_time,
        })
        return reply or ""

    # === Plain-text units ===

    async def translate_chunk(self, text: str, index: int,
                              context: Optional[TranslationContext] = None,
                              allow_safety_retry: bool = True,
                              previous_context: Optional[str] = None,
                              is_previous_translated: bool = False) -> TranslationResult:
        """
        Translate one chunk. Never raises for model errors: every outcome is
        returned as a TranslationResult.
        """
        if not text.strip():
            return TranslationResult(chunk_index=index, original_text=text, translated_text="")

        # Prefill mode carries its own instruction turn
        system_prompt = self.config.prefill_system_instruction if self._prefill_history else None

        try:
            reply = await self._call_model(text, context, index, previous_context,
                                           is_previous_translated, system_prompt=system_prompt)
            translated = post_process(reply, self.config.enable_post_processing)
            if not translated:
                raise LLMContentSafetyError(EMPTY_RESPONSE_ERROR, {'chunk_index': index})
            return TranslationResult(chunk_index=index, original_text=text, translated_text=translated)

        except TranslationCancelledError:
            return TranslationResult.failure(index, text, CANCELLED_REASON)

        except Exception as e:
            if is_rate_limit_error(e):
                self.request_stop(RATE_LIMIT_STOP_REASON)
                self.logger.error(f"Chunk {index + 1}: quota exceeded, stopping the run",
                                  LogType.ERROR_DETAIL, {'details': str(e)})
                return TranslationResult.failure(index, text, RATE_LIMIT_STOP_REASON)

            if is_content_safety_error(e) and allow_safety_retry and self.config.use_content_safety_retry:
                self.logger.warning(f"Chunk {index + 1}: blocked or empty reply, retrying in smaller pieces")
                return await self.retry_with_smaller_chunks(text, index, context, 1)

            message = e.message if isinstance(e, TranslationError) else str(e)
            self.logger.error(f"Chunk {index + 1} failed: {message}", LogType.ERROR_DETAIL,
                              {'details': message})
            return TranslationResult.failure(index, text, message)

    def _split_for_retry(self, text: str) -> List[str]:
        pieces = split_recursively(text, len(text) // 2, self.config.min_content_safety_chunk_size,
                                   max_depth=1, depth=0)
        if len(pieces) <= 1:
            pieces = split_by_sentences(text, 1)
        if len(pieces) <= 1:
            mid = math.ceil(len(text) / 2)
            pieces = [piece for piece in (text[:mid], text[mid:]) if piece.strip()]
        return pieces

    async def retry_with_smaller_chunks(self, text: str, index: int,
                                        context: Optional[TranslationContext] = None,
                                        attempt: int = 1) -> TranslationResult:
        """
        Split a rejected chunk and translate the pieces one by one.

        Pieces that fail are split again at ``attempt + 1``; whatever cannot
        be recovered is replaced by a visible placeholder, so the joined
        result always succeeds unless the whole chunk is abandoned.
        """
        max_attempts = self.config.max_retry_attempts
        if attempt > max_attempts:
            self.logger.warning(f"Chunk {index + 1}: max split attempts ({max_attempts}) exceeded")
            return TranslationResult.failure(index, text, MAX_ATTEMPTS_PLACEHOLDER)

        if len(text.strip()) <= self.config.min_content_safety_chunk_size:
            return TranslationResult.failure(index, text, min_size_placeholder(text))

        pieces = self._split_for_retry(text)
        if len(pieces) <= 1:
            return TranslationResult.failure(index, text, UNSPLITTABLE_PLACEHOLDER)

        self.logger.info(f"Chunk {index + 1}: split into {len(pieces)} pieces "
                         f"(attempt {attempt}/{max_attempts})", LogType.CHUNK_INFO)

        parts = []
        for piece in pieces:
            if self.stop_requested:
                parts.append(STOPPED_MARKER)
                break

            result = await self.translate_chunk(piece, index, context, allow_safety_retry=False)
            if not result.success:
                if self.stop_requested:
                    parts.append(STOPPED_MARKER)
                    break
                result = await self.retry_with_smaller_chunks(piece, index, context, attempt + 1)

            parts.append(result.translated_text if result.success else result.error)

        return TranslationResult(chunk_index=index, original_text=text, translated_text='\n'.join(parts))

    # === Node batches ===

    @staticmethod
    def _parse_node_reply(reply: str) -> Dict[str, str]:
        cleaned = _CODE_FENCE.sub('', reply.strip())
        try:
            items = json.loads(cleaned)
        except ValueError as e:
            raise LLMResponseError(f"Invalid JSON in node batch reply: {e}",
                                   {'preview': cleaned[:200]}) from e

        if not isinstance(items, list):
            raise LLMResponseError("Node batch reply is not a JSON array")

        translations = {}
        for item in items:
            if isinstance(item, dict) and 'id' in item and 'translated_text' in item:
                translations[str(item['id'])] = str(item['translated_text'])
        return translations

    async def translate_node_batch(self, nodes: List[EpubNode],
                                   context: Optional[TranslationContext] = None,
                                   attempt: int = 1,
                                   chunk_index: int = 0,
                                   previous_context: Optional[str] = None,
                                   is_previous_translated: bool = False) -> List[EpubNode]:
        """
        Translate the text nodes of a batch as one structured JSON request.

        Returns all nodes in their original order, text nodes carrying the
        translation. Nodes the model left out are resubmitted on their own.

        Raises:
            LLMRateLimitError: After requesting a stop of the run
            TranslationCancelledError: The run was stopped mid-request
            LLMResponseError: The reply was not the expected JSON array
        """
        text_nodes = [node for node in nodes if node.is_text]
        if not text_nodes:
            return list(nodes)

        if attempt > self.config.max_retry_attempts:
            self.logger.warning(f"Chunk {chunk_index + 1}: {len(text_nodes)} nodes left untranslated "
                                f"after {self.config.max_retry_attempts} attempts")
            return list(nodes)

        payload = json.dumps([{'id': node.id, 'text': node.content} for node in text_nodes],
                             ensure_ascii=False, indent=2)
        generation = self.config.generation_config()
        generation.response_mime_type = "application/json"
        generation.response_schema = NODE_RESPONSE_SCHEMA

        try:
            reply = await self._call_model(payload, context, chunk_index, previous_context,
                                           is_previous_translated,
                                           system_prompt=self.config.prefill_system_instruction,
                                           generation=generation)
        except TranslationCancelledError:
            raise
        except Exception as e:
            if is_rate_limit_error(e):
                self.request_stop(RATE_LIMIT_STOP_REASON)
            raise

        translations = self._parse_node_reply(reply)

        missing = [node for node in text_nodes if node.id not in translations]
        if missing:
            self.logger.warning(f"Chunk {chunk_index + 1}: {len(missing)} nodes missing from reply, "
                                f"resubmitting (attempt {attempt + 1})")
            retried = await self.translate_node_batch(missing, context, attempt + 1, chunk_index)
            for node in retried:
                if node.is_text:
                    translations.setdefault(node.id, node.content)

        return [
            node.with_content(translations[node.id].replace('\n', '<br/>'))
            if node.is_text and node.id in translations else node
            for node in nodes
        ]

    async def retry_nodes_with_smaller_batches(self, nodes: List[EpubNode],
                                               chunk_index: int,
                                               context: Optional[TranslationContext] = None,
                                               attempt: int = 1) -> List[EpubNode]:
        """
        Binary-split a failed batch; nodes that never succeed keep their source text.

        The halves are concatenated, so nodes come back in input order even
        when the batch spans documents.
        """
        if self.stop_requested:
            return list(nodes)
        if len(nodes) <= 1:
            return list(nodes)
        if attempt > self.config.max_retry_attempts:
            return list(nodes)

        mid = len(nodes) // 2
        self.logger.info(f"Chunk {chunk_index + 1}: retrying as batches of {mid} and {len(nodes) - mid} "
                         f"(attempt {attempt}/{self.config.max_retry_attempts})", LogType.CHUNK_INFO)

        results: List[EpubNode] = []
        for half in (nodes[:mid], nodes[mid:]):
            if self.stop_requested:
                results.extend(half)
                continue
            try:
                results.extend(await self.translate_node_batch(half, context, chunk_index=chunk_index))
            except Exception as e:
                if self.stop_requested:
                    results.extend(half)
                    continue
                self.logger.warning(f"Chunk {chunk_index + 1}: batch of {len(half)} failed: {e}")
                results.extend(await self.retry_nodes_with_smaller_batches(half, chunk_index, context,
                                                                           attempt + 1))

        return results

    @staticmethod
    def restore_nodes_from_result(nodes: List[EpubNode], result: TranslationResult) -> Optional[List[EpubNode]]:
        """
        Rebuild translated nodes from a stored result.

        Returns None when the stored segments do not line up with the nodes,
        in which case the chunk has to be translated again.
        """
        text_positions = [i for i, node in enumerate(nodes) if node.is_text]
        if not text_positions:
            return list(nodes)
        segments = result.translated_segments

        if segments and len(segments) == len(text_positions):
            contents = list(segments)
        elif segments and len(segments) == len(nodes):
            contents = [segments[i] for i in text_positions]
        elif segments:
            return None
        else:
            contents = result.translated_text.strip().split('\n\n')
            if len(contents) != len(text_positions):
                return None

        restored = list(nodes)
        for position, content in zip(text_positions, contents):
            if '<br/>' not in content:
                content = content.replace('\n', '<br/>')
            restored[position] = nodes[position].with_content(content)
        return restored
