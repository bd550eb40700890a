"""
Translation core: unit executor, context-carrying scheduler, prompt
assembly and cooperative cancellation.
"""

from chunkwise.core.translation.cancellation import CancellationToken
from chunkwise.core.translation.executor import (
    TranslationUnitExecutor,
    RATE_LIMIT_STOP_REASON,
    CANCELLED_REASON,
    STOPPED_MARKER,
    MAX_ATTEMPTS_PLACEHOLDER,
    UNSPLITTABLE_PLACEHOLDER,
    min_size_placeholder,
)
from chunkwise.core.translation.prompt_context import (
    NO_GLOSSARY_CONTEXT,
    NO_STORY_BIBLE_CONTEXT,
    build_previous_context_section,
    build_prompt,
    format_glossary_for_prompt,
    format_story_bible,
    post_process,
)
from chunkwise.core.translation.scheduler import TranslationScheduler

__all__ = [
    'CancellationToken',
    'TranslationUnitExecutor',
    'TranslationScheduler',
    'RATE_LIMIT_STOP_REASON',
    'CANCELLED_REASON',
    'STOPPED_MARKER',
    'MAX_ATTEMPTS_PLACEHOLDER',
    'UNSPLITTABLE_PLACEHOLDER',
    'min_size_placeholder',
    'NO_GLOSSARY_CONTEXT',
    'NO_STORY_BIBLE_CONTEXT',
    'build_previous_context_section',
    'build_prompt',
    'format_glossary_for_prompt',
    'format_story_bible',
    'post_process',
]
