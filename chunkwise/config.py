"""
Centralized configuration class
"""
import os
import logging
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import Optional, List, Dict, Any
from dotenv import load_dotenv

from chunkwise.core.exceptions import ConfigurationError

# Setup debug logger for configuration
_config_logger = logging.getLogger('config')

# .env in the working directory is optional
_env_file = Path.cwd() / '.env'
_dotenv_result = load_dotenv(_env_file)

# Load from environment variables with defaults
GEMINI_API_KEY = os.getenv('GEMINI_API_KEY', '')
GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-2.5-flash')
REQUEST_TIMEOUT = int(os.getenv('REQUEST_TIMEOUT', '900'))
REQUESTS_PER_MINUTE = int(os.getenv('REQUESTS_PER_MINUTE', '10'))

# Chunking
CHUNK_SIZE = int(os.getenv('CHUNK_SIZE', '6000'))
MAX_WORKERS = int(os.getenv('MAX_WORKERS', '1'))
SLIDING_WINDOW_SIZE = int(os.getenv('SLIDING_WINDOW_SIZE', '600'))
EPUB_MAX_NODES_PER_CHUNK = int(os.getenv('EPUB_MAX_NODES_PER_CHUNK', '30'))

# Recursive retry on blocked/empty replies
MAX_RETRY_ATTEMPTS = int(os.getenv('MAX_RETRY_ATTEMPTS', '3'))
MIN_CONTENT_SAFETY_CHUNK_SIZE = int(os.getenv('MIN_CONTENT_SAFETY_CHUNK_SIZE', '100'))

# Glossary injection budget
MAX_GLOSSARY_ENTRIES = int(os.getenv('MAX_GLOSSARY_ENTRIES', '30'))
MAX_GLOSSARY_CHARS = int(os.getenv('MAX_GLOSSARY_CHARS', '2000'))

# Default languages from environment
DEFAULT_SOURCE_LANGUAGE = os.getenv('DEFAULT_SOURCE_LANGUAGE', 'English')
DEFAULT_TARGET_LANGUAGE = os.getenv('DEFAULT_TARGET_LANGUAGE', 'Korean')

# Session snapshots and extraction queues
SESSION_DB_PATH = os.getenv('SESSION_DB_PATH', 'data/sessions.db')

DEBUG_MODE = os.getenv('DEBUG_MODE', 'false').lower() == 'true'

APP_VERSION = "0.1.0"

if DEBUG_MODE:
    _config_logger.setLevel(logging.DEBUG)
    _config_logger.debug(f"Loaded .env: {_dotenv_result} ({_env_file.absolute()})")
    _config_logger.debug(f"GEMINI_MODEL: {GEMINI_MODEL}")
    _config_logger.debug(f"GEMINI_API_KEY: {'***' + GEMINI_API_KEY[-4:] if GEMINI_API_KEY else '(not set)'}")
    _config_logger.debug(f"CHUNK_SIZE: {CHUNK_SIZE}, MAX_WORKERS: {MAX_WORKERS}, RPM: {REQUESTS_PER_MINUTE}")

DEFAULT_PROMPT_TEMPLATE = """You are a professional literary translator.
Translate the text below from {{source_language}} into {{target_language}}.
Preserve paragraph breaks and do not add commentary.

## Glossary
{{glossary_context}}

{{story_bible}}

{{previous_context_section}}

## Text to translate
{{slot}}"""

DEFAULT_PREFILL_SYSTEM_INSTRUCTION = (
    "You are a translation engine. Reply with the translation only."
)

# Snapshot keys that are never persisted
_SNAPSHOT_EXCLUDED = ('gemini_api_key',)


@dataclass
class TranslationConfig:
    """Unified configuration for the CLI and library callers"""

    # Core settings
    source_language: str = DEFAULT_SOURCE_LANGUAGE
    target_language: str = DEFAULT_TARGET_LANGUAGE
    model: str = GEMINI_MODEL
    gemini_api_key: str = GEMINI_API_KEY
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE

    # Chunking and scheduling
    chunk_size: int = CHUNK_SIZE
    max_workers: int = MAX_WORKERS
    requests_per_minute: int = REQUESTS_PER_MINUTE
    timeout: int = REQUEST_TIMEOUT
    epub_max_nodes_per_chunk: int = EPUB_MAX_NODES_PER_CHUNK

    # LLM parameters
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    max_output_tokens: int = 65536

    # Retry
    use_content_safety_retry: bool = True
    max_retry_attempts: int = MAX_RETRY_ATTEMPTS
    min_content_safety_chunk_size: int = MIN_CONTENT_SAFETY_CHUNK_SIZE

    # Context injection
    enable_dynamic_glossary_injection: bool = True
    max_glossary_entries_in_prompt: int = MAX_GLOSSARY_ENTRIES
    max_glossary_chars_in_prompt: int = MAX_GLOSSARY_CHARS
    enable_story_bible_injection: bool = True
    enable_sliding_window: bool = True
    sliding_window_size: int = SLIDING_WINDOW_SIZE
    enable_post_processing: bool = True

    # Prefill chat history
    enable_prefill_translation: bool = False
    prefill_system_instruction: str = DEFAULT_PREFILL_SYSTEM_INSTRUCTION
    prefill_history: List[Dict[str, Any]] = field(default_factory=list)

    # Thinking models
    enable_thinking: Optional[bool] = None
    thinking_budget: Optional[int] = None
    thinking_level: Optional[str] = None

    # Glossary/story-bible extraction sampling
    glossary_sampling_ratio: float = 10.0
    glossary_chunk_size: int = 8000

    # Interface-specific
    enable_colors: bool = True

    def validate(self) -> 'TranslationConfig':
        """Raise ConfigurationError on values the pipeline cannot run with"""
        if self.chunk_size <= 0:
            raise ConfigurationError("chunk_size must be positive", {'chunk_size': self.chunk_size})
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1", {'max_workers': self.max_workers})
        if self.max_retry_attempts < 0:
            raise ConfigurationError("max_retry_attempts cannot be negative",
                                     {'max_retry_attempts': self.max_retry_attempts})
        if self.sliding_window_size < 0:
            raise ConfigurationError("sliding_window_size cannot be negative",
                                     {'sliding_window_size': self.sliding_window_size})
        if not 0 < self.glossary_sampling_ratio <= 100:
            raise ConfigurationError("glossary_sampling_ratio must be in (0, 100]",
                                     {'glossary_sampling_ratio': self.glossary_sampling_ratio})
        if '{{slot}}' not in self.prompt_template:
            raise ConfigurationError("prompt_template must contain {{slot}}")
        return self

    @classmethod
    def from_cli_args(cls, args) -> 'TranslationConfig':
        """Create config from CLI arguments"""
        return cls(
            source_language=args.source_lang,
            target_language=args.target_lang,
            model=args.model,
            gemini_api_key=getattr(args, 'gemini_api_key', None) or GEMINI_API_KEY,
            chunk_size=getattr(args, 'chunk_size', CHUNK_SIZE),
            max_workers=getattr(args, 'workers', MAX_WORKERS),
            requests_per_minute=getattr(args, 'rpm', REQUESTS_PER_MINUTE),
            enable_colors=not getattr(args, 'no_color', False),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def to_snapshot_config(self) -> dict:
        """Settings recorded in a session snapshot (secrets excluded)"""
        data = self.to_dict()
        for key in _SNAPSHOT_EXCLUDED:
            data.pop(key, None)
        return data

    @classmethod
    def from_snapshot_config(cls, data: dict, base: Optional['TranslationConfig'] = None) -> 'TranslationConfig':
        """Rebuild a config from snapshot settings, ignoring unknown keys"""
        values = (base or cls()).to_dict()
        known = {f.name for f in fields(cls)}
        for key, value in (data or {}).items():
            if key in known and key not in _SNAPSHOT_EXCLUDED:
                values[key] = value
        return cls(**values)

    def generation_config(self):
        """Build the provider-facing generation parameters"""
        from chunkwise.core.llm.base import GenerationConfig

        return GenerationConfig(
            temperature=self.temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            max_output_tokens=self.max_output_tokens,
            enable_thinking=self.enable_thinking,
            thinking_budget=self.thinking_budget,
            thinking_level=self.thinking_level,
        )
