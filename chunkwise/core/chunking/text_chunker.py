"""
Character-based text chunking.

Splits text on line boundaries into chunks that never exceed a character
limit, and provides the finer splitters the executor falls back on when a
chunk has to be re-submitted in smaller pieces.
"""
import re
from typing import List, Optional

from chunkwise.core.exceptions import ChunkingConfigurationError
from chunkwise.core.models import FileContent, SourceChunk
from chunkwise.utils.unified_logger import get_logger

DEFAULT_MAX_CHUNK_SIZE = 6000

# Latin terminators need trailing whitespace (avoids splitting "e.g.x"),
# CJK terminators do not.
SENTENCE_PATTERN = re.compile(
    r'([.!?]+[\'"”」\)]*(?:\s+|[\r\n]+|$)'
    r'|[。！？]+[\'"”」\)]*(?:\s*|[\r\n]+|$)'
    r'|[\r\n]+)'
)

_LINE_SPLIT = re.compile(r'(?<=\n)')


def split_by_size(text: str, max_chars: int = DEFAULT_MAX_CHUNK_SIZE) -> List[str]:
    """
    Split text into chunks of at most ``max_chars`` characters.

    Lines keep their terminators, so ``"".join(chunks) == text``. A single
    line longer than the limit is force-sliced.

    Raises:
        ChunkingConfigurationError: if max_chars is not positive
    """
    if max_chars <= 0:
        raise ChunkingConfigurationError("max_chars must be greater than 0", {'max_chars': max_chars})

    chunks = []
    current = ""

    for line in _LINE_SPLIT.split(text):
        if not line:
            continue
        if len(current) + len(line) <= max_chars:
            current += line
            continue

        if current:
            chunks.append(current)

        if len(line) > max_chars:
            get_logger().warning(
                f"Single line exceeds max_chars ({max_chars}), force-splitting. Line length: {len(line)}"
            )
            for start in range(0, len(line), max_chars):
                chunks.append(line[start:start + max_chars])
            current = ""
        else:
            current = line

    if current:
        chunks.append(current)

    get_logger().debug(f"Text split into {len(chunks)} chunks (max size: {max_chars})")
    return chunks


def create_chunks_from_files(files: List[FileContent],
                             max_chars: int = DEFAULT_MAX_CHUNK_SIZE) -> List[SourceChunk]:
    """Chunk several files, tagging every chunk with the index of its file.

    Whitespace-only files produce no chunks but still consume an index, so
    file boundaries stay visible to the scheduler.
    """
    structured = []
    for index, file in enumerate(files):
        if not file.content.strip():
            continue
        for chunk_text in split_by_size(file.content, max_chars):
            structured.append(SourceChunk(text=chunk_text, file_index=index))

    get_logger().debug(f"Created {len(structured)} chunks from {len(files)} files")
    return structured


def split_recursively(text: str,
                      target_size: Optional[int] = None,
                      min_size: int = 100,
                      max_depth: int = 3,
                      depth: int = 0) -> List[str]:
    """
    Split a chunk into smaller pieces, halving the target until the split
    yields more than one piece.

    Args:
        text: Chunk to split
        target_size: Target piece size (defaults to half of the text)
        min_size: Texts whose stripped length is at or below this are not split
        max_depth: Maximum number of halvings
        depth: Current depth

    Returns:
        The pieces, or ``[text]`` when no meaningful split is possible
    """
    if depth >= max_depth:
        get_logger().debug(f"Maximum split depth ({max_depth}) reached")
        return [text]

    if len(text.strip()) <= min_size:
        return [text]

    target = target_size if target_size is not None else len(text) // 2
    if target <= 0:
        return [text]

    pieces = split_by_size(text, target)
    if len(pieces) <= 1:
        smaller = max(min_size, target // 2)
        if smaller < target:
            return split_recursively(text, smaller, min_size, max_depth, depth + 1)
        return [text]

    return pieces


def split_by_sentences(text: str, max_sentences_per_chunk: int = 2) -> List[str]:
    """Group sentences ``max_sentences_per_chunk`` at a time, joined by a space."""
    parts = SENTENCE_PATTERN.split(text)
    sentences = []

    # re.split with one group alternates [text, separator, text, separator, ...]
    for i in range(0, len(parts), 2):
        content = parts[i] or ""
        separator = parts[i + 1] if i + 1 < len(parts) and parts[i + 1] else ""
        sentence = (content + separator).strip()
        if sentence:
            sentences.append(sentence)

    if len(sentences) <= 1:
        return [text]

    step = max(1, max_sentences_per_chunk)
    return [' '.join(sentences[i:i + step]) for i in range(0, len(sentences), step)]


class TextChunker:
    """Facade over the text splitting functions with a default size."""

    def __init__(self, default_max_chars: int = DEFAULT_MAX_CHUNK_SIZE):
        self.default_max_chars = default_max_chars

    def split(self, text: str, max_chars: Optional[int] = None) -> List[str]:
        return split_by_size(text, max_chars if max_chars is not None else self.default_max_chars)

    def create_chunks_from_files(self, files: List[FileContent],
                                 max_chars: Optional[int] = None) -> List[SourceChunk]:
        return create_chunks_from_files(
            files, max_chars if max_chars is not None else self.default_max_chars
        )

    def split_recursively(self, text: str, target_size: Optional[int] = None,
                          min_size: int = 100, max_depth: int = 3) -> List[str]:
        return split_recursively(text, target_size, min_size, max_depth)

    def split_by_sentences(self, text: str, max_sentences_per_chunk: int = 2) -> List[str]:
        return split_by_sentences(text, max_sentences_per_chunk)

    @staticmethod
    def join_chunks(chunks: List[str]) -> str:
        return ''.join(chunks)

    @staticmethod
    def total_length(chunks: List[str]) -> int:
        return sum(len(chunk) for chunk in chunks)
