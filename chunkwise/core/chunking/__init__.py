"""
Chunking module for text processing.

Provides the strategies for splitting text and node lists into translation-sized units.
"""
from chunkwise.core.chunking.text_chunker import (
    TextChunker,
    split_by_size,
    split_recursively,
    split_by_sentences,
    create_chunks_from_files,
)
from chunkwise.core.chunking.node_chunker import NodeChunker, ChunkStats
from chunkwise.core.chunking.line_nodes import ParsedLines, parse_lines, reconstruct_lines

__all__ = [
    'TextChunker',
    'split_by_size',
    'split_recursively',
    'split_by_sentences',
    'create_chunks_from_files',
    'NodeChunker',
    'ChunkStats',
    'ParsedLines',
    'parse_lines',
    'reconstruct_lines',
]
