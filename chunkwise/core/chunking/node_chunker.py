"""
Node-list chunking for structured documents.

A batch of nodes is limited both by characters and by node count, since a
long JSON array of many small items fails more often than a short one.
"""
from dataclasses import dataclass
from typing import List, Dict

from chunkwise.core.models import EpubNode
from chunkwise.utils.unified_logger import get_logger

MIN_MAX_CHARS = 1000
MIN_MAX_NODES = 5


@dataclass
class ChunkStats:
    total_nodes: int
    text_nodes: int
    total_chars: int
    estimated_chunks: int


class NodeChunker:
    """
    Groups EpubNodes into ordered batches.

    A new batch starts when adding the next node would push the text size
    past ``max_chars`` or the batch already holds ``max_nodes`` nodes. Only
    TEXT nodes count toward the size.
    """

    def __init__(self, max_chars: int = 5000, max_nodes: int = 30, logger=None):
        self.max_chars = max_chars
        self.max_nodes = max_nodes
        self.logger = logger or get_logger()

    @staticmethod
    def _node_size(node: EpubNode) -> int:
        return len(node.content or "") if node.is_text else 0

    def split(self, nodes: List[EpubNode]) -> List[List[EpubNode]]:
        chunks = []
        current: List[EpubNode] = []
        current_size = 0

        for node in nodes:
            node_size = self._node_size(node)
            if current and (current_size + node_size > self.max_chars
                            or len(current) >= self.max_nodes):
                chunks.append(current)
                current = []
                current_size = 0

            current.append(node)
            current_size += node_size

        if current:
            chunks.append(current)

        if chunks:
            self.logger.debug(
                f"Node chunking: {len(nodes)} nodes -> {len(chunks)} chunks "
                f"(avg {len(nodes) / len(chunks):.1f} nodes/chunk, "
                f"max {self.max_chars} chars / {self.max_nodes} nodes)"
            )
        return chunks

    def get_config(self) -> Dict[str, int]:
        return {'max_chars': self.max_chars, 'max_nodes': self.max_nodes}

    def adjust_chunk_size(self, reduce_by: int = 1) -> None:
        """Shrink both limits after repeated API failures."""
        prev_chars, prev_nodes = self.max_chars, self.max_nodes
        self.max_chars = max(MIN_MAX_CHARS, self.max_chars - reduce_by * 100)
        self.max_nodes = max(MIN_MAX_NODES, self.max_nodes - reduce_by)
        self.logger.warning(
            f"Reduced chunk limits: {prev_chars} -> {self.max_chars} chars, "
            f"{prev_nodes} -> {self.max_nodes} nodes/chunk"
        )

    def set_config(self, max_chars: int, max_nodes: int) -> None:
        self.max_chars = max(MIN_MAX_CHARS, max_chars)
        self.max_nodes = max(MIN_MAX_NODES, max_nodes)

    @staticmethod
    def filter_text_nodes(nodes: List[EpubNode]) -> List[EpubNode]:
        return [node for node in nodes if node.is_text]

    def get_chunk_stats(self, nodes: List[EpubNode]) -> ChunkStats:
        text_nodes = self.filter_text_nodes(nodes)
        return ChunkStats(
            total_nodes=len(nodes),
            text_nodes=len(text_nodes),
            total_chars=sum(len(node.content or "") for node in text_nodes),
            estimated_chunks=len(self.split(nodes)),
        )

    def format_stats(self, nodes: List[EpubNode]) -> str:
        stats = self.get_chunk_stats(nodes)
        return (
            "Node chunking statistics:\n"
            f"  - Total nodes: {stats.total_nodes}\n"
            f"  - Text nodes: {stats.text_nodes}\n"
            f"  - Total characters: {stats.total_chars:,}\n"
            f"  - Estimated chunks: {stats.estimated_chunks}"
        )
