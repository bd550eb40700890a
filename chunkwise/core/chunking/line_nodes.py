"""
Line nodes for integrity mode: plain text is translated as one node per
non-blank line, then overlaid back onto the original line layout.
"""
import re
from dataclasses import dataclass
from typing import List

from chunkwise.core.models import EpubNode

_BR_ESCAPED = re.compile(r'&lt;br\s*/?\s*&gt;', re.IGNORECASE)
_BR_TAG = re.compile(r'<br\s*/?\s*>', re.IGNORECASE)


@dataclass
class ParsedLines:
    nodes: List[EpubNode]
    original_lines: List[str]


def parse_lines(full_text: str, file_id: str = "text") -> ParsedLines:
    """Split text on newlines; every non-blank line becomes a TEXT node."""
    original_lines = re.split(r'\r?\n', full_text)
    nodes = [
        EpubNode.text(id=f"{file_id}_{i:05d}", tag="line", content=line, line_index=i)
        for i, line in enumerate(original_lines)
        if line.strip()
    ]
    return ParsedLines(nodes=nodes, original_lines=original_lines)


def reconstruct_lines(translated_nodes: List[EpubNode], original_lines: List[str]) -> str:
    """Overlay translated line nodes onto the original lines, keeping blank lines."""
    lines = list(original_lines)
    for node in translated_nodes:
        if node.line_index is None or node.line_index < 0:
            continue
        while node.line_index >= len(lines):
            lines.append("")

        # Plain text output: line breaks come back as real newlines
        content = node.content or ""
        content = _BR_ESCAPED.sub('\n', content)
        content = _BR_TAG.sub('\n', content)
        lines[node.line_index] = content
    return '\n'.join(lines)
