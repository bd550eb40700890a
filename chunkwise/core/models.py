"""
Data models shared by the chunker, document model, executor, scheduler,
session manager and quality auditor.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, List, Dict, Any

from chunkwise.core.exceptions import NodeInvariantError


class NodeType(Enum):
    """Kind of flattened document node."""
    TEXT = "text"
    IMAGE = "image"
    IGNORED = "ignored"


@dataclass
class EpubNode:
    """
    One item of a flattened structured document.

    TEXT nodes carry translatable ``content`` and never ``html``; IMAGE and
    IGNORED nodes carry raw ``html`` for verbatim reinsertion and never
    ``content``. The id is the join key between the original structure and
    the translated payload.
    """

    id: str
    type: NodeType
    tag: str
    content: Optional[str] = None
    html: Optional[str] = None
    image_path: Optional[str] = None
    attributes: Optional[Dict[str, str]] = None
    line_index: Optional[int] = None

    def __post_init__(self):
        if self.type == NodeType.TEXT:
            if self.content is None or self.html is not None:
                raise NodeInvariantError(
                    "Text node must carry content and no html", {'id': self.id}
                )
        elif self.html is None or self.content is not None:
            raise NodeInvariantError(
                f"{self.type.value} node must carry html and no content", {'id': self.id}
            )

    @classmethod
    def text(cls, id: str, tag: str, content: str,
             attributes: Optional[Dict[str, str]] = None,
             line_index: Optional[int] = None) -> 'EpubNode':
        return cls(id=id, type=NodeType.TEXT, tag=tag, content=content,
                   attributes=attributes, line_index=line_index)

    @classmethod
    def image(cls, id: str, tag: str, html: str, image_path: Optional[str] = None) -> 'EpubNode':
        return cls(id=id, type=NodeType.IMAGE, tag=tag, html=html, image_path=image_path)

    @classmethod
    def ignored(cls, id: str, tag: str, html: str) -> 'EpubNode':
        return cls(id=id, type=NodeType.IGNORED, tag=tag, html=html)

    @property
    def is_text(self) -> bool:
        return self.type == NodeType.TEXT

    @property
    def document_id(self) -> str:
        """Id prefix identifying the chapter/file this node was flattened from."""
        return self.id.rsplit('_', 1)[0]

    def with_content(self, content: str) -> 'EpubNode':
        """Return a copy carrying translated content (text nodes only)."""
        if not self.is_text:
            return self
        return replace(self, content=content)

    def to_dict(self) -> Dict[str, Any]:
        data = {'id': self.id, 'type': self.type.value, 'tag': self.tag}
        for key in ('content', 'html', 'image_path', 'attributes', 'line_index'):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EpubNode':
        return cls(
            id=data['id'],
            type=NodeType(data['type']),
            tag=data['tag'],
            content=data.get('content'),
            html=data.get('html'),
            image_path=data.get('image_path'),
            attributes=data.get('attributes'),
            line_index=data.get('line_index'),
        )


@dataclass
class SourceChunk:
    """A plain-text unit of work tagged with the file it came from."""
    text: str
    file_index: int = 0
    # Absolute chunk index when the unit comes from a resume queue
    index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'index': self.index, 'text': self.text, 'file_index': self.file_index}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SourceChunk':
        index = data.get('index')
        return cls(text=data['text'], file_index=int(data.get('file_index', 0)),
                   index=None if index is None else int(index))


@dataclass
class FileContent:
    """An input file as loaded by the caller."""
    name: str
    content: str
    size: int = 0
    is_epub: bool = False

    def __post_init__(self):
        if not self.size:
            self.size = len(self.content.encode('utf-8'))


@dataclass
class TranslationResult:
    """Outcome of translating one chunk; ``chunk_index`` is the reassembly key."""

    chunk_index: int
    original_text: str
    translated_text: str = ""
    translated_segments: Optional[List[str]] = None
    success: bool = True
    error: Optional[str] = None

    def __post_init__(self):
        # Failed results never carry translated output
        if not self.success:
            self.translated_text = ""

    @classmethod
    def failure(cls, chunk_index: int, original_text: str, error: str) -> 'TranslationResult':
        return cls(chunk_index=chunk_index, original_text=original_text,
                   translated_text="", success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chunk_index': self.chunk_index,
            'original_text': self.original_text,
            'translated_text': self.translated_text,
            'translated_segments': self.translated_segments,
            'success': self.success,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TranslationResult':
        return cls(
            chunk_index=int(data['chunk_index']),
            original_text=data.get('original_text', ''),
            translated_text=data.get('translated_text', ''),
            translated_segments=data.get('translated_segments'),
            success=bool(data.get('success', False)),
            error=data.get('error'),
        )


@dataclass
class JobProgress:
    """Progress of one scheduler run, reported through ``on_progress``."""

    total_chunks: int = 0
    processed_chunks: int = 0
    successful_chunks: int = 0
    failed_chunks: int = 0
    current_status_message: str = ""
    eta_seconds: Optional[int] = None
    current_chunk_processing: Optional[int] = None
    last_error_message: Optional[str] = None

    @property
    def percentage(self) -> float:
        if self.total_chunks <= 0:
            return 0.0
        return self.processed_chunks / self.total_chunks * 100

    def snapshot(self) -> 'JobProgress':
        return replace(self)


# === Translation context ===

@dataclass
class GlossaryEntry:
    keyword: str
    translated_keyword: str
    target_language: str = ""
    occurrence_count: int = 0
    id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'keyword': self.keyword,
            'translated_keyword': self.translated_keyword,
            'target_language': self.target_language,
            'occurrence_count': self.occurrence_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GlossaryEntry':
        return cls(
            keyword=data['keyword'],
            translated_keyword=data.get('translated_keyword', data.get('translatedKeyword', '')),
            target_language=data.get('target_language', data.get('targetLanguage', '')),
            occurrence_count=int(data.get('occurrence_count', data.get('occurrenceCount', 0))),
            id=str(data.get('id', '')),
        )


@dataclass
class Character:
    name: str
    role: str = ""
    personality: str = ""
    speaking_style: str = ""
    relationships: str = ""
    notes: str = ""
    is_active: bool = True


@dataclass
class WorldSetting:
    category: str
    title: str
    content: str = ""
    is_active: bool = True


@dataclass
class StoryBible:
    """Characters, world settings and style notes injected into prompts."""

    characters: List[Character] = field(default_factory=list)
    world_settings: List[WorldSetting] = field(default_factory=list)
    plot_summary: str = ""
    style_guide: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'characters': [vars(c).copy() for c in self.characters],
            'world_settings': [vars(w).copy() for w in self.world_settings],
            'plot_summary': self.plot_summary,
            'style_guide': self.style_guide,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StoryBible':
        return cls(
            characters=[Character(**c) for c in data.get('characters', [])],
            world_settings=[WorldSetting(**w) for w in data.get('world_settings', [])],
            plot_summary=data.get('plot_summary', ''),
            style_guide=data.get('style_guide', ''),
        )


@dataclass
class TranslationContext:
    glossary_entries: List[GlossaryEntry] = field(default_factory=list)
    story_bible: Optional[StoryBible] = None
