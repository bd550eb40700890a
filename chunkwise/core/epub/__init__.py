"""
EPUB processing: flattening chapters into nodes and archive I/O
"""
from chunkwise.core.epub.document_model import (
    EpubChapter,
    FlattenedDocument,
    flatten_xhtml,
    reconstruct_xhtml,
    resolve_path,
)
from chunkwise.core.epub.container import EpubContainer, ManifestItem

__all__ = [
    'EpubChapter',
    'FlattenedDocument',
    'flatten_xhtml',
    'reconstruct_xhtml',
    'resolve_path',
    'EpubContainer',
    'ManifestItem',
]
