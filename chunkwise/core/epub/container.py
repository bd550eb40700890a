"""
EPUB archive I/O.

Loads every entry of the zip into memory, locates the package document
through META-INF/container.xml, walks the spine to produce flattened
chapters, and writes a new archive with the translated chapters.
"""
import re
import zipfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote

from lxml import etree

from chunkwise.core.epub.constants import (
    NAMESPACES,
    CHAPTER_EXTENSIONS,
    CONTAINER_PATH,
    MIMETYPE_PATH,
    EPUB_MIMETYPE,
)
from chunkwise.core.epub.document_model import EpubChapter, flatten_xhtml, reconstruct_xhtml
from chunkwise.core.exceptions import EpubStructureError, TranslationError
from chunkwise.core.models import EpubNode
from chunkwise.utils.unified_logger import get_logger

_RTL_DIRECTION = re.compile(r'(page-progression-direction=["\'])rtl(["\'])', re.IGNORECASE)


@dataclass
class ManifestItem:
    id: str
    href: str
    media_type: str = ""
    properties: str = ""


class EpubContainer:
    """In-memory view of an EPUB archive."""

    def __init__(self, entries: Dict[str, bytes], source_path: Optional[str] = None, logger=None):
        self.entries = entries
        self.source_path = source_path
        self.logger = logger or get_logger()

    @classmethod
    def open(cls, path: str, logger=None) -> 'EpubContainer':
        try:
            with zipfile.ZipFile(path, 'r') as zip_ref:
                entries = {info.filename: zip_ref.read(info.filename)
                           for info in zip_ref.infolist() if not info.is_dir()}
        except zipfile.BadZipFile as e:
            raise EpubStructureError(f"Invalid EPUB file (not a valid ZIP): {path}") from e
        return cls(entries, source_path=path, logger=logger)

    def read_bytes(self, name: str) -> bytes:
        if name not in self.entries:
            raise EpubStructureError(f"File not found in EPUB: {name}", {'name': name})
        return self.entries[name]

    def read_text(self, name: str) -> str:
        return self.read_bytes(name).decode('utf-8')

    def write_text(self, name: str, text: str) -> None:
        self.entries[name] = text.encode('utf-8')

    def _parse_xml(self, name: str):
        try:
            return etree.fromstring(self.read_bytes(name))
        except etree.XMLSyntaxError as e:
            raise EpubStructureError(f"Malformed XML in {name}: {e}", {'name': name}) from e

    def opf_path(self) -> str:
        root = self._parse_xml(CONTAINER_PATH)
        rootfile = root.find('.//container:rootfile', namespaces=NAMESPACES)
        if rootfile is None:
            rootfile = root.find('.//rootfile')
        path = rootfile.get('full-path') if rootfile is not None else None
        if not path:
            raise EpubStructureError("OPF file path not found in container.xml")
        return path

    def opf_dir(self) -> str:
        opf = self.opf_path()
        return opf[:opf.rindex('/')] if '/' in opf else ''

    def manifest_items(self) -> List[ManifestItem]:
        root = self._parse_xml(self.opf_path())
        items = []
        for item in root.iterfind('.//opf:manifest/opf:item', namespaces=NAMESPACES):
            item_id, href = item.get('id', ''), item.get('href', '')
            if item_id and href:
                items.append(ManifestItem(item_id, href, item.get('media-type', ''),
                                          item.get('properties', '')))
        return items

    def spine_idrefs(self) -> List[str]:
        root = self._parse_xml(self.opf_path())
        return [ref.get('idref') for ref in root.iterfind('.//opf:spine/opf:itemref', namespaces=NAMESPACES)
                if ref.get('idref')]

    @staticmethod
    def _is_nav(item: ManifestItem) -> bool:
        return ('nav' in item.properties.split()
                or 'nav' in item.href.lower()
                or 'nav' in item.id.lower()
                or item.id.lower() == 'toc')

    def _chapter_path(self, href: str, base: str) -> str:
        if href.startswith('/') or not base:
            return href
        return re.sub(r'/+', '/', f"{base}/{href}")

    def load_chapters(self) -> List[EpubChapter]:
        """Flatten every spine document (plus a nav document missing from the spine)."""
        manifest = self.manifest_items()
        by_id = {item.id: item for item in manifest}
        idrefs = self.spine_idrefs()
        base = self.opf_dir()

        nav_item = next((item for item in manifest if self._is_nav(item)), None)
        if nav_item is not None and nav_item.id not in idrefs:
            self.logger.info(f"Nav document not in spine: {nav_item.id} ({nav_item.href})")
            idrefs.insert(0, nav_item.id)

        chapters = []
        for idref in idrefs:
            item = by_id.get(idref)
            if item is None or not item.href.lower().endswith(CHAPTER_EXTENSIONS):
                continue

            path = self._chapter_path(item.href, base)
            try:
                document = flatten_xhtml(self.read_text(path), path)
            except (TranslationError, UnicodeDecodeError) as e:
                self.logger.warning(f"Failed to parse chapter {path}: {e}")
                continue

            if not document.nodes:
                self.logger.warning(f"Empty chapter: {path}")
            chapters.append(EpubChapter(file_name=path, nodes=document.nodes, head=document.head))
            self.logger.debug(f"Parsed {path} ({len(document.nodes)} nodes)")

        self.logger.info(f"Parsed {len(chapters)} chapters")
        return chapters

    def get_image_data(self, path: str) -> Optional[bytes]:
        decoded = unquote(path)
        if decoded in self.entries:
            return self.entries[decoded]

        # Some archives disagree with their own markup on case
        lowered = decoded.lower()
        for name, data in self.entries.items():
            if name.lower() == lowered:
                self.logger.debug(f"Found image by case-insensitive match: {name}")
                return data

        self.logger.warning(f"Image not found in EPUB: {decoded}")
        return None

    @staticmethod
    def apply_translated_nodes(chapters: List[EpubChapter], nodes: List[EpubNode]) -> List[EpubChapter]:
        """Return chapters whose nodes are replaced by the translated nodes with the same id."""
        translated = {node.id: node for node in nodes}
        return [
            EpubChapter(
                file_name=chapter.file_name,
                nodes=[translated.get(node.id, node) for node in chapter.nodes],
                head=chapter.head,
            )
            for chapter in chapters
        ]

    def _force_ltr(self) -> None:
        opf = self.opf_path()
        content = self.read_text(opf)
        if _RTL_DIRECTION.search(content):
            self.write_text(opf, _RTL_DIRECTION.sub(r'\1ltr\2', content))
            self.logger.info("OPF page-progression-direction updated to LTR")

    def save(self, path: str, chapters: List[EpubChapter]) -> Tuple[int, str]:
        """
        Write a new EPUB with the given chapters.

        Returns:
            (number of chapters written, output path)
        """
        try:
            self._force_ltr()
        except EpubStructureError as e:
            self.logger.warning(f"OPF direction update failed: {e}")

        for chapter in chapters:
            self.write_text(chapter.file_name, reconstruct_xhtml(chapter.nodes, chapter.head))

        mimetype = self.entries.get(MIMETYPE_PATH, EPUB_MIMETYPE.encode('ascii'))
        # mimetype must be the first entry and uncompressed
        with zipfile.ZipFile(path, 'w', zipfile.ZIP_DEFLATED) as epub_zip:
            epub_zip.writestr(MIMETYPE_PATH, mimetype, compress_type=zipfile.ZIP_STORED)
            for name, data in self.entries.items():
                if name != MIMETYPE_PATH:
                    epub_zip.writestr(name, data)

        return len(chapters), path
