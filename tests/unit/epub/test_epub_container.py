"""
Unit tests for EPUB archive I/O
"""
import zipfile

import pytest

from chunkwise.core.epub.container import EpubContainer
from chunkwise.core.exceptions import EpubStructureError


class TestEpubContainer:
    """Tests for reading an EPUB archive"""

    def test_locates_package_document(self, sample_epub, quiet_logger):
        """Should find the OPF through container.xml"""
        container = EpubContainer.open(str(sample_epub), quiet_logger)

        assert container.opf_path() == "OEBPS/content.opf"
        assert container.opf_dir() == "OEBPS"
        assert container.spine_idrefs() == ["ch1"]
        assert [item.id for item in container.manifest_items()] == ["nav", "ch1", "img"]

    def test_loads_spine_chapters_with_nav(self, sample_epub, quiet_logger):
        """Should flatten the spine and prepend a nav document missing from it"""
        container = EpubContainer.open(str(sample_epub), quiet_logger)

        chapters = container.load_chapters()

        assert [c.file_name for c in chapters] == ["OEBPS/nav.xhtml", "OEBPS/Text/ch1.xhtml"]
        chapter = chapters[1]
        assert [n.content for n in chapter.nodes if n.is_text] == [
            "Chapter One", "Chapter One", "Hello world.", "Second paragraph.",
        ]
        assert chapter.head == '<link rel="stylesheet" href="../style.css"/>'
        nav_texts = [n.content for n in chapters[0].nodes if n.is_text]
        assert "Chapter One" in nav_texts

    def test_image_lookup(self, sample_epub, quiet_logger):
        """Should find images by exact, encoded or differently-cased path"""
        container = EpubContainer.open(str(sample_epub), quiet_logger)

        assert container.get_image_data("OEBPS/Images/pic.png") == b'\x89PNG fake'
        assert container.get_image_data("oebps/images/PIC.png") == b'\x89PNG fake'
        assert container.get_image_data("OEBPS/Images/pic%2Epng") == b'\x89PNG fake'
        assert container.get_image_data("OEBPS/Images/missing.png") is None

    def test_not_a_zip(self, tmp_path, quiet_logger):
        """Should raise EpubStructureError for a non-zip file"""
        path = tmp_path / "broken.epub"
        path.write_bytes(b"not a zip")

        with pytest.raises(EpubStructureError):
            EpubContainer.open(str(path), quiet_logger)

    def test_missing_entry(self, sample_epub, quiet_logger):
        """Should raise EpubStructureError for an unknown entry"""
        container = EpubContainer.open(str(sample_epub), quiet_logger)

        with pytest.raises(EpubStructureError):
            container.read_text("OEBPS/Text/none.xhtml")


class TestEpubSave:
    """Tests for writing the translated archive"""

    def test_save_translated_chapters(self, sample_epub, tmp_path, quiet_logger):
        """Should write translated text, keep other entries and switch RTL to LTR"""
        container = EpubContainer.open(str(sample_epub), quiet_logger)
        chapters = container.load_chapters()
        nodes = [n.with_content(n.content.upper()) if n.is_text else n
                 for chapter in chapters for n in chapter.nodes]
        translated = EpubContainer.apply_translated_nodes(chapters, nodes)
        output = str(tmp_path / "out.epub")

        count, path = container.save(output, translated)

        assert (count, path) == (2, output)
        with zipfile.ZipFile(output) as epub:
            first = epub.infolist()[0]
            assert first.filename == "mimetype"
            assert first.compress_type == zipfile.ZIP_STORED
            assert epub.read("OEBPS/Images/pic.png") == b'\x89PNG fake'
            assert 'page-progression-direction="ltr"' in epub.read("OEBPS/content.opf").decode('utf-8')
            chapter = epub.read("OEBPS/Text/ch1.xhtml").decode('utf-8')
        assert "<p>HELLO WORLD.</p>" in chapter
        assert '<img src="../Images/pic.png" alt="A picture"/>' in chapter

        reopened = EpubContainer.open(output, quiet_logger).load_chapters()
        assert [n.content for n in reopened[1].nodes if n.is_text] == [
            "CHAPTER ONE", "CHAPTER ONE", "HELLO WORLD.", "SECOND PARAGRAPH.",
        ]

    def test_apply_translated_nodes_keeps_unknown_ids(self, sample_epub, quiet_logger):
        """Should leave nodes without a translation untouched"""
        container = EpubContainer.open(str(sample_epub), quiet_logger)
        chapters = container.load_chapters()

        unchanged = EpubContainer.apply_translated_nodes(chapters, [])

        assert [n.content for n in unchanged[1].nodes] == [n.content for n in chapters[1].nodes]
