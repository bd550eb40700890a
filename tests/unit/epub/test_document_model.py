"""
Unit tests for XHTML flattening and reconstruction
"""
import pytest

from chunkwise.core.epub.document_model import (
    flatten_xhtml,
    parse_document,
    reconstruct_xhtml,
    resolve_path,
)
from chunkwise.core.exceptions import XmlParsingError
from chunkwise.core.models import NodeType

FILE_NAME = "OEBPS/Text/ch1.xhtml"


def xhtml(body, head="<title>Chapter</title>"):
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml" xmlns:xlink="http://www.w3.org/1999/xlink">'
        f'<head>{head}</head><body>{body}</body></html>'
    )


class TestFlatten:
    """Tests for flatten_xhtml"""

    def test_text_image_and_title_nodes(self):
        """Should emit the title, text leaves and image nodes in document order"""
        document = flatten_xhtml(xhtml(
            '<h1>Chapter One</h1><p>Hello world.</p><img src="../Images/pic.png" alt="A picture"/>'
        ), FILE_NAME)

        nodes = document.nodes
        assert [n.id for n in nodes] == [
            f"{FILE_NAME}_title", f"{FILE_NAME}_0", f"{FILE_NAME}_1", f"{FILE_NAME}_2",
        ]
        assert [n.type for n in nodes] == [NodeType.TEXT, NodeType.TEXT, NodeType.TEXT, NodeType.IMAGE]
        assert nodes[1].content == "Chapter One"
        assert nodes[3].html == '<img src="../Images/pic.png" alt="A picture"/>'
        assert nodes[3].image_path == "OEBPS/Images/pic.png"

    def test_head_is_preserved_without_title(self):
        """Should keep the head markup minus the title"""
        document = flatten_xhtml(xhtml('<p>x</p>', head='<title>T</title><link rel="stylesheet" href="s.css"/>'),
                                 FILE_NAME)

        assert document.head == '<link rel="stylesheet" href="s.css"/>'

    def test_ruby_annotations_are_dropped(self):
        """Should drop rt/rp text from extracted content"""
        document = flatten_xhtml(xhtml('<p>漢<ruby>字<rp>(</rp><rt>じ</rt><rp>)</rp></ruby>です</p>'),
                                 FILE_NAME)

        assert document.nodes[-1].content == "漢字です"

    def test_structural_tags_are_kept(self):
        """Should keep list tags as ignored nodes around their items"""
        document = flatten_xhtml(xhtml('<ul><li><span>Item 1</span></li><li>Item 2</li></ul>'), FILE_NAME)

        body = [(n.type, n.tag, n.content or n.html) for n in document.nodes[1:]]
        assert body == [
            (NodeType.IGNORED, 'ul', '<ul>'),
            (NodeType.IGNORED, 'li', '<li>'),
            (NodeType.TEXT, 'span', 'Item 1'),
            (NodeType.IGNORED, 'li', '</li>'),
            (NodeType.IGNORED, 'li', '<li>'),
            (NodeType.TEXT, '#text', 'Item 2'),
            (NodeType.IGNORED, 'li', '</li>'),
            (NodeType.IGNORED, 'ul', '</ul>'),
        ]

    def test_structural_wrappers_keep_every_attribute(self):
        """Should keep colspan, start and value on table cells and list items"""
        document = flatten_xhtml(xhtml(
            '<table><tr><td colspan="2">Cell</td></tr></table>'
            '<ol start="5"><li value="7">Item</li></ol>'
        ), FILE_NAME)

        wrappers = [n.html for n in document.nodes if n.type == NodeType.IGNORED]
        assert '<td colspan="2">' in wrappers
        assert '<ol start="5">' in wrappers
        assert '<li value="7">' in wrappers
        assert [n.content for n in document.nodes if n.tag == '#text'] == ["Cell", "Item"]

    def test_loose_text_in_containers_is_kept(self):
        """Should emit text next to block children instead of dropping it"""
        document = flatten_xhtml(xhtml('<li>Intro<ul><li>Nested</li></ul>Outro</li>'), FILE_NAME)

        assert [n.content for n in document.nodes[1:] if n.is_text] == ["Intro", "Nested", "Outro"]

    def test_container_with_blocks_is_entered(self):
        """Should descend into a div that holds paragraphs"""
        document = flatten_xhtml(xhtml('<div class="box"><p>One</p><hr/><p>Two</p></div>'), FILE_NAME)

        tags = [(n.type, n.tag) for n in document.nodes[1:]]
        assert tags == [
            (NodeType.IGNORED, 'div'),
            (NodeType.TEXT, 'p'),
            (NodeType.IGNORED, 'hr'),
            (NodeType.TEXT, 'p'),
            (NodeType.IGNORED, 'div'),
        ]
        assert document.nodes[1].html == '<div class="box">'

    def test_leaf_div_is_text(self):
        """Should treat a div without block content as a text leaf"""
        document = flatten_xhtml(xhtml('<div class="para">Hello <b>World</b></div>'), FILE_NAME)

        node = document.nodes[-1]
        assert node.type == NodeType.TEXT
        assert node.content == "Hello World"
        assert node.attributes == {'class': 'para'}

    def test_kept_attributes(self):
        """Should carry class, id-like and data-* attributes only"""
        document = flatten_xhtml(xhtml('<p class="c" data-x="1" lang="en">Hi</p>'), FILE_NAME)

        assert document.nodes[-1].attributes == {'class': 'c', 'data-x': '1'}

    def test_svg_image_path(self):
        """Should resolve the xlink:href of an svg image"""
        document = flatten_xhtml(xhtml('<svg><image xlink:href="../Images/test.png"/></svg>'), FILE_NAME)

        image = document.nodes[-1]
        assert image.type == NodeType.IMAGE
        assert image.image_path == "OEBPS/Images/test.png"

    def test_empty_paragraphs_are_skipped(self):
        """Should not emit nodes for whitespace-only leaves"""
        document = flatten_xhtml(xhtml('<p>  </p><p>Text</p>'), FILE_NAME)

        assert [n.content for n in document.nodes[1:]] == ["Text"]

    def test_unparseable_document(self):
        """Should raise XmlParsingError when nothing can be recovered"""
        with pytest.raises(XmlParsingError):
            parse_document("")


class TestReconstruct:
    """Tests for reconstruct_xhtml"""

    def test_round_trip_keeps_markup(self):
        """Should reproduce image and structural markup unchanged"""
        source = xhtml('<p>Hello</p><img src="../Images/pic.png" alt="A"/><ul><li><span>x</span></li></ul>')
        document = flatten_xhtml(source, FILE_NAME)

        rebuilt = reconstruct_xhtml(document.nodes, document.head)

        assert '<img src="../Images/pic.png" alt="A"/>' in rebuilt
        assert '<ul>\n  <li>\n  <span>x</span>\n  </li>\n  </ul>' in rebuilt
        assert '<title>Chapter</title>' in rebuilt
        reparsed = flatten_xhtml(rebuilt, FILE_NAME)
        assert [n.content for n in reparsed.nodes] == [n.content for n in document.nodes]

    def test_round_trip_keeps_structural_attributes(self):
        """Should replay table and list wrappers byte for byte around translated text"""
        source = xhtml(
            '<table class="t"><tr><td colspan="2" rowspan="3">Cell</td></tr></table>'
            '<ol start="5"><li value="7">Item</li></ol>'
        )
        document = flatten_xhtml(source, FILE_NAME)
        translated = [n.with_content(n.content.upper()) if n.is_text else n for n in document.nodes]

        rebuilt = reconstruct_xhtml(translated, document.head)

        assert '<table class="t">\n  <tr>\n  <td colspan="2" rowspan="3">\n  CELL\n  </td>' in rebuilt
        assert '<ol start="5">\n  <li value="7">\n  ITEM\n  </li>\n  </ol>' in rebuilt
        reparsed = flatten_xhtml(rebuilt, FILE_NAME)
        assert [n.html for n in reparsed.nodes if n.type == NodeType.IGNORED] == \
            [n.html for n in document.nodes if n.type == NodeType.IGNORED]

    def test_translated_content_is_escaped(self):
        """Should escape text but keep inserted line breaks"""
        document = flatten_xhtml(xhtml('<p class="c">x</p>'), FILE_NAME)
        translated = [n.with_content("a<br/>b & \"c\"") if n.tag == 'p' else n for n in document.nodes]

        rebuilt = reconstruct_xhtml(translated, document.head)

        assert '<p class="c">a<br/>b &amp; &quot;c&quot;</p>' in rebuilt


class TestResolvePath:

    @pytest.mark.parametrize("base, relative, expected", [
        ("OEBPS/Text/chap1.xhtml", "../Images/img1.jpg", "OEBPS/Images/img1.jpg"),
        ("OEBPS/Text/chap1.xhtml", "./img.png", "OEBPS/Text/img.png"),
        ("chap1.xhtml", "img.png", "img.png"),
        ("OEBPS/chap1.xhtml", "/abs/img.png", "/abs/img.png"),
        ("OEBPS/chap1.xhtml", "https://example.com/a.png", "https://example.com/a.png"),
    ])
    def test_resolve_path(self, base, relative, expected):
        """Should resolve relative paths against the document directory"""
        assert resolve_path(base, relative) == expected
