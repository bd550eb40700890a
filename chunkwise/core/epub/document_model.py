"""
Flattening of XHTML chapters into ordered node lists, and the inverse.

A chapter becomes a flat list of EpubNodes: translatable TEXT leaves,
IMAGE nodes holding their original markup, and IGNORED nodes holding
markup that is replayed verbatim (atomic tags, and the opening/closing
tags of structural containers). Text sitting directly inside a
container becomes a TEXT node tagged ``#text`` that is written back bare,
so the container markup itself is never rebuilt. Node ids are
``{file_name}_{n}`` with a running counter, plus ``{file_name}_title``
for the head title.
"""
import html
import re
from dataclasses import dataclass, field
from typing import List, Optional, Dict

from lxml import etree

from chunkwise.core.epub.constants import (
    XHTML_NS,
    XML_NS,
    IMAGE_TAGS,
    ATOMIC_TAGS,
    STRUCTURAL_TAGS,
    COMPLEX_CONTENT_TAGS,
    STRIPPED_TEXT_TAGS,
    BARE_TEXT_TAG,
    KEPT_ATTRIBUTE_MARKERS,
)
from chunkwise.core.exceptions import XmlParsingError
from chunkwise.core.models import EpubNode

_XHTML_XMLNS = f' xmlns="{XHTML_NS}"'
_URL_SCHEME = re.compile(r'^[a-z]+:', re.IGNORECASE)
_ESCAPED_BR = re.compile(r'&lt;br/&gt;')


@dataclass
class FlattenedDocument:
    nodes: List[EpubNode]
    head: str = ""


@dataclass
class EpubChapter:
    """A spine document: its path inside the archive, its nodes and preserved head."""
    file_name: str
    nodes: List[EpubNode] = field(default_factory=list)
    head: str = ""


def _local_name(element) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname.lower()


def _serialize(element, with_tail: bool = False) -> str:
    """
    Serialize an element without the namespace declarations lxml copies
    from its ancestors: the default XHTML one always, prefixed ones when
    the fragment does not use the prefix.
    """
    markup = etree.tostring(element, encoding='unicode', with_tail=with_tail)
    markup = markup.replace(_XHTML_XMLNS, '', 1)
    for prefix, uri in element.nsmap.items():
        if not prefix:
            continue
        declaration = f' xmlns:{prefix}="{uri}"'
        if declaration in markup and f'{prefix}:' not in markup.replace(declaration, ''):
            markup = markup.replace(declaration, '', 1)
    return markup


def _opening_tag(element) -> str:
    shallow = etree.Element(element.tag, attrib=dict(element.attrib), nsmap=element.nsmap)
    # Empty text forces a start/end pair instead of a self-closing tag
    shallow.text = ''
    markup = _serialize(shallow)
    return markup[:markup.rindex('<')]


def _remove_keeping_tail(element) -> None:
    parent = element.getparent()
    if parent is None:
        return
    tail = element.tail or ''
    previous = element.getprevious()
    if previous is not None:
        previous.tail = (previous.tail or '') + tail
    else:
        parent.text = (parent.text or '') + tail
    parent.remove(element)


def _pure_text(element) -> str:
    """textContent with ruby annotations (rt/rp) removed."""
    parts = [element.text or '']
    for child in element:
        if isinstance(child.tag, str) and _local_name(child) not in STRIPPED_TEXT_TAGS:
            parts.append(_pure_text(child))
        parts.append(child.tail or '')
    return ''.join(parts)


def _attribute_name(element, key: str) -> Optional[str]:
    if not key.startswith('{'):
        return key
    qname = etree.QName(key)
    if qname.namespace == XML_NS:
        return f"xml:{qname.localname}"
    for prefix, uri in element.nsmap.items():
        if prefix and uri == qname.namespace:
            return f"{prefix}:{qname.localname}"
    return None


def get_attributes(element) -> Optional[Dict[str, str]]:
    """Attributes worth carrying on a text node, or None when there are none."""
    attrs = {}
    for key, value in element.attrib.items():
        name = _attribute_name(element, key)
        if name is None:
            continue
        if name.startswith('data-') or any(marker in name for marker in KEPT_ATTRIBUTE_MARKERS):
            attrs[name] = value
    return attrs or None


def resolve_path(base_path: str, relative_path: str) -> str:
    """
    Resolve ``relative_path`` against the directory of ``base_path``.

    >>> resolve_path('OEBPS/Text/chap1.xhtml', '../Images/img1.jpg')
    'OEBPS/Images/img1.jpg'
    """
    if relative_path.startswith('/') or _URL_SCHEME.match(relative_path):
        return relative_path

    stack = base_path.split('/')
    stack.pop()

    for part in relative_path.split('/'):
        if part == '.':
            continue
        if part == '..':
            if stack:
                stack.pop()
        else:
            stack.append(part)

    return '/'.join(stack)


def _image_path(element, tag: str, file_name: str) -> Optional[str]:
    if tag == 'img':
        path = element.get('src')
    else:
        target = element
        if tag == 'svg':
            target = next(
                (d for d in element.iterdescendants() if _local_name(d) == 'image'), None
            )
        path = None
        if target is not None:
            path = target.get('href') or target.get('{http://www.w3.org/1999/xlink}href')
    return resolve_path(file_name, path) if path else None


def _has_complex_content(element) -> bool:
    return any(_local_name(d) in COMPLEX_CONTENT_TAGS for d in element.iterdescendants())


def _has_direct_text(element) -> bool:
    if (element.text or '').strip():
        return True
    return any((child.tail or '').strip() for child in element)


def _find_child(element, name: str):
    for child in element:
        if _local_name(child) == name:
            return child
    return None


def parse_document(content: str):
    """Parse XHTML in recover mode, raising XmlParsingError when nothing usable comes back."""
    parser = etree.XMLParser(recover=True, remove_blank_text=False, resolve_entities=False)
    try:
        root = etree.fromstring(content.encode('utf-8'), parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        raise XmlParsingError("Failed to parse XHTML", original_error=e, content_preview=content)
    if root is None:
        raise XmlParsingError("XHTML document has no root element", content_preview=content)
    return root


def flatten_xhtml(content: str, file_name: str) -> FlattenedDocument:
    """
    Flatten one XHTML document into nodes.

    Args:
        content: XHTML source
        file_name: Path of the document inside the archive; prefixes every node id

    Returns:
        FlattenedDocument with the nodes and the preserved head markup
    """
    root = parse_document(content)
    nodes: List[EpubNode] = []
    counter = 0
    head_markup = ''

    head = _find_child(root, 'head')
    if head is not None:
        title = _find_child(head, 'title')
        if title is not None:
            nodes.append(EpubNode.text(
                id=f"{file_name}_title",
                tag='title',
                content=''.join(title.itertext()),
                attributes=get_attributes(title),
            ))
            _remove_keeping_tail(title)
        head_markup = (head.text or '') + ''.join(_serialize(child, with_tail=True) for child in head)

    def next_id() -> str:
        nonlocal counter
        node_id = f"{file_name}_{counter}"
        counter += 1
        return node_id

    def bare_text(text: Optional[str]) -> None:
        text = (text or '').strip()
        if text:
            nodes.append(EpubNode.text(id=next_id(), tag=BARE_TEXT_TAG, content=text))

    def wrap(element, tag: str, inner) -> None:
        nodes.append(EpubNode.ignored(id=next_id(), tag=tag, html=_opening_tag(element)))
        inner()
        nodes.append(EpubNode.ignored(id=next_id(), tag=tag, html=f"</{tag}>"))

    def visit(element) -> None:
        tag = _local_name(element)

        if tag in IMAGE_TAGS:
            nodes.append(EpubNode.image(
                id=next_id(), tag=tag, html=_serialize(element),
                image_path=_image_path(element, tag, file_name),
            ))
            return

        if tag in ATOMIC_TAGS:
            nodes.append(EpubNode.ignored(id=next_id(), tag=tag, html=_serialize(element)))
            return

        complex_content = _has_complex_content(element)
        if tag in STRUCTURAL_TAGS and not complex_content and _has_direct_text(element):
            # Inline-only list item or cell: one text run inside the untouched wrapper
            wrap(element, tag, lambda: bare_text(_pure_text(element)))
            return
        if tag in STRUCTURAL_TAGS or complex_content:
            wrap(element, tag, lambda: traverse(element))
            return

        text = _pure_text(element).strip()
        if text:
            nodes.append(EpubNode.text(
                id=next_id(), tag=tag, content=text, attributes=get_attributes(element),
            ))

    def traverse(parent) -> None:
        bare_text(parent.text)
        for element in parent:
            if isinstance(element.tag, str):
                visit(element)
            bare_text(element.tail)

    body = _find_child(root, 'body')
    if body is not None:
        traverse(body)

    return FlattenedDocument(nodes=nodes, head=head_markup)


def escape_text(text: str) -> str:
    return html.escape(text, quote=True).replace('&#x27;', '&#039;')


def attributes_to_string(attributes: Optional[Dict[str, str]]) -> str:
    if not attributes:
        return ''
    return ''.join(f' {key}="{escape_text(value)}"' for key, value in attributes.items())


def reconstruct_xhtml(nodes: List[EpubNode], head: Optional[str] = None) -> str:
    """Rebuild an XHTML document from (translated) nodes and the preserved head."""
    parts = ['<?xml version="1.0" encoding="UTF-8"?>\n', f'<html xmlns="{XHTML_NS}">\n', '<head>\n']
    if head:
        parts.append(head + '\n')

    title = next((n for n in nodes if n.tag == 'title'), None)
    if title is not None:
        parts.append(f"  <title{attributes_to_string(title.attributes)}>"
                     f"{escape_text(title.content or '')}</title>\n")
    parts.append('</head>\n<body>\n')

    for node in nodes:
        if node.tag == 'title':
            continue
        if node.is_text:
            # Line breaks inserted for the model survive escaping
            content = _ESCAPED_BR.sub('<br/>', escape_text(node.content or ''))
            if node.tag == BARE_TEXT_TAG:
                parts.append(f"  {content}\n")
                continue
            parts.append(f"  <{node.tag}{attributes_to_string(node.attributes)}>{content}</{node.tag}>\n")
        else:
            parts.append(f"  {node.html}\n")

    parts.append('</body>\n</html>')
    return ''.join(parts)
