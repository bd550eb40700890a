"""
Constants for EPUB processing

This module defines the tag classes and namespaces used to flatten XHTML
chapters into nodes and to read and write the EPUB container.
"""

XHTML_NS = 'http://www.w3.org/1999/xhtml'
"""Default namespace of XHTML content documents"""

XLINK_NS = 'http://www.w3.org/1999/xlink'
XML_NS = 'http://www.w3.org/XML/1998/namespace'

NAMESPACES = {
    'opf': 'http://www.idpf.org/2007/opf',
    'dc': 'http://purl.org/dc/elements/1.1/',
    'xhtml': XHTML_NS,
    'epub': 'http://www.idpf.org/2007/ops',
    'container': 'urn:oasis:names:tc:opendocument:xmlns:container',
}

# Tag classes used by the flattener
IMAGE_TAGS = ('img', 'svg', 'image')
"""Image-bearing elements, kept whole as IMAGE nodes"""

ATOMIC_TAGS = ('hr', 'br')
"""Self-closing elements kept whole as IGNORED nodes"""

STRUCTURAL_TAGS = (
    'nav', 'ol', 'ul', 'li', 'table', 'tr', 'td', 'th',
    'thead', 'tbody', 'dl', 'dt', 'dd', 'blockquote',
)
"""Containers whose tags must survive; their children are flattened in between"""

COMPLEX_CONTENT_TAGS = frozenset(
    IMAGE_TAGS + ATOMIC_TAGS + STRUCTURAL_TAGS + (
        'p', 'div', 'section', 'article', 'aside', 'header', 'footer',
        'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
    )
)
"""A descendant from this set makes an element a container instead of a leaf"""

STRIPPED_TEXT_TAGS = ('rt', 'rp')
"""Ruby annotations dropped from extracted text"""

BARE_TEXT_TAG = '#text'
"""Tag of text nodes written back without a wrapper (text sitting directly in a container)"""

KEPT_ATTRIBUTE_MARKERS = ('class', 'id', 'style', 'href', 'alt', 'title')
"""Attributes whose name contains one of these are carried on text nodes (plus data-*)"""

CHAPTER_EXTENSIONS = ('.xhtml', '.html', '.htm')

CONTAINER_PATH = 'META-INF/container.xml'
MIMETYPE_PATH = 'mimetype'
EPUB_MIMETYPE = 'application/epub+zip'
