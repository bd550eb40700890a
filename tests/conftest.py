"""
Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and provides common fixtures
(fake provider, quiet logger, config factory, sample nodes and EPUBs) for
all test modules.
"""

import sys
import zipfile
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from chunkwise.config import TranslationConfig
from chunkwise.core.models import EpubNode
from chunkwise.utils.unified_logger import LogLevel, UnifiedLogger


class FakeProvider:
    """
    Stand-in for an LLM provider.

    ``responder`` receives the prompt and returns the reply text, or an
    exception instance to raise.
    """

    def __init__(self, responder=None):
        self.responder = responder or (lambda prompt: f"T:{prompt}")
        self.calls = []
        self.closed = False

    async def generate_text(self, prompt, model=None, system_prompt=None, config=None, history=None):
        self.calls.append({
            'prompt': prompt,
            'model': model,
            'system_prompt': system_prompt,
            'config': config,
            'history': history,
        })
        reply = self.responder(prompt)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def close(self):
        self.closed = True


class MemoryStore:
    """Dict-backed key-value store with the Database interface."""

    def __init__(self):
        self.data = {}

    def get(self, key, default=None):
        return self.data.get(key, default)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        return self.data.pop(key, None) is not None

    async def aget(self, key, default=None):
        return self.get(key, default)

    async def aset(self, key, value):
        self.set(key, value)

    async def adelete(self, key):
        return self.delete(key)


@pytest.fixture
def fake_provider():
    """FakeProvider class; call it with a responder."""
    return FakeProvider


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def log_entries():
    return []


@pytest.fixture
def quiet_logger(log_entries):
    """Logger that prints nothing and records every entry."""
    return UnifiedLogger(
        name="test",
        console_output=False,
        min_level=LogLevel.DEBUG,
        storage_callback=log_entries.append,
    )


@pytest.fixture
def make_config():
    """Factory for a config with no rate limit and a bare ``{{slot}}`` template."""

    def factory(**overrides):
        values = {
            'gemini_api_key': 'test-key',
            'requests_per_minute': 0,
            'prompt_template': '{{slot}}',
            'max_workers': 1,
            'enable_story_bible_injection': False,
        }
        values.update(overrides)
        return TranslationConfig(**values)

    return factory


@pytest.fixture
def text_nodes():
    """Factory for ``count`` text nodes of one document."""

    def factory(count, content_size=10, document="ch1.xhtml"):
        return [
            EpubNode.text(id=f"{document}_{i}", tag="p", content=chr(ord('a') + i % 26) * content_size)
            for i in range(count)
        ]

    return factory


CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>"""

CONTENT_OPF = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="id">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>Sample</dc:title>
  </metadata>
  <manifest>
    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>
    <item id="ch1" href="Text/ch1.xhtml" media-type="application/xhtml+xml"/>
    <item id="img" href="Images/pic.png" media-type="image/png"/>
  </manifest>
  <spine page-progression-direction="rtl">
    <itemref idref="ch1"/>
  </spine>
</package>"""

NAV_XHTML = """<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<head><title>Contents</title></head>
<body><nav epub:type="toc"><ol><li><a href="Text/ch1.xhtml">Chapter One</a></li></ol></nav></body>
</html>"""

CHAPTER_XHTML = """<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>Chapter One</title><link rel="stylesheet" href="../style.css"/></head>
<body>
<h1>Chapter One</h1>
<p>Hello world.</p>
<img src="../Images/pic.png" alt="A picture"/>
<p>Second paragraph.</p>
</body>
</html>"""


@pytest.fixture
def sample_epub(tmp_path):
    """Minimal EPUB 3 with a nav document outside the spine and one chapter."""
    path = tmp_path / "sample.epub"
    with zipfile.ZipFile(path, 'w') as epub:
        epub.writestr('mimetype', 'application/epub+zip', compress_type=zipfile.ZIP_STORED)
        epub.writestr('META-INF/container.xml', CONTAINER_XML)
        epub.writestr('OEBPS/content.opf', CONTENT_OPF)
        epub.writestr('OEBPS/nav.xhtml', NAV_XHTML)
        epub.writestr('OEBPS/Text/ch1.xhtml', CHAPTER_XHTML)
        epub.writestr('OEBPS/Images/pic.png', b'\x89PNG fake')
    return path
