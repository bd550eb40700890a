"""
chunkwise: chunked LLM translation of plain text and EPUB documents
"""

__version__ = "0.1.0"
