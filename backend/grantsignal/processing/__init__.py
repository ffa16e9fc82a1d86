"""
Document Processing Package
════════════════════════════

The per-document transforms the ingestion pipeline composes:

  Parse → Chunk → Embed

Modules
───────
  parser.py      bytes + MIME type → text, confidence, metadata, warnings
  chunking.py    2000/200 overlapping character chunks (LangChain splitter)
  embeddings.py  batched OpenAI embeddings with retry

Every component is stateless and dependency-injected; none of them
touch the database or know which organization a document belongs to.
"""

from grantsignal.processing.chunking import Chunk, chunk_text
from grantsignal.processing.embeddings import Embedder, OpenAIEmbedder
from grantsignal.processing.parser import DocumentParser, ParseError, ParseResult

__all__ = [
    "Chunk",
    "chunk_text",
    "Embedder",
    "OpenAIEmbedder",
    "DocumentParser",
    "ParseError",
    "ParseResult",
]
