"""
Markdown-Aware Chunker

Splits documents into overlapping chunks with LangChain's recursive splitter,
preferring markdown structure (headings, code fences, rules, paragraphs)
and falling back to lines, words and finally raw character windows.

Separators and whitespace are kept so that the chunks, read in order and
with their overlaps removed, reconstruct the original text exactly.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from langchain_text_splitters import Language, RecursiveCharacterTextSplitter

from .models import Chunk, Document

logger = logging.getLogger("kb.chunker")


class Chunker:
    """
    Split documents into `Chunk` values.

    Parameters
    ----------
    max_size : int
        Maximum chunk length in characters. Must be positive.

    overlap : int
        Upper bound on characters shared by consecutive chunks. Must satisfy
        `0 <= overlap < max_size`. Only pieces from the same split level are
        repeated: words or lines share the longest run of whole pieces that
        fits in `overlap`, the character-window fallback shares exactly
        `overlap`, and chunks split at a heading or paragraph boundary share
        nothing.
    """

    def __init__(self, max_size: int = 2048, overlap: int = 50) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if overlap < 0 or overlap >= max_size:
            raise ValueError("overlap must satisfy 0 <= overlap < max_size")

        self.max_size = max_size
        self.overlap = overlap

        self._splitter = RecursiveCharacterTextSplitter.from_language(
            Language.MARKDOWN,
            chunk_size=max_size,
            chunk_overlap=overlap,
            length_function=len,
            keep_separator=True,
            strip_whitespace=False,
            add_start_index=True,
        )

    def chunk(self, document: Document) -> List[Chunk]:
        """
        Chunk a single document.

        A document no longer than `max_size` yields exactly one chunk equal
        to its whole text; an empty or whitespace-only document yields none.
        """
        if not document.text.strip():
            return []

        pieces = self._splitter.create_documents([document.text])

        return [
            Chunk(
                text=piece.page_content,
                source=document.source,
                sequence_index=i,
                start_index=piece.metadata["start_index"],
            )
            for i, piece in enumerate(pieces)
        ]

    def chunk_many(self, documents: Iterable[Document]) -> List[Chunk]:
        """
        Chunk several documents, keeping each document's chunks contiguous
        and in document order.
        """
        chunks: List[Chunk] = []
        count = 0
        for document in documents:
            chunks.extend(self.chunk(document))
            count += 1

        logger.info("Split %d documents into %d chunks", count, len(chunks))
        return chunks
