"""
Document Loader

Discovers markdown (or any glob-matched) files under the knowledge directory
and materializes them as `Document` values tagged with their path.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

from .models import Document
from ..core.errors import DocumentLoadError

logger = logging.getLogger("kb.loader")


class DocumentLoader:
    """
    Recursive file loader.

    Files are returned sorted by path so repeated runs over an unchanged
    directory produce the same documents in the same order.
    """

    def __init__(self, pattern: str = "**/*.md", encoding: str = "utf-8") -> None:
        self.pattern = pattern
        self.encoding = encoding

    def load(self, directory: Union[str, Path]) -> List[Document]:
        """
        Load every file matching the configured pattern.

        Parameters
        ----------
        directory : str | Path
            Root of the knowledge directory.

        Returns
        -------
        List[Document]
            One document per matched file.

        Raises
        ------
        DocumentLoadError
            If the directory is missing or any file cannot be read or decoded.
            A single bad file aborts the whole batch.
        """
        root = Path(directory)
        if not root.is_dir():
            raise DocumentLoadError(f"Knowledge directory not found: {root}")

        paths = sorted(p for p in root.glob(self.pattern) if p.is_file())

        documents: List[Document] = []
        for path in paths:
            try:
                text = path.read_text(encoding=self.encoding)
            except (OSError, UnicodeDecodeError) as exc:
                logger.error("Failed to read knowledge file %s: %s", path, exc)
                raise DocumentLoadError(f"Cannot read {path}: {exc}") from exc

            documents.append(Document(text=text, source=str(path)))

        logger.info("Loaded %d documents from %s", len(documents), root)
        return documents
