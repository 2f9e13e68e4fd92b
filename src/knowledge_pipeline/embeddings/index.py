"""
FAISS Vector Index

This module implements the embedded, file-backed `VectorIndex` backend.

Key Properties
--------------
- One FAISS IndexIDMap2 per index name, with string ids mapped to int64 ids
- Upsert-by-id: an existing id keeps its int64 slot and gets its vector replaced
- Crash-safe persistence (temp file + rename for index and metadata)
- Concurrency-safe (thread locking); readers never see a half-applied upsert
- Strong validation of names, dimensions and metrics

On-disk layout::

    <root>/<name>/index.faiss
    <root>/<name>/meta.json
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import faiss
import numpy as np

from .base import (
    VectorIndex,
    check_dimensions,
    dedupe_records,
    distance_to_score,
    matches_filter,
    validate_index_name,
    validate_metric,
)
from .models import EmbeddingRecord, IndexStats, Metadata, MetadataValue, QueryResult
from ..config import Metric
from ..core.errors import (
    DimensionMismatchError,
    IndexNotFoundError,
    MetricMismatchError,
    VectorIndexError,
)

logger = logging.getLogger("kb.index")

INDEX_FILE = "index.faiss"
META_FILE = "meta.json"


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class FaissPersistenceError(VectorIndexError):
    """Raised when index persistence fails."""


# ---------------------------------------------------------------------
# Per-Index State
# ---------------------------------------------------------------------

@dataclass
class _IndexState:
    dimension: int
    metric: Metric
    index: faiss.IndexIDMap2
    next_id: int = 0
    slots: Dict[str, int] = field(default_factory=dict)
    records: Dict[int, Tuple[str, Metadata]] = field(default_factory=dict)


def _new_faiss_index(dimension: int, metric: Metric) -> faiss.IndexIDMap2:
    """
    Inner product for cosine (on normalized vectors) and dotproduct,
    squared L2 for euclidean.
    """
    if metric == "euclidean":
        base = faiss.IndexFlatL2(dimension)
    else:
        base = faiss.IndexFlatIP(dimension)
    return faiss.IndexIDMap2(base)


# ---------------------------------------------------------------------
# FAISS Index Wrapper
# ---------------------------------------------------------------------

class FaissVectorIndex(VectorIndex):
    """
    Persistent FAISS-backed vector index.

    All mutations and reads happen under one re-entrant lock, so the class
    is safe to share across concurrent async callers.
    """

    def __init__(self, root_dir: Union[str, Path]) -> None:
        """
        Parameters
        ----------
        root_dir : str | Path
            Directory holding one sub-directory per index name.
        """
        self._root = Path(root_dir)
        self._states: Dict[str, _IndexState] = {}
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _index_dir(self, name: str) -> Path:
        return self._root / validate_index_name(name)

    def _get_state(self, name: str) -> Optional[_IndexState]:
        with self._lock:
            state = self._states.get(name)
            if state is None:
                state = self._load(name)
                if state is not None:
                    self._states[name] = state
            return state

    def _require_state(self, name: str) -> _IndexState:
        state = self._get_state(name)
        if state is None:
            raise IndexNotFoundError(name)
        return state

    @staticmethod
    def _as_matrix(vectors: Sequence[Sequence[float]], metric: Metric) -> np.ndarray:
        matrix = np.asarray(vectors, dtype="float32")
        if metric == "cosine":
            faiss.normalize_L2(matrix)
        return matrix

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_index(
        self,
        name: str,
        dimension: int,
        metric: Metric = "cosine",
    ) -> None:
        validate_metric(metric)
        if dimension <= 0:
            raise ValueError("dimension must be positive")

        with self._lock:
            state = self._get_state(name)
            if state is not None:
                if state.dimension != dimension:
                    raise DimensionMismatchError(name, state.dimension, dimension)
                if state.metric != metric:
                    raise MetricMismatchError(
                        f"Index '{name}' already uses metric '{state.metric}', "
                        f"not '{metric}'."
                    )
                return

            state = _IndexState(
                dimension=dimension,
                metric=metric,
                index=_new_faiss_index(dimension, metric),
            )
            self._states[name] = state
            self._save(name, state)
            logger.info(
                "Created vector index '%s' (dimension=%d, metric=%s)",
                name,
                dimension,
                metric,
            )

    async def upsert(self, name: str, records: Sequence[EmbeddingRecord]) -> int:
        """
        Insert or replace records by id.

        This operation is atomic with respect to the in-memory index and map:
        validation happens before any mutation.
        """
        with self._lock:
            state = self._require_state(name)
            if not records:
                return 0

            batch = dedupe_records(records)
            check_dimensions(name, state.dimension, (r.vector for r in batch))

            next_id = state.next_id
            slots = []
            for record in batch:
                slot = state.slots.get(record.id)
                if slot is None:
                    slot = next_id
                    next_id += 1
                slots.append(slot)

            ids = np.asarray(slots, dtype="int64")
            vectors = self._as_matrix([r.vector for r in batch], state.metric)

            replaced = [slot for slot in slots if slot in state.records]
            previous = [state.index.reconstruct(slot) for slot in replaced]

            try:
                state.index.remove_ids(ids)
                state.index.add_with_ids(vectors, ids)
            except Exception as exc:
                # Restore replaced vectors; the index must match state.records.
                state.index.remove_ids(ids)
                if replaced:
                    state.index.add_with_ids(
                        np.vstack(previous).astype("float32"),
                        np.asarray(replaced, dtype="int64"),
                    )
                raise VectorIndexError(
                    f"Failed to upsert vectors into FAISS: {type(exc).__name__}"
                ) from exc

            state.next_id = next_id
            for slot, record in zip(slots, batch):
                state.slots[record.id] = slot
                state.records[slot] = (record.id, dict(record.metadata))

            self._save(name, state)
            logger.debug("Upserted %d records into '%s'", len(batch), name)
            return len(batch)

    async def query(
        self,
        name: str,
        vector: Sequence[float],
        top_k: int = 5,
        min_score: Optional[float] = None,
        filter: Optional[Mapping[str, MetadataValue]] = None,
    ) -> List[QueryResult]:
        """
        Search the index using a query embedding.

        Returns ranked results, highest score first.
        """
        with self._lock:
            state = self._require_state(name)
            check_dimensions(name, state.dimension, [vector])

            total = state.index.ntotal
            if top_k < 1 or total == 0:
                return []

            # A metadata filter can discard any hit, so rank everything.
            k = total if filter else min(top_k, total)

            q = self._as_matrix([vector], state.metric)
            raw_scores, idxs = state.index.search(q, k)

            results: List[QueryResult] = []

            for raw, idx in zip(raw_scores[0], idxs[0]):
                idx = int(idx)
                if idx == -1:
                    continue

                entry = state.records.get(idx)
                if entry is None:
                    continue

                if state.metric == "euclidean":
                    raw = float(np.sqrt(max(float(raw), 0.0)))
                score = distance_to_score(state.metric, float(raw))

                if min_score is not None and score < min_score:
                    continue

                record_id, metadata = entry
                if not matches_filter(metadata, filter):
                    continue

                results.append(QueryResult(id=record_id, score=score, metadata=metadata))
                if len(results) >= top_k:
                    break

            return results

    async def exists(self, name: str) -> bool:
        return self._get_state(name) is not None

    async def count(self, name: str) -> int:
        state = self._get_state(name)
        return state.index.ntotal if state is not None else 0

    async def describe_index(self, name: str) -> IndexStats:
        with self._lock:
            state = self._require_state(name)
            return IndexStats(
                name=name,
                dimension=state.dimension,
                metric=state.metric,
                count=state.index.ntotal,
            )

    async def delete_index(self, name: str) -> bool:
        with self._lock:
            directory = self._index_dir(name)
            existed = self._states.pop(name, None) is not None or directory.exists()
            if directory.exists():
                try:
                    shutil.rmtree(directory)
                except OSError as exc:
                    raise FaissPersistenceError(
                        f"Failed to delete index directory: {type(exc).__name__}"
                    ) from exc
            if existed:
                logger.info("Deleted vector index '%s'", name)
            return existed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self, name: str, state: _IndexState) -> None:
        """
        Persist both FAISS index and metadata to disk atomically.
        """
        directory = self._index_dir(name)
        directory.mkdir(parents=True, exist_ok=True)

        index_path = directory / INDEX_FILE
        meta_path = directory / META_FILE

        try:
            tmp_index = index_path.with_suffix(".faiss.tmp")
            faiss.write_index(state.index, str(tmp_index))
            os.replace(tmp_index, index_path)
        except Exception as exc:
            raise FaissPersistenceError(
                f"Failed to write FAISS index: {type(exc).__name__}"
            ) from exc

        meta = {
            "dimension": state.dimension,
            "metric": state.metric,
            "next_id": state.next_id,
            "records": {
                str(slot): {"id": record_id, "metadata": metadata}
                for slot, (record_id, metadata) in state.records.items()
            },
        }

        try:
            tmp_meta = meta_path.with_suffix(".json.tmp")
            with tmp_meta.open("w", encoding="utf-8") as f:
                json.dump(meta, f)
            os.replace(tmp_meta, meta_path)
        except Exception as exc:
            raise FaissPersistenceError(
                f"Failed to write FAISS metadata: {type(exc).__name__}"
            ) from exc

    def _load(self, name: str) -> Optional[_IndexState]:
        """
        Load index and metadata from disk if available.
        """
        directory = self._index_dir(name)
        index_path = directory / INDEX_FILE
        meta_path = directory / META_FILE

        if not meta_path.exists() or not index_path.exists():
            return None

        try:
            index = faiss.read_index(str(index_path))
        except Exception as exc:
            raise FaissPersistenceError(
                f"Failed to read FAISS index: {type(exc).__name__}"
            ) from exc

        try:
            with meta_path.open("r", encoding="utf-8") as f:
                data = json.load(f)

            state = _IndexState(
                dimension=int(data["dimension"]),
                metric=validate_metric(data["metric"]),
                index=index,
                next_id=int(data.get("next_id", 0)),
            )
            for slot, entry in data.get("records", {}).items():
                state.records[int(slot)] = (entry["id"], entry.get("metadata", {}))
                state.slots[entry["id"]] = int(slot)
        except Exception as exc:
            raise FaissPersistenceError(
                f"Failed to load FAISS metadata: {type(exc).__name__}"
            ) from exc

        logger.debug("Loaded vector index '%s' (%d vectors)", name, index.ntotal)
        return state
