from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np

from examprep.core.contracts import IndexEntry, IndexEntryMetadata, QuestionRecord, SearchHit
from examprep.core.errors import IndexingFailed


EntryPredicate = Callable[[IndexEntry], bool]


def _normalize(mat):
    """Row-normalize vectors for cosine similarity."""
    norms = np.linalg.norm(mat, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return mat / norms


class VectorIndex:
    """In-memory (vector, metadata) store for question embeddings.

    - primary map: question_id -> IndexEntry
    - secondary map: topic_id -> question ids (insertion ordered), kept in step on every insert
    - search is exact cosine similarity; ties go to the entry indexed first

    The index is shared between concurrent batches, so every operation takes the
    instance lock. Inserts are per-id upserts with no cross-entry dependency.
    """

    def __init__(self, dimension: int | None = None):
        self._lock = threading.Lock()
        self._entries: Dict[str, IndexEntry] = {}
        # dict used as an ordered set
        self._by_topic: Dict[str, Dict[str, None]] = {}
        self._dimension: int | None = int(dimension) if dimension else None
        self._next_seq = 0

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, question_id: object) -> bool:
        with self._lock:
            return question_id in self._entries

    def status(self) -> Dict[str, object]:
        with self._lock:
            return {
                "total": len(self._entries),
                "topics": len(self._by_topic),
                "dimension": self._dimension,
            }

    def insert(self, record: QuestionRecord) -> IndexEntry:
        """Add or overwrite the entry for ``record.question_id``.

        Overwriting keeps the entry's original insertion position.
        """
        if record.embedding is None or len(record.embedding) == 0:
            raise IndexingFailed(record.question_id, "record has no embedding")
        vector = tuple(float(x) for x in record.embedding)
        if not np.all(np.isfinite(vector)):
            raise IndexingFailed(record.question_id, "embedding contains non-finite values")

        with self._lock:
            if self._dimension is None:
                self._dimension = len(vector)
            elif len(vector) != self._dimension:
                raise IndexingFailed(
                    record.question_id,
                    f"embedding has {len(vector)} dims, index expects {self._dimension}",
                )

            previous = self._entries.get(record.question_id)
            if previous is not None:
                seq = previous.seq
                if previous.metadata.topic_id != record.topic_id:
                    self._drop_from_topic(previous.metadata.topic_id, record.question_id)
            else:
                seq = self._next_seq
                self._next_seq += 1

            entry = IndexEntry(
                vector=vector,
                metadata=IndexEntryMetadata(
                    question_id=record.question_id,
                    topic_id=record.topic_id,
                    syllabus_reference=record.syllabus_reference,
                    created_at=record.created_at,
                ),
                record=record,
                seq=seq,
            )
            self._entries[record.question_id] = entry
            self._by_topic.setdefault(record.topic_id, {})[record.question_id] = None
            return entry

    def _drop_from_topic(self, topic_id: str, question_id: str) -> None:
        ids = self._by_topic.get(topic_id)
        if ids is None:
            return
        ids.pop(question_id, None)
        if not ids:
            del self._by_topic[topic_id]

    def evict(self, question_id: str) -> bool:
        with self._lock:
            entry = self._entries.pop(question_id, None)
            if entry is None:
                return False
            self._drop_from_topic(entry.metadata.topic_id, question_id)
            return True

    def get(self, question_id: str) -> Optional[IndexEntry]:
        with self._lock:
            return self._entries.get(question_id)

    def get_by_topic(self, topic_id: str) -> List[IndexEntry]:
        with self._lock:
            ids = list(self._by_topic.get(topic_id, {}))
            return [self._entries[i] for i in ids]

    def get_by_topics(self, topic_ids: Iterable[str]) -> List[IndexEntry]:
        """Union over topics, deduplicated, in insertion order."""
        with self._lock:
            seen: Dict[str, IndexEntry] = {}
            for t in topic_ids:
                for qid in self._by_topic.get(t, {}):
                    if qid not in seen:
                        seen[qid] = self._entries[qid]
        return sorted(seen.values(), key=lambda e: e.seq)

    def search(
        self,
        query_vector: List[float],
        top_k: int = 10,
        min_similarity: float = 0.0,
        predicate: Optional[EntryPredicate] = None,
    ) -> List[SearchHit]:
        """Rank entries by cosine similarity to ``query_vector``.

        Entries below ``min_similarity`` are dropped, ties are broken by
        insertion order, and at most ``top_k`` hits are returned. An empty index
        (or an empty filtered subset) returns ``[]``.
        """
        if int(top_k) <= 0:
            return []

        with self._lock:
            candidates = sorted(self._entries.values(), key=lambda e: e.seq)
            dim = self._dimension
        if predicate is not None:
            candidates = [e for e in candidates if predicate(e)]
        if not candidates:
            return []

        q = np.asarray(query_vector, dtype=np.float64).reshape(1, -1)
        if dim is not None and q.shape[1] != dim:
            raise ValueError(f"query has {q.shape[1]} dims, index expects {dim}")
        if float(np.linalg.norm(q)) == 0.0:
            sims = np.zeros(len(candidates), dtype=np.float64)
        else:
            mat = np.asarray([e.vector for e in candidates], dtype=np.float64)
            sims = (_normalize(mat) @ _normalize(q).T).ravel()

        hits = [
            SearchHit(entry=e, similarity=float(s))
            for e, s in zip(candidates, sims.tolist())
            if float(s) >= float(min_similarity)
        ]
        # stable sort: equal similarities keep insertion order
        hits.sort(key=lambda h: -h.similarity)
        return hits[: int(top_k)]
