from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from examprep.core.contracts import IndexEntry, QuestionRecord, RetrievalQuery, as_utc
from examprep.core.errors import IndexingFailed
from examprep.services import question_repository
from examprep.services.embedding_service import EmbeddingProvider
from examprep.services.vector_index import VectorIndex


logger = logging.getLogger(__name__)

# Semantic ranking keeps every candidate; the query only decides the order.
_KEEP_ALL_SIMILARITY = -float("inf")


class RagRetriever:
    """Retrieval engine over a shared :class:`VectorIndex`.

    Read-only against the index except for ``index_question`` /
    ``rebuild_from_db``, which admit records into it.
    """

    def __init__(self, index: VectorIndex, embedder: EmbeddingProvider):
        self.index = index
        self.embedder = embedder

    # ---------- ordering ----------

    def _default_key(self, record: QuestionRecord, seq: Optional[int] = None):
        if seq is None:
            entry = self.index.get(record.question_id)
            seq = entry.seq if entry is not None else 1 << 62
        return (record.syllabus_reference or "", as_utc(record.created_at), seq)

    def default_order(self, records: Iterable[QuestionRecord]) -> List[QuestionRecord]:
        """Stable order used when there is no relevance query:
        syllabus reference, then creation time, then insertion order."""
        return sorted(records, key=self._default_key)

    # ---------- retrieval ----------

    def candidates(self, topic_ids: Sequence[str], exclude_ids: Iterable[str] = ()) -> List[IndexEntry]:
        excluded = set(exclude_ids or ())
        return [e for e in self.index.get_by_topics(topic_ids) if e.metadata.question_id not in excluded]

    def retrieve_questions(
        self,
        topic_ids: Sequence[str],
        count: int,
        exclude_ids: Iterable[str] = (),
        relevance_query: Optional[str] = None,
    ) -> List[QuestionRecord]:
        """Up to ``count`` distinct questions from ``topic_ids`` not in ``exclude_ids``.

        Returns ``min(count, available)``; deciding whether that is enough is the
        caller's job. Embedding the relevance query may raise ``EmbeddingUnavailable``.
        """
        if int(count) <= 0:
            return []
        excluded = frozenset(exclude_ids or ())
        pool = self.candidates(topic_ids, excluded)
        if not pool:
            return []

        query_text = (relevance_query or "").strip()
        if not query_text:
            pool.sort(key=lambda e: self._default_key(e.record, e.seq))
            return [e.record for e in pool[: int(count)]]

        topics = set(topic_ids)
        qvec = self.embedder.embed(query_text)
        hits = self.index.search(
            qvec,
            top_k=int(count),
            min_similarity=_KEEP_ALL_SIMILARITY,
            predicate=lambda e: e.metadata.topic_id in topics and e.metadata.question_id not in excluded,
        )
        return [h.entry.record for h in hits]

    def retrieve(self, query: RetrievalQuery) -> List[QuestionRecord]:
        return self.retrieve_questions(
            query.topic_ids,
            query.count,
            exclude_ids=query.exclude_ids,
            relevance_query=query.relevance_query,
        )

    # ---------- indexing ----------

    def ensure_embedding(self, record: QuestionRecord) -> QuestionRecord:
        if record.embedding is not None and len(record.embedding) == self.embedder.dimension:
            return record
        return record.with_embedding(self.embedder.embed_question(record))

    def index_question(self, record: QuestionRecord) -> QuestionRecord:
        """Embed ``record`` if needed and insert it; returns the indexed record."""
        record = self.ensure_embedding(record)
        self.index.insert(record)
        return record

    def index_questions(self, records: Iterable[QuestionRecord]) -> List[QuestionRecord]:
        return [self.index_question(r) for r in records]

    def rebuild_from_db(self, db: Session) -> Dict[str, Any]:
        """Load every non-retired question into the index.

        Stored embeddings of the right dimension are reused; the rest are
        re-embedded and written back.
        """
        indexed = 0
        reembedded = 0
        failed: List[str] = []

        for row in question_repository.load_active_questions(db):
            record = question_repository.row_to_record(row)
            stale = record.embedding is None or len(record.embedding) != self.embedder.dimension
            record = self.ensure_embedding(record)
            if stale:
                row.embedding = list(record.embedding or ())
                row.embedding_model = self.embedder.model_id
                reembedded += 1
            try:
                self.index.insert(record)
                indexed += 1
            except IndexingFailed as e:
                logger.warning("Skipping question %s during rebuild: %s", record.question_id, e.reason)
                failed.append(record.question_id)

        if reembedded:
            db.commit()
        logger.info("Vector index rebuilt: indexed=%s reembedded=%s failed=%s", indexed, reembedded, len(failed))
        return {"indexed": indexed, "reembedded": reembedded, "failed": failed, **self.index.status()}
