from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from examprep.db.session import SessionLocal
from examprep.services.engine import build_engine
from examprep.services.retrieval_service import RagRetriever


def task_rebuild_vector_index(retriever: Optional[RagRetriever] = None, db: Optional[Session] = None) -> Dict[str, Any]:
    """Load every active question into a vector index, re-embedding stale rows.

    Inline runs pass the web process' retriever and session so its index is
    refreshed. A queued run (separate worker process) builds its own index; what
    it leaves behind is the refreshed embeddings in the datastore, which the web
    process reuses on its next rebuild.
    """
    if retriever is None:
        retriever = build_engine().retriever

    if db is not None:
        return {"rebuilt": True, **retriever.rebuild_from_db(db)}

    db = SessionLocal()
    try:
        return {"rebuilt": True, **retriever.rebuild_from_db(db)}
    finally:
        db.close()
