from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from examprep.core.config import settings
from examprep.services.assembly_service import TestAssemblyOrchestrator
from examprep.services.embedding_service import EmbeddingProvider, get_embedding_provider
from examprep.services.exposure_service import ExposureTracker
from examprep.services.question_generator import QuestionGenerator, get_question_generator
from examprep.services.retrieval_service import RagRetriever
from examprep.services.vector_index import VectorIndex


@dataclass
class Engine:
    """One wired-up engine: the index is owned here and shared by reference."""

    index: VectorIndex
    retriever: RagRetriever
    tracker: ExposureTracker
    orchestrator: TestAssemblyOrchestrator


def build_engine(
    embedder: Optional[EmbeddingProvider] = None,
    generator: Optional[QuestionGenerator] = None,
) -> Engine:
    embedder = embedder or get_embedding_provider()
    index = VectorIndex(dimension=embedder.dimension or settings.EMBEDDING_DIM)
    retriever = RagRetriever(index, embedder)
    tracker = ExposureTracker(retriever)
    orchestrator = TestAssemblyOrchestrator(retriever, tracker, generator or get_question_generator())
    return Engine(index=index, retriever=retriever, tracker=tracker, orchestrator=orchestrator)
