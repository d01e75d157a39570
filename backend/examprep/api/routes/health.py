from fastapi import APIRouter, Depends

from examprep.api.deps import get_engine
from examprep.infra.queue import is_async_enabled
from examprep.services.engine import Engine


router = APIRouter(tags=["health"])


@router.get("/health")
def health(engine: Engine = Depends(get_engine)):
    return {
        "status": "ok",
        "vector": engine.index.status(),
        "embedder": engine.retriever.embedder.model_id,
        "generator": engine.orchestrator.generator.name,
        "async_queue": {"enabled": bool(is_async_enabled())},
    }
