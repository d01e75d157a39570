from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from examprep.api.deps import get_db, get_engine
from examprep.infra.queue import enqueue, fetch_job, is_async_enabled
from examprep.services.engine import Engine
from examprep.tasks.index_tasks import task_rebuild_vector_index

router = APIRouter(tags=["jobs"])


@router.post("/jobs/index/rebuild")
def enqueue_rebuild_index(
    request: Request,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    if is_async_enabled():
        res = enqueue(task_rebuild_vector_index, queue_name="index")
    else:
        res = enqueue(task_rebuild_vector_index, retriever=engine.retriever, db=db, queue_name="index")
    return {"request_id": request.state.request_id, "data": res, "error": None}


@router.get("/jobs/status/{job_id}")
def job_status(request: Request, job_id: str) -> Dict[str, Any]:
    if not is_async_enabled():
        raise HTTPException(status_code=400, detail="Async queue disabled (ASYNC_QUEUE_ENABLED=false)")
    job = fetch_job(str(job_id))
    data: Dict[str, Any] = {
        "job_id": str(job.id),
        "status": str(job.get_status()),
        "enqueued_at": str(job.enqueued_at) if job.enqueued_at else None,
        "started_at": str(job.started_at) if job.started_at else None,
        "ended_at": str(job.ended_at) if job.ended_at else None,
        "exc_info": job.exc_info if job.is_failed else None,
    }
    if job.is_finished:
        data["result"] = job.result
    return {"request_id": request.state.request_id, "data": data, "error": None}
