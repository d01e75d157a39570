from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from examprep.api.deps import get_db, get_engine
from examprep.schemas.common import Envelope
from examprep.schemas.questions import IndexQuestionRequest
from examprep.services.engine import Engine

router = APIRouter(tags=["questions"])


@router.post("/questions/index", response_model=Envelope)
def index_question(
    request: Request,
    payload: IndexQuestionRequest,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    record = engine.orchestrator.index_question(db, payload.to_record())
    return {
        "request_id": request.state.request_id,
        "data": {"question": record.to_dict(), "index": engine.index.status()},
        "error": None,
    }


@router.get("/questions/stats/{user_id}", response_model=Envelope)
def question_stats(
    request: Request,
    user_id: str,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    stats = engine.orchestrator.get_question_stats(db, user_id)
    return {"request_id": request.state.request_id, "data": {"user_id": user_id, **stats.to_dict()}, "error": None}
