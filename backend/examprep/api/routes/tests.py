from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from examprep.api.deps import get_db, get_engine
from examprep.schemas.common import Envelope
from examprep.schemas.tests import AssembleTestsRequest, RetryTestRequest
from examprep.services.engine import Engine

router = APIRouter(tags=["tests"])


@router.post("/tests/assemble", response_model=Envelope)
def assemble_tests(
    request: Request,
    payload: AssembleTestsRequest,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    result = engine.orchestrator.assemble_tests(db, payload.to_configuration(), payload.user_id)
    if result.error is not None:
        # Caller error: nothing was attempted.
        raise result.error
    return {"request_id": request.state.request_id, "data": result.to_dict(), "error": None}


@router.post("/tests/{test_id}/retry", response_model=Envelope)
def retry_test(
    request: Request,
    test_id: str,
    payload: RetryTestRequest,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    result = engine.orchestrator.assemble_retry(db, test_id, payload.user_id)
    if result is None:
        raise HTTPException(status_code=404, detail={"code": "TEST_NOT_FOUND", "message": f"Test not found: {test_id}"})
    if result.error is not None:
        raise result.error
    return {"request_id": request.state.request_id, "data": result.to_dict(), "error": None}
