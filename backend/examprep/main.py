from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from examprep.core.config import settings
from examprep.core.errors import AssemblyError
from examprep.api.routes.health import router as health_router
from examprep.api.routes.jobs import router as jobs_router
from examprep.api.routes.questions import router as questions_router
from examprep.api.routes.tests import router as tests_router
from examprep.db.session import SessionLocal
from examprep.services.engine import build_engine


logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# HTTP status per engine error code; anything unlisted is a 500.
ERROR_STATUS = {
    "INVALID_CONFIGURATION": 422,
    "TOPIC_NOT_FOUND": 404,
    "INSUFFICIENT_QUESTIONS": 409,
    "ALIGNMENT_REJECTED": 422,
    "INDEXING_FAILED": 422,
    "EMBEDDING_UNAVAILABLE": 503,
    "GENERATION_UNAVAILABLE": 503,
}


def envelope(request_id: str, data: Any = None, error: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"request_id": request_id, "data": data, "error": error}


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = req_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = req_id
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    detail = exc.detail
    # Preserve structured error details when provided.
    if isinstance(detail, dict):
        code = str(detail.get("code") or "HTTP_ERROR")
        message = detail.get("message") or detail.get("reason") or str(detail)
        error = {"code": code, "message": message, "details": detail}
    else:
        error = {"code": "HTTP_ERROR", "message": str(detail)}

    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(request_id=req_id, data=None, error=error),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    return JSONResponse(
        status_code=422,
        content=envelope(
            request_id=req_id,
            data=None,
            error={
                "code": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": {"errors": jsonable_encoder(exc.errors())},
            },
        ),
    )


@app.exception_handler(AssemblyError)
async def assembly_error_handler(request: Request, exc: AssemblyError):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, 500),
        content=envelope(request_id=req_id, data=None, error=exc.to_dict()),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=envelope(
            request_id=req_id,
            data=None,
            error={"code": "INTERNAL_ERROR", "message": str(exc)},
        ),
    )


@app.on_event("startup")
def load_vector_index():
    """Build the engine and load the question corpus into its index."""
    engine = build_engine()
    app.state.engine = engine
    db = SessionLocal()
    try:
        info = engine.retriever.rebuild_from_db(db)
        logger.info("Startup index load: %s questions", info.get("indexed"))
    except AssemblyError as e:
        # Serve anyway; POST /api/jobs/index/rebuild can load the corpus later.
        logger.error("Startup index load failed: %s", e.message)
    finally:
        db.close()


app.include_router(health_router, prefix="/api")
app.include_router(tests_router, prefix="/api")
app.include_router(questions_router, prefix="/api")
app.include_router(jobs_router, prefix="/api")
