import logging
import math
from datetime import datetime
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from jd_refiner import config
from jd_refiner.analysis_store import AnalysisState, AnalysisStore, StoredMessage
from jd_refiner.db_connection import DbConnection
from jd_refiner.errors import InvalidRequest, PersistenceError, ProviderError, RefinementError
from jd_refiner.llm_client import ChatLlmClient
from jd_refiner.refinement_service import AnalysisRefiner

logger = logging.getLogger("jd_refiner.server")

app = FastAPI(title="JD Refinement API", version="1.0")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------
# Process-wide collaborators
# -----------------------

@lru_cache(maxsize=1)
def get_store() -> AnalysisStore:
    connection = DbConnection()
    connection.create_schema()
    return AnalysisStore(connection.build_db_session_factory())


@lru_cache(maxsize=1)
def get_chat_llm() -> ChatLlmClient:
    return ChatLlmClient(
        config.REFINE_MODEL,
        vertex_project=config.PROJECT_ID,
        vertex_region=config.REGION,
        temperature=config.REFINE_TEMPERATURE,
        max_output_tokens=config.REFINE_MAX_OUTPUT_TOKENS,
        timeout=config.LLM_TIMEOUT,
    )


def get_refiner(
    store: AnalysisStore = Depends(get_store),
    chat_llm: ChatLlmClient = Depends(get_chat_llm),
) -> AnalysisRefiner:
    return AnalysisRefiner(store, chat_llm)


# -----------------------
# Request models
# -----------------------

class RefineRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    analysis_id: Optional[str] = Field(default=None, alias="analysisId")
    message: Optional[str] = None


class SaveAnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    title: Optional[str] = None
    intake_data: Optional[dict[str, Any]] = Field(default=None, alias="intakeData")
    analysis: Optional[dict[str, Any]] = None
    is_finalized: Optional[bool] = Field(default=None, alias="isFinalized")
    finalized_at: Optional[datetime] = Field(default=None, alias="finalizedAt")


# -----------------------
# Payload formatting
# -----------------------

def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def message_payload(message: StoredMessage) -> dict:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "changedSections": message.changed_sections,
        "sequenceNumber": message.sequence_number,
        "analysisSnapshot": message.analysis_snapshot,
        "createdAt": _iso(message.created_at),
    }


def _preview(analysis: dict) -> dict:
    preview = analysis.get("preview") if isinstance(analysis.get("preview"), dict) else {}
    return {
        "recommended_role": preview.get("recommended_role") or "Unknown",
        "service_mapping": preview.get("service_mapping") or "Unknown",
        "weekly_hours": preview.get("weekly_hours") or 0,
        "primary_outcome": preview.get("primary_outcome") or "",
        "role_purpose": preview.get("role_purpose") or "",
        "client_facing": preview.get("client_facing") if preview.get("client_facing") is not None else False,
        "summary": preview.get("summary") or "",
        "key_tools": preview.get("key_tools") or [],
        "core_outcomes": preview.get("core_outcomes") or [],
        "kpis": preview.get("kpis") or [],
        "risks": preview.get("risks") or [],
    }


def analysis_payload(state: AnalysisState) -> dict:
    return {
        "id": state.id,
        "userId": state.user_id,
        "title": state.title,
        "isFinalized": state.is_finalized,
        "finalizedAt": _iso(state.finalized_at),
        "createdAt": _iso(state.created_at),
        "updatedAt": _iso(state.updated_at),
        "refinementCount": state.refinement_count,
        "intakeData": state.intake_data,
        "analysis": state.analysis,
        "preview": _preview(state.analysis),
    }


# -----------------------
# Error envelope
# -----------------------

@app.exception_handler(RefinementError)
async def refinement_error_handler(request: Request, exc: RefinementError):
    body: dict[str, Any] = {"success": False, "error": exc.message}
    if isinstance(exc, (ProviderError, PersistenceError)):
        logger.error(f"{request.url.path}: {exc.message} ({exc.details})", exc_info=exc)
        if exc.details:
            body["details"] = exc.details
    else:
        logger.info(f"{request.url.path}: {exc.status_code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"{request.url.path}: invalid request {exc.errors()}")
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.url.path}: unexpected error")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "details": str(exc)},
    )


# -----------------------
# Routes
# -----------------------

@app.post("/api/jd/refine")
def refine_analysis(body: RefineRequest, refiner: AnalysisRefiner = Depends(get_refiner)):
    result = refiner.refine(body.user_id, body.message, body.analysis_id)
    return {
        "success": True,
        "data": {
            "messages": [message_payload(m) for m in result.messages],
            "updatedAnalysis": result.updated_analysis,
            "changedSections": result.changed_sections,
            "changedSectionNames": result.changed_section_names,
            "summary": result.summary,
            "timestamp": result.timestamp,
            "tokensUsed": result.tokens_used,
        },
    }


@app.post("/api/jd/save")
def save_analysis(body: SaveAnalysisRequest, store: AnalysisStore = Depends(get_store)):
    if not body.user_id or not body.title or not body.intake_data or not body.analysis:
        raise InvalidRequest("Missing required fields")

    state = store.create_analysis(
        body.user_id,
        body.title,
        body.intake_data,
        body.analysis,
        is_finalized=bool(body.is_finalized),
        finalized_at=body.finalized_at,
    )
    return {"success": True, "savedAnalysis": analysis_payload(state)}


@app.get("/api/jd/analysis")
def list_analyses(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    finalized: Optional[bool] = Query(default=None),
    search: Optional[str] = Query(default=None),
    store: AnalysisStore = Depends(get_store),
):
    if not user_id:
        raise InvalidRequest("userId is required")

    analyses = store.list_analyses(user_id, page=page, limit=limit, finalized=finalized, search=search)
    total = store.count_analyses(user_id, finalized=finalized, search=search)
    skip = (page - 1) * limit

    return {
        "success": True,
        "data": {
            "analyses": [analysis_payload(a) for a in analyses],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
                "hasMore": skip + len(analyses) < total,
            },
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
