"""
HTTP interface: submit deliberations and poll their status.

    POST /deliberations            - start a session (202, or 200 with ?wait=true)
    GET  /deliberations/{id}       - session state, result or failure reason
    GET  /health                   - backend health
    GET  /models                   - routable models per backend
    GET  /stats                    - per-model call statistics and spend
"""
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .council import DeliberationCouncil
from .errors import BudgetExceeded, InvalidDeliberationRequest


class DeliberationRequest(BaseModel):
    """Request body for a deliberation."""
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., description="Question to deliberate")
    participants: List[str] = Field(..., description="At least three unique model identifiers")
    chairman_model_id: Optional[str] = Field(
        None, alias="chairmanModelId", description="Designated chairman for synthesis"
    )


class HealthResponse(BaseModel):
    status: str
    backends: Dict[str, bool]
    activeSessions: int


def create_app(council: DeliberationCouncil, shutdown_council: bool = True) -> FastAPI:
    """Build the FastAPI application around one council."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Deliberation API starting")
        yield
        if shutdown_council:
            await council.shutdown()
        logger.info("Deliberation API stopped")

    app = FastAPI(
        title="Deliberation API",
        description="Multi-model deliberation with blind peer review and Borda aggregation",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.council = council

    @app.exception_handler(InvalidDeliberationRequest)
    async def invalid_request_handler(request, exc: InvalidDeliberationRequest):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(BudgetExceeded)
    async def budget_handler(request, exc: BudgetExceeded):
        return JSONResponse(
            status_code=402,
            content={
                "detail": exc.reason,
                "estimatedCost": round(exc.estimated, 4),
                "remaining": round(exc.remaining, 4),
            }
        )

    @app.post("/deliberations", status_code=202, response_model=None)
    async def submit_deliberation(
        body: DeliberationRequest,
        wait: bool = Query(False, description="Block until the session is terminal")
    ) -> Any:
        if wait:
            session = await council.deliberate(body.question, body.participants, body.chairman_model_id)
            return JSONResponse(status_code=200, content=session.status_view())

        session_id = council.submit(body.question, body.participants, body.chairman_model_id)
        return council.status(session_id)

    @app.get("/deliberations/{session_id}")
    async def get_deliberation(session_id: str) -> Dict[str, Any]:
        status = council.status(session_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return status

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        backends = await council.model_manager.backend_manager.health_check_all()
        status = "healthy" if backends and all(backends.values()) else "degraded"
        return HealthResponse(
            status=status,
            backends=backends,
            activeSessions=len(council.store.active())
        )

    @app.get("/models")
    async def models() -> Dict[str, List[str]]:
        return council.model_manager.backend_manager.list_all_models()

    @app.get("/stats")
    async def stats() -> Dict[str, Any]:
        data = council.model_manager.get_all_stats()
        if council.cost_controller:
            data["costs"] = council.cost_controller.summary()
        return data

    return app
