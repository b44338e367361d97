"""FastAPI app factory.

Endpoints are thin wrappers over :class:`FlowService`; every
``execute-flow`` response, including malformed requests, uses the flow
envelope.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from task_flow_orchestrator import __version__
from task_flow_orchestrator.orchestrator.flows.executor import new_flow_id
from task_flow_orchestrator.orchestrator.runtime import Runtime, build_runtime
from task_flow_orchestrator.orchestrator.service import ExecuteFlowRequest, FlowResponse
from task_flow_orchestrator.server.models import (
    ApiFlow,
    ApiFlowStatus,
    ApiFlowStep,
    HealthResponse,
)

logger = logging.getLogger(__name__)


def _envelope(response: FlowResponse) -> JSONResponse:
    return JSONResponse(
        status_code=response.status_code,
        content=response.model_dump(mode="json", exclude_none=True),
    )


def create_app(runtime: Runtime | None = None) -> FastAPI:
    runtime = runtime or build_runtime()
    settings = runtime.settings
    service = runtime.service

    app = FastAPI(
        title="Task Flow Orchestrator",
        version=__version__,
        description="REST API for running orchestration flows over staged tasks.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Exposed for request handlers and tests.
    app.state.runtime = runtime
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        if request.url.path != "/api/execute-flow":
            return JSONResponse(status_code=422, content={"detail": exc.errors()})
        logger.info("Rejected malformed execute-flow request")
        return _envelope(
            FlowResponse(
                success=False,
                flowId=new_flow_id(),
                flowName="",
                error=f"Invalid request: {exc.errors()}",
                processingTime=0.0,
                status_code=400,
            )
        )

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        capabilities = runtime.registry.health_check()
        status = "ok" if all(capabilities.values()) else "degraded"
        return HealthResponse(status=status, capabilities=capabilities)

    @app.get("/api/flows", response_model=list[ApiFlow])
    def list_flows() -> list[ApiFlow]:
        flows = [runtime.executor.get_flow(name) for name in runtime.executor.flow_names()]
        return [
            ApiFlow(
                name=flow.name,
                description=flow.description,
                steps=[
                    ApiFlowStep(
                        name=step.name, retries=step.retries, timeoutSeconds=step.timeout_seconds
                    )
                    for step in flow.steps
                ],
            )
            for flow in flows
        ]

    @app.post("/api/execute-flow")
    def execute_flow(req: ExecuteFlowRequest) -> JSONResponse:
        return _envelope(service.execute(req))

    @app.get("/api/flow-status/{flow_id}", response_model=ApiFlowStatus)
    def flow_status(flow_id: str) -> ApiFlowStatus:
        record = service.flow_status(flow_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Flow not found")
        return ApiFlowStatus(
            flowId=record.flow_id,
            stepName=record.step_name,
            state=record.state.value,
            metadata=record.metadata,
            updatedAt=record.updated_at,
        )

    return app
