"""Request boundary shared by the HTTP API, the CLI and scheduled triggers.

:meth:`FlowService.execute` never raises: every outcome, including an unknown
flow or a crash inside the executor, comes back as a :class:`FlowResponse`
envelope.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from task_flow_orchestrator.orchestrator.errors import FlowNotFound
from task_flow_orchestrator.orchestrator.flows.context import FlowRequest
from task_flow_orchestrator.orchestrator.flows.executor import FlowExecutor, new_flow_id
from task_flow_orchestrator.orchestrator.ledger import ExecutionLedger, FlowStatusRecord
from task_flow_orchestrator.orchestrator.staging.store import utc_iso_now

logger = logging.getLogger(__name__)


class ExecuteFlowRequest(BaseModel):
    """Inbound body of ``execute-flow`` (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    flow_name: str = Field(min_length=1, alias="flowName")
    task_id: str | None = Field(default=None, alias="taskId")
    config: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_flow_request(self) -> FlowRequest:
        return FlowRequest(
            flow_name=self.flow_name,
            task_id=self.task_id,
            config=self.config,
            metadata=self.metadata,
        )


class FlowResponse(BaseModel):
    success: bool
    flowId: str
    flowName: str
    results: list[Any] | None = None
    error: str | None = None
    processingTime: float
    timestamp: str = Field(default_factory=utc_iso_now)

    # HTTP status the server should use; not part of the body.
    status_code: int = Field(default=200, exclude=True)


class FlowService:
    def __init__(self, *, executor: FlowExecutor, ledger: ExecutionLedger) -> None:
        self._executor = executor
        self._ledger = ledger

    def execute(self, request: ExecuteFlowRequest) -> FlowResponse:
        started = time.monotonic()
        try:
            result = self._executor.execute_flow(request.flow_name, request.to_flow_request())
        except FlowNotFound as e:
            return self._failure(request.flow_name, str(e), started, status_code=404)
        except Exception as e:
            logger.exception("Flow execution crashed", extra={"flow_name": request.flow_name})
            return self._failure(request.flow_name, f"Internal error: {e}", started, status_code=500)

        if result.success:
            return FlowResponse(
                success=True,
                flowId=result.flow_id,
                flowName=result.flow_name,
                results=result.results,
                processingTime=result.processing_time,
                timestamp=result.timestamp,
            )
        return FlowResponse(
            success=False,
            flowId=result.flow_id,
            flowName=result.flow_name,
            error=result.error,
            processingTime=result.processing_time,
            timestamp=result.timestamp,
            status_code=500,
        )

    def flow_status(self, flow_id: str) -> FlowStatusRecord | None:
        return self._ledger.get_flow_status(flow_id)

    @staticmethod
    def _failure(flow_name: str, error: str, started: float, *, status_code: int) -> FlowResponse:
        return FlowResponse(
            success=False,
            flowId=new_flow_id(),
            flowName=flow_name,
            error=error,
            processingTime=round(time.monotonic() - started, 3),
            status_code=status_code,
        )
