"""Sequential flow executor.

Steps run strictly in order. Each step gets ``retries + 1`` attempts with
exponential backoff between them. A step with a timeout runs each attempt on
a one-shot worker thread; when the deadline passes the attempt counts as
failed, its cancellation token is set and whatever it eventually returns is
dropped. The call itself is not interrupted.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter

from task_flow_orchestrator.orchestrator.cancellation import CancellationToken
from task_flow_orchestrator.orchestrator.errors import (
    CapabilityNotFound,
    ConfigurationError,
    FlowNotFound,
    MethodNotFound,
    StepFailedError,
    StepTimeoutError,
)
from task_flow_orchestrator.orchestrator.flows.context import ExecutionContext, FlowRequest
from task_flow_orchestrator.orchestrator.flows.definitions import (
    FlowDefinition,
    FlowStep,
    validate_flows,
)
from task_flow_orchestrator.orchestrator.flows.registry import CapabilityRegistry
from task_flow_orchestrator.orchestrator.ledger import ExecutionLedger, FlowState, FlowStatusRecord
from task_flow_orchestrator.orchestrator.staging.store import utc_iso_now

logger = logging.getLogger(__name__)

# Never retried: retrying cannot fix a wiring or configuration problem.
FATAL_ERRORS: tuple[type[Exception], ...] = (
    ConfigurationError,
    CapabilityNotFound,
    MethodNotFound,
)

_JSONABLE = TypeAdapter(Any)


def new_flow_id() -> str:
    return f"flow_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class FlowResult(BaseModel):
    success: bool
    flow_id: str
    flow_name: str
    results: list[Any] = Field(default_factory=list)
    error: str | None = None
    failed_step: str | None = None
    processing_time: float = 0.0
    timestamp: str = Field(default_factory=utc_iso_now)


class FlowExecutor:
    def __init__(
        self,
        *,
        registry: CapabilityRegistry,
        flows: Mapping[str, FlowDefinition],
        ledger: ExecutionLedger,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        validate_flows(flows.values(), registry)
        self._registry = registry
        self._flows = dict(flows)
        self._ledger = ledger
        self._backoff = backoff_seconds
        self._sleep = sleep

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    def flow_names(self) -> list[str]:
        return sorted(self._flows)

    def get_flow(self, flow_name: str) -> FlowDefinition:
        try:
            return self._flows[flow_name]
        except KeyError as e:
            raise FlowNotFound(flow_name) from e

    def execute_flow(self, flow_name: str, request: FlowRequest) -> FlowResult:
        flow_id = new_flow_id()
        definition = self.get_flow(flow_name)

        started = time.monotonic()
        context = ExecutionContext(
            flow_id=flow_id,
            request=request,
            metadata={"flow_name": flow_name, "start_time": utc_iso_now()},
        )
        log_extra = {"flow_id": flow_id, "flow_name": flow_name}
        logger.info("Flow started", extra={**log_extra, "steps": len(definition.steps)})

        error: str | None = None
        failed_step: str | None = None
        for index, step in enumerate(definition.steps):
            context.step_index = index
            self._record(context, step_name=step.name, state=FlowState.RUNNING)
            try:
                result = self._run_step(step, context)
            except (StepFailedError, *FATAL_ERRORS) as e:
                error = str(e)
                failed_step = step.name
                logger.error(
                    "Flow aborted", extra={**log_extra, "step": step.name, "error": error}
                )
                break
            context.results.append(result)

        processing_time = round(time.monotonic() - started, 3)
        success = error is None
        self._record(
            context,
            step_name=failed_step or definition.steps[-1].name,
            state=FlowState.COMPLETED if success else FlowState.FAILED,
            extra_metadata={
                "error": error,
                "failed_step": failed_step,
                "steps_completed": len(context.results),
                "processing_time": processing_time,
                "results": _JSONABLE.dump_python(context.results, mode="json"),
            },
        )
        logger.info(
            "Flow finished",
            extra={**log_extra, "success": success, "processing_time": processing_time},
        )
        return FlowResult(
            success=success,
            flow_id=flow_id,
            flow_name=flow_name,
            results=list(context.results),
            error=error,
            failed_step=failed_step,
            processing_time=processing_time,
        )

    def _run_step(self, step: FlowStep, context: ExecutionContext) -> Any:
        attempts = step.retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            context.cancellation = CancellationToken()
            try:
                return self._attempt(step, context)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "Step attempt failed",
                    extra={
                        "flow_id": context.flow_id,
                        "step": step.name,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "error": str(e),
                    },
                )
            if attempt < attempts:
                self._sleep(self._backoff * (2 ** (attempt - 1)))

        assert last_error is not None
        raise StepFailedError(step.name, attempts, last_error)

    def _attempt(self, step: FlowStep, context: ExecutionContext) -> Any:
        if step.timeout_seconds is None:
            return self._registry.invoke(step.capability, step.method, context, step.config)

        token = context.cancellation
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"step-{step.name}")
        future = pool.submit(
            self._registry.invoke, step.capability, step.method, context, step.config
        )
        try:
            return future.result(timeout=step.timeout_seconds)
        except TimeoutError as e:
            if future.done():
                raise
            token.cancel(f"{step.name} timed out")
            raise StepTimeoutError(
                f"{step.name} did not finish within {step.timeout_seconds}s"
            ) from e
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _record(
        self,
        context: ExecutionContext,
        *,
        step_name: str,
        state: FlowState,
        extra_metadata: dict[str, Any] | None = None,
    ) -> None:
        metadata = {**context.metadata, "step_index": context.step_index, **(extra_metadata or {})}
        record = FlowStatusRecord(
            flow_id=context.flow_id, step_name=step_name, state=state, metadata=metadata
        )
        try:
            self._ledger.record_flow_status(record)
        except sqlite3.Error:
            # The flow result is still returned to the caller.
            logger.exception(
                "Could not persist flow status",
                extra={"flow_id": context.flow_id, "state": state.value},
            )
