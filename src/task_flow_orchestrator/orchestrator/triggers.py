"""Scheduled trigger handling.

An external scheduler (cron, a platform scheduler, a CI job) calls
:func:`handle_scheduled_trigger` with the cron expression that fired.
Delivery may repeat, which is safe because every flow it starts is
idempotent.
"""

from __future__ import annotations

import logging

from task_flow_orchestrator.orchestrator.service import (
    ExecuteFlowRequest,
    FlowResponse,
    FlowService,
)

logger = logging.getLogger(__name__)

FULL_SYNC_CRON = "0 */6 * * *"
HOURLY_PULL_CRON = "0 * * * *"

SCHEDULES: dict[str, str] = {
    FULL_SYNC_CRON: "sync",
    HOURLY_PULL_CRON: "syncPull",
}


def handle_scheduled_trigger(cron: str, service: FlowService) -> FlowResponse | None:
    """Run the flow mapped to ``cron``; ``None`` for an unknown schedule."""

    flow_name = SCHEDULES.get(cron.strip())
    if flow_name is None:
        logger.warning("Unknown schedule; nothing to run", extra={"cron": cron})
        return None

    logger.info("Scheduled trigger fired", extra={"cron": cron, "flow_name": flow_name})
    response = service.execute(
        ExecuteFlowRequest(flowName=flow_name, metadata={"trigger": "schedule", "cron": cron})
    )
    if not response.success:
        logger.error(
            "Scheduled flow failed",
            extra={"cron": cron, "flow_id": response.flowId, "error": response.error},
        )
    return response
