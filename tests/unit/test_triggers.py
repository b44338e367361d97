from __future__ import annotations

from unittest.mock import Mock

import pytest

from task_flow_orchestrator.orchestrator.service import FlowResponse, FlowService
from task_flow_orchestrator.orchestrator.triggers import (
    FULL_SYNC_CRON,
    HOURLY_PULL_CRON,
    handle_scheduled_trigger,
)


def _service(success: bool = True) -> Mock:
    service = Mock(spec=FlowService)
    service.execute.side_effect = lambda request: FlowResponse(
        success=success,
        flowId="flow_1_abcdef12",
        flowName=request.flow_name,
        error=None if success else "remote down",
        processingTime=0.1,
    )
    return service


@pytest.mark.parametrize(
    "cron,flow_name",
    [(FULL_SYNC_CRON, "sync"), (HOURLY_PULL_CRON, "syncPull"), (" 0 * * * * ", "syncPull")],
)
def test_known_schedules_run_their_flow(cron: str, flow_name: str) -> None:
    service = _service()

    response = handle_scheduled_trigger(cron, service)

    assert response is not None
    assert response.flowName == flow_name
    request = service.execute.call_args.args[0]
    assert request.metadata["trigger"] == "schedule"


def test_unknown_schedule_runs_nothing() -> None:
    service = _service()

    assert handle_scheduled_trigger("*/5 * * * *", service) is None
    service.execute.assert_not_called()


def test_failed_scheduled_flow_is_returned() -> None:
    response = handle_scheduled_trigger(FULL_SYNC_CRON, _service(success=False))

    assert response is not None
    assert response.success is False
    assert response.error == "remote down"
