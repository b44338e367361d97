"""Unit tests for the capability registry."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from task_flow_orchestrator.orchestrator.errors import CapabilityNotFound, MethodNotFound
from task_flow_orchestrator.orchestrator.flows.context import ExecutionContext, FlowRequest
from task_flow_orchestrator.orchestrator.flows.registry import (
    Capability,
    CapabilityRegistry,
    Handler,
)


class EchoCapability(Capability):
    name = "echo"

    def methods(self) -> Mapping[str, Handler]:
        return {"say": self.say}

    def say(self, context: ExecutionContext, config: Any) -> dict[str, Any]:
        return {"flow_id": context.flow_id, "config": config}


class BrokenCapability(Capability):
    name = "broken"

    def methods(self) -> Mapping[str, Handler]:
        return {}

    def health_check(self) -> bool:
        raise RuntimeError("backend unreachable")


def _context() -> ExecutionContext:
    return ExecutionContext(flow_id="flow_1", request=FlowRequest(flow_name="test"))


def test_invoke_dispatches_through_the_method_map() -> None:
    registry = CapabilityRegistry([EchoCapability()])

    result = registry.invoke("echo", "say", _context(), {"x": 1})

    assert result == {"flow_id": "flow_1", "config": {"x": 1}}
    assert registry.has_method("echo", "say")
    assert not registry.has_method("echo", "shout")


def test_invoke_unknown_capability_or_method() -> None:
    registry = CapabilityRegistry([EchoCapability()])

    with pytest.raises(CapabilityNotFound):
        registry.invoke("nope", "say", _context())
    with pytest.raises(MethodNotFound) as excinfo:
        registry.invoke("echo", "shout", _context())
    assert excinfo.value.method == "shout"


def test_register_rejects_duplicate_names() -> None:
    registry = CapabilityRegistry([EchoCapability()])

    with pytest.raises(ValueError):
        registry.register(EchoCapability())


def test_health_check_reports_failures_as_false() -> None:
    registry = CapabilityRegistry([EchoCapability(), BrokenCapability()])

    assert registry.health_check() == {"broken": False, "echo": True}
    assert registry.names() == ["broken", "echo"]
