"""Capability registry.

A capability is a named component exposing an explicit map of method name to
handler. The registry is built once by the composition root and passed to
the executor; nothing registers itself globally.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any

from task_flow_orchestrator.orchestrator.errors import CapabilityNotFound, MethodNotFound
from task_flow_orchestrator.orchestrator.flows.context import ExecutionContext

logger = logging.getLogger(__name__)

Handler = Callable[[ExecutionContext, Any], Any]


class Capability(ABC):
    name: str

    @abstractmethod
    def methods(self) -> Mapping[str, Handler]:
        """Method name -> handler(context, step_config)."""

    def health_check(self) -> bool:
        return True


class CapabilityRegistry:
    def __init__(self, capabilities: list[Capability] | None = None) -> None:
        self._capabilities: dict[str, Capability] = {}
        for capability in capabilities or []:
            self.register(capability)

    def register(self, capability: Capability) -> None:
        if capability.name in self._capabilities:
            raise ValueError(f"Capability already registered: {capability.name}")
        self._capabilities[capability.name] = capability
        logger.debug(
            "Capability registered",
            extra={"capability": capability.name, "methods": sorted(capability.methods())},
        )

    def names(self) -> list[str]:
        return sorted(self._capabilities)

    def get(self, name: str) -> Capability:
        try:
            return self._capabilities[name]
        except KeyError as e:
            raise CapabilityNotFound(name) from e

    def has_method(self, name: str, method: str) -> bool:
        capability = self._capabilities.get(name)
        return capability is not None and method in capability.methods()

    def invoke(
        self, name: str, method: str, context: ExecutionContext, config: Any = None
    ) -> Any:
        handler = self.get(name).methods().get(method)
        if handler is None:
            raise MethodNotFound(name, method)
        return handler(context, config)

    def health_check(self) -> dict[str, bool]:
        """Health of every capability; a failing check reports False."""

        out: dict[str, bool] = {}
        for name, capability in sorted(self._capabilities.items()):
            try:
                out[name] = bool(capability.health_check())
            except Exception:
                logger.exception("Capability health check failed", extra={"capability": name})
                out[name] = False
        return out
