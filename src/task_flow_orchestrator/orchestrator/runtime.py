"""Composition root.

Everything the API server, the CLI and scheduled triggers need is built here,
once per process, and passed down explicitly.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from task_flow_orchestrator.llm.factory import LLMFactory
from task_flow_orchestrator.orchestrator.config import OrchestratorSettings
from task_flow_orchestrator.orchestrator.enrichment.base import EnrichmentStrategy
from task_flow_orchestrator.orchestrator.enrichment.llm_strategy import LLMEnrichment
from task_flow_orchestrator.orchestrator.enrichment.rules import RuleBasedEnrichment
from task_flow_orchestrator.orchestrator.flows.capabilities import (
    EnrichmentCapability,
    ReviewCapability,
    SyncCapability,
)
from task_flow_orchestrator.orchestrator.flows.definitions import default_flows, load_flow_file
from task_flow_orchestrator.orchestrator.flows.executor import FlowExecutor
from task_flow_orchestrator.orchestrator.flows.registry import CapabilityRegistry
from task_flow_orchestrator.orchestrator.ledger import ExecutionLedger
from task_flow_orchestrator.orchestrator.remote.client import RemoteTaskClient
from task_flow_orchestrator.orchestrator.service import FlowService
from task_flow_orchestrator.orchestrator.staging.lifecycle import StagingLifecycleManager
from task_flow_orchestrator.orchestrator.staging.store import StagingStore
from task_flow_orchestrator.orchestrator.sync.conflicts import policy_from_name
from task_flow_orchestrator.orchestrator.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    settings: OrchestratorSettings
    store: StagingStore
    ledger: ExecutionLedger
    registry: CapabilityRegistry
    executor: FlowExecutor
    coordinator: SyncCoordinator
    lifecycle: StagingLifecycleManager
    remote: RemoteTaskClient | None = None

    @property
    def service(self) -> FlowService:
        return FlowService(executor=self.executor, ledger=self.ledger)

    def close(self) -> None:
        if self.remote is not None:
            self.remote.close()


def build_remote(settings: OrchestratorSettings) -> RemoteTaskClient | None:
    if not settings.has_remote_credentials:
        logger.info("Remote tracker not configured; sync capability will refuse to run")
        return None
    return RemoteTaskClient(
        token=settings.remote_token,
        team_id=settings.remote_team_id,
        base_url=settings.remote_base_url,
        timeout_seconds=settings.remote_timeout_seconds,
        max_attempts=settings.remote_max_attempts,
        backoff_seconds=settings.remote_backoff_seconds,
    )


def build_enrichment(settings: OrchestratorSettings) -> EnrichmentStrategy:
    if settings.enrichment_strategy == "llm":
        return LLMEnrichment(LLMFactory.create(settings.llm))
    return RuleBasedEnrichment()


def build_runtime(
    settings: OrchestratorSettings | None = None,
    *,
    remote: RemoteTaskClient | None = None,
    enrichment: EnrichmentStrategy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Runtime:
    """Wire the store, capabilities, flows and executor.

    ``remote`` and ``enrichment`` override what the settings would build,
    which is how tests plug in fakes.
    """

    settings = settings or OrchestratorSettings()

    store = StagingStore(settings.db_path)
    store.initialize()
    ledger = ExecutionLedger(store)

    remote = remote if remote is not None else build_remote(settings)
    coordinator = SyncCoordinator(
        store=store,
        ledger=ledger,
        remote=remote,
        conflict_policy=policy_from_name(settings.conflict_policy),
    )
    lifecycle = StagingLifecycleManager(
        store=store, enrichment=enrichment or build_enrichment(settings)
    )

    registry = CapabilityRegistry(
        [
            SyncCapability(coordinator),
            ReviewCapability(lifecycle),
            EnrichmentCapability(lifecycle=lifecycle, store=store),
        ]
    )

    flows = default_flows()
    if settings.flows_file is not None:
        flows.update(load_flow_file(settings.flows_file))

    executor = FlowExecutor(
        registry=registry,
        flows=flows,
        ledger=ledger,
        backoff_seconds=settings.step_backoff_seconds,
        sleep=sleep,
    )
    logger.info(
        "Runtime ready",
        extra={
            "db_path": str(settings.db_path),
            "flows": executor.flow_names(),
            "remote_configured": remote is not None,
        },
    )
    return Runtime(
        settings=settings,
        store=store,
        ledger=ledger,
        registry=registry,
        executor=executor,
        coordinator=coordinator,
        lifecycle=lifecycle,
        remote=remote,
    )
