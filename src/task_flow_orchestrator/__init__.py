"""Task Flow Orchestrator.

Runs named, multi-step flows over a local staging store that mirrors a
remote task tracker:
- pull/push sync with the remote tracker
- enrichment and promotion of staged tasks
- a durable ledger of flow status and sync summaries
"""

__version__ = "0.1.0"

from task_flow_orchestrator.orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]
