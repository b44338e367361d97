"""FastAPI server adapter for task-flow-orchestrator.

Design intent:
- Keep business logic in `task_flow_orchestrator.orchestrator.*`
- Keep server-specific concerns (routing, CORS, response envelopes) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from task_flow_orchestrator.server.app import create_app
