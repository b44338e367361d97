#!/usr/bin/env python3
"""Programmatic flow execution example.

This demonstrates using the orchestrator components directly:

* load settings from `.env`
* stage a local task
* run the `reviewStagedTasks` flow and print the envelope

No remote credentials are needed; review works on local state only.
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from task_flow_orchestrator.orchestrator.config import OrchestratorSettings
from task_flow_orchestrator.orchestrator.logging import configure_logging
from task_flow_orchestrator.orchestrator.runtime import build_runtime
from task_flow_orchestrator.orchestrator.service import ExecuteFlowRequest


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stage a task and review it (programmatic example).")
    parser.add_argument("--project-id", default="demo", help="Project the task belongs to")
    parser.add_argument("--title", required=True, help="Task title")
    parser.add_argument("--description", default=None, help="Task description (optional)")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = OrchestratorSettings()
    configure_logging(settings.log_level, settings.log_format)

    runtime = build_runtime(settings)
    try:
        task = runtime.store.create_local_task(
            project_id=args.project_id,
            title=args.title,
            description=args.description,
        )
        print(f"Staged task {task.id}")

        response = runtime.service.execute(ExecuteFlowRequest(flowName="reviewStagedTasks"))
        print(json.dumps(response.model_dump(mode="json", exclude_none=True), indent=2))
        return 0 if response.success else 1
    finally:
        runtime.close()


if __name__ == "__main__":
    raise SystemExit(main())
