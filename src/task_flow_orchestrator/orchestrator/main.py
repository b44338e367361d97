"""CLI entrypoint for the flow orchestrator.

Every command that does work goes through :class:`FlowService`, so runs
started from the shell land in the same ledger as API and scheduled runs.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from task_flow_orchestrator import __version__
from task_flow_orchestrator.orchestrator.config import OrchestratorSettings
from task_flow_orchestrator.orchestrator.errors import ConfigurationError
from task_flow_orchestrator.orchestrator.logging import configure_logging
from task_flow_orchestrator.orchestrator.runtime import Runtime, build_runtime
from task_flow_orchestrator.orchestrator.service import ExecuteFlowRequest, FlowResponse
from task_flow_orchestrator.orchestrator.triggers import SCHEDULES, handle_scheduled_trigger

logger = logging.getLogger(__name__)


def _parse_json_object(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    parsed = json.loads(value)
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("expected a JSON object")
    return parsed


def _json_object(value: str) -> dict[str, Any]:
    try:
        return _parse_json_object(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="task-flow-orchestrator",
        description="Run orchestration flows over a local task staging store",
    )
    parser.add_argument(
        "--version", action="version", version=f"task-flow-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    execute = subparsers.add_parser("execute-flow", help="Run a named flow")
    execute.add_argument("--flow", dest="flow_name", required=True, help="Flow name")
    execute.add_argument("--task-id", default=None, help="Optional task id for the flow")
    execute.add_argument(
        "--config", type=_json_object, default={}, help="Request config as a JSON object"
    )
    execute.add_argument(
        "--metadata", type=_json_object, default={}, help="Request metadata as a JSON object"
    )

    status = subparsers.add_parser("flow-status", help="Show the latest status of a flow run")
    status.add_argument("flow_id", help="Flow id returned by execute-flow")

    subparsers.add_parser("flows", help="List the registered flows")

    sync = subparsers.add_parser("sync", help="Synchronise with the remote task tracker")
    sync.add_argument(
        "--pull-only",
        action="store_true",
        help="Only pull remote changes; never push local edits",
    )
    sync.add_argument(
        "--project-id",
        default=None,
        help="Synchronise a single project instead of every project",
    )

    review = subparsers.add_parser("review", help="Enrich and promote staged tasks")
    review.add_argument(
        "--limit", type=int, default=None, help="Review at most this many pending tasks"
    )

    subparsers.add_parser("health", help="Report capability health")

    scheduled = subparsers.add_parser(
        "scheduled", help="Run the flow mapped to a cron schedule"
    )
    scheduled.add_argument(
        "--cron",
        required=True,
        help=f"Cron expression that fired; known: {', '.join(sorted(SCHEDULES))}",
    )

    stage = subparsers.add_parser(
        "stage-task", help="Stage a local task; the next push creates it remotely"
    )
    stage.add_argument("--project-id", required=True, help="Project the task belongs to")
    stage.add_argument("--title", required=True, help="Task title")
    stage.add_argument("--description", default=None, help="Task description")
    stage.add_argument(
        "--tag", dest="tags", action="append", default=[], help="Tag (repeatable)"
    )

    serve = subparsers.add_parser("serve", help="Run the HTTP API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _report(response: FlowResponse) -> int:
    _print_json(response.model_dump(mode="json", exclude_none=True))
    return 0 if response.success else 1


def _sync_request(args: argparse.Namespace) -> ExecuteFlowRequest:
    if args.project_id:
        return ExecuteFlowRequest(
            flowName="syncProjectPull" if args.pull_only else "syncProject",
            config={"projectId": args.project_id},
        )
    return ExecuteFlowRequest(flowName="syncPull" if args.pull_only else "sync")


def _run(args: argparse.Namespace, runtime: Runtime) -> int:
    service = runtime.service

    if args.command == "execute-flow":
        return _report(
            service.execute(
                ExecuteFlowRequest(
                    flowName=args.flow_name,
                    taskId=args.task_id,
                    config=args.config,
                    metadata=args.metadata,
                )
            )
        )

    if args.command == "flow-status":
        record = service.flow_status(args.flow_id)
        if record is None:
            print(f"No status recorded for flow {args.flow_id}", file=sys.stderr)
            return 1
        _print_json(record.model_dump(mode="json"))
        return 0

    if args.command == "flows":
        for name in runtime.executor.flow_names():
            flow = runtime.executor.get_flow(name)
            steps = " -> ".join(step.name for step in flow.steps)
            print(f"{name}: {steps}")
        return 0

    if args.command == "sync":
        return _report(service.execute(_sync_request(args)))

    if args.command == "review":
        config: dict[str, Any] = {}
        if args.limit is not None:
            config["limit"] = args.limit
        return _report(
            service.execute(ExecuteFlowRequest(flowName="reviewStagedTasks", config=config))
        )

    if args.command == "health":
        capabilities = runtime.registry.health_check()
        _print_json(capabilities)
        return 0 if all(capabilities.values()) else 1

    if args.command == "scheduled":
        response = handle_scheduled_trigger(args.cron, service)
        if response is None:
            print(f"Unknown schedule: {args.cron}", file=sys.stderr)
            return 2
        return _report(response)

    if args.command == "stage-task":
        task = runtime.store.create_local_task(
            project_id=args.project_id,
            title=args.title,
            description=args.description,
            tags=args.tags,
        )
        print(f"Staged task {task.id} ({task.external_id})")
        return 0

    if args.command == "serve":
        import uvicorn

        from task_flow_orchestrator.server.app import create_app

        uvicorn.run(create_app(runtime), host=args.host, port=args.port)
        return 0

    logger.error("Unknown command", extra={"command": args.command})
    return 2


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_format)

    try:
        runtime = build_runtime(settings)
    except ConfigurationError as e:
        logger.error("Invalid configuration", extra={"error": str(e)})
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        return _run(args, runtime)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except Exception:
        logger.exception("Command failed")
        return 1
    finally:
        runtime.close()


if __name__ == "__main__":
    raise SystemExit(main())
