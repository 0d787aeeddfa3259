"""
Agent orchestrator command line entry point.

    agent-orchestrator serve [--host H] [--port P] [--no-driver]
    agent-orchestrator route message.json
    agent-orchestrator validate-graph plan.yaml
    agent-orchestrator plan plan.yaml
    agent-orchestrator import-graph plan.yaml
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

import uvicorn
import yaml

from .api import create_app
from .config import Settings, configure_logging
from .errors import InvalidGraphError, InvalidMessageError, OrchestratorError
from .startup import build_services
from .task_graph import (
    critical_path,
    load_graph_file,
    parallel_groups,
    ready_tasks,
    validate,
)

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    services = build_services(settings)
    app = create_app(
        services,
        run_driver=not args.no_driver,
        cors_origins=settings.cors_origins,
    )
    uvicorn.run(
        app,
        host=args.host or settings.http_host,
        port=args.port or settings.http_port,
        log_level=settings.log_level.lower(),
    )
    return 0


async def _route(path: str, settings: Settings) -> int:
    with open(path, "r", encoding="utf-8") as f:
        message = json.load(f)

    services = build_services(settings)
    await services.start()
    try:
        result = await services.router.route(message)
    except InvalidMessageError as e:
        _print_json({"success": False, "errors": e.errors, "warnings": e.warnings})
        return 1
    finally:
        await services.shutdown()

    _print_json(result.to_dict())
    return 0


def cmd_route(args: argparse.Namespace, settings: Settings) -> int:
    return asyncio.run(_route(args.file, settings))


def cmd_validate_graph(args: argparse.Namespace, settings: Settings) -> int:
    graph = load_graph_file(args.file)
    result = validate(graph)
    _print_json({"product": graph.product, **result.to_dict()})
    return 0 if result.valid else 1


def cmd_plan(args: argparse.Namespace, settings: Settings) -> int:
    graph = load_graph_file(args.file)
    result = validate(graph)
    if not result.valid:
        _print_json({"product": graph.product, **result.to_dict()})
        return 1

    ready = ready_tasks(graph)
    _print_json({
        "product": graph.product,
        "stats": graph.get_stats(),
        "ready": [task.id for task in ready],
        "parallelGroups": [[task.id for task in group] for group in parallel_groups(ready)],
        "criticalPath": critical_path(graph).to_dict(),
    })
    return 0


async def _import_graph(path: str, settings: Settings) -> int:
    graph = load_graph_file(path)
    services = build_services(settings)
    await services.start()
    try:
        result = await services.graphs.put(graph)
    except InvalidGraphError as e:
        _print_json({"success": False, **e.to_dict()})
        return 1
    finally:
        await services.shutdown()

    _print_json({"success": True, "product": graph.product, "tasks": len(graph), **result.to_dict()})
    return 0


def cmd_import_graph(args: argparse.Namespace, settings: Settings) -> int:
    return asyncio.run(_import_graph(args.file, settings))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-orchestrator",
        description="Multi-agent task graph orchestrator",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API and dispatch loop")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--no-driver", action="store_true", help="Do not run the dispatch loop")
    serve.set_defaults(handler=cmd_serve)

    route = subparsers.add_parser("route", help="Route one agent message from a JSON file")
    route.add_argument("file")
    route.set_defaults(handler=cmd_route)

    validate_graph = subparsers.add_parser("validate-graph", help="Check a plan file")
    validate_graph.add_argument("file")
    validate_graph.set_defaults(handler=cmd_validate_graph)

    plan = subparsers.add_parser("plan", help="Show ready tasks, parallel groups and critical path")
    plan.add_argument("file")
    plan.set_defaults(handler=cmd_plan)

    import_graph = subparsers.add_parser("import-graph", help="Validate and store a plan file")
    import_graph.add_argument("file")
    import_graph.set_defaults(handler=cmd_import_graph)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        return args.handler(args, settings)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 2
    except OrchestratorError as e:
        logger.error(f"{args.command} failed: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
