"""CLI entrypoint for the analytics engine.

Exit codes:
- 0 success
- 1 runtime failure (a run failed, unexpected error)
- 2 configuration or usage error
- 3 authoring error (validation failed, duplicate name, bad document)
- 4 definition not found
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

from pydantic import ValidationError

from analytics_workflows import __version__
from analytics_workflows.engine.config import AnalyticsRuntime, EngineSettings, build_runtime
from analytics_workflows.engine.errors import (
    DefinitionNotFoundError,
    DuplicateNameError,
    InvalidDocumentError,
    ValidationFailedError,
    WorkflowRuntimeError,
)
from analytics_workflows.engine.logging import configure_logging
from analytics_workflows.engine.workflow.documents import parse_document

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="analytics",
        description="Author, validate and run multi-step analytics workflows",
    )
    parser.add_argument(
        "--version", action="version", version=f"analytics-workflows {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", help="Add a definition from a JSON document")
    add.add_argument("--file", type=Path, required=True, help="Path to the definition document")

    update = subparsers.add_parser(
        "update",
        help="Replace a definition's configuration (persisted even if validation fails)",
    )
    update.add_argument("--id", dest="definition_id", required=True, help="Definition id")
    update.add_argument("--file", type=Path, required=True, help="Path to the definition document")

    verify = subparsers.add_parser("verify", help="Re-validate a stored definition")
    verify.add_argument("--id", dest="definition_id", required=True, help="Definition id")

    delete = subparsers.add_parser("delete", help="Delete a definition")
    delete.add_argument("--id", dest="definition_id", required=True, help="Definition id")

    run = subparsers.add_parser(
        "run",
        help="Execute a definition once (skipped within the minimum run interval)",
    )
    run.add_argument("--id", dest="definition_id", required=True, help="Definition id")

    export = subparsers.add_parser("export", help="Export a definition as a portable document")
    export.add_argument("--id", dest="definition_id", required=True, help="Definition id")
    export.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the document to this file instead of stdout",
    )

    import_ = subparsers.add_parser("import", help="Import an exported document under a new id")
    import_.add_argument("--file", type=Path, required=True, help="Path to the exported document")

    subparsers.add_parser("list", help="List definitions with their value and status")

    subparsers.add_parser(
        "serve",
        help="Run the timer and change-event scheduler until interrupted",
    )

    return parser


def _read_document(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _serve(runtime: AnalyticsRuntime) -> int:
    if not runtime.settings.enable_calculations:
        print("Calculations are disabled (ANALYTICS_ENABLE_CALCULATIONS=false)", file=sys.stderr)
        return 2

    stop = threading.Event()

    def _request_stop(signum: int, frame: object) -> None:
        logger.info("Shutdown requested", extra={"signal": signum})
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    runtime.scheduler.start()
    print("Scheduler running; press Ctrl+C to stop")
    while not stop.wait(1.0):
        pass
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    runtime = build_runtime(settings)
    service = runtime.service

    try:
        if args.command == "add":
            definition_id = service.add_definition(parse_document(_read_document(args.file)))
            print(definition_id)
            return 0

        if args.command == "update":
            updated = service.update_definition(
                args.definition_id, parse_document(_read_document(args.file))
            )
            print(f"Updated {updated.id}: {updated.status}")
            return 0 if updated.status == "OK" else 3

        if args.command == "verify":
            report = service.verify_definition(args.definition_id)
            print(report.summary())
            return 0 if report.ok else 3

        if args.command == "delete":
            service.delete_definition(args.definition_id)
            print(f"Deleted {args.definition_id}")
            return 0

        if args.command == "run":
            print(service.execute_once(args.definition_id))
            return 0

        if args.command == "export":
            document = service.export_definition(args.definition_id)
            if args.output is None:
                print(document)
            else:
                args.output.parent.mkdir(parents=True, exist_ok=True)
                args.output.write_text(document + "\n", encoding="utf-8")
                print(f"Exported {args.definition_id} to {args.output}")
            return 0

        if args.command == "import":
            print(service.import_definition(_read_document(args.file)))
            return 0

        if args.command == "list":
            rows = [
                {
                    "id": d.id,
                    "name": d.name,
                    "interval_seconds": d.interval_seconds,
                    "value": d.value,
                    "status": d.status,
                    "last_run": d.last_run.isoformat() if d.last_run else None,
                }
                for d in service.list_definitions()
            ]
            print(json.dumps(rows, indent=2, ensure_ascii=False))
            return 0

        if args.command == "serve":
            return _serve(runtime)

        parser.error(f"Unknown command: {args.command}")
        return 2

    except ValidationFailedError as e:
        print("Validation failed:", file=sys.stderr)
        for error in e.errors:
            print(f"  - {error}", file=sys.stderr)
        return 3

    except (DuplicateNameError, InvalidDocumentError) as e:
        print(str(e), file=sys.stderr)
        return 3

    except DefinitionNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 4

    except OSError as e:
        print(f"Cannot read or write file: {e}", file=sys.stderr)
        return 2

    except WorkflowRuntimeError as e:
        print(f"Runtime Error: {e}", file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1

    finally:
        runtime.close()
