"""Legacy import CLI.

Usage:
    python -m legacy_import migrate [--revision REV]
    python -m legacy_import suggest-merges [--input PATH]
    python -m legacy_import serve [--host HOST] [--port PORT]

Exit codes:
    0: Success
    1: Internal error
    2: Invalid input
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from legacy_import.models import Cluster
from legacy_import.services.merge_suggestions import suggest_merges

logger = logging.getLogger(__name__)

# Offline cluster exports may omit the session; suggestions do not depend on it.
OFFLINE_SESSION_ID = "offline"


def _output_json(data: Any) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False))


def _load_json_input(input_path: str | None) -> tuple[Any, str | None]:
    """Load JSON from file or stdin.

    Returns:
        Tuple of (parsed_data, error_message). If error_message is not None,
        parsed_data should be ignored.
    """
    try:
        if input_path:
            with open(input_path, encoding="utf-8") as f:
                content = f.read()
        else:
            content = sys.stdin.read()

        if not content.strip():
            return None, "Empty input"

        return json.loads(content), None
    except FileNotFoundError:
        return None, f"File not found: {input_path}"
    except json.JSONDecodeError as e:
        return None, f"Invalid JSON: {e}"
    except OSError as e:
        return None, f"Cannot read input: {e}"


def _parse_clusters(data: Any) -> list[Cluster]:
    """Accept a list of clusters or an object with a ``clusters`` list."""
    entries = data.get("clusters") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError("Expected a list of clusters or an object with 'clusters'")
    clusters = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError("Each cluster must be a JSON object")
        clusters.append(Cluster.model_validate({"sessionId": OFFLINE_SESSION_ID, **entry}))
    return clusters


def cmd_suggest_merges(args: argparse.Namespace) -> int:
    """Print merge suggestions for a cluster export.

    Exit codes:
        0: Suggestions printed (possibly none)
        2: Unreadable or malformed input
    """
    data, error_msg = _load_json_input(args.input)
    if error_msg is not None:
        _output_json({"error": {"code": "INVALID_JSON", "message": error_msg}})
        return 2

    try:
        clusters = _parse_clusters(data)
    except (ValueError, PydanticValidationError) as e:
        _output_json({"error": {"code": "INVALID_INPUT", "message": str(e)}})
        return 2

    suggestions = suggest_merges(clusters)
    _output_json({"suggestions": [s.model_dump(mode="json", by_alias=True) for s in suggestions]})
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    """Upgrade the Postgres schema. Requires LEGACY_IMPORT_DATABASE_ADMIN_URL."""
    from legacy_import.persistence.migrate import run_upgrade

    run_upgrade(revision=args.revision)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the API with uvicorn."""
    import uvicorn

    from legacy_import.api.main import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="legacy-import",
        description="Legacy import cluster validation CLI",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    migrate_parser = subparsers.add_parser("migrate", help="Apply database migrations")
    migrate_parser.add_argument(
        "--revision",
        default="head",
        help="Target revision (default: head)",
    )

    suggest_parser = subparsers.add_parser(
        "suggest-merges",
        help="Suggest cluster merges from a JSON cluster export",
    )
    suggest_parser.add_argument(
        "--input",
        required=False,
        default=None,
        metavar="PATH",
        help="Path to JSON file (reads from stdin if omitted)",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


COMMANDS = {
    "migrate": cmd_migrate,
    "suggest-merges": cmd_suggest_merges,
    "serve": cmd_serve,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Internal error (unexpected)
        2: Invalid input
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return COMMANDS[args.command](args)
    except Exception as e:
        logger.exception("Command %s failed", args.command)
        print(f"Internal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
