"""
Command-line interface for the session coordinator.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

from .config import load_config
from .errors import CoordinatorError
from .observability.logging import configure_logging
from .service import CoordinationService, OperationError, OperationResult


def setup_logging(verbose: bool = False, json_output: bool = False):
    """Configure logging."""
    configure_logging(
        level="DEBUG" if verbose else "INFO",
        json_output=json_output,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="session-coordinator",
        description="Session coordinator - session memory, constraints and stuck detection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start (or re-attach to) a session
  session-coordinator -s auth-work start

  # Record a decision
  session-coordinator -s auth-work note decision "Use JWT for auth"

  # Check whether work was already done
  session-coordinator -s auth-work duplicate "implement token refresh"

  # Track and check constraints
  session-coordinator -s auth-work constraint add "No external API calls during processing"
  session-coordinator -s auth-work constraint check "call the payments API during processing"

  # Am I stuck? What now?
  session-coordinator -s auth-work stuck
  session-coordinator -s auth-work recover

  # Delete the session's memory
  session-coordinator -s auth-work finalize
        """
    )

    parser.add_argument(
        "--session", "-s",
        required=True,
        help="Session identifier"
    )
    parser.add_argument(
        "--project", "-p",
        default=os.getcwd(),
        help="Project root (default: current directory)"
    )
    parser.add_argument(
        "--config",
        help="Path to a configuration file"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("start", help="Start or re-attach to the session")

    note_parser = subparsers.add_parser("note", help="Save a note")
    note_parser.add_argument(
        "type",
        choices=["decision", "hypothesis", "blocker", "learning", "pattern"],
        help="Note type"
    )
    note_parser.add_argument("content", help="Note content")
    note_parser.add_argument(
        "--metadata",
        help="JSON object with extra metadata"
    )

    search_parser = subparsers.add_parser("search", help="Semantic search over session memory")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument(
        "--limit", "-n",
        type=int,
        default=5,
        help="Maximum results (default: 5)"
    )

    duplicate_parser = subparsers.add_parser("duplicate", help="Check for duplicate work")
    duplicate_parser.add_argument("description", help="Description of the planned work")
    duplicate_parser.add_argument(
        "--threshold",
        type=float,
        default=0.75,
        help="Minimum similarity (default: 0.75)"
    )

    constraint_parser = subparsers.add_parser("constraint", help="Manage constraints")
    constraint_subparsers = constraint_parser.add_subparsers(
        dest="constraint_command",
        help="Constraint commands"
    )

    constraint_add_parser = constraint_subparsers.add_parser("add", help="Track a constraint")
    constraint_add_parser.add_argument("content", help="Constraint text")
    constraint_add_parser.add_argument(
        "--scope",
        choices=["session", "task", "file"],
        default="session",
        help="Constraint scope (default: session)"
    )
    constraint_add_parser.add_argument(
        "--inferred",
        action="store_true",
        help="Mark the constraint as inferred rather than explicit"
    )

    constraint_subparsers.add_parser("list", help="List active constraints")

    constraint_lift_parser = constraint_subparsers.add_parser("lift", help="Lift a constraint")
    constraint_lift_parser.add_argument("constraint_id", help="Constraint id")

    constraint_check_parser = constraint_subparsers.add_parser(
        "check",
        help="Check a proposed action against active constraints"
    )
    constraint_check_parser.add_argument("action", help="Proposed action")

    subparsers.add_parser("memories", help="Extract valuable memories")
    subparsers.add_parser("stats", help="Show session statistics")
    subparsers.add_parser("stuck", help="Run stuck detection")

    recover_parser = subparsers.add_parser("recover", help="Get recovery suggestions")
    recover_parser.add_argument(
        "--pattern-file",
        help="JSON file with a stuck pattern (default: detect one now)"
    )
    recover_parser.add_argument(
        "--max",
        type=int,
        default=3,
        help="Maximum suggestions (default: 3)"
    )

    subparsers.add_parser("finalize", help="Delete the session's memory")

    return parser


def print_result(result: OperationResult) -> None:
    """Print an operation result as JSON."""
    print(json.dumps(result.to_dict(), indent=2, default=str))


def _failure(operation: str, code: str, message: str) -> OperationResult:
    return OperationResult(
        success=False,
        error=OperationError(code, message),
        metadata={"operation": operation},
    )


async def handle_recover(service: CoordinationService, handle, args) -> OperationResult:
    """Suggest recoveries for a given or freshly detected stuck pattern."""
    if args.pattern_file:
        try:
            with open(args.pattern_file, "r") as f:
                pattern = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            return _failure("get_recovery_suggestions", "VALIDATION_ERROR", f"Error reading pattern file: {e}")
    else:
        stuck = await service.check_stuck_pattern(handle)
        if not stuck.success:
            return stuck
        detected = stuck.value.detected_patterns
        if not detected:
            return OperationResult(
                success=True,
                data={"stuck_pattern": None, "suggestions": []},
                metadata={"operation": "get_recovery_suggestions", "suggestion_count": 0},
            )
        pattern = max(detected, key=lambda p: p.confidence)

    return await service.get_recovery_suggestions(
        handle,
        pattern,
        project_path=args.project,
        max_suggestions=args.max,
    )


async def handle_constraint(service: CoordinationService, handle, args) -> OperationResult:
    """Dispatch constraint sub-commands."""
    command = args.constraint_command
    if command == "add":
        return await service.track_constraint(
            handle,
            args.content,
            scope=args.scope,
            detected_from="auto" if args.inferred else "explicit",
        )
    if command == "list":
        return await service.get_active_constraints(handle)
    if command == "lift":
        return await service.lift_constraint(handle, args.constraint_id)
    if command == "check":
        return await service.check_violation(handle, args.action)
    return _failure("constraint", "VALIDATION_ERROR", "Please specify a constraint command (add, list, lift, check)")


async def run_command(args, service: Optional[CoordinationService] = None) -> OperationResult:
    """
    Re-attach to the session and run one command.

    Args:
        args: Parsed command-line arguments
        service: Pre-built service (built from configuration when omitted)

    Returns:
        The command's operation result
    """
    if service is None:
        try:
            config = load_config(config_path=args.config, project_path=args.project)
            service = CoordinationService.from_config(config)
        except CoordinatorError as e:
            return _failure(args.command, e.code, e.message)

    try:
        started = await service.start_session(args.session, args.project)
        if not started.success or args.command == "start":
            return started
        handle = started.value

        if args.command == "note":
            metadata = json.loads(args.metadata) if args.metadata else {}
            if not isinstance(metadata, dict):
                return _failure("save_note", "VALIDATION_ERROR", "--metadata must be a JSON object")
            return await service.save_note(handle, args.type, args.content, metadata)
        if args.command == "search":
            return await service.search(handle, args.query, args.limit)
        if args.command == "duplicate":
            return await service.check_duplicate(handle, args.description, args.threshold)
        if args.command == "constraint":
            return await handle_constraint(service, handle, args)
        if args.command == "memories":
            return await service.extract_valuable_memories(handle)
        if args.command == "stats":
            return await service.get_stats(handle)
        if args.command == "stuck":
            return await service.check_stuck_pattern(handle, args.project)
        if args.command == "recover":
            return await handle_recover(service, handle, args)
        if args.command == "finalize":
            return await service.finalize_session(handle)

        return _failure(args.command, "VALIDATION_ERROR", f"Unknown command: {args.command}")
    except json.JSONDecodeError as e:
        return _failure(args.command, "VALIDATION_ERROR", f"Invalid JSON: {e}")
    finally:
        await service.manager.close()


def main(argv=None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if not Path(args.project).is_dir():
        print(f"Error: Project path '{args.project}' does not exist")
        sys.exit(1)

    setup_logging(args.verbose, args.json_logs)

    result = asyncio.run(run_command(args))
    print_result(result)
    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
