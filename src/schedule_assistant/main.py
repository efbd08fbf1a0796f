"""Command-line interface for schedule-import analysis."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import date

from .csv_analysis.analysis_service import CSVAnalysisService, create_service
from .csv_analysis.auth import AuthService
from .csv_analysis.config import (
    DEFAULT_ANALYSIS_TYPE,
    DEFAULT_DATABASE_PATH,
    DEFAULT_REST_HOST,
    DEFAULT_REST_PORT,
)
from .csv_analysis.exceptions import CSVAnalysisError, EntriesLockedError
from .csv_analysis.models import (
    AnalysisOptions,
    AnalysisRecord,
    AnalysisStatus,
    AnalysisType,
    ResultStatus,
)

CommandHandler = Callable[[CSVAnalysisService, argparse.Namespace], Awaitable[int]]


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="schedule-assistant",
        description="Schedule Assistant CLI - Import and analyze Vietnamese class schedules",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  schedule-assistant create-user --name An --email an@example.com --password secret
  schedule-assistant import lich_hoc.csv --user-id 1
  schedule-assistant analyze --user-id 1 --entries 1 2 3 --type parsing
  schedule-assistant analyze --user-id 1 --entries 4 5 --submit-only
  schedule-assistant process <analysis-id>
  schedule-assistant status --user-id 1
  schedule-assistant unlock --user-id 1 --entries 2
  schedule-assistant parse "Họp nhóm 9h sáng thứ 2 tại phòng A101"
  schedule-assistant serve --port 8000
        """,
    )

    parser.add_argument(
        "--db",
        type=str,
        default=DEFAULT_DATABASE_PATH,
        metavar="PATH",
        help=f"SQLite database path (default: {DEFAULT_DATABASE_PATH})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging and debug information",
    )
    parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Do not call the local Ollama model (rule-based analysis only)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import a schedule CSV file")
    import_parser.add_argument("file", help="CSV file to import")
    import_parser.add_argument("--user-id", type=int, required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Analyze imported entries")
    analyze_parser.add_argument("--user-id", type=int, required=True)
    analyze_parser.add_argument("--entries", type=int, nargs="+", required=True, metavar="ID")
    _add_analysis_arguments(analyze_parser)

    batch_parser = subparsers.add_parser("batch", help="Analyze every entry of imports")
    batch_parser.add_argument("--user-id", type=int, required=True)
    batch_parser.add_argument("--imports", type=int, nargs="+", required=True, metavar="ID")
    batch_parser.add_argument(
        "--strict",
        action="store_true",
        help="Reject the batch if any entry is locked instead of skipping it",
    )
    _add_analysis_arguments(batch_parser)

    process_parser = subparsers.add_parser("process", help="Process a pending analysis")
    process_parser.add_argument("analysis_id")

    results_parser = subparsers.add_parser("results", help="Show analysis results")
    results_parser.add_argument("analysis_id")

    status_parser = subparsers.add_parser("status", help="Show entry counts for a user")
    status_parser.add_argument("--user-id", type=int, required=True)

    unlock_parser = subparsers.add_parser("unlock", help="Force-unlock stuck entries")
    unlock_parser.add_argument("--user-id", type=int, required=True)
    unlock_parser.add_argument("--entries", type=int, nargs="+", required=True, metavar="ID")

    locked_parser = subparsers.add_parser("locked", help="List locked entries")
    locked_parser.add_argument("--user-id", type=int, required=True)

    parse_parser = subparsers.add_parser("parse", help="Parse a Vietnamese schedule sentence")
    parse_parser.add_argument("text")
    parse_parser.add_argument(
        "--date", type=date.fromisoformat, default=None, help="Reference date (YYYY-MM-DD)"
    )
    parse_parser.add_argument("--time-format", choices=["12h", "24h"], default="24h")

    serve_parser = subparsers.add_parser("serve", help="Run the REST API server")
    serve_parser.add_argument("--host", default=DEFAULT_REST_HOST)
    serve_parser.add_argument("--port", type=int, default=DEFAULT_REST_PORT)

    mcp_parser = subparsers.add_parser("mcp", help="Run the MCP server")
    mcp_parser.add_argument("transport", nargs="?", choices=["stdio", "sse"], default="stdio")

    user_parser = subparsers.add_parser("create-user", help="Register a user")
    user_parser.add_argument("--name", required=True)
    user_parser.add_argument("--email", required=True)
    user_parser.add_argument("--password", required=True)
    user_parser.add_argument("--profession", default=None)

    return parser


def _add_analysis_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--type",
        dest="analysis_type",
        choices=[t.value for t in AnalysisType],
        default=DEFAULT_ANALYSIS_TYPE,
    )
    parser.add_argument(
        "--optimize", action="store_true", help="Add schedule optimization hints"
    )
    parser.add_argument(
        "--no-conflicts", action="store_true", help="Skip conflict detection"
    )
    parser.add_argument(
        "--submit-only",
        action="store_true",
        help="Lock the entries and record a pending analysis; run 'process' later",
    )


def configure_logging(verbose: bool) -> None:
    """Configure logging based on the verbose flag."""
    if verbose:
        logging.basicConfig(
            level="DEBUG", format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        logging.basicConfig(level="INFO", format="%(asctime)s - %(levelname)s - %(message)s")
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _analysis_options(args: argparse.Namespace) -> AnalysisOptions:
    return AnalysisOptions(
        optimize_schedule=args.optimize, detect_conflicts=not args.no_conflicts
    )


def print_results(record: AnalysisRecord) -> None:
    """Print an analysis and its per-entry results."""
    print(
        f"📊 Analysis {record.analysis_id}: {record.status.value} "
        f"({record.entries_analyzed} entries analyzed)"
    )
    for result in record.results:
        if result.status == ResultStatus.SUCCESS and result.parsed_result:
            event = result.parsed_result
            print(
                f"  ✅ #{result.entry_id} {event.title} | "
                f"{event.start_datetime:%Y-%m-%d %H:%M}-{event.end_datetime:%H:%M} | "
                f"{event.location or '-'} | {event.category} P{event.priority}"
            )
            if result.ai_analysis:
                for conflict in result.ai_analysis.detected_conflicts:
                    print(f"     ⚠️  {conflict}")
                for suggestion in result.ai_analysis.suggestions:
                    print(f"     💡 {suggestion}")
                for recommendation in result.ai_analysis.optimization_recommendations:
                    print(f"     🗓️  {recommendation}")
        else:
            print(f"  ❌ #{result.entry_id} {result.error_message}")


async def _cmd_import(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    with open(args.file, "rb") as f:
        content = f.read()
    schedule_import = await service.import_csv(args.user_id, content, args.file)
    entries = await service.list_entries(args.user_id, schedule_import.id)
    print(f"✅ Imported {schedule_import.total_entries} entries (import {schedule_import.id})")
    for entry in entries:
        print(f"  #{entry.id} row {entry.row_number}: {entry.raw_text}")
    return 0


async def _submit_and_report(
    service: CSVAnalysisService, args: argparse.Namespace, submission_coro: Awaitable
) -> int:
    submission = await submission_coro
    print(f"🔒 {submission.message}")
    if submission.skipped_entry_ids:
        print(f"   Skipped (locked): {submission.skipped_entry_ids}")
    print(f"   Analysis id: {submission.analysis_id}")

    if args.submit_only:
        print(f"   Run 'schedule-assistant process {submission.analysis_id}' to analyze")
        return 0

    record = await service.process_analysis(submission.analysis_id)
    print_results(record)
    return 0


async def _cmd_analyze(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    return await _submit_and_report(
        service,
        args,
        service.submit_analysis(
            args.user_id,
            args.entries,
            AnalysisType(args.analysis_type),
            _analysis_options(args),
        ),
    )


async def _cmd_batch(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    return await _submit_and_report(
        service,
        args,
        service.batch_analyze(
            args.user_id,
            args.imports,
            AnalysisType(args.analysis_type),
            skip_locked=not args.strict,
            options=_analysis_options(args),
        ),
    )


async def _cmd_process(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    record = await service.get_analysis_results(args.analysis_id)
    if record.status != AnalysisStatus.PENDING:
        print(f"ℹ️  Analysis {record.analysis_id} is already {record.status.value}")
    print_results(await service.process_analysis(args.analysis_id))
    return 0


async def _cmd_results(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    print_results(await service.get_analysis_results(args.analysis_id))
    return 0


async def _cmd_status(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    summary = await service.get_analysis_status(args.user_id)
    print(f"📈 Entries for user {args.user_id}:")
    for key, value in summary.to_dict().items():
        if key != "user_id":
            print(f"  {key.replace('_', ' ')}: {value}")
    return 0


async def _cmd_unlock(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    result = await service.unlock_entries(args.user_id, args.entries)
    print(
        f"🔓 Unlocked {result.entries_unlocked}/{result.entries_requested} entries: "
        f"{result.unlocked_entry_ids}"
    )
    return 0


async def _cmd_locked(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    entries = await service.get_locked_entries(args.user_id)
    if not entries:
        print("✅ No locked entries")
        return 0
    print(f"🔒 {len(entries)} locked entries:")
    for entry in entries:
        locked_at = f"{entry.locked_at:%Y-%m-%d %H:%M}" if entry.locked_at else "-"
        print(
            f"  #{entry.id} {entry.state.value} since {locked_at} "
            f"(analysis {entry.locked_by}): {entry.raw_text}"
        )
    return 0


async def _cmd_parse(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    context = {"date": args.date, "time_format": args.time_format}
    event = service.parse_vietnamese(args.text, context)
    print(f"📅 {event.title}")
    print(f"  Start:    {event.start_datetime:%Y-%m-%d %H:%M}")
    print(f"  End:      {event.end_datetime:%Y-%m-%d %H:%M} ({event.duration_minutes} min)")
    print(f"  Location: {event.location or '-'}")
    print(f"  Category: {event.category}, priority {event.priority}")
    return 0


async def _cmd_create_user(service: CSVAnalysisService, args: argparse.Namespace) -> int:
    auth = AuthService(service.database)
    user, token = await auth.register(args.name, args.email, args.password, args.profession)
    print(f"✅ Created user {user.id} ({user.email})")
    print(f"   Token: {token}")
    return 0


COMMANDS: dict[str, CommandHandler] = {
    "import": _cmd_import,
    "analyze": _cmd_analyze,
    "batch": _cmd_batch,
    "process": _cmd_process,
    "results": _cmd_results,
    "status": _cmd_status,
    "unlock": _cmd_unlock,
    "locked": _cmd_locked,
    "parse": _cmd_parse,
    "create-user": _cmd_create_user,
}


async def run_command(
    args: argparse.Namespace, service: CSVAnalysisService | None = None
) -> int:
    """
    Run one of the local (non-server) commands.

    Args:
        args: Parsed arguments
        service: Service to use; a new one over args.db is created and
            shut down afterwards when omitted

    Returns:
        Process exit code
    """
    owns_service = service is None
    if service is None:
        service = create_service(args.db, use_ai=not args.no_ai, auto_process=False)

    try:
        await service.initialize()
        return await COMMANDS[args.command](service, args)
    except EntriesLockedError as e:
        print(f"❌ {e}")
        if e.locked_ids:
            print(f"   Locked entries: {e.locked_ids} (use 'unlock' to release them)")
        return 1
    except CSVAnalysisError as e:
        print(f"❌ {e}")
        return 1
    except OSError as e:
        print(f"❌ {e}")
        return 1
    finally:
        if owns_service:
            await service.shutdown()


def serve(args: argparse.Namespace) -> None:
    """Run the REST API with uvicorn."""
    import uvicorn

    from .csv_analysis.rest_api import create_app

    service = create_service(args.db, use_ai=not args.no_ai)
    app = create_app(service, AuthService(service.database), manage_lifecycle=True)
    print(f"🚀 Serving REST API on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


def cli_entry_with_args(argv: list[str] | None = None) -> None:
    """CLI entry point with argument parsing."""
    parser = create_argument_parser()

    try:
        args = parser.parse_args(argv)
        configure_logging(args.verbose)

        if args.command == "serve":
            serve(args)
            return
        if args.command == "mcp":
            from .csv_analysis.mcp_server import run

            run(args.transport, db_path=args.db, use_ai=not args.no_ai)
            return

        exit_code = asyncio.run(run_command(args))
        if exit_code:
            sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except SystemExit:
        # Re-raise SystemExit (from argparse help, etc.)
        raise
    except Exception as e:
        print(f"❌ Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_entry_with_args()
