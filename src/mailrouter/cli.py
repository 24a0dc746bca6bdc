"""Summary: Command-line interface for MailRouter.

Importance: Provides a local-first entry point for sync, analysis and usage review.
Alternatives: Drive everything through the HTTP API.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from mailrouter.app import build_services
from mailrouter.config import AppConfig
from mailrouter.email import EmlEmailProvider, MockEmailProvider
from mailrouter.orchestrator import LOCK_KEYS
from mailrouter.services import dump_analysis, sync_log_summary


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="MailRouter CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_mock = subparsers.add_parser("ingest-mock", help="Ingest mock emails")
    ingest_mock.add_argument("--limit", type=int, default=5)
    ingest_mock.add_argument(
        "--fixture", type=str, default=str(Path("data") / "mock_messages.json")
    )

    ingest_eml = subparsers.add_parser("ingest-eml", help="Ingest emails from .eml files")
    ingest_eml.add_argument("paths", nargs="+", type=str)
    ingest_eml.add_argument("--limit", type=int, default=25)

    list_messages = subparsers.add_parser("list-messages", help="List messages")
    list_messages.add_argument("--limit", type=int, default=10)
    list_messages.add_argument(
        "--status", choices=["pending", "processing", "completed", "failed"], default=None
    )

    subparsers.add_parser("message-stats", help="Count messages by analysis status")

    subparsers.add_parser("sync-mail", help="Sync all configured channels")

    sync_logs = subparsers.add_parser("sync-logs", help="Show recent channel sync runs")
    sync_logs.add_argument("--limit", type=int, default=10)

    sync_ai = subparsers.add_parser("sync-ai", help="Analyze pending messages")
    sync_ai.add_argument("--limit", type=int, default=None)

    process_message = subparsers.add_parser("process-message", help="Analyze one message")
    process_message.add_argument("message_id", type=int)
    process_message.add_argument("--force", action="store_true")

    sync_status = subparsers.add_parser("sync-status", help="Show lock status")
    sync_status.add_argument("key", choices=sorted(LOCK_KEYS), nargs="?", default=None)

    sync_cancel = subparsers.add_parser("sync-cancel", help="Force-release a sync lock")
    sync_cancel.add_argument("key", choices=sorted(LOCK_KEYS))

    subparsers.add_parser("ai-stats", help="Show model token usage")

    set_api_key = subparsers.add_parser("set-api-key", help="Store a provider API key")
    set_api_key.add_argument("service", choices=["groq", "openai"])
    set_api_key.add_argument("api_key", type=str)

    ai_audit = subparsers.add_parser("ai-audit", help="Show recent AI requests")
    ai_audit.add_argument("--limit", type=int, default=10)

    return parser


def format_usage_table(stats: dict) -> list[str]:
    """Summary: Render usage stats as aligned text rows.

    Importance: Gives operators a quick view of which models are close to their limit.
    Alternatives: Print the raw JSON.
    """

    lines = [f"{'Model':<48} {'Provider':<8} {'Used':>10} {'Limit':>10} {'Available':>10} {'%':>7} Status"]
    for entry in stats["models"]:
        limit = "-" if entry["limit"] is None else str(entry["limit"])
        available = "-" if entry["available"] is None else str(entry["available"])
        lines.append(
            f"{entry['model']:<48} {entry['provider']:<8} {entry['used']:>10} {limit:>10} "
            f"{available:>10} {entry['percentage']:>7.2f} {entry['status']}"
        )
    summary = stats["summary"]
    lines.append(
        f"Total used: {summary['total_used']} / {summary['total_limit']} "
        f"({summary['overall_percentage']:.2f}%), available: {summary['total_available']}"
    )
    return lines


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives sync and analysis without a running server.
    Alternatives: Invoke services via the HTTP API.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    services = build_services(config)

    if args.command == "ingest-mock":
        provider = MockEmailProvider(Path(args.fixture))
        ids = services.ingestion.ingest_messages(provider.fetch_recent(args.limit))
        print(f"Ingested {len(ids)} messages from mock fixture.")
        return

    if args.command == "ingest-eml":
        provider = EmlEmailProvider([Path(path) for path in args.paths])
        ids = services.ingestion.ingest_messages(provider.fetch_recent(args.limit))
        print(f"Ingested {len(ids)} messages from .eml files.")
        return

    if args.command == "list-messages":
        messages = services.store.list_messages(
            args.limit, user_id=services.user_id, ai_status=args.status
        )
        for message in messages:
            line = f"{message.id}: [{message.ai_status}] {message.subject} ({message.sender})"
            if message.ai_error_message:
                line += f" error: {message.ai_error_message}"
            print(line)
        return

    if args.command == "message-stats":
        counts = services.store.count_messages_by_status(user_id=services.user_id)
        if not counts:
            print("No messages.")
        for status, count in sorted(counts.items()):
            print(f"{status}: {count}")
        return

    if args.command == "sync-mail":
        result = services.orchestrator.sync_messages_only()
        if not result["success"]:
            print(f"Sync not run: {result['error']}")
            return
        print(
            f"Synced {result['successful']}/{result['total']} channels, "
            f"{result['new_messages']} new messages."
        )
        for channel in result["channels"]:
            status = "ok" if channel["success"] else f"failed ({channel['error']})"
            print(f"  {channel['channel']}: {status}")
        return

    if args.command == "sync-logs":
        for log in services.store.list_sync_logs(args.limit, user_id=services.user_id):
            entry = sync_log_summary(log)
            line = (
                f"{entry['id']}: {entry['channel']} [{entry['status']}] {entry['started_at']} "
                f"fetched={entry['messages_fetched']} new={entry['new_messages']}"
            )
            if entry["error_message"]:
                line += f" error: {entry['error_message']}"
            print(line)
        return

    if args.command == "sync-ai":
        result = services.orchestrator.process_ai_only(args.limit or config.ai_batch_limit)
        if not result["success"]:
            print(f"AI processing not run: {result['error']}")
            return
        if "message" in result:
            print(result["message"])
            return
        print(
            f"Processed {result['processed']}, failed {result['failed']}, "
            f"skipped {result['skipped']}."
        )
        for message_id, error in result["errors"].items():
            print(f"  {message_id}: {error}")
        return

    if args.command == "process-message":
        result = services.orchestrator.process_single_message_by_id(args.message_id, args.force)
        if not result["success"]:
            print(f"Failed: {result['error']}")
            return
        if result.get("skipped"):
            print(result["reason"])
            return
        message = services.store.get_message(args.message_id, user_id=services.user_id)
        print(dump_analysis(message))
        return

    if args.command == "sync-status":
        keys = [args.key] if args.key else sorted(LOCK_KEYS)
        for key in keys:
            status = services.orchestrator.get_sync_status(key)
            if status["is_locked"]:
                print(
                    f"{key}: locked since {status['locked_at']} "
                    f"({status['locked_for_seconds']}s)"
                )
            else:
                print(f"{key}: idle")
        return

    if args.command == "sync-cancel":
        released = services.orchestrator.force_release_lock(args.key)
        print("Lock released." if released else "Lock was not held.")
        return

    if args.command == "ai-stats":
        for line in format_usage_table(services.router.get_usage_stats()):
            print(line)
        return

    if args.command == "set-api-key":
        services.credentials.store_api_key(services.user_id, args.service, args.api_key)
        print(f"Stored {args.service} API key.")
        return

    if args.command == "ai-audit":
        requests = services.ai_audit.list_requests(args.limit)
        responses = {item["request_id"]: item for item in services.ai_audit.list_responses(args.limit)}
        for request in requests:
            response = responses.get(request["id"])
            detail = (
                f" {response['latency_ms']}ms {response['token_estimate']} tokens" if response else ""
            )
            print(
                f"{request['id']}: {request['provider']}/{request['model']} "
                f"{request['purpose']} {request['timestamp']}{detail}"
            )
        return


if __name__ == "__main__":
    run_cli()
