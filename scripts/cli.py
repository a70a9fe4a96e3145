"""
Command-line interface for the signal pipeline.

Subcommands:
    evaluate  Run one evaluation from a JSON request file
    replay    Re-run a JSON-lines file of requests in order
    list      Query stored signals
    show      Print one stored signal
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Optional, TextIO

from pydantic import ValidationError

from config.constants import DEFAULT_LIST_LIMIT, SignalStatus
from config.logging_config import setup_logging
from config.settings import Settings, load_settings
from core.domain.entities import EvaluationRequest
from core.interfaces import SignalRepository
from execution.errors import EvaluationInputError, PersistenceError, SignalPipelineError
from execution.orchestrator import SignalOrchestrator
from execution.signal_store import InMemorySignalStore
from execution.sqlite_signal_store import SQLiteSignalStore
from observability import start_prometheus_server

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="optisignal",
        description="Seven-stage options signal evaluation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  optisignal evaluate request.json                  # Evaluate and store one request
  optisignal --memory replay requests.jsonl         # Dry-run replay, nothing stored
  optisignal --metrics-port 9100 replay day.jsonl   # Replay with /metrics exposed
  optisignal list --status APPROVED --limit 10      # Latest approved signals
  optisignal show 6f1c...                           # One stored signal

Exit codes:
  0 - Success
  1 - Stage or persistence failure
  2 - Invalid request or arguments
        """,
    )

    parser.add_argument("--db", type=str, default=None, help="SQLite signal store (default: from settings)")
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Use an in-memory store; nothing is written to disk",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write JSON logs to this file")
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve Prometheus metrics on this port while evaluating",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    evaluate = subparsers.add_parser("evaluate", help="Evaluate one request")
    evaluate.add_argument("request", type=Path, help="JSON request file")

    replay = subparsers.add_parser("replay", help="Replay requests in file order")
    replay.add_argument("requests", type=Path, help="JSON-lines file, one request per line")

    list_cmd = subparsers.add_parser("list", help="List stored signals, newest first")
    list_cmd.add_argument("--status", choices=[s.value for s in SignalStatus], default=None)
    list_cmd.add_argument("--symbol", type=str, default=None)
    list_cmd.add_argument("--limit", type=int, default=DEFAULT_LIST_LIMIT)
    list_cmd.add_argument("--offset", type=int, default=0)

    show = subparsers.add_parser("show", help="Show one stored signal")
    show.add_argument("signal_id", type=str)

    return parser


def open_store(args: argparse.Namespace, settings: Settings) -> SignalRepository:
    if args.memory:
        return InMemorySignalStore()
    persistence = settings.persistence
    return SQLiteSignalStore(args.db or persistence.db_path, busy_timeout=persistence.busy_timeout_s)


def _dump(payload: Any, out: TextIO, pretty: bool = True) -> None:
    out.write(json.dumps(payload, indent=2 if pretty else None, default=str))
    out.write("\n")


def _load_request(raw: str | bytes) -> EvaluationRequest:
    return EvaluationRequest.model_validate_json(raw)


def cmd_evaluate(args: argparse.Namespace, orchestrator: SignalOrchestrator, out: TextIO) -> int:
    try:
        request = _load_request(args.request.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValidationError) as e:
        logger.error(f"Cannot read request {args.request}: {e}")
        return EXIT_INVALID_INPUT

    outcome = orchestrator.generate_signal(request)
    _dump(outcome.to_dict(), out)
    return EXIT_OK


def cmd_replay(args: argparse.Namespace, orchestrator: SignalOrchestrator, out: TextIO) -> int:
    try:
        lines = args.requests.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Cannot read {args.requests}: {e}")
        return EXIT_INVALID_INPUT

    summary: Counter[str] = Counter()
    for line_no, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            request = _load_request(line)
            outcome = orchestrator.generate_signal(request)
        except ValidationError as e:
            logger.warning(f"Line {line_no}: skipping malformed request: {e.error_count()} error(s)")
            summary["INVALID"] += 1
            continue
        except SignalPipelineError as e:
            logger.error(f"Line {line_no}: {e}")
            summary["FAILED"] += 1
            continue

        summary[outcome.recommendation.value] += 1
        _dump(outcome.to_dict(), out, pretty=False)

    _dump({"summary": dict(summary), "total": sum(summary.values())}, out, pretty=False)
    logger.info(f"Replayed {sum(summary.values())} request(s): {dict(summary)}")
    return EXIT_FAILURE if summary["FAILED"] else EXIT_OK


def cmd_list(args: argparse.Namespace, store: SignalRepository, out: TextIO) -> int:
    if args.limit < 0 or args.offset < 0:
        logger.error("--limit and --offset must be non-negative")
        return EXIT_INVALID_INPUT

    signals = store.list_signals(status=args.status, symbol=args.symbol, limit=args.limit, offset=args.offset)
    total = store.count_signals(status=args.status, symbol=args.symbol)
    _dump(
        {
            "total": total,
            "offset": args.offset,
            "signals": [
                {
                    "signal_id": s.signal_id,
                    "created_at": s.created_at.isoformat(),
                    "symbol": s.record.symbol,
                    "strike": s.record.strike,
                    "option_type": s.record.option_type.value,
                    "signal_type": s.record.signal_type.value,
                    "status": s.record.status.value,
                    "status_reason": s.record.status_reason,
                    "overall_score": s.record.overall_score,
                }
                for s in signals
            ],
        },
        out,
    )
    return EXIT_OK


def cmd_show(args: argparse.Namespace, store: SignalRepository, out: TextIO) -> int:
    signal = store.get_signal(args.signal_id)
    if signal is None:
        logger.error(f"Signal not found: {args.signal_id}")
        return EXIT_FAILURE
    _dump(signal.to_dict(), out)
    return EXIT_OK


def main(argv: Optional[list[str]] = None, out: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)
    out = out or sys.stdout

    try:
        settings = load_settings()
    except ValidationError:
        return EXIT_INVALID_INPUT

    setup_logging(
        level=args.log_level or settings.log_level,
        json_format=args.json_logs or settings.json_logs,
        log_file=args.log_file,
    )

    try:
        store = open_store(args, settings)
    except PersistenceError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    try:
        if args.command == "list":
            return cmd_list(args, store, out)
        if args.command == "show":
            return cmd_show(args, store, out)

        orchestrator = SignalOrchestrator(settings, store)
        if args.metrics_port:
            start_prometheus_server(orchestrator.metrics, args.metrics_port)
        if args.command == "evaluate":
            return cmd_evaluate(args, orchestrator, out)
        return cmd_replay(args, orchestrator, out)
    except EvaluationInputError as e:
        logger.error(str(e))
        return EXIT_INVALID_INPUT
    except SignalPipelineError as e:
        logger.error(str(e))
        return EXIT_FAILURE
    finally:
        close = getattr(store, "close", None)
        if close:
            close()


if __name__ == "__main__":
    sys.exit(main())
