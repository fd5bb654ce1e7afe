"""Entry point for `python -m proposal_gate` and the `proposal-gate` CLI script."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from proposal_gate.handlers import ProposalHandlers
from proposal_gate.settings import GateSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Review and apply file-change proposals from assistant messages")
    parser.add_argument("--db-path", type=Path, default=None, help="SQLite message store (overrides PROPOSAL_GATE_DB_PATH)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    show = subparsers.add_parser("show", help="Print the pending proposal of a chat")
    show.add_argument("--chat-id", type=int, required=True)

    for name, help_text in (("approve", "Approve and apply a proposal"), ("reject", "Reject a proposal")):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--chat-id", type=int, required=True)
        command.add_argument("--message-id", type=int, required=True)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = GateSettings.from_env()
        if args.db_path is not None:
            settings = replace(settings, db_path=str(args.db_path)).normalized()
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 2

    handlers = ProposalHandlers.from_settings(settings)

    if args.command == "show":
        found = handlers.get_proposal(args.chat_id)
        if found is None:
            print("no proposal")
            return 1
        print(found.model_dump_json(indent=2))
        return 0

    if args.command == "approve":
        result = handlers.approve_proposal(args.chat_id, args.message_id)
    else:
        result = handlers.reject_proposal(args.chat_id, args.message_id)
    print(result.model_dump_json(indent=2, exclude_none=True))
    if result.warning:
        print(f"warning: {result.warning}", file=sys.stderr)
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
