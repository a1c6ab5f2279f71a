#!/usr/bin/env python3
"""
mother-registry CLI.

Commands:
    serve    - Run the HTTP API with uvicorn
    flatten  - Print the record an agent card JSON file would be stored as
"""

import argparse
import json
import sys
from typing import Optional


def cmd_serve(args):
    import uvicorn

    uvicorn.run(
        "mother_registry.api:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )


def cmd_flatten(args):
    """Show the normalized record for a local agent card without syncing it."""
    from mother_registry.pipeline import build_agent_record

    with open(args.file) as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        print("error: agent card must be a JSON object", file=sys.stderr)
        return 1
    record = build_agent_record(payload, args.agent_card_url)
    print(json.dumps(record, indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mother-registry",
        description="Agent registry façade over the ledger registry",
    )
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=3000)
    p.add_argument("--log-level", default="INFO")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("flatten", help="Print the record an agent card would be stored as")
    p.add_argument("file", help="Path to an agent card JSON file")
    p.add_argument("--agent-card-url", default=None, help="Natural key to attach")
    p.set_defaults(func=cmd_flatten)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args) or 0


if __name__ == "__main__":
    sys.exit(main())
