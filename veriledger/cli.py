"""
Command-line interface for the veriledger pipeline.

Provides subcommands for watching the ledger, processing or fetching a single
content id, structuring text offline, checking configuration and serving the
HTTP API.
"""

import argparse
import json
import logging
import sys
import time
from typing import Optional

from .config.settings import REQUIRED_SETTINGS, PipelineSettings, check_settings, parse_fetch_mode
from .errors import AllGatewaysFailedError, ConfigError
from .logging_config import configure_logging
from .orchestrator import build_orchestrator
from .pipeline.semantic import HuggingFaceOracle
from .pipeline.structure_claims import ClaimStructurer


def _load_settings(args: argparse.Namespace) -> PipelineSettings:
    settings = PipelineSettings.load(args.config)
    if getattr(args, "fetch_mode", None):
        settings.gateway.fetch_mode = parse_fetch_mode(args.fetch_mode)
    return settings


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_run(args: argparse.Namespace) -> int:
    """Watch the ledger and process discoveries until interrupted."""
    try:
        orchestrator = build_orchestrator(_load_settings(args))
        orchestrator.start(args.poll_interval_ms)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("Watching ledger for new claims (Ctrl-C to stop)")
    try:
        if args.duration:
            time.sleep(args.duration)
        else:
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        orchestrator.stop(wait=True)

    _print_json(orchestrator.get_statistics())
    return 0


def cmd_process(args: argparse.Namespace) -> int:
    """Process one content id end to end."""
    try:
        orchestrator = build_orchestrator(_load_settings(args))
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        result = orchestrator.process_content_id(
            args.content_id,
            topic_id=args.topic,
            transaction_id=args.transaction_id,
        )
    except AllGatewaysFailedError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        orchestrator.save_health()

    if result is None:
        print(f"Error: {args.content_id} is already being processed", file=sys.stderr)
        return 1

    _print_json(result.to_dict())
    return 0


def cmd_parse(args: argparse.Namespace) -> int:
    """Structure claim text without touching the ledger or gateways."""
    oracle = None
    if args.semantic:
        try:
            settings = _load_settings(args)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        if settings.oracle.usable:
            oracle = HuggingFaceOracle(
                api_key=settings.oracle.api_key,
                model=settings.oracle.model,
                endpoint=settings.oracle.endpoint,
                timeout=settings.oracle.timeout_seconds,
            )
        else:
            print("Semantic oracle not configured; using patterns only", file=sys.stderr)

    claim = ClaimStructurer(oracle=oracle).structure(args.text)
    _print_json(claim.to_dict())
    return 0


def cmd_fetch(args: argparse.Namespace) -> int:
    """Run the gateway cascade for one content id and show the attempt log."""
    try:
        orchestrator = build_orchestrator(_load_settings(args))
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        result = orchestrator.fetcher.fetch(args.content_id, max_gateways=args.max_gateways)
    except AllGatewaysFailedError as e:
        print(f"Error: {e}", file=sys.stderr)
        _print_json(e.to_dict())
        return 1
    finally:
        orchestrator.save_health()

    output = result.to_dict()
    output["content_preview"] = (result.raw_text or "")[:args.preview]
    _print_json(output)
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Report which settings are configured."""
    try:
        report = check_settings(_load_settings(args))
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("Configuration check:")
    for name, status in report.items():
        print(f"  {name}: {status}")

    missing = [name for name in REQUIRED_SETTINGS if report.get(name) == "MISSING"]
    if missing:
        print(f"\nMissing required settings: {', '.join(missing)}")
        print("Copy .env.example to .env and fill in the values.")
        return 1
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Serve the HTTP API, optionally with the ledger watcher running."""
    import uvicorn

    from .api.server import create_app

    try:
        orchestrator = build_orchestrator(_load_settings(args))
        if not args.no_watch:
            orchestrator.start()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        uvicorn.run(create_app(orchestrator), host=args.host, port=args.port)
    finally:
        orchestrator.stop()
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="veriledger",
        description="Claim ingestion and structuring pipeline"
    )

    # Global options
    parser.add_argument(
        "--config",
        default=None,
        help="Path to pipeline config (default: config/pipeline.yaml)"
    )
    parser.add_argument(
        "--fetch-mode",
        choices=["strict", "best_effort"],
        help="Override the configured fetch mode"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Watch the ledger and process new claims")
    run_parser.add_argument("--poll-interval-ms", type=int, help="Polling interval in milliseconds")
    run_parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    run_parser.set_defaults(func=cmd_run)

    # process command
    process_parser = subparsers.add_parser("process", help="Process a single content id")
    process_parser.add_argument("content_id", help="Content id to process")
    process_parser.add_argument("--topic", help="Ledger topic id for the evidence proof")
    process_parser.add_argument("--transaction-id", help="Ledger transaction id for the evidence proof")
    process_parser.set_defaults(func=cmd_process)

    # parse command
    parse_parser = subparsers.add_parser("parse", help="Structure claim text offline")
    parse_parser.add_argument("text", help="Claim text")
    parse_parser.add_argument("--semantic", action="store_true", help="Use the semantic oracle if configured")
    parse_parser.set_defaults(func=cmd_parse)

    # fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Fetch content for a content id")
    fetch_parser.add_argument("content_id", help="Content id to fetch")
    fetch_parser.add_argument("--max-gateways", type=int, help="Only try the first N gateways")
    fetch_parser.add_argument("--preview", type=int, default=200, help="Characters of content to show")
    fetch_parser.set_defaults(func=cmd_fetch)

    # config command
    config_parser = subparsers.add_parser("config", help="Check configuration")
    config_parser.set_defaults(func=cmd_config)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port")
    serve_parser.add_argument("--no-watch", action="store_true", help="Don't start the ledger watcher")
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
