"""
CDPTap Replay CLI

Command-line interface for replaying recorded DevTools protocol logs.

Commands:
    replay      - Replay a recorded log against a live browser session
    inspect     - Show which recorded commands would be replayed
    validate    - Validate a recorded log

Examples:
    # Replay against the first page of a browser started with --remote-debugging-port=9222
    python3 cdptap-replay.py replay logs/lh-log-cli.json --port 9222

    # Replay with a YAML config and save the results
    python3 cdptap-replay.py replay logs/lh-log-cli.json --config replay.yaml -o results.json

    # Preview the filtered command list
    python3 cdptap-replay.py inspect logs/lh-log-cli.json --skip-prefix CSS. Debugger.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .replay import (
    ReplayConfig,
    ReplayEngine,
    ReplayConfigError,
    MalformedLogError,
    TransportError,
    UnresolvedIdentifierError,
    HookError,
    load_pairs,
    apply_filter,
    EXTRACTION_RULES,
)
from .replay.replay_config import ProbeSettings
from .session import CDPSession, get_page_websocket_url


def build_config(args) -> ReplayConfig:
    """Load the YAML config (if any) and apply command-line overrides."""
    config = ReplayConfig.from_yaml(args.config) if getattr(args, 'config', None) else ReplayConfig()

    if getattr(args, 'skip_prefix', None):
        config.filter.skip_prefixes.extend(args.skip_prefix)
    if getattr(args, 'allow_method', None):
        config.filter.allow_methods.extend(args.allow_method)
    if getattr(args, 'strict', False):
        config.strict = True
    if getattr(args, 'probe', None):
        config.probe = ProbeSettings(method=args.probe)
    if getattr(args, 'delay_after', None) is not None:
        config.delays.after_each_ms = args.delay_after
    if getattr(args, 'verbose', False):
        config.log_steps = True

    return config


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )


async def run_replay(args, config: ReplayConfig, pairs, engines: List[ReplayEngine]):
    """
    Connect, replay, and always close the session we opened.

    The engine is appended to ``engines`` as soon as it exists so the caller
    can report partial results when the replay fails.
    """
    ws_url = args.ws_url or get_page_websocket_url(args.host, args.port)
    print(f"   Session: {ws_url}")

    session = await CDPSession.connect(ws_url)
    try:
        engine = ReplayEngine(pairs, **config.engine_options(session))
        engines.append(engine)
        print(f"   Scheduled: {len(engine.commands_sent)} of {len(pairs)} commands")
        print()

        await engine.replay(session)
    finally:
        await session.close()


def cmd_replay(args):
    """
    Replay a recorded log against a live session.

    Args:
        args: Parsed command-line arguments
    """
    setup_logging(args.log_level)

    print(f"📡 CDPTap Log Replay")
    print(f"   Log file: {args.log_file}")

    try:
        config = build_config(args)
        pairs = load_pairs(args.log_file)
        # Fails early on an invalid skip_pattern
        config.build_filter()
    except (MalformedLogError, ReplayConfigError, FileNotFoundError) as e:
        print(f"❌ Failed to load: {e}")
        sys.exit(1)

    engines: List[ReplayEngine] = []
    exit_code = 0
    try:
        asyncio.run(run_replay(args, config, pairs, engines))
    except TransportError as e:
        if e.index is not None:
            print(f"❌ Transport failure at step {e.index} ({e.correlation_id} {e.method}): {e}")
        else:
            print(f"❌ Transport failure: {e}")
        exit_code = 1
    except (UnresolvedIdentifierError, HookError) as e:
        print(f"❌ Replay stopped: {e}")
        exit_code = 1
    except KeyboardInterrupt:
        print("\n\n👋 Replay interrupted")
        exit_code = 130

    engine = engines[0] if engines else None
    result = engine.result if engine else None
    if result:
        print(f"\n📊 Replay Summary:")
        print(f"   Status: {result.status.value}")
        print(f"   Replayed: {result.replayed}/{result.total_scheduled}")
        print(f"   Duration: {result.total_duration_sec:.2f}s")
        print(f"   Targets mapped: {dict(result.target_ids)}")
        print(f"   Sessions mapped: {dict(result.session_ids)}")

        if args.output:
            engine.save_result(result, args.output)
            print(f"✅ Saved replay results to {args.output}")

    if exit_code:
        sys.exit(exit_code)


def cmd_inspect(args):
    """
    Show the commands a replay would send.

    Args:
        args: Parsed command-line arguments
    """
    print(f"🔍 CDPTap Log Inspection")
    print(f"   Log file: {args.log_file}")

    try:
        config = build_config(args)
        pairs = load_pairs(args.log_file)
        filters = config.build_filter()
    except (MalformedLogError, ReplayConfigError, FileNotFoundError) as e:
        print(f"❌ Failed to load: {e}")
        sys.exit(1)

    scheduled = apply_filter(pairs, filters)
    print(f"   Scheduled: {len(scheduled)} of {len(pairs)} commands")
    print()

    for index, item in enumerate(scheduled):
        markers = []
        if item.method in EXTRACTION_RULES:
            markers.append(f"issues {EXTRACTION_RULES[item.method].kind.param_field}")
        if not item.has_response:
            markers.append("no recorded response")
        suffix = f"  [{', '.join(markers)}]" if markers else ""
        print(f"   {index:4d}  {item.id:6d}  {item.method}{suffix}")


def cmd_validate(args):
    """
    Validate a recorded log.

    Args:
        args: Parsed command-line arguments
    """
    print(f"✔️  CDPTap Log Validation")
    print(f"   Log file: {args.log_file}")
    print()

    try:
        pairs = load_pairs(args.log_file)
    except (MalformedLogError, FileNotFoundError) as e:
        print(f"❌ Invalid log: {e}")
        sys.exit(1)

    warnings = []
    missing = [p for p in pairs if not p.has_response]
    if missing:
        warnings.append(f"{len(missing)} commands have no recorded response (first: {missing[0].id} {missing[0].method})")

    if warnings:
        print("⚠️  Warnings:")
        for warning in warnings:
            print(f"   • {warning}")
        print()

    print(f"📊 Summary:")
    print(f"   Commands: {len(pairs)}")
    print(f"   With response: {len(pairs) - len(missing)}")
    print(f"   Identifier-issuing: {sum(1 for p in pairs if p.method in EXTRACTION_RULES)}")
    if not warnings:
        print("✅ All validations passed!")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CDPTap - Replay recorded DevTools protocol logs against a new browser session",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Replay against a local browser (--remote-debugging-port=9222)
  %(prog)s replay logs/lh-log-cli.json --port 9222

  # Replay with filters and a probe after each step
  %(prog)s replay logs/lh-log-cli.json --skip-prefix CSS. Debugger. --probe Page.getInstallabilityErrors

  # Preview the filtered command list
  %(prog)s inspect logs/lh-log-cli.json --config replay.yaml

  # Validate a log
  %(prog)s validate logs/lh-log-cli.json
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # --- REPLAY command ---
    replay_parser = subparsers.add_parser('replay', help='Replay a recorded log')
    replay_parser.add_argument('log_file', help='Recorded protocol log (JSON)')
    replay_parser.add_argument('--ws-url', help='DevTools WebSocket URL of the target page')
    replay_parser.add_argument('--host', default='127.0.0.1', help='DevTools host (default: 127.0.0.1)')
    replay_parser.add_argument('-p', '--port', type=int, default=9222, help='DevTools port (default: 9222)')
    replay_parser.add_argument('-c', '--config', help='YAML replay configuration')
    replay_parser.add_argument('--skip-prefix', nargs='+', help='Skip commands whose method starts with these prefixes')
    replay_parser.add_argument('--allow-method', nargs='+', help='Keep these exact methods even if a prefix matches')
    replay_parser.add_argument('--strict', action='store_true', help='Fail on identifiers with no substitution')
    replay_parser.add_argument('--probe', help='Command to send after every step (e.g., Page.getInstallabilityErrors)')
    replay_parser.add_argument('--delay-after', type=int, help='Delay after every step in ms')
    replay_parser.add_argument('-o', '--output', help='Save results to JSON file')
    replay_parser.add_argument('--log-level', default='info', choices=['debug', 'info', 'warning', 'error'],
                               help='Log level (default: info)')
    replay_parser.add_argument('--verbose', action='store_true', help='Log every command and response')

    # --- INSPECT command ---
    inspect_parser = subparsers.add_parser('inspect', help='List the commands a replay would send')
    inspect_parser.add_argument('log_file', help='Recorded protocol log (JSON)')
    inspect_parser.add_argument('-c', '--config', help='YAML replay configuration')
    inspect_parser.add_argument('--skip-prefix', nargs='+', help='Skip commands whose method starts with these prefixes')
    inspect_parser.add_argument('--allow-method', nargs='+', help='Keep these exact methods even if a prefix matches')

    # --- VALIDATE command ---
    validate_parser = subparsers.add_parser('validate', help='Validate a recorded log')
    validate_parser.add_argument('log_file', help='Recorded protocol log (JSON)')

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == 'replay':
        cmd_replay(args)
    elif args.command == 'inspect':
        cmd_inspect(args)
    elif args.command == 'validate':
        cmd_validate(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == '__main__':
    main()
