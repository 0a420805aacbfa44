"""CLI entry point for transcript-engine."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from transcript_engine import __version__
from transcript_engine.app import TranscriptEngine
from transcript_engine.config import AppConfig, load_config
from transcript_engine.core.events import EventDecodeError
from transcript_engine.core.types import ExportFormat
from transcript_engine.dump import ConversationDump, load_dump
from transcript_engine.export.models import ExportOptions
from transcript_engine.export.projector import default_filename
from transcript_engine.log import setup_logging

DEFAULT_CONFIG = "config.yaml"


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config", default=None, help=f"Path to config file (default: {DEFAULT_CONFIG} if present)"
    )
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcript-engine",
        description="Resolve branching chat transcripts and correlate streaming events",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Print the active branch of a dump")
    resolve_parser.add_argument("dump", help="Conversation dump (JSON)")
    _add_config_args(resolve_parser)

    # export command
    export_parser = subparsers.add_parser("export", help="Export the active branch of a dump")
    export_parser.add_argument("dump", help="Conversation dump (JSON)")
    export_parser.add_argument(
        "-f", "--format", choices=[f.value for f in ExportFormat], default=None, help="Output format"
    )
    export_parser.add_argument(
        "-o", "--output", default=None, help="Output file, '-' for stdout, directory for a default name"
    )
    export_parser.add_argument("--no-system", action="store_true", help="Leave out system prompts")
    export_parser.add_argument("--no-reasoning", action="store_true", help="Leave out reasoning")
    export_parser.add_argument("--no-tool-params", action="store_true", help="Leave out tool call parameters")
    export_parser.add_argument("--no-tool-results", action="store_true", help="Leave out tool results")
    _add_config_args(export_parser)

    # replay command
    replay_parser = subparsers.add_parser("replay", help="Replay recorded events and print the live transcript")
    replay_parser.add_argument("dump", help="Conversation dump (JSON) with an 'events' list")
    _add_config_args(replay_parser)

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    config = _load(args.config, args.env)
    setup_logging(config.log_level, config.log_format)

    if args.command == "config-check":
        _check_config(config, args.config or DEFAULT_CONFIG)
        return

    try:
        dump = load_dump(args.dump)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
        print(f"Invalid dump: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "resolve":
        _resolve(config, dump)
    elif args.command == "export":
        _export(config, dump, args)
    elif args.command == "replay":
        asyncio.run(_replay(config, dump))


def _load(config_path: str | None, env_path: str) -> AppConfig:
    """Load the given config, or defaults when none was asked for and none exists."""
    path = config_path or DEFAULT_CONFIG
    if config_path is None and not Path(path).exists():
        return AppConfig()
    try:
        return load_config(path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config: AppConfig, config_path: str) -> None:
    print(f"Configuration valid: {config_path}")
    print(f"  Log level: {config.log_level} ({config.log_format})")
    print(f"  Strict supersession: {config.branch.strict_supersession}")
    s = config.streaming
    print(
        f"  Refresh: every {s.refresh_fast_seconds}s, "
        f"every {s.refresh_slow_seconds}s after {s.slow_after_seconds}s"
    )
    print(f"  Channel capacity: {config.channel.max_pending_events}")
    e = config.export
    print(f"  Export format: {e.default_format}")
    print(
        f"  Export includes: system={e.include_system_prompt} reasoning={e.include_reasoning} "
        f"tool_params={e.include_tool_params} tool_results={e.include_tool_results}"
    )


def _preview(text: str, width: int = 60) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= width else flat[: width - 3] + "..."


def _resolve(config: AppConfig, dump: ConversationDump) -> None:
    engine = TranscriptEngine(config)
    try:
        active = engine.resolver.resolve(dump.messages)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Active branch: {len(active)} of {len(dump.messages)} messages")
    for m in active:
        group = m.generation_group_id or "-"
        print(f"  {m.id:>6}  {m.message_type:<11}  {group:<12}  {_preview(m.content)}")


def _export(config: AppConfig, dump: ConversationDump, args: argparse.Namespace) -> None:
    engine = TranscriptEngine(config)
    base = ExportOptions.from_config(config.export)
    options = ExportOptions(
        include_system_prompt=base.include_system_prompt and not args.no_system,
        include_reasoning=base.include_reasoning and not args.no_reasoning,
        include_tool_params=base.include_tool_params and not args.no_tool_params,
        include_tool_results=base.include_tool_results and not args.no_tool_results,
    )
    fmt = ExportFormat(args.format) if args.format else config.export.default_format

    try:
        document = engine.export(dump.conversation, dump.messages, dump.tool_calls, fmt, options)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.output is None or args.output == "-":
        sys.stdout.write(document)
        return
    target = Path(args.output)
    if target.is_dir():
        target = target / default_filename(dump.conversation, fmt)
    target.write_text(document, encoding="utf-8")
    print(f"Exported {dump.conversation.name} to {target}")


async def _replay(config: AppConfig, dump: ConversationDump) -> None:
    engine = TranscriptEngine(config)
    conversation_id = dump.conversation.id
    store = engine.open_conversation(conversation_id)
    store.sync(dump.messages)
    for record in dump.tool_calls:
        store.tool_calls.record(record)

    await engine.start()
    try:
        for payload in dump.events:
            try:
                await engine.publish_payload(payload)
            except EventDecodeError as e:
                print(f"Skipping event: {e}", file=sys.stderr)
        await engine.drain()

        entries = engine.transcript(conversation_id, dump.messages)
        print(f"Transcript: {len(entries)} entries")
        for entry in entries:
            state = "streaming" if entry.streaming.is_streaming else "done"
            header = f"--- {entry.message.id} {entry.message.message_type} [{state}]"
            if entry.version is not None:
                header += f" version {entry.version.current}/{entry.version.total}"
            print(header)
            print(entry.resolved_content)
    finally:
        await engine.stop()


if __name__ == "__main__":
    main()
