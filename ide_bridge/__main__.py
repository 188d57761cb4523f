"""Command-line entry point.

Usage:
    python -m ide_bridge check [PATH] [--messages]
    python -m ide_bridge modules [PATH]
    python -m ide_bridge type FILE LINE COL [END_LINE END_COL]
    python -m ide_bridge info FILE LINE COL [END_LINE END_COL]
    python -m ide_bridge serve [--port PORT]

``serve`` runs the MCP server as a persistent daemon; backends it starts
stay up across client connections until the daemon is signalled.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import uvicorn

from .backend import CommandFailed, ProcessSupervisor, TransportError, settle
from .config import Config, Project
from .formatter import PlainFormatter
from .models import Severity, Span
from .server import create_server
from .workflow import Workflow

log = logging.getLogger(__name__)


def _print_progress(step: int, total: int, text: str) -> None:
    print(f"[{step}/{total}] {text}", file=sys.stderr)


def _span_from_args(config: Config, project: Project, args: argparse.Namespace) -> Span:
    # Same base directory the project itself was resolved against
    path = config.resolve_path(args.file)
    try:
        rel = path.relative_to(project.root)
    except ValueError:
        raise ValueError(f"{path} is not inside project {project.key} ({project.root})") from None
    return Span(
        rel.as_posix(),
        args.line,
        args.col,
        args.end_line if args.end_line is not None else args.line,
        args.end_col if args.end_col is not None else args.col,
    )


async def _one_shot(config: Config, args: argparse.Namespace) -> int:
    """Start a backend, let its initial reload finish, run one command, stop."""
    target = args.file if args.command in ("type", "info") else args.path
    project = config.resolve_project(target)

    supervisor = ProcessSupervisor(config.backend_argv)
    formatter = PlainFormatter()
    workflow = Workflow(
        supervisor,
        progress=_print_progress,
        summary=print if args.command == "check" else None,
        formatter=formatter,
        show_messages=getattr(args, "messages", False) or config.show_messages,
    )

    try:
        session = await supervisor.start(project)
        if not await settle(session):
            print("Backend exited before finishing the initial load.", file=sys.stderr)
            print(supervisor.get_output(project.key)["stderr"], file=sys.stderr)
            return 2

        if args.command == "check":
            found = workflow.last_diagnostics.get(project.key)
            if found is None:
                reason = session.last_failure or "no diagnostics were reported"
                print(f"error: reload failed: {reason}", file=sys.stderr)
                return 2
            return 1 if any(d.severity is Severity.ERROR for d in found) else 0

        if args.command == "modules":
            print(formatter.format_modules(await workflow.loaded_modules(project)))
        elif args.command == "type":
            span = _span_from_args(config, project, args)
            print(formatter.format_exp_types(await workflow.exp_types(project, span)))
        elif args.command == "info":
            span = _span_from_args(config, project, args)
            print(formatter.format_span_info(await workflow.span_info(project, span)))
        return 0
    except (TransportError, CommandFailed) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        await supervisor.stop_all()


async def _serve(config: Config, port: int) -> None:
    supervisor = ProcessSupervisor(config.backend_argv)
    workflow = Workflow(supervisor, show_messages=config.show_messages)
    server = create_server(config, workflow)

    # Run uvicorn in the same event loop so the backend reader tasks
    # stay alive between requests.
    app = server.streamable_http_app()
    uvi = uvicorn.Server(uvicorn.Config(
        app, host="127.0.0.1", port=port, log_level=config.log_level.lower(),
    ))

    # Use _serve() instead of serve() to bypass uvicorn's
    # capture_signals() context manager, which would replace our
    # handlers below.
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    serve_task = asyncio.create_task(uvi._serve())

    await shutdown.wait()
    log.info("Signal received, shutting down")

    uvi.should_exit = True
    await serve_task
    log.info("Stopping all backends")
    await supervisor.stop_all()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ide_bridge", description="Client for an incremental analysis backend",
    )
    parser.add_argument("--env-file", type=Path, default=None, help="Load settings from this .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Compile the project and report errors and warnings")
    check.add_argument("path", nargs="?", default=None, help="A path inside the project")
    check.add_argument("--messages", action="store_true", help="Print full diagnostic messages")

    modules = sub.add_parser("modules", help="List loaded modules")
    modules.add_argument("path", nargs="?", default=None, help="A path inside the project")

    for name, text in (("type", "Show expression types at a position"),
                       ("info", "Show identifier info at a position")):
        lookup = sub.add_parser(name, help=text)
        lookup.add_argument("file")
        lookup.add_argument("line", type=int)
        lookup.add_argument("col", type=int)
        lookup.add_argument("end_line", type=int, nargs="?", default=None)
        lookup.add_argument("end_col", type=int, nargs="?", default=None)

    serve = sub.add_parser("serve", help="Run the MCP server over HTTP")
    serve.add_argument("--port", type=int, default=None, help="Port to listen on")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    config = Config.from_env(args.env_file)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    if args.command == "serve":
        port = args.port or config.port
        log.info("Starting ide-bridge MCP server on http://127.0.0.1:%d/mcp", port)
        asyncio.run(_serve(config, port))
        return 0

    try:
        return asyncio.run(_one_shot(config, args))
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
