from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from typing import Sequence

from .config import load_config
from .errors import ConfigError, InvalidParameterError
from .run_log import EventLogger
from .service import CastFeedService, RankedResult


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cast_feed")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser(
        "serve",
        help="Serve the cast feed HTTP API.",
    )
    serve.add_argument("--config", default=None, help="Path to YAML config file.")
    serve.add_argument("--host", default=None, help="Bind address (overrides config).")
    serve.add_argument("--port", type=int, default=None, help="Bind port (overrides config).")
    serve.add_argument(
        "--log-file",
        default=None,
        help="Append JSONL events to this file instead of stderr.",
    )
    serve.set_defaults(_handler=_cmd_serve)

    today = subparsers.add_parser(
        "today",
        help="Print today's top casts as JSON.",
    )
    today.add_argument("--config", default=None, help="Path to YAML config file.")
    today.add_argument(
        "--log-file",
        default=None,
        help="Append JSONL events to this file instead of stderr.",
    )
    today.add_argument(
        "--offline",
        action="store_true",
        help="Use the bundled fixture upstream instead of the network.",
    )
    today.set_defaults(_handler=_cmd_today)

    user = subparsers.add_parser(
        "user",
        help="Print one author's top casts as JSON.",
    )
    user.add_argument("--id", required=True, help="Author FID.")
    user.add_argument("--config", default=None, help="Path to YAML config file.")
    user.add_argument(
        "--log-file",
        default=None,
        help="Append JSONL events to this file instead of stderr.",
    )
    user.add_argument(
        "--offline",
        action="store_true",
        help="Use the bundled fixture upstream instead of the network.",
    )
    user.set_defaults(_handler=_cmd_user)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _open_logger(args: argparse.Namespace) -> EventLogger:
    log_file = getattr(args, "log_file", None)
    if log_file:
        return EventLogger.open(log_file)
    return EventLogger(sys.stderr)


def _build_service(args: argparse.Namespace, logger: EventLogger) -> CastFeedService:
    cfg = load_config(args.config)

    if bool(getattr(args, "offline", False)):
        from .offline import offline_transport

        async def _no_sleep(_: float) -> None:
            return None

        # Fixture casts are dated relative to this instant.
        started_ms = int(time.time() * 1000)

        def _clock() -> int:
            return started_ms

        return CastFeedService(
            cfg,
            api_key="offline",
            transport=offline_transport(clock_ms=_clock),
            logger=logger,
            sleep_fn=_no_sleep,
            clock_ms=_clock,
        )

    return CastFeedService.from_environment(cfg, logger=logger)


def _print_result(result: RankedResult) -> int:
    print(json.dumps(result.to_payload(), indent=2, ensure_ascii=False))
    return 0


def _cmd_today(args: argparse.Namespace) -> int:
    with _open_logger(args) as logger:
        service = _build_service(args, logger)
        return _print_result(asyncio.run(service.get_today_top_casts()))


def _cmd_user(args: argparse.Namespace) -> int:
    with _open_logger(args) as logger:
        service = _build_service(args, logger)
        return _print_result(asyncio.run(service.get_author_top_casts(args.id)))


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    cfg = load_config(args.config)
    with _open_logger(args) as logger:
        service = CastFeedService.from_environment(cfg, logger=logger)
        app = create_app(service=service)

        uvicorn.run(
            app,
            host=args.host or cfg.server.host,
            port=int(args.port or cfg.server.port),
        )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except (ConfigError, InvalidParameterError) as e:
        _eprint(str(e))
        return 2
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
