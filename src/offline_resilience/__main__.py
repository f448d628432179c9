from __future__ import annotations

import argparse
import asyncio
import json
import logging

from aiohttp import web

from offline_resilience.config import YamlConfigLoader
from offline_resilience.config.models import AppConfig, ConfigLoadRequest
from offline_resilience.core.errors import ManifestFetchError
from offline_resilience.engine import InstallEvent, OfflineEngine
from offline_resilience.logging import init_logging
from offline_resilience.network import AiohttpFetcher
from offline_resilience.server import create_app
from offline_resilience.sync import OfflineMutationQueue

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="offline-resilience", description="Offline resilience caching proxy")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: serve
    serve_parser = subparsers.add_parser("serve", help="Run the caching proxy")
    serve_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Serve for N seconds then exit (useful for smoke testing).",
    )

    # Command: install
    subparsers.add_parser("install", help="Install the configured cache generation and activate it")

    # Command: queue
    queue_parser = subparsers.add_parser("queue", help="Show queued offline mutations")
    queue_parser.add_argument("--clear", action="store_true", help="Drop every queued mutation")

    # Command: replay
    subparsers.add_parser("replay", help="Replay queued offline mutations now")

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


async def _serve(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)
    logger.info(
        "Starting offline proxy. origin=%s version=%s host=%s port=%s",
        config.app.origin,
        config.app.version,
        config.server.host,
        config.server.port,
    )

    async with AiohttpFetcher(config.network) as fetcher:
        engine = OfflineEngine(config, fetcher=fetcher)
        await engine.start()
        runner = web.AppRunner(create_app(engine, origin=config.app.origin))
        await runner.setup()
        site = web.TCPSite(runner, config.server.host, config.server.port)
        try:
            await site.start()
            if args.run_seconds is not None:
                await asyncio.sleep(args.run_seconds)
            else:
                await asyncio.Event().wait()
        finally:
            await runner.cleanup()
            await engine.stop()


async def _install(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)

    async with AiohttpFetcher(config.network) as fetcher:
        engine = OfflineEngine(config, fetcher=fetcher)
        engine.lifecycle.restore()
        try:
            await engine.dispatch(InstallEvent())
        except ManifestFetchError as e:
            logger.error("Install failed. version=%s failed_paths=%s", e.version, ",".join(e.failed_paths))
            raise SystemExit(1) from e
        await engine.lifecycle.skip_waiting()
        logger.info("Cache generation ready. version=%s", engine.lifecycle.active_version)


async def _queue(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)

    queue = OfflineMutationQueue(config.queue.path)
    if args.clear:
        logger.info("Cleared offline mutation queue. removed=%d", queue.clear())
        return
    for item in queue.pending():
        print(
            json.dumps(
                {
                    "id": item.id,
                    "method": item.method,
                    "url": item.url,
                    "enqueued_at": item.enqueued_at,
                    "attempt_count": item.attempt_count,
                    "tag": item.tag,
                }
            )
        )


async def _replay(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)

    queue = OfflineMutationQueue(config.queue.path)
    async with AiohttpFetcher(config.network) as fetcher:
        result = await queue.replay(fetcher)
    if not result.completed:
        raise SystemExit(1)


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "serve":
        await _serve(args)
    elif args.command == "install":
        await _install(args)
    elif args.command == "queue":
        await _queue(args)
    elif args.command == "replay":
        await _replay(args)


def main() -> None:
    try:
        asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")


if __name__ == "__main__":
    main()
