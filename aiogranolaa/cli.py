"""Command-line interface for running a granolaa relay or producer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import uuid
from collections.abc import Sequence
from pathlib import Path

from aiohttp import ClientError

from aiogranolaa.client import FrameProducer, ServiceDiscovery, directory_frame_source
from aiogranolaa.models import MAX_FRAME_SIZE, StreamType
from aiogranolaa.server import OversizePolicy, RelayConfig, RelayServer
from aiogranolaa.server.viewer import MAX_PENDING_MSG

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the granolaa tools."""
    parser = argparse.ArgumentParser(description="Relay live screen and webcam frames")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the relay server")
    serve.add_argument("--host", default="0.0.0.0", help="Address to listen on")  # noqa: S104
    serve.add_argument(
        "--port",
        type=int,
        default=0,
        help="Port to listen on (default: $PORT or 3000)",
    )
    serve.add_argument(
        "--static-dir",
        type=Path,
        default=None,
        help="Directory with the viewer page to serve at /",
    )
    serve.add_argument(
        "--max-frame-size",
        type=int,
        default=MAX_FRAME_SIZE,
        help="Largest frame payload accepted from producers, in bytes",
    )
    serve.add_argument(
        "--oversize-policy",
        choices=[policy.value for policy in OversizePolicy],
        default=OversizePolicy.RESYNC.value,
        help="Resync or close the producer connection on oversized frames",
    )
    serve.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="Drop producers that send nothing for this many seconds",
    )
    serve.add_argument(
        "--viewer-queue-size",
        type=int,
        default=MAX_PENDING_MSG,
        help="Messages queued per viewer before frames are dropped",
    )
    serve.add_argument(
        "--advertise",
        action="store_true",
        help="Announce the relay via mDNS",
    )

    push = subparsers.add_parser("push", help="Stream a directory of JPEG files to a relay")
    push.add_argument(
        "source",
        type=Path,
        help="Directory with the JPEG files to send, in name order",
    )
    push.add_argument(
        "--url",
        default=None,
        help="Relay URL, optionally with its ingress path. If omitted, discover via mDNS.",
    )
    push.add_argument(
        "--id",
        default=None,
        help="Producer identifier (default: a random UUID)",
    )
    push.add_argument(
        "--type",
        choices=[stream_type.value for stream_type in StreamType],
        default=StreamType.SCREEN.value,
        help="Stream type to push",
    )
    push.add_argument(
        "--fps",
        type=float,
        default=10.0,
        help="Frames per second",
    )
    push.add_argument(
        "--once",
        action="store_true",
        help="Send every file once and exit instead of looping",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RelayConfig:
    """Build the relay settings from parsed ``serve`` arguments."""
    return RelayConfig(
        host=args.host,
        port=args.port,
        static_dir=args.static_dir,
        max_frame_size=args.max_frame_size,
        oversize_policy=OversizePolicy(args.oversize_policy),
        idle_timeout=args.idle_timeout,
        viewer_queue_size=args.viewer_queue_size,
        advertise=args.advertise,
    )


async def _wait_for_interrupt() -> None:
    """Block until SIGINT or SIGTERM is received."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)
    try:
        await stop_event.wait()
        logger.debug("Received interrupt signal, shutting down...")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def serve(args: argparse.Namespace) -> int:
    """Run the relay until interrupted."""
    try:
        config = build_config(args)
    except ValueError as err:
        logger.error("Invalid configuration: %s", err)  # noqa: TRY400
        return 2
    server = RelayServer(asyncio.get_running_loop(), config)
    await server.start()
    try:
        await _wait_for_interrupt()
    finally:
        await server.stop()
    return 0


async def push(args: argparse.Namespace) -> int:
    """Stream JPEG files to a relay until interrupted."""
    if args.fps <= 0:
        logger.error("--fps must be positive")
        return 2
    try:
        source = directory_frame_source(args.source, interval=1 / args.fps, repeat=not args.once)
    except (OSError, ValueError) as err:
        logger.error("Cannot read frames: %s", err)  # noqa: TRY400
        return 1

    url = args.url
    if url is None:
        discovery = ServiceDiscovery()
        await discovery.start()
        try:
            logger.info("Waiting for mDNS discovery of a granolaa relay...")
            url = await discovery.wait_for_first_relay()
            logger.info("Discovered relay at %s", url)
        finally:
            await discovery.stop()

    client_id = args.id or str(uuid.uuid4())
    producer = FrameProducer(url, client_id, StreamType(args.type), source)
    logger.info("Pushing %s stream as %s", args.type, client_id)
    try:
        if args.once:
            try:
                _ = await producer.stream_once()
            except ClientError as err:
                logger.error("Stream failed: %s", err)  # noqa: TRY400
                return 1
        else:
            producer.start()
            await _wait_for_interrupt()
    finally:
        await producer.stop()
    return 0


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "serve":
        return await serve(args)
    return await push(args)


def main() -> int:
    """Run the CLI."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
