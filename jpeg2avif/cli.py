"""Command line entry point.

    jpeg2avif serve            # HTTP API plus in-process workers
    jpeg2avif worker -n 2      # standalone workers, no HTTP
"""

import argparse
import asyncio
import logging
import signal

import uvicorn

from jpeg2avif.config import settings
from jpeg2avif.logging_config import configure_logging
from jpeg2avif.main import build_runtime

logger = logging.getLogger("jpeg2avif.cli")


def _serve(args: argparse.Namespace) -> None:
    if args.workers is not None:
        settings.worker_count = args.workers
    uvicorn.run(
        "jpeg2avif.main:create_app",
        factory=True,
        host=args.host,
        port=args.port or settings.port,
        log_config=None,
    )


async def _run_workers(count: int) -> None:
    runtime = build_runtime(settings)
    runtime.staging.cleanup_expired()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    await runtime.start_workers(count)
    try:
        await stop.wait()
    finally:
        logger.info("Received shutdown signal, stopping workers")
        await runtime.shutdown()


def _worker(args: argparse.Namespace) -> None:
    configure_logging(settings.log_level)
    asyncio.run(_run_workers(args.count or settings.worker_count))


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="jpeg2avif", description="JPEG to AVIF conversion service")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with in-process workers")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--workers", type=int, default=None, help="In-process workers (0 for API only)")
    serve.set_defaults(func=_serve)

    worker = sub.add_parser("worker", help="Run standalone queue workers")
    worker.add_argument("-n", "--count", type=int, default=None)
    worker.set_defaults(func=_worker)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
