#!/usr/bin/env python3
"""Run a worker for one named queue (with that queue's concurrency) or the beat scheduler.

    relay-worker --queue ai-dedupe
    relay-worker --beat
"""
from __future__ import annotations
import argparse
import logging
import sys
from dotenv import load_dotenv
from prometheus_client import start_http_server

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def worker_argv(queue_name: str, log_level: str) -> list[str]:
    from relay_worker.infrastructure.queues import get_queue

    spec = get_queue(queue_name)
    return [
        "worker",
        "-Q", spec.name,
        "-c", str(spec.concurrency),
        "-n", f"{spec.name}@%h",
        "--loglevel", log_level.upper(),
    ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relay-worker", description=__doc__.splitlines()[0])
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--queue", help="queue to consume")
    group.add_argument("--beat", action="store_true", help="run the recurring job scheduler")
    parser.add_argument("--metrics-port", type=int, default=0, help="expose Prometheus metrics on this port")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    from relay_worker.config import get_settings
    from relay_worker.infrastructure.celery_app import celery_app

    settings = get_settings()
    configure_logging(settings.log_level)
    if args.metrics_port:
        start_http_server(args.metrics_port)
        logger.info("metrics exposed on :%d", args.metrics_port)
    if args.beat:
        celery_app.start(["beat", "--loglevel", settings.log_level.upper()])
        return 0
    try:
        celery_argv = worker_argv(args.queue, settings.log_level)
    except ValueError as e:
        logger.error("%s", e)
        return 2
    logger.info("starting worker: %s", " ".join(celery_argv))
    celery_app.worker_main(celery_argv)
    return 0


if __name__ == "__main__":
    sys.exit(main())
