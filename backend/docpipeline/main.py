"""
Dispatcher Worker: Entry Point

Long-running alternative to the Lambda SQS event source: long-polls
QUEUE_URL, starts one flow execution per notification and deletes each
message once its flow has started.

    docpipeline-dispatcher          # console script
    python -m docpipeline.main

SIGINT / SIGTERM finish the in-flight batch, then exit.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from docpipeline.core.config import Settings, settings
from docpipeline.core.logging_config import setup_logging
from docpipeline.dispatcher.service import Dispatcher
from docpipeline.dispatcher.sqs import SqsPoller, SqsQueue, get_failure_sink
from docpipeline.flow.starter import get_flow_starter

logger = logging.getLogger(__name__)


def build_poller(cfg: Settings) -> SqsPoller:
    queue = SqsQueue(cfg.queue_url, cfg)
    dispatcher = Dispatcher(
        get_flow_starter(cfg),
        cfg,
        queue=queue,
        failure_sink=get_failure_sink(cfg),
    )
    return SqsPoller(queue, dispatcher, cfg)


async def serve(cfg: Settings) -> None:
    logger.info(
        "Starting dispatcher | env=%s queue=%s backend=%s flow=%s v%s concurrency=%d",
        cfg.app_env, cfg.queue_url, cfg.flow_backend,
        cfg.flow_name, cfg.flow_version, cfg.dispatcher_concurrency,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await build_poller(cfg).run(stop_event)


def main() -> None:
    setup_logging("DEBUG" if settings.debug else settings.log_level)
    if not settings.queue_url:
        raise SystemExit("QUEUE_URL is not configured")
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
