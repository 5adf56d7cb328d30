"""
Celery Application Factory

Runs DocumentFlow executions started by the dispatcher (flow_backend=celery).
Broker: RabbitMQ (amqp://) in production; Redis (redis://) works for local dev.
Result backend: Redis. The task result is the serialized FlowExecution, kept
for an hour so operators can look up an execution by id.

Queue topology:
  documents.flow   one task per document flow execution

Task arguments are always the FlowInput fields (bucket and keys), never the
document bytes; the worker downloads from the input bucket itself.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import after_setup_logger, task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docpipeline.core.config import settings
from docpipeline.core.logging_config import setup_logging

logger = logging.getLogger(__name__)

FLOW_QUEUE = "documents.flow"

FLOW_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        FLOW_QUEUE,
        exchange=FLOW_EXCHANGE,
        routing_key=FLOW_QUEUE,
        durable=True,
    ),
)

TASK_ROUTES = {
    "docpipeline.workers.tasks.run_document_flow": {"queue": FLOW_QUEUE},
}


def create_celery_app() -> Celery:
    app = Celery("docpipeline")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue=FLOW_QUEUE,
        task_default_exchange="documents",
        task_default_routing_key=FLOW_QUEUE,

        # --- Reliability ---
        task_acks_late=True,         # ack only after the flow finished
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # --- Timeouts ---
        # The flow enforces flow_timeout_seconds itself; these are backstops.
        task_soft_time_limit=settings.flow_timeout_seconds + 30,
        task_time_limit=settings.flow_timeout_seconds + 90,

        # --- Result TTL ---
        result_expires=3600,

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Worker ---
        worker_max_tasks_per_child=200,
        worker_hijack_root_logger=False,
    )

    app.autodiscover_tasks(["docpipeline.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: one log line per execution start / end / failure
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_after_setup_logger(**_):
    setup_logging(settings.log_level)


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s bucket=%s key=%s",
        task_id, task.name,
        kwargs.get("input_bucket", "?"),
        kwargs.get("source_object_key", "?"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    status = retval.get("status", "?") if isinstance(retval, dict) else "?"
    logger.info(
        "Task end | task_id=%s task=%s state=%s flow_status=%s key=%s",
        task_id, task.name, state, status, kwargs.get("source_object_key", "?"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s key=%s error=%s",
        task_id, kwargs.get("source_object_key", "?"), exception,
        exc_info=True,
    )
