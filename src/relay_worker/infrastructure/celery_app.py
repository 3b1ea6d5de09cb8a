from __future__ import annotations
import json
import logging
import time
from celery import Celery
from celery import signals
from prometheus_client import Counter, Histogram
from requests import ConnectionError as RequestsConnectionError, Timeout as RequestsTimeout
from sqlalchemy.exc import OperationalError
from botocore.exceptions import ConnectionError as BotoConnectionError, ReadTimeoutError
from relay_worker.config import get_settings
from relay_worker.errors import TransientError
from relay_worker.infrastructure.context import current_context, init_worker_context, shutdown_worker_context
from relay_worker.infrastructure.queues import AI_DEDUPE, QUEUES, RETENTION_CLEANUP, TASK_QUEUE, get_queue, parse_cron
from relay_worker.models.tables import JobDeadLetter

logger = logging.getLogger(__name__)

settings = get_settings()

celery_app = Celery(
    "relay_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "relay_worker.tasks.labeling",
        "relay_worker.tasks.dedupe",
        "relay_worker.tasks.summarize",
        "relay_worker.tasks.replay",
        "relay_worker.tasks.retention",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # a job is only acknowledged once it reached a terminal state; a worker never
    # reserves more than the slot it is about to fill
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={task: {"queue": queue} for task, queue in TASK_QUEUE.items()},
    worker_hijack_root_logger=False,
)

# Exceptions worth another attempt; everything else fails the job for that entity immediately.
RETRYABLE_EXCEPTIONS = (
    TransientError,
    OperationalError,
    BotoConnectionError,
    ReadTimeoutError,
    RequestsConnectionError,
    RequestsTimeout,
)


def retry_policy() -> dict:
    """Celery task options for exponential backoff up to the configured attempt ceiling."""
    s = get_settings()
    return {
        "autoretry_for": RETRYABLE_EXCEPTIONS,
        "retry_backoff": True,
        "retry_backoff_max": s.job_backoff_max_seconds,
        "retry_jitter": True,
        "max_retries": s.job_max_retries,
        "acks_late": True,
    }


TASK_SUCCESS = Counter('celery_task_success_total', 'Celery task successes', ['task'])
TASK_FAILURE = Counter('celery_task_failure_total', 'Celery task failures', ['task'])
TASK_RETRY = Counter('celery_task_retry_total', 'Celery task retries scheduled', ['task'])
TASK_DEAD_LETTERED = Counter('celery_task_dead_lettered_total', 'Jobs parked after exhausting retries', ['queue'])
TASK_DURATION = Histogram('celery_task_duration_seconds', 'Celery task runtime', ['task'], buckets=(0.05,0.1,0.25,0.5,1,2,5,10,30,60,300))

_task_start_times: dict[str, float] = {}


@signals.after_setup_logger.connect
def _configure_logging(logger=None, **kwargs):  # noqa
    logging.getLogger("relay_worker").setLevel(get_settings().log_level.upper())


@signals.worker_process_init.connect
def _init_context(**kwargs):  # noqa
    init_worker_context()


@signals.worker_process_shutdown.connect
def _close_process_context(**kwargs):  # noqa
    shutdown_worker_context()


_beat_process = False


def _mark_beat_process(**kwargs):  # noqa
    global _beat_process
    _beat_process = True


# beat reads conf.beat_schedule when its scheduler starts, after these signals fire
signals.beat_init.connect(_mark_beat_process)
signals.beat_embedded_init.connect(_mark_beat_process)


def in_beat_process() -> bool:
    return _beat_process


@signals.worker_shutdown.connect
def _close_context(**kwargs):  # noqa
    # warm shutdown has already waited for in-flight jobs at this point
    shutdown_worker_context()


@signals.task_prerun.connect
def _task_prerun(sender=None, task_id=None, **kwargs):  # noqa
    _task_start_times[task_id] = time.time()


@signals.task_postrun.connect
def _task_postrun(sender=None, task_id=None, state=None, **kwargs):  # noqa
    name = sender.name if sender else 'unknown'
    start = _task_start_times.pop(task_id, None)
    if start is not None:
        TASK_DURATION.labels(task=name).observe(time.time() - start)
    if state == 'SUCCESS':
        TASK_SUCCESS.labels(task=name).inc()
    elif state == 'RETRY':
        TASK_RETRY.labels(task=name).inc()
    elif state is not None:
        TASK_FAILURE.labels(task=name).inc()


def record_dead_letter(session_factory, *, task_id: str, task_name: str, payload: dict | None,
                       attempts: int, exception: BaseException) -> None:
    queue = TASK_QUEUE.get(task_name)
    session = session_factory()
    try:
        session.add(JobDeadLetter(
            task_id=task_id or "unknown",
            task_name=task_name,
            queue_name=queue,
            payload=payload or {},
            attempts=attempts,
            error_type=type(exception).__name__,
            error_message=str(exception)[:2000],
        ))
        session.commit()
    finally:
        session.close()
    TASK_DEAD_LETTERED.labels(queue=queue or 'unknown').inc()
    logger.error(json.dumps({
        "event": "job_dead_lettered",
        "task": task_name,
        "task_id": task_id,
        "queue": queue,
        "attempts": attempts,
        "error_type": type(exception).__name__,
    }))


@signals.task_failure.connect
def _task_failure(sender=None, task_id=None, exception=None, args=None, kwargs=None, **extra):  # noqa
    # Fires only for terminal failures: retries surface as Retry, not as failure.
    name = sender.name if sender else 'unknown'
    attempts = (sender.request.retries + 1) if sender is not None and sender.request else 1
    try:
        record_dead_letter(
            current_context().session_factory,
            task_id=task_id,
            task_name=name,
            payload=dict(kwargs or {}),
            attempts=attempts,
            exception=exception or RuntimeError("unknown failure"),
        )
    except Exception:
        logger.exception("could not persist dead letter for %s (%s)", name, task_id)


def build_beat_schedule() -> dict:
    """Recurring jobs registered once at startup; each is idempotent per window."""
    s = get_settings()
    return {
        "retention-cleanup-daily": {
            "task": get_queue(RETENTION_CLEANUP).task,
            "schedule": parse_cron(s.retention_cron),
            "kwargs": {},
            "options": {"queue": RETENTION_CLEANUP},
        },
        "dedupe-periodic-scan": {
            "task": get_queue(AI_DEDUPE).task,
            "schedule": parse_cron(s.dedupe_scan_cron),
            "kwargs": {"type": "periodic"},
            "options": {"queue": AI_DEDUPE},
        },
    }


celery_app.conf.beat_schedule = build_beat_schedule()

__all__ = ["celery_app", "retry_policy", "record_dead_letter", "build_beat_schedule", "in_beat_process", "QUEUES"]
