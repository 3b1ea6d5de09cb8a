"""Job submission used by the API layer and by the worker itself.

enqueue() returns as soon as the broker accepted the message. A repeat rule turns the call into
a recurring schedule entry instead of a one-off job. Schedule entries live in the beat process's
configuration, so repeat rules must be registered inside that process (from a beat_init handler);
anywhere else they raise ConfigurationError instead of being silently lost.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any
from relay_worker.errors import ConfigurationError
from relay_worker.infrastructure.celery_app import celery_app, in_beat_process
from relay_worker.infrastructure.queues import AI_DEDUPE, AI_LABEL, AI_SUMMARIZE, REPLAY_PROCESS, get_queue, parse_cron

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnqueueOptions:
    delay_seconds: float | None = None
    repeat: str | None = None  # five-field cron expression
    schedule_name: str | None = None
    job_id: str | None = None


def register_schedule(name: str, queue_name: str, payload: dict[str, Any], cron: str) -> str:
    if not in_beat_process():
        raise ConfigurationError(f"recurring job {name} must be registered in the beat process")
    spec = get_queue(queue_name)
    celery_app.conf.beat_schedule[name] = {
        "task": spec.task,
        "schedule": parse_cron(cron),
        "kwargs": dict(payload),
        "options": {"queue": spec.name},
    }
    logger.info("registered recurring job %s on %s (%s)", name, queue_name, cron)
    return name


def enqueue(queue_name: str, payload: dict[str, Any] | None = None, options: EnqueueOptions | None = None) -> str:
    spec = get_queue(queue_name)
    opts = options or EnqueueOptions()
    data = dict(payload or {})
    if opts.repeat:
        return register_schedule(opts.schedule_name or f"{queue_name}:{opts.repeat}", queue_name, data, opts.repeat)
    send_kwargs: dict[str, Any] = {"kwargs": data, "queue": spec.name}
    if opts.delay_seconds:
        send_kwargs["countdown"] = opts.delay_seconds
    if opts.job_id:
        send_kwargs["task_id"] = opts.job_id
    result = celery_app.send_task(spec.task, **send_kwargs)
    return result.id


submit = enqueue


def submit_interaction_created(interaction_id: str, project_id: str) -> dict[str, str]:
    payload = {"interaction_id": interaction_id, "project_id": project_id}
    return {
        AI_LABEL: enqueue(AI_LABEL, payload),
        AI_DEDUPE: enqueue(AI_DEDUPE, {**payload, "type": "new"}),
        AI_SUMMARIZE: enqueue(AI_SUMMARIZE, payload),
    }


def submit_replay_created(replay_id: str, project_id: str) -> str:
    return enqueue(REPLAY_PROCESS, {"replay_id": replay_id, "project_id": project_id})
