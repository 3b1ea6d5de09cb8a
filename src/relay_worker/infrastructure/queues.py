"""Named work queues and their concurrency budgets.

Each queue is consumed by its own worker pool started with the declared concurrency, so at most
that many jobs of one queue run at once while different queues proceed independently.
Retention is deliberately serialized to bound the blast radius of destructive work.
"""
from __future__ import annotations
from dataclasses import dataclass
from celery.schedules import crontab

AI_LABEL = "ai-label"
AI_DEDUPE = "ai-dedupe"
AI_SUMMARIZE = "ai-summarize"
REPLAY_PROCESS = "replay-process"
RETENTION_CLEANUP = "retention-cleanup"


@dataclass(frozen=True)
class QueueSpec:
    name: str
    task: str
    concurrency: int
    description: str = ""


QUEUES: dict[str, QueueSpec] = {
    spec.name: spec
    for spec in (
        QueueSpec(AI_LABEL, "relay_worker.tasks.labeling.label_interaction", 3, "keyword + external labelling"),
        QueueSpec(AI_DEDUPE, "relay_worker.tasks.dedupe.dedupe", 2, "duplicate grouping and periodic scan"),
        QueueSpec(AI_SUMMARIZE, "relay_worker.tasks.summarize.summarize_interaction", 3, "report summaries"),
        QueueSpec(REPLAY_PROCESS, "relay_worker.tasks.replay.process_replay", 2, "replay chunk sanitization"),
        QueueSpec(RETENTION_CLEANUP, "relay_worker.tasks.retention.retention_cleanup", 1, "retention sweeps"),
    )
}

TASK_QUEUE: dict[str, str] = {spec.task: spec.name for spec in QUEUES.values()}


def get_queue(name: str) -> QueueSpec:
    try:
        return QUEUES[name]
    except KeyError:
        raise ValueError(f"unknown queue: {name}") from None


def parse_cron(expression: str) -> crontab:
    """Five-field cron expression ("m h dom mon dow") to a celery crontab."""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"cron expression needs 5 fields: {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )
