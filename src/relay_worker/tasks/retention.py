from __future__ import annotations
import logging
from sqlalchemy.orm import Session
from relay_worker.infrastructure.celery_app import celery_app, retry_policy
from relay_worker.infrastructure.context import WorkerContext, current_context
from relay_worker.infrastructure.queues import RETENTION_CLEANUP, get_queue
from relay_worker.retention import run_retention

logger = logging.getLogger(__name__)


def run_retention_cleanup(ctx: WorkerContext, project_id: str | None = None, force: bool = False) -> dict:
    """force lifts the per-run batch cap and drains every expired row."""
    session: Session = ctx.session_factory()
    try:
        result = run_retention(session, ctx.storage, ctx.settings, project_id=project_id, drain=force)
    finally:
        session.close()
    status = "partial" if result["failed_projects"] else "ok"
    logger.info("retention cleanup finished (%s): %s", status, result["deleted"])
    return {"status": status, **result}


@celery_app.task(bind=True, name=get_queue(RETENTION_CLEANUP).task, **retry_policy())
def retention_cleanup(self, project_id: str | None = None, force: bool = False):
    return run_retention_cleanup(current_context(), project_id=project_id, force=force)
