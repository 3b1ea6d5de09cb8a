from __future__ import annotations
import logging
from datetime import datetime, timedelta
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload
from relay_worker.analysis.dedupe import group_interaction
from relay_worker.config import parse_csv
from relay_worker.errors import DataIntegrityError
from relay_worker.infrastructure.celery_app import celery_app, retry_policy
from relay_worker.infrastructure.context import WorkerContext, current_context
from relay_worker.infrastructure.queues import AI_DEDUPE, get_queue
from relay_worker.models.tables import Interaction, Project
from relay_worker.tasks.common import ai_enabled, eligibility_skip_reason, load_interaction, skipped
from relay_worker.tasks.labeling import already_labeled, label_loaded_interaction
from relay_worker.utils import utcnow

logger = logging.getLogger(__name__)


def run_dedupe(ctx: WorkerContext, interaction_id: str, now: datetime | None = None) -> dict:
    session: Session = ctx.session_factory()
    try:
        interaction = load_interaction(session, interaction_id)
        project = session.get(Project, interaction.project_id)
        reason = eligibility_skip_reason(project, interaction, ctx.settings)
        if reason:
            return skipped(reason)
        if interaction.ai_duplicate_group_id:
            return skipped("already_grouped", group_id=interaction.ai_duplicate_group_id)
        result = group_interaction(session, interaction, ctx.settings, ctx.classifier, now=now)
        logger.info("interaction %s grouped into %s (new=%s)", interaction_id, result["group_id"], result["is_new"])
        return {"status": "ok", **result}
    finally:
        session.close()


def run_periodic_scan(ctx: WorkerContext, now: datetime | None = None) -> dict:
    """Catch up on interactions created while AI was disabled or the pipeline was down.

    Each interaction is processed in its own try block so a bad row never stops the scan.
    """
    now = now or utcnow()
    s = ctx.settings
    since = now - timedelta(days=s.dedupe_scan_window_days)
    eligible_types = parse_csv(s.eligible_interaction_types)
    totals = {"projects": 0, "scanned": 0, "grouped": 0, "labeled": 0, "failed": 0}
    session: Session = ctx.session_factory()
    try:
        projects = [p for p in session.scalars(select(Project).order_by(Project.id)) if ai_enabled(p)]
        for project in projects:
            totals["projects"] += 1
            pending = session.scalars(
                select(Interaction)
                .options(selectinload(Interaction.logs))
                .where(
                    Interaction.project_id == project.id,
                    Interaction.ai_duplicate_group_id.is_(None),
                    Interaction.type.in_(eligible_types),
                    Interaction.created_at >= since,
                )
                .order_by(Interaction.created_at.desc())
                .limit(s.dedupe_scan_limit)
            ).all()
            for interaction in pending:
                totals["scanned"] += 1
                try:
                    if not already_labeled(interaction):
                        label_loaded_interaction(ctx, session, interaction)
                        totals["labeled"] += 1
                    result = group_interaction(session, interaction, s, ctx.classifier, now=now)
                    if result["applied"]:
                        totals["grouped"] += 1
                except Exception as e:  # noqa
                    session.rollback()
                    totals["failed"] += 1
                    logger.warning("periodic scan failed for interaction %s: %s", interaction.id, type(e).__name__)
    finally:
        session.close()
    logger.info("periodic dedupe scan: %s", totals)
    return {"status": "ok", **totals}


@celery_app.task(bind=True, name=get_queue(AI_DEDUPE).task, **retry_policy())
def dedupe(self, interaction_id: str | None = None, project_id: str | None = None, type: str = "new"):
    ctx = current_context()
    if type == "periodic":
        return run_periodic_scan(ctx)
    if not interaction_id:
        raise DataIntegrityError("dedupe job without interaction_id")
    return run_dedupe(ctx, interaction_id)
