from __future__ import annotations
import logging
from sqlalchemy.orm import Session
from relay_worker.analysis.labeling import compute_labels, record_label_metrics
from relay_worker.analysis.text_context import extract_context
from relay_worker.infrastructure.celery_app import celery_app, retry_policy
from relay_worker.infrastructure.context import WorkerContext, current_context
from relay_worker.infrastructure.queues import AI_LABEL, get_queue
from relay_worker.models.tables import Interaction, Project
from relay_worker.tasks.common import eligibility_skip_reason, load_interaction, skipped
from relay_worker.utils import utcnow

logger = logging.getLogger(__name__)


def already_labeled(interaction: Interaction) -> bool:
    return bool(interaction.ai_labels) or interaction.ai_label_confidence is not None


def label_loaded_interaction(ctx: WorkerContext, session: Session, interaction: Interaction) -> dict:
    context = extract_context(interaction)
    labels, confidence = compute_labels(context, interaction.type, ctx.classifier, cap=ctx.settings.max_labels)
    interaction.ai_labels = labels
    interaction.ai_label_confidence = confidence
    interaction.updated_at = utcnow()
    session.commit()
    record_label_metrics(labels)
    return {"status": "ok", "labels": labels, "confidence": confidence}


def run_labeling(ctx: WorkerContext, interaction_id: str) -> dict:
    session: Session = ctx.session_factory()
    try:
        interaction = load_interaction(session, interaction_id)
        project = session.get(Project, interaction.project_id)
        reason = eligibility_skip_reason(project, interaction, ctx.settings)
        if reason:
            return skipped(reason)
        if already_labeled(interaction):
            return skipped("already_labeled")
        result = label_loaded_interaction(ctx, session, interaction)
        logger.info("labelled interaction %s with %d labels", interaction_id, len(result["labels"]))
        return result
    finally:
        session.close()


@celery_app.task(bind=True, name=get_queue(AI_LABEL).task, **retry_policy())
def label_interaction(self, interaction_id: str, project_id: str | None = None):
    return run_labeling(current_context(), interaction_id)
