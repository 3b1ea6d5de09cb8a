"""Short technical summary of a report (1-2 sentences), external classifier with local fallback."""
from __future__ import annotations
import logging
from sqlalchemy.orm import Session
from relay_worker.errors import ClassifierError
from relay_worker.infrastructure.celery_app import celery_app, retry_policy
from relay_worker.infrastructure.context import WorkerContext, current_context
from relay_worker.infrastructure.queues import AI_SUMMARIZE, get_queue
from relay_worker.models.tables import Interaction, Project
from relay_worker.tasks.common import eligibility_skip_reason, load_interaction, skipped
from relay_worker.utils import utcnow

logger = logging.getLogger(__name__)

MAX_LISTED = 5
FALLBACK_LENGTH = 200


def build_summary_context(interaction: Interaction) -> str:
    parts: list[str] = []
    if interaction.content_text:
        parts.append(f"User Report: {interaction.content_text}")
    content = interaction.content_json if isinstance(interaction.content_json, dict) else {}
    if content.get("title"):
        parts.append(f"Title: {content['title']}")
    if content.get("description"):
        parts.append(f"Description: {content['description']}")
    steps = content.get("steps")
    if isinstance(steps, list) and steps:
        parts.append("Steps to reproduce:\n" + "\n".join(str(s) for s in steps))
    log = interaction.logs[0] if interaction.logs else None
    if log is not None:
        errors = [c for c in (log.console or []) if isinstance(c, dict) and c.get("level") == "error"][:MAX_LISTED]
        if errors:
            parts.append("Console Errors:\n" + "\n".join(str(e.get("message", "")) for e in errors))
        failed = [n for n in (log.network or []) if isinstance(n, dict) and (n.get("status") or 0) >= 400][:MAX_LISTED]
        if failed:
            parts.append("Failed Requests:\n" + "\n".join(
                f"{n.get('method', 'GET')} {n.get('url', '')} - {n.get('status')}" for n in failed))
    return "\n\n".join(parts)


def fallback_summary(context: str) -> str:
    lines = [l for l in context.split("\n") if l.strip()]
    first = next((l for l in lines if not l.startswith("User Report:") and not l.startswith("Title:")), None)
    if first:
        return first[:FALLBACK_LENGTH]
    return context[:FALLBACK_LENGTH]


def run_summarize(ctx: WorkerContext, interaction_id: str) -> dict:
    session: Session = ctx.session_factory()
    try:
        interaction = load_interaction(session, interaction_id)
        project = session.get(Project, interaction.project_id)
        reason = eligibility_skip_reason(project, interaction, ctx.settings)
        if reason:
            return skipped(reason)
        if interaction.ai_summary:
            return skipped("already_summarized")
        context = build_summary_context(interaction)
        summary = None
        if ctx.classifier is not None:
            try:
                summary = ctx.classifier.summarize(context) or None
            except ClassifierError as e:
                logger.warning("external summary failed for %s, using fallback: %s", interaction_id, e)
        interaction.ai_summary = summary or fallback_summary(context)
        interaction.updated_at = utcnow()
        session.commit()
        return {"status": "ok", "summary": interaction.ai_summary}
    finally:
        session.close()


@celery_app.task(bind=True, name=get_queue(AI_SUMMARIZE).task, **retry_policy())
def summarize_interaction(self, interaction_id: str, project_id: str | None = None):
    return run_summarize(current_context(), interaction_id)
