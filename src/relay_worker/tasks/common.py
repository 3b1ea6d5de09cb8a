from __future__ import annotations
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select
from relay_worker.config import Settings, parse_csv
from relay_worker.errors import DataIntegrityError
from relay_worker.models.tables import Interaction, Project


def project_settings(project: Project | None) -> dict:
    raw = project.settings if project is not None else None
    return raw if isinstance(raw, dict) else {}


def ai_enabled(project: Project | None) -> bool:
    return bool(project_settings(project).get("aiEnabled"))


def eligibility_skip_reason(project: Project | None, interaction: Interaction, settings: Settings) -> str | None:
    """Reason the AI stages must not touch this interaction, or None when eligible."""
    if project is None:
        return "project_missing"
    if not ai_enabled(project):
        return "ai_disabled"
    if interaction.type not in parse_csv(settings.eligible_interaction_types):
        return "not_applicable_type"
    return None


def load_interaction(session: Session, interaction_id: str) -> Interaction:
    interaction = session.scalars(
        select(Interaction).options(selectinload(Interaction.logs)).where(Interaction.id == interaction_id)
    ).first()
    if interaction is None:
        raise DataIntegrityError(f"Interaction {interaction_id} not found")
    return interaction


def skipped(reason: str, **extra) -> dict:
    return {"status": "skipped", "reason": reason, **extra}
