"""Two-tier duplicate grouping.

Candidates are recent, already-grouped interactions of the same project and type. A lexical
Jaccard pass narrows them to the best few; an external classifier (when configured) may name one
of those as the duplicate, otherwise only a near-identical lexical match is accepted. Without a
match the interaction starts a new group whose id is a digest of its normalized text.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence
from prometheus_client import Counter
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, selectinload
from relay_worker.analysis.classifier import CandidateText, ExternalClassifier
from relay_worker.analysis.text_context import ReportContext, extract_context, group_id_for, jaccard_similarity
from relay_worker.config import Settings
from relay_worker.errors import ClassifierError
from relay_worker.models.tables import Interaction
from relay_worker.utils import utcnow

logger = logging.getLogger(__name__)

DEDUPE_DECISIONS = Counter('dedupe_decisions_total', 'Duplicate grouping decisions', ['path'])


@dataclass(frozen=True)
class ScoredCandidate:
    interaction_id: str
    group_id: str
    text: str
    similarity: float


@dataclass(frozen=True)
class GroupMatch:
    group_id: str
    interaction_id: str
    confidence: float
    path: str  # external|heuristic


def find_candidates(session: Session, interaction: Interaction, settings: Settings, now: datetime | None = None) -> list[Interaction]:
    since = (now or utcnow()) - timedelta(days=settings.dedupe_candidate_window_days)
    q = (
        select(Interaction)
        .options(selectinload(Interaction.logs))
        .where(
            Interaction.project_id == interaction.project_id,
            Interaction.type == interaction.type,
            Interaction.id != interaction.id,
            Interaction.created_at >= since,
            Interaction.ai_duplicate_group_id.is_not(None),
        )
        .order_by(Interaction.created_at.desc())
        .limit(settings.dedupe_candidate_limit)
    )
    return list(session.scalars(q))


def score_candidates(text: str, candidates: Sequence[Interaction], settings: Settings) -> list[ScoredCandidate]:
    scored = []
    for c in candidates:
        c_text = extract_context(c).similarity_text
        sim = jaccard_similarity(text, c_text)
        if sim > settings.similarity_floor:
            scored.append(ScoredCandidate(c.id, c.ai_duplicate_group_id, c_text, sim))
    # stable sort keeps newest-first order among equal scores
    scored.sort(key=lambda s: s.similarity, reverse=True)
    return scored[: settings.similarity_top_k]


def _external_match(classifier: ExternalClassifier, text: str, top: list[ScoredCandidate], settings: Settings) -> GroupMatch | None:
    verdict = classifier.find_duplicate(text, [CandidateText(c.interaction_id, c.text) for c in top])
    if not verdict.match_id or verdict.confidence <= settings.external_match_threshold:
        return None
    matched = next((c for c in top if c.interaction_id == verdict.match_id), None)
    if matched is None:
        logger.warning("external classifier named %s which is not among the candidates", verdict.match_id)
        return None
    return GroupMatch(matched.group_id, matched.interaction_id, verdict.confidence, "external")


def choose_match(text: str, top: list[ScoredCandidate], settings: Settings,
                 classifier: ExternalClassifier | None = None) -> GroupMatch | None:
    if not top:
        return None
    if classifier is not None:
        try:
            match = _external_match(classifier, text, top, settings)
            if match:
                return match
        except ClassifierError as e:
            logger.warning("external duplicate check failed, using heuristic: %s", e)
    best = top[0]
    if best.similarity > settings.heuristic_match_threshold:
        return GroupMatch(best.group_id, best.interaction_id, best.similarity, "heuristic")
    return None


def commit_group(session: Session, interaction: Interaction, context: ReportContext, match: GroupMatch | None) -> dict:
    """Persist the decision with a check-and-set so a concurrent or repeated run never clears or
    downgrades an existing assignment."""
    now = utcnow()
    if match is not None:
        res = session.execute(
            update(Interaction)
            .where(
                Interaction.id == interaction.id,
                or_(
                    Interaction.ai_duplicate_group_id.is_(None),
                    func.coalesce(Interaction.ai_confidence, 0.0) < match.confidence,
                ),
            )
            .values(ai_duplicate_group_id=match.group_id, ai_confidence=match.confidence, ai_group_primary=0, updated_at=now)
        )
        DEDUPE_DECISIONS.labels(path=match.path).inc()
        result = {"group_id": match.group_id, "matched_with": match.interaction_id,
                  "confidence": match.confidence, "path": match.path, "is_new": False}
    else:
        group_id = group_id_for(context.similarity_text)
        res = session.execute(
            update(Interaction)
            .where(Interaction.id == interaction.id, Interaction.ai_duplicate_group_id.is_(None))
            .values(ai_duplicate_group_id=group_id, ai_group_primary=1, updated_at=now)
        )
        DEDUPE_DECISIONS.labels(path='new_group').inc()
        result = {"group_id": group_id, "is_new": True}
    session.commit()
    result["applied"] = bool(res.rowcount)
    return result


def group_interaction(session: Session, interaction: Interaction, settings: Settings,
                      classifier: ExternalClassifier | None = None, now: datetime | None = None) -> dict:
    context = extract_context(interaction)
    text = context.similarity_text
    candidates = find_candidates(session, interaction, settings, now=now)
    top = score_candidates(text, candidates, settings)
    match = choose_match(text, top, settings, classifier)
    return commit_group(session, interaction, context, match)
