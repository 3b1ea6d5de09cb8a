from __future__ import annotations
import logging
from prometheus_client import Counter
from relay_worker.analysis.classifier import ExternalClassifier
from relay_worker.analysis.label_rules import apply_label_rules, merge_labels
from relay_worker.analysis.text_context import ReportContext
from relay_worker.errors import ClassifierError

logger = logging.getLogger(__name__)

LABELS_ASSIGNED = Counter('labels_assigned_total', 'Labels committed to interactions', ['label'])

RULES_ONLY_CONFIDENCE = 0.7
DEGRADED_CONFIDENCE = 0.6


def compute_labels(context: ReportContext, interaction_type: str | None, classifier: ExternalClassifier | None,
                   cap: int = 5) -> tuple[list[str], float]:
    """Keyword rules first, merged with external suggestions when available.

    Returns (labels, confidence). An external failure keeps the rule labels with a lower confidence.
    """
    rule_labels = apply_label_rules(context.blob)
    if classifier is None:
        return merge_labels(rule_labels, cap=cap), RULES_ONLY_CONFIDENCE
    try:
        suggestion = classifier.suggest_labels(context.labelled(interaction_type))
    except ClassifierError as e:
        logger.warning("external labelling failed, keeping rule labels: %s", e)
        return merge_labels(rule_labels, cap=cap), DEGRADED_CONFIDENCE
    return merge_labels(rule_labels, list(suggestion.labels), cap=cap), suggestion.confidence


def record_label_metrics(labels: list[str]) -> None:
    for label in labels:
        LABELS_ASSIGNED.labels(label=label).inc()
