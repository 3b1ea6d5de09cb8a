from relay_worker.analysis.classifier import LabelSuggestion, StubClassifier
from relay_worker.models.tables import Interaction
from relay_worker.tasks.labeling import run_labeling


def _row(session_factory, interaction_id):
    s = session_factory()
    try:
        return s.get(Interaction, interaction_id)
    finally:
        s.close()


def test_rules_only_labels(ctx, seed, session_factory):
    project = seed.project()
    i = seed.interaction(project, "App crashes when I tap the submit button on mobile")
    result = run_labeling(ctx, i.id)
    assert result == {"status": "ok", "labels": ["crash", "mobile", "ui"], "confidence": 0.7}
    row = _row(session_factory, i.id)
    assert row.ai_labels == ["crash", "mobile", "ui"]
    assert row.ai_label_confidence == 0.7


def test_error_messages_and_metadata_feed_the_rules(ctx, seed, session_factory):
    project = seed.project()
    i = seed.interaction(project, "Nothing happens", errors=[{"message": "Request failed with status 502"}],
                         user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)")
    assert run_labeling(ctx, i.id)["labels"] == ["network", "mobile"]


def test_external_labels_are_merged_and_capped(ctx, seed):
    project = seed.project()
    i = seed.interaction(project, "App crashes when I tap the submit button on mobile")
    ctx.classifier = StubClassifier(labels=LabelSuggestion(("performance", "security", "ui"), 0.9))
    result = run_labeling(ctx, i.id)
    assert result["labels"] == ["crash", "mobile", "ui", "performance", "security"]
    assert result["confidence"] == 0.9
    assert ctx.classifier.calls[0][1].startswith("Type: bug")


def test_external_failure_keeps_rule_labels(ctx, seed):
    project = seed.project()
    i = seed.interaction(project, "Login page is very slow")
    ctx.classifier = StubClassifier(fail=True)
    assert run_labeling(ctx, i.id) == {"status": "ok", "labels": ["performance", "authentication"], "confidence": 0.6}


def test_labelling_is_idempotent(ctx, seed, session_factory):
    project = seed.project()
    i = seed.interaction(project, "Checkout crashes")
    run_labeling(ctx, i.id)
    before = _row(session_factory, i.id).updated_at
    assert run_labeling(ctx, i.id) == {"status": "skipped", "reason": "already_labeled"}
    assert _row(session_factory, i.id).updated_at == before


def test_report_without_matches_is_still_marked_processed(ctx, seed, session_factory):
    project = seed.project()
    i = seed.interaction(project, "Please add an export option")
    assert run_labeling(ctx, i.id)["labels"] == []
    assert run_labeling(ctx, i.id)["reason"] == "already_labeled"


def test_ai_disabled_project_is_skipped(ctx, seed, session_factory):
    project = seed.project(ai_enabled=False)
    i = seed.interaction(project, "Checkout crashes")
    assert run_labeling(ctx, i.id) == {"status": "skipped", "reason": "ai_disabled"}
    assert _row(session_factory, i.id).ai_labels is None
