from relay_worker.analysis.classifier import StubClassifier
from relay_worker.models.tables import Interaction
from relay_worker.tasks.common import load_interaction
from relay_worker.tasks.summarize import build_summary_context, fallback_summary, run_summarize


def _row(session_factory, interaction_id):
    s = session_factory()
    try:
        return s.get(Interaction, interaction_id)
    finally:
        s.close()


def test_context_lists_errors_and_failed_requests(seed, session_factory):
    project = seed.project()
    i = seed.interaction(project, "Can't pay", title="Checkout broken", steps=["open cart", "click pay"])
    seed.log(i, console=[{"level": "error", "message": "TypeError: total is NaN"}, {"level": "info", "message": "ok"}],
             network=[{"method": "POST", "url": "/api/pay", "status": 500}, {"url": "/api/cart", "status": 200}])
    s = session_factory()
    try:
        context = build_summary_context(load_interaction(s, i.id))
    finally:
        s.close()
    assert context.startswith("User Report: Can't pay\n\nTitle: Checkout broken")
    assert "Steps to reproduce:\nopen cart\nclick pay" in context
    assert "Console Errors:\nTypeError: total is NaN" in context
    assert "\nok" not in context
    assert "POST /api/pay - 500" in context
    assert "/api/cart" not in context


def test_fallback_skips_report_and_title_lines():
    context = "User Report: pay fails\n\nTitle: Checkout\n\nDescription: " + "x" * 300
    summary = fallback_summary(context)
    assert summary.startswith("Description: x")
    assert len(summary) == 200


def test_external_summary_is_stored(ctx, seed, session_factory):
    project = seed.project()
    i = seed.interaction(project, "Pay button dead")
    ctx.classifier = StubClassifier(summary="Checkout pay button does not respond.")
    assert run_summarize(ctx, i.id) == {"status": "ok", "summary": "Checkout pay button does not respond."}
    assert _row(session_factory, i.id).ai_summary == "Checkout pay button does not respond."
    assert run_summarize(ctx, i.id) == {"status": "skipped", "reason": "already_summarized"}


def test_classifier_failure_uses_fallback(ctx, seed, session_factory):
    project = seed.project()
    i = seed.interaction(project, "Pay button dead", title="Checkout", description="Nothing happens on click")
    ctx.classifier = StubClassifier(fail=True)
    assert run_summarize(ctx, i.id)["summary"] == "Description: Nothing happens on click"


def test_disabled_project_is_skipped(ctx, seed):
    project = seed.project(ai_enabled=False)
    i = seed.interaction(project, "Pay button dead")
    assert run_summarize(ctx, i.id)["reason"] == "ai_disabled"
