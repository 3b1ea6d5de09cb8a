from types import SimpleNamespace

from relay_worker.analysis.text_context import (
    extract_context, group_id_for, jaccard_similarity, normalize_text, tokenize,
)


def _interaction(text="", content=None, tech=None, logs=None):
    return SimpleNamespace(content_text=text, content_json=content, technical_context=tech, logs=logs or [])


def test_normalize_collapses_whitespace_and_case():
    assert normalize_text("  Checkout\n\tFAILS  now ") == "checkout fails now"
    assert normalize_text(None) == ""


def test_tokenize_drops_short_words_and_applies_aliases():
    assert tokenize("Payment btn does nothing at checkout!") == {"payment", "button", "does", "nothing", "checkout"}
    assert tokenize("I cant login") == {"cannot", "login"}


def test_payment_reports_are_lexically_identical():
    a = "Payment button does nothing on checkout"
    b = "payment btn does nothing at checkout"
    assert jaccard_similarity(a, b) == 1.0


def test_jaccard_of_empty_text_is_zero():
    assert jaccard_similarity("", "anything here") == 0.0


def test_extract_context_reads_content_errors_and_metadata():
    logs = [
        SimpleNamespace(errors=[]),
        SimpleNamespace(errors=[{"message": "TypeError: x is undefined"}, "boom"] + [{"message": f"e{i}"} for i in range(10)]),
    ]
    ctx = extract_context(_interaction(
        text="Clicking pay shows nothing",
        content={"title": "Checkout broken", "description": "Since yesterday"},
        tech={"url": "https://shop.example/checkout", "userAgent": "Mozilla/5.0"},
        logs=logs,
    ))
    assert ctx.title == "Checkout broken"
    assert ctx.errors[:2] == ("TypeError: x is undefined", "boom")
    assert len(ctx.errors) == 5
    assert "https://shop.example/checkout" in ctx.blob
    assert "mozilla" in ctx.blob
    assert "shop.example" not in ctx.similarity_text
    labelled = ctx.labelled("bug")
    assert labelled.splitlines()[0] == "Type: bug"
    assert "URL: https://shop.example/checkout" in labelled


def test_extract_context_is_deterministic():
    inter = _interaction(text="Same text", content={"title": "T"})
    assert extract_context(inter) == extract_context(inter)


def test_group_id_is_pure_digest_of_text():
    a = group_id_for("payment button does nothing")
    assert a == group_id_for("payment button does nothing")
    assert a.startswith("grp_") and len(a) == 20
    assert a != group_id_for("something else entirely")
