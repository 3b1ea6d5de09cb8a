from relay_worker.analysis.label_rules import LABEL_RULES, LabelRule, apply_label_rules, merge_labels


def test_rules_fire_independently_in_declared_order():
    text = "app crashes on login with 503 on my iphone, the layout is broken"
    assert apply_label_rules(text) == ["crash", "network", "authentication", "mobile", "ui"]


def test_keywords_match_whole_words_with_inflections():
    assert apply_label_rules("the build failed") == []
    assert apply_label_rules("page keeps loading forever") == ["performance"]
    assert apply_label_rules("it crashed twice, still crashing") == ["crash"]


def test_keywords_do_not_match_inside_longer_words():
    assert apply_label_rules("the author field") == []
    assert apply_label_rules("uid is missing") == []
    assert apply_label_rules("iostream include error") == []
    assert apply_label_rules("sold apiece") == []


def test_status_codes_match_whole_numbers():
    assert apply_label_rules("order 15003 missing") == []
    assert apply_label_rules("server returned 500") == ["network"]


def test_rules_are_data():
    rule = LabelRule("billing", ("invoice", "refund"))
    assert apply_label_rules("where is my refund", rules=(rule,) + LABEL_RULES) == ["billing"]


def test_merge_labels_dedupes_and_caps():
    merged = merge_labels(["crash", "ui"], ["ui", "network", "mobile", "performance", "security"], cap=5)
    assert merged == ["crash", "ui", "network", "mobile", "performance"]
