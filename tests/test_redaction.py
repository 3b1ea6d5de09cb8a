import copy

import pytest

from relay_worker.privacy.redaction import (
    CARD_MASK, EMAIL_MASK, PHONE_MASK, SSN_MASK, VALUE_MASK,
    mask_sensitive_input, redact_node, sanitize_attributes, sanitize_event, sanitize_text,
)


@pytest.mark.parametrize("raw,expected", [
    ("mail john.doe+x@example.co.uk now", f"mail {EMAIL_MASK} now"),
    ("call (555) 123-4567 today", f"call {PHONE_MASK} today"),
    ("call +1 555.123.4567", f"call {PHONE_MASK}"),
    ("phone 555-123-4567", f"phone {PHONE_MASK}"),
    ("ring 5551234567 later", f"ring {PHONE_MASK} later"),
    ("write to jöhn@exämple.com", f"write to {EMAIL_MASK}"),
    ("card 4111 1111 1111 1111 ok", f"card {CARD_MASK} ok"),
    ("card 4111111111111111", f"card {CARD_MASK}"),
    ("ssn 123-45-6789", f"ssn {SSN_MASK}"),
    ("order 12 shipped", "order 12 shipped"),
])
def test_sanitize_text(raw, expected):
    assert sanitize_text(raw) == expected


def test_sanitized_text_never_leaks_email_domain():
    out = sanitize_text("reach alice@corp.example or bob@mail.example.org")
    assert "corp.example" not in out and "mail.example.org" not in out
    assert "@" not in out.replace(EMAIL_MASK, "")


def test_non_strings_pass_through():
    assert sanitize_text(None) is None
    assert sanitize_text(42) == 42


@pytest.mark.parametrize("value,expected", [
    ("someone@example.com", EMAIL_MASK),
    ("4111-1111-1111-1111", CARD_MASK),
    ("+1 (555) 123-4567", PHONE_MASK),
    ("hunter2", VALUE_MASK),
    ("", ""),
])
def test_mask_sensitive_input(value, expected):
    assert mask_sensitive_input(value) == expected


def test_sensitive_data_attributes_are_masked():
    attrs = {"data-email": "a@b.co", "data-user-id": "u_1", "class": "btn", "value": "jane"}
    out = sanitize_attributes(attrs)
    assert out == {"data-email": VALUE_MASK, "data-user-id": VALUE_MASK, "class": "btn", "value": VALUE_MASK}
    assert attrs["data-email"] == "a@b.co"


def _tree():
    return {
        "type": 2, "tagName": "form", "attributes": {"id": "signup"},
        "childNodes": [
            {"type": 2, "tagName": "INPUT", "attributes": {"type": "Password", "value": ""}, "childNodes": []},
            {"type": 2, "tagName": "input", "attributes": {"type": "text", "name": "q"}, "childNodes": []},
            {"type": 2, "tagName": "p", "attributes": {}, "childNodes": [
                {"type": 3, "textContent": "Signed in as jane@example.com, ssn 123-45-6789"},
            ]},
        ],
    }


def test_redact_node_walks_tree_without_mutating_input():
    tree = _tree()
    snapshot = copy.deepcopy(tree)
    out = redact_node(tree)
    assert tree == snapshot
    password, text_input, paragraph = out["childNodes"]
    assert password["attributes"]["value"] == VALUE_MASK
    assert "value" not in text_input["attributes"]
    assert paragraph["childNodes"][0]["textContent"] == f"Signed in as {EMAIL_MASK}, ssn {SSN_MASK}"
    assert out["attributes"] == {"id": "signup"}


def test_full_snapshot_event():
    event = {"type": 2, "timestamp": 10, "data": {"node": _tree(), "initialOffset": {"top": 0}}}
    out = sanitize_event(event)
    assert out["timestamp"] == 10
    assert out["data"]["initialOffset"] == {"top": 0}
    assert out["data"]["node"]["childNodes"][0]["attributes"]["value"] == VALUE_MASK
    assert event["data"]["node"]["childNodes"][0]["attributes"]["value"] == ""


def test_mutation_event_redacts_adds_texts_and_attributes():
    event = {"type": 3, "data": {
        "source": 0,
        "adds": [{"parentId": 1, "node": {"type": 3, "textContent": "mail me: x@y.io"}}],
        "texts": [{"id": 4, "value": "phone 555-123-4567"}],
        "attributes": [{"id": 5, "attributes": {"data-phone": "5551234567", "value": "secret"}}],
        "removes": [],
    }}
    data = sanitize_event(event)["data"]
    assert data["adds"][0]["node"]["textContent"] == f"mail me: {EMAIL_MASK}"
    assert data["texts"][0]["value"] == f"phone {PHONE_MASK}"
    assert data["attributes"][0]["attributes"] == {"data-phone": VALUE_MASK, "value": VALUE_MASK}
    assert event["data"]["texts"][0]["value"] == "phone 555-123-4567"


def test_input_event_collapses_value():
    out = sanitize_event({"type": 3, "data": {"source": 5, "id": 9, "text": "my-secret-pass"}})
    assert out["data"] == {"source": 5, "id": 9, "text": VALUE_MASK}


def test_console_plugin_payload_strings_are_sanitized():
    event = {"type": 6, "data": {"plugin": "rrweb/console@1",
                                 "payload": {"level": "log", "payload": ["user bob@x.com", 3, None]}}}
    out = sanitize_event(event)
    assert out["data"]["payload"]["payload"] == [f"user {EMAIL_MASK}", 3, None]
    assert out["data"]["payload"]["level"] == "log"


def test_other_events_are_untouched():
    event = {"type": 4, "data": {"href": "https://x.test/?email=a@b.co", "width": 800}}
    assert sanitize_event(event) == event
    assert sanitize_event("garbage") == "garbage"
