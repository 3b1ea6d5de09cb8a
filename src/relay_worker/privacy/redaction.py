"""PII redaction for recorded replay events (rrweb event format).

Every function here is pure: the input event/node is never mutated, a redacted copy is returned.
Event types handled:
  2  full snapshot       data.node is a serialized DOM tree
  3  incremental         source 0 = mutation (adds/texts/attributes), source 5 = input
  6  plugin              rrweb/console@1 payload strings
"""
from __future__ import annotations
import re
from typing import Any
from prometheus_client import Counter

REDACTIONS = Counter('replay_redactions_total', 'Redaction substitutions applied to replay content', ['kind'])

EMAIL_MASK = "***@***.***"
PHONE_MASK = "***-***-****"
CARD_MASK = "**** **** **** ****"
SSN_MASK = "***-**-****"
VALUE_MASK = "********"

FULL_SNAPSHOT = 2
INCREMENTAL_SNAPSHOT = 3
PLUGIN = 6
SOURCE_MUTATION = 0
SOURCE_INPUT = 5
CONSOLE_PLUGIN = "rrweb/console@1"

SENSITIVE_INPUT_TYPES = frozenset({"password", "email", "tel", "ssn", "credit-card"})
SENSITIVE_ATTRIBUTES = ("data-email", "data-phone", "data-ssn", "data-cc", "data-user-id")

# applied in this order; phone digits must not be embedded in a longer digit run so card numbers
# reach the card pattern intact
TEXT_PATTERNS: tuple[tuple[str, re.Pattern, str], ...] = (
    ("email", re.compile(r"[\w.%+-]+@[\w.-]+\.[^\W\d_]{2,}"), EMAIL_MASK),
    ("phone", re.compile(r"(?<!\d)(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?!\d)"), PHONE_MASK),
    ("card", re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"), CARD_MASK),
    ("ssn", re.compile(r"\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b"), SSN_MASK),
)

_PHONE_VALUE = re.compile(r"^\+?[\d\s()-]{10,}$")
_CARD_VALUE = re.compile(r"^\d{13,19}$")
_CARD_SEPARATORS = re.compile(r"[\s-]")


def sanitize_text(text: Any) -> Any:
    """Mask emails, phone numbers, card numbers and SSNs inside free text. Non-strings pass through."""
    if not text or not isinstance(text, str):
        return text
    for kind, pattern, mask in TEXT_PATTERNS:
        text, n = pattern.subn(mask, text)
        if n:
            REDACTIONS.labels(kind=kind).inc(n)
    return text


def mask_sensitive_input(value: Any) -> Any:
    """Collapse a whole input value. Anything that is not recognisably an email, phone or card
    number is treated as a secret and fully masked."""
    if not value or not isinstance(value, str):
        return value
    if "@" in value and "." in value:
        kind, mask = "email", EMAIL_MASK
    elif _CARD_VALUE.match(_CARD_SEPARATORS.sub("", value)):
        kind, mask = "card", CARD_MASK
    elif _PHONE_VALUE.match(value):
        kind, mask = "phone", PHONE_MASK
    else:
        kind, mask = "input", VALUE_MASK
    REDACTIONS.labels(kind=kind).inc()
    return mask


def sanitize_attributes(attributes: Any) -> Any:
    if not attributes or not isinstance(attributes, dict):
        return attributes
    out = dict(attributes)
    for name in SENSITIVE_ATTRIBUTES:
        if out.get(name):
            out[name] = VALUE_MASK
            REDACTIONS.labels(kind="attribute").inc()
    if isinstance(out.get("value"), str):
        out["value"] = mask_sensitive_input(out["value"])
    return out


def _is_sensitive_input(node: dict) -> bool:
    if str(node.get("tagName", "")).lower() != "input":
        return False
    attrs = node.get("attributes")
    if not isinstance(attrs, dict):
        return False
    return str(attrs.get("type") or "").lower() in SENSITIVE_INPUT_TYPES


def redact_node(node: Any) -> Any:
    """Return a redacted copy of a serialized DOM node and all of its descendants."""
    if not isinstance(node, dict):
        return node
    out = dict(node)
    if out.get("textContent"):
        out["textContent"] = sanitize_text(out["textContent"])
    if out.get("attributes"):
        out["attributes"] = sanitize_attributes(out["attributes"])
    if _is_sensitive_input(out) and "value" in out["attributes"]:
        out["attributes"]["value"] = VALUE_MASK
    children = out.get("childNodes")
    if isinstance(children, list):
        out["childNodes"] = [redact_node(c) for c in children]
    return out


def _redact_mutation(data: dict) -> dict:
    if isinstance(data.get("adds"), list):
        data["adds"] = [
            {**add, "node": redact_node(add.get("node"))} if isinstance(add, dict) and add.get("node") else add
            for add in data["adds"]
        ]
    if isinstance(data.get("texts"), list):
        data["texts"] = [
            {**t, "value": sanitize_text(t.get("value"))} if isinstance(t, dict) else t
            for t in data["texts"]
        ]
    if isinstance(data.get("attributes"), list):
        data["attributes"] = [
            {**a, "attributes": sanitize_attributes(a.get("attributes"))} if isinstance(a, dict) else a
            for a in data["attributes"]
        ]
    return data


def sanitize_event(event: Any) -> Any:
    if not isinstance(event, dict) or not isinstance(event.get("data"), dict):
        return event
    out = dict(event)
    data = dict(event["data"])
    etype = event.get("type")
    if etype == FULL_SNAPSHOT:
        if data.get("node"):
            data["node"] = redact_node(data["node"])
    elif etype == INCREMENTAL_SNAPSHOT:
        source = data.get("source")
        if source == SOURCE_MUTATION:
            data = _redact_mutation(data)
        elif source == SOURCE_INPUT and data.get("text"):
            data["text"] = mask_sensitive_input(data["text"])
    elif etype == PLUGIN and data.get("plugin") == CONSOLE_PLUGIN:
        payload = data.get("payload")
        if isinstance(payload, dict) and isinstance(payload.get("payload"), list):
            data["payload"] = {
                **payload,
                "payload": [sanitize_text(p) if isinstance(p, str) else p for p in payload["payload"]],
            }
    out["data"] = data
    return out


def sanitize_events(events: list) -> list:
    return [sanitize_event(e) for e in events]
