"""Deterministic keyword labelling.

Rules are data: an ordered list of (label, keywords). Each rule fires independently when any of
its keywords occurs in the normalized report text as a whole word, optionally inflected
(so "crashes" hits "crash", while "author" does not hit "auth"). Numeric status codes must match
exactly.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field

PREDEFINED_LABELS = (
    "bug",
    "crash",
    "performance",
    "ui",
    "ux",
    "api",
    "authentication",
    "data-loss",
    "security",
    "mobile",
    "desktop",
    "browser-specific",
    "network",
    "timeout",
    "validation",
    "feature-request",
    "documentation",
    "accessibility",
)

_INFLECTIONS = r"(?:s|es|ed|ing)?"


@dataclass(frozen=True)
class LabelRule:
    label: str
    keywords: tuple[str, ...]
    _pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        alts = []
        for kw in self.keywords:
            escaped = re.escape(kw.lower())
            alts.append(rf"\b{escaped}\b" if kw.isdigit() else rf"\b{escaped}{_INFLECTIONS}\b")
        object.__setattr__(self, "_pattern", re.compile("|".join(alts)))

    def matches(self, text: str) -> bool:
        return bool(self._pattern.search(text))


LABEL_RULES: tuple[LabelRule, ...] = (
    LabelRule("crash", ("crash", "uncaught", "unhandled")),
    LabelRule("performance", ("slow", "loading", "timeout", "performance")),
    LabelRule("network", ("network", "api", "request failed", "500", "502", "503")),
    LabelRule("authentication", ("login", "log in", "auth", "authentication", "unauthorized",
                                 "401", "403", "permission")),
    LabelRule("mobile", ("mobile", "iphone", "android", "ios")),
    LabelRule("ui", ("button", "display", "layout", "ui", "visual")),
)


def apply_label_rules(text: str, rules: tuple[LabelRule, ...] = LABEL_RULES) -> list[str]:
    lowered = text.lower()
    labels: list[str] = []
    for rule in rules:
        if rule.label not in labels and rule.matches(lowered):
            labels.append(rule.label)
    return labels


def merge_labels(*label_sets: list[str], cap: int = 5) -> list[str]:
    """Union preserving first-seen order, capped."""
    merged: list[str] = []
    for labels in label_sets:
        for label in labels or []:
            if label not in merged:
                merged.append(label)
    return merged[:cap]
