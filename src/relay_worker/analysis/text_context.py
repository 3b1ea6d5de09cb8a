"""Normalized text context for an interaction, plus the lexical helpers built on it.

Everything here is pure: the same interaction state always yields the same context, tokens,
similarity scores and freshly minted group ids, which keeps duplicate clustering idempotent
under retry.
"""
from __future__ import annotations
import hashlib
import re
from dataclasses import dataclass
from typing import Any, Iterable

MAX_ERROR_MESSAGES = 5
MIN_TOKEN_LENGTH = 3

_WS = re.compile(r"\s+")
_EDGE_PUNCT = ".,;:!?()[]{}<>\"'`*#"

# Short-hands users type in reports mapped to the word they stand for, so that
# "btn" and "button" count as the same token.
TOKEN_ALIASES: dict[str, str] = {
    "btn": "button",
    "pwd": "password",
    "passwd": "password",
    "msg": "message",
    "msgs": "messages",
    "err": "error",
    "acct": "account",
    "pls": "please",
    "plz": "please",
    "img": "image",
    "pic": "picture",
    "cant": "cannot",
    "can't": "cannot",
    "doesnt": "does not",
    "doesn't": "does not",
    "wont": "will not",
    "won't": "will not",
    "didnt": "did not",
    "didn't": "did not",
}


@dataclass(frozen=True)
class ReportContext:
    title: str
    description: str
    text: str
    errors: tuple[str, ...]
    url: str
    user_agent: str

    @property
    def similarity_text(self) -> str:
        """Report wording plus error messages; the basis for similarity and group ids."""
        return normalize_text(" ".join([self.title, self.description, self.text, *self.errors]))

    @property
    def blob(self) -> str:
        """Everything known about the report, including technical metadata."""
        return normalize_text(" ".join([self.similarity_text, self.url, self.user_agent]))

    def labelled(self, interaction_type: str | None = None) -> str:
        """Human-readable multi-line rendering used in external classifier prompts."""
        parts: list[str] = []
        if interaction_type:
            parts.append(f"Type: {interaction_type}")
        if self.title:
            parts.append(f"Title: {self.title}")
        if self.description:
            parts.append(f"Description: {self.description}")
        if self.text:
            parts.append(f"Content: {self.text}")
        if self.errors:
            parts.append(f"Errors: {', '.join(self.errors)}")
        if self.url:
            parts.append(f"URL: {self.url}")
        if self.user_agent:
            parts.append(f"User Agent: {self.user_agent}")
        return "\n".join(parts)


def normalize_text(raw: str | None) -> str:
    if not raw:
        return ""
    return _WS.sub(" ", raw).strip().lower()


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _error_messages(logs: Iterable[Any] | None) -> tuple[str, ...]:
    """Messages from the most recent log bundle that carries errors."""
    for log in logs or []:
        errors = getattr(log, "errors", None) or []
        messages = []
        for e in errors:
            if isinstance(e, dict):
                msg = _str(e.get("message"))
            else:
                msg = _str(e)
            if msg:
                messages.append(msg)
        if messages:
            return tuple(messages[:MAX_ERROR_MESSAGES])
    return ()


def extract_context(interaction: Any) -> ReportContext:
    content = interaction.content_json if isinstance(interaction.content_json, dict) else {}
    tech = interaction.technical_context if isinstance(interaction.technical_context, dict) else {}
    return ReportContext(
        title=_str(content.get("title")),
        description=_str(content.get("description")),
        text=_str(interaction.content_text),
        errors=_error_messages(getattr(interaction, "logs", None)),
        url=_str(tech.get("url")),
        user_agent=_str(tech.get("userAgent") or tech.get("user_agent")),
    )


def tokenize(text: str) -> set[str]:
    tokens: set[str] = set()
    for raw in normalize_text(text).split(" "):
        word = raw.strip(_EDGE_PUNCT)
        if not word:
            continue
        for part in TOKEN_ALIASES.get(word, word).split(" "):
            if len(part) >= MIN_TOKEN_LENGTH:
                tokens.add(part)
    return tokens


def jaccard_similarity(text_a: str, text_b: str) -> float:
    words_a = tokenize(text_a)
    words_b = tokenize(text_b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def group_id_for(normalized_text: str) -> str:
    digest = hashlib.sha256(normalized_text.encode("utf-8")).hexdigest()
    return f"grp_{digest[:16]}"
