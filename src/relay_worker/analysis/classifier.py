"""External classifier capability.

Two implementations share one interface: an HTTP client for an OpenAI-compatible chat
completions endpoint and a deterministic stub. Callers treat every ClassifierError (timeout,
HTTP error, malformed answer, open circuit) exactly like "no answer".
"""
from __future__ import annotations
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence
import requests
from prometheus_client import Counter
from relay_worker.analysis.label_rules import PREDEFINED_LABELS
from relay_worker.config import Settings
from relay_worker.errors import ClassifierError
from relay_worker.infrastructure.circuit_breaker import CircuitBreakerOpenError, get_circuit_breaker

logger = logging.getLogger(__name__)

CLASSIFIER_CALLS = Counter('external_classifier_calls_total', 'External classifier requests', ['operation', 'result'])

DUPLICATE_SYSTEM_PROMPT = """You are a duplicate bug detector. Compare the NEW bug report with EXISTING reports and determine if any are duplicates (same root cause).

Respond with JSON: {"match": "id_of_best_match" or null, "confidence": 0.0-1.0}

Only return a match if confidence > 0.7."""

LABEL_SYSTEM_PROMPT = """You are a bug report classifier. Analyze the report and assign 1-3 relevant labels from this list:
{labels}

Respond with JSON only: {{"labels": ["label1", "label2"], "confidence": 0.85}}

Only use labels from the provided list. Confidence should be 0.0-1.0 based on how certain you are."""

SUMMARY_SYSTEM_PROMPT = """You are a bug report summarizer. Create a concise 1-2 sentence summary of the issue. Focus on:
1. What the user was trying to do
2. What went wrong
3. Any error messages or failed requests

Be technical but concise. Do not include any personally identifiable information."""


@dataclass(frozen=True)
class CandidateText:
    id: str
    text: str


@dataclass(frozen=True)
class DuplicateVerdict:
    match_id: str | None
    confidence: float


@dataclass(frozen=True)
class LabelSuggestion:
    labels: tuple[str, ...]
    confidence: float


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ClassifierError(f"confidence is not a number: {value!r}")
    if not 0.0 <= float(value) <= 1.0:
        raise ClassifierError(f"confidence out of range: {value!r}")
    return float(value)


def parse_duplicate_answer(payload: Any) -> DuplicateVerdict:
    if not isinstance(payload, dict):
        raise ClassifierError("duplicate answer is not an object")
    match = payload.get("match")
    if match is not None and not isinstance(match, str):
        raise ClassifierError("duplicate answer match is not a string")
    return DuplicateVerdict(match_id=match or None, confidence=_confidence(payload.get("confidence", 0.0)))


def parse_label_answer(payload: Any, vocabulary: Sequence[str] = PREDEFINED_LABELS) -> LabelSuggestion:
    if not isinstance(payload, dict):
        raise ClassifierError("label answer is not an object")
    raw = payload.get("labels") or []
    if not isinstance(raw, list):
        raise ClassifierError("label answer labels is not a list")
    labels = tuple(l for l in raw if isinstance(l, str) and l in vocabulary)
    conf = payload.get("confidence")
    return LabelSuggestion(labels=labels, confidence=_confidence(conf) if conf is not None else 0.8)


class ExternalClassifier(ABC):
    name: str = "external"

    @abstractmethod
    def find_duplicate(self, report: str, candidates: Sequence[CandidateText]) -> DuplicateVerdict:
        ...

    @abstractmethod
    def suggest_labels(self, context: str) -> LabelSuggestion:
        ...

    @abstractmethod
    def summarize(self, context: str) -> str:
        ...

    def close(self) -> None:
        pass


class OpenAIClassifier(ExternalClassifier):
    name = "openai"

    def __init__(self, api_key: str, base_url: str = "https://api.openai.com/v1", model: str = "gpt-4-turbo-preview",
                 timeout: float = 20.0, session: requests.Session | None = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()
        self.breaker = get_circuit_breaker(f"classifier:{self.base_url}")

    def _post(self, body: dict) -> dict:
        resp = self.session.post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json=body,
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def _complete(self, operation: str, system: str, user: str, max_tokens: int, temperature: float, json_mode: bool) -> str:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        try:
            data = self.breaker.call(self._post, body)
            content = data["choices"][0]["message"]["content"]
        except CircuitBreakerOpenError as e:
            CLASSIFIER_CALLS.labels(operation=operation, result='circuit_open').inc()
            raise ClassifierError(str(e)) from e
        except requests.RequestException as e:
            CLASSIFIER_CALLS.labels(operation=operation, result='http_error').inc()
            raise ClassifierError(f"{operation} request failed: {type(e).__name__}") from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            CLASSIFIER_CALLS.labels(operation=operation, result='malformed').inc()
            raise ClassifierError(f"{operation} response malformed") from e
        if not isinstance(content, str):
            CLASSIFIER_CALLS.labels(operation=operation, result='malformed').inc()
            raise ClassifierError(f"{operation} response has no content")
        CLASSIFIER_CALLS.labels(operation=operation, result='ok').inc()
        return content

    def _complete_json(self, operation: str, system: str, user: str) -> Any:
        content = self._complete(operation, system, user, max_tokens=100, temperature=0.2, json_mode=True)
        try:
            return json.loads(content or "{}")
        except ValueError as e:
            raise ClassifierError(f"{operation} answer is not JSON") from e

    def find_duplicate(self, report: str, candidates: Sequence[CandidateText]) -> DuplicateVerdict:
        existing = "\n\n".join(f"[{c.id}]: {c.text}" for c in candidates)
        user = f"NEW REPORT:\n{report}\n\nEXISTING REPORTS:\n{existing}"
        return parse_duplicate_answer(self._complete_json("duplicate", DUPLICATE_SYSTEM_PROMPT, user))

    def suggest_labels(self, context: str) -> LabelSuggestion:
        system = LABEL_SYSTEM_PROMPT.format(labels=", ".join(PREDEFINED_LABELS))
        return parse_label_answer(self._complete_json("labels", system, context))

    def summarize(self, context: str) -> str:
        return self._complete("summary", SUMMARY_SYSTEM_PROMPT, context, max_tokens=150, temperature=0.3, json_mode=False).strip()

    def close(self) -> None:
        self.session.close()


@dataclass
class StubClassifier(ExternalClassifier):
    """Deterministic classifier for tests and offline runs.

    duplicate may be a fixed verdict or a callable(report, candidates) -> verdict; fail=True makes
    every call raise ClassifierError.
    """
    duplicate: DuplicateVerdict | Callable[[str, Sequence[CandidateText]], DuplicateVerdict] | None = None
    labels: LabelSuggestion | None = None
    summary: str | None = None
    fail: bool = False
    calls: list[tuple[str, Any]] = field(default_factory=list)
    name = "stub"

    def _check(self, operation: str, arg: Any):
        self.calls.append((operation, arg))
        if self.fail:
            raise ClassifierError(f"stub {operation} failure")

    def find_duplicate(self, report: str, candidates: Sequence[CandidateText]) -> DuplicateVerdict:
        self._check("duplicate", [c.id for c in candidates])
        if callable(self.duplicate):
            return self.duplicate(report, candidates)
        return self.duplicate or DuplicateVerdict(match_id=None, confidence=0.0)

    def suggest_labels(self, context: str) -> LabelSuggestion:
        self._check("labels", context)
        return self.labels or LabelSuggestion(labels=(), confidence=0.8)

    def summarize(self, context: str) -> str:
        self._check("summary", context)
        if self.summary is None:
            raise ClassifierError("stub has no summary configured")
        return self.summary


def build_classifier(settings: Settings) -> ExternalClassifier | None:
    """Real classifier when credentials exist, otherwise None (heuristic-only mode)."""
    if not settings.openai_api_key:
        logger.info("no external classifier configured; duplicate detection is heuristic-only")
        return None
    return OpenAIClassifier(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        model=settings.openai_model,
        timeout=settings.classifier_timeout_seconds,
    )
