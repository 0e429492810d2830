"""
Client for the hosted inference endpoint (Hugging Face Inference API).

Two calls: zero-shot classification of a user message into behavioral
labels, and a one-sentence intervention suggestion. Neither is required:
classification degrades to keyword matching and suggestion degrades to None
whenever the endpoint is unconfigured, slow, failing or circuit-broken.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from celeste.config import (
    CLASSIFIER_MODEL,
    GENERATOR_MODEL,
    HUGGINGFACE_API_KEY,
    HUGGINGFACE_API_URL,
    INFERENCE_TIMEOUT_SECONDS,
    ML_ENABLED,
)
from celeste.detection.language import compile_phrases, count_occurrences
from celeste.infrastructure.retry import AdapterError, CircuitBreaker
from celeste.observability.logging import get_logger
from celeste.observability.telemetry import counter, log_event
from celeste.utils.redaction import sanitize_for_prompt

logger = get_logger(__name__)

BEHAVIOR_LABELS: dict[str, tuple[str, ...]] = {
    "procrastination": ("later", "tomorrow", "next week", "eventually", "someday", "soon"),
    "perfectionism": ("perfect", "polish", "not good enough", "one more", "tweak"),
    "fear of failure": ("afraid", "scared", "fail", "what if", "worried"),
    "execution paralysis": ("stuck", "research", "planning", "overwhelmed", "don't know where"),
    "pricing anxiety": ("price", "pricing", "expensive", "cheap", "discount", "charge"),
    "competitive delusion": ("unique", "no competition", "different", "nobody else"),
}

_LABEL_PATTERNS = {label: compile_phrases(words) for label, words in BEHAVIOR_LABELS.items()}


class InferenceError(AdapterError):
    """Inference endpoint unavailable or returned an unusable payload."""


@dataclass(frozen=True)
class Classification:
    scores: dict[str, float]
    source: str

    @property
    def top_label(self) -> str | None:
        if not self.scores or max(self.scores.values()) <= 0:
            return None
        return max(self.scores, key=self.scores.__getitem__)


def keyword_classify(text: str) -> Classification:
    """Label scores from keyword hits, normalized to sum to 1 (all zero if none)."""
    hits = {label: count_occurrences(text or "", patterns) for label, patterns in _LABEL_PATTERNS.items()}
    total = sum(hits.values())
    scores = {label: (count / total if total else 0.0) for label, count in hits.items()}
    return Classification(scores=scores, source="keywords")


class InferenceClient:
    """Synchronous httpx client with a per-call timeout and a circuit breaker."""

    def __init__(
        self,
        api_key: str = HUGGINGFACE_API_KEY,
        base_url: str = HUGGINGFACE_API_URL,
        timeout: float = INFERENCE_TIMEOUT_SECONDS,
        enabled: bool = ML_ENABLED,
        transport: httpx.BaseTransport | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.enabled = enabled and bool(api_key)
        self._transport = transport
        self.breaker = breaker or CircuitBreaker(stage="inference", fail_max=3, reset_timeout=60.0)

    def _post(self, model: str, payload: dict[str, Any]) -> Any:
        if not self.enabled:
            raise InferenceError("inference disabled")

        def send() -> Any:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                try:
                    response = client.post(
                        f"{self.base_url}/{model}",
                        json=payload,
                        headers={"Authorization": f"Bearer {self.api_key}"},
                    )
                except httpx.TimeoutException as e:
                    raise InferenceError(f"{model} timed out after {self.timeout}s") from e
                except httpx.RequestError as e:
                    raise InferenceError(f"{model} request failed: {e}") from e
            if response.status_code != 200:
                raise InferenceError(
                    f"{model} returned {response.status_code}", status_code=response.status_code
                )
            try:
                return response.json()
            except ValueError as e:
                raise InferenceError(f"{model} returned invalid JSON") from e

        return self.breaker.call(send)

    def classify(self, text: str) -> Classification:
        """Zero-shot behavioral labels for text, keyword-matched on any failure."""
        if not self.enabled:
            return keyword_classify(text)
        try:
            data = self._post(
                CLASSIFIER_MODEL,
                {
                    "inputs": sanitize_for_prompt(text),
                    "parameters": {"candidate_labels": list(BEHAVIOR_LABELS)},
                },
            )
            labels = data["labels"]
            scores = data["scores"]
            return Classification(
                scores={label: float(score) for label, score in zip(labels, scores)},
                source="model",
            )
        except (AdapterError, KeyError, TypeError) as e:
            counter("inference.fallback")
            log_event("inference.fallback", call="classify", error=str(e))
            return keyword_classify(text)

    def suggest(self, pattern_type: str, evidence: dict[str, Any]) -> str | None:
        """One-sentence intervention suggestion, or None when unavailable."""
        if not self.enabled:
            return None
        facts = ", ".join(f"{k}: {v}" for k, v in evidence.items() if v is not None)
        prompt = (
            f"Write one direct sentence pushing a founder to act on {pattern_type.replace('_', ' ')}. "
            f"Facts: {sanitize_for_prompt(facts)}"
        )
        try:
            data = self._post(GENERATOR_MODEL, {"inputs": prompt, "parameters": {"max_new_tokens": 60}})
            text = (data[0].get("generated_text") or "").strip()
        except (AdapterError, KeyError, IndexError, TypeError, AttributeError) as e:
            counter("inference.fallback")
            log_event("inference.fallback", call="suggest", error=str(e))
            return None
        if not text or text == prompt:
            return None
        # Models often echo the prompt before the completion
        if text.startswith(prompt):
            text = text[len(prompt) :].strip()
        return text.split("\n")[0][:300] or None
