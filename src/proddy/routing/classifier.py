"""Query intent classifier: does a request need external app tools?

Two layers:

1. A deterministic pattern table (``classify_query``) that decides the
   obvious cases in well under a millisecond: explicit app vocabulary
   ("send email to", "my repos", "in notion") and internal workspace
   signals ("this channel", "my tasks today").
2. An optional LLM pass for ambiguous inputs, i.e. messages that carry
   external-sounding vocabulary ("check my email", "open a ticket") but
   name no app. Any failure of this pass falls back to the deterministic
   answer.

Classification never raises. Callers always receive a QueryIntent; on
unexpected errors that is the safe internal-only default.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field, ValidationError

from proddy.config import LLMPreset, LLMPresets, settings
from proddy.integrations.apps import ExternalApp
from proddy.routing.cache import TTLCache

logger = structlog.get_logger()


class IntentMode(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class QueryIntent:
    """The result of classifying one inbound message."""

    mode: IntentMode
    requires_external_tools: bool
    requested_external_apps: tuple[ExternalApp, ...] = ()
    reasoning: str = ""
    source: str = "rules"

    def __post_init__(self) -> None:
        external_mode = self.mode in (IntentMode.EXTERNAL, IntentMode.HYBRID)
        if self.requires_external_tools != external_mode:
            raise ValueError(
                f"requires_external_tools={self.requires_external_tools} "
                f"is inconsistent with mode={self.mode.value}"
            )

    @classmethod
    def build(
        cls,
        apps: list[ExternalApp] | tuple[ExternalApp, ...],
        has_internal_signal: bool,
        reasoning: str = "",
        source: str = "rules",
    ) -> QueryIntent:
        unique = tuple(dict.fromkeys(apps))
        if unique:
            mode = IntentMode.HYBRID if has_internal_signal else IntentMode.EXTERNAL
        else:
            mode = IntentMode.INTERNAL
        return cls(
            mode=mode,
            requires_external_tools=bool(unique),
            requested_external_apps=unique,
            reasoning=reasoning,
            source=source,
        )

    @classmethod
    def internal_default(cls, reasoning: str, source: str = "default") -> QueryIntent:
        return cls(IntentMode.INTERNAL, False, (), reasoning, source)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "requires_external_tools": self.requires_external_tools,
            "requested_external_apps": [a.value for a in self.requested_external_apps],
        }


# ── Pattern tables ──────────────────────────────────────────────────

EXTERNAL_APP_PATTERNS: tuple[tuple[ExternalApp, re.Pattern[str]], ...] = (
    (ExternalApp.GMAIL, re.compile(
        r"\b(gmail|send\s+(?:an\s+)?email|email\s+to|my\s+inbox|draft\s+(?:an\s+)?email)\b",
        re.IGNORECASE,
    )),
    (ExternalApp.GITHUB, re.compile(
        r"\b(github|my\s+(?:repo|repos|repositories)|what\s+(?:are\s+)?my\s+(?:repo|repos|repositories))\b",
        re.IGNORECASE,
    )),
    (ExternalApp.SLACK, re.compile(r"\bslack\b", re.IGNORECASE)),
    (ExternalApp.NOTION, re.compile(r"\bnotion\b", re.IGNORECASE)),
    (ExternalApp.CLICKUP, re.compile(r"\bclick\s?up\b", re.IGNORECASE)),
    (ExternalApp.LINEAR, re.compile(r"\blinear\b", re.IGNORECASE)),
)

INTERNAL_SIGNAL_PATTERN = re.compile(
    r"\b(workspace|channel|message|messages|calendar|meeting|meetings|task|tasks|board|"
    r"card|cards|note|notes|summary|summarize|search|assigned|today|tomorrow|next\s+week)\b",
    re.IGNORECASE,
)

# External-sounding vocabulary that names no app. Only these messages are
# worth an LLM round-trip.
AMBIGUOUS_EXTERNAL_PATTERN = re.compile(
    r"\b(e-?mail|emails|mail|inbox|repo|repository|pull\s+request|pr|commit|issue|issues|"
    r"ticket|tickets|page|database|dm|direct\s+message)\b",
    re.IGNORECASE,
)


def detect_external_apps(text: str) -> list[ExternalApp]:
    """Return every app the text mentions, in first-mention order."""
    hits: list[tuple[int, int, ExternalApp]] = []
    for order, (app, pattern) in enumerate(EXTERNAL_APP_PATTERNS):
        match = pattern.search(text)
        if match:
            hits.append((match.start(), order, app))
    hits.sort()
    return [app for _, _, app in hits]


def has_internal_signal(text: str) -> bool:
    return bool(INTERNAL_SIGNAL_PATTERN.search(text))


def is_ambiguous(text: str) -> bool:
    return bool(AMBIGUOUS_EXTERNAL_PATTERN.search(text))


def classify_query(message: str | None) -> QueryIntent:
    """Deterministic classification from the pattern tables."""
    text = (message or "").strip().lower()
    if not text:
        return QueryIntent.internal_default("empty message", source="rules")

    apps = detect_external_apps(text)
    internal = has_internal_signal(text)
    if apps:
        names = ", ".join(a.value for a in apps)
        reasoning = f"explicit mention of {names}"
        if internal:
            reasoning += " alongside workspace data"
    else:
        reasoning = "workspace request" if internal else "no external app mentioned"
    return QueryIntent.build(apps, internal, reasoning, source="rules")


# ── LLM fallback ────────────────────────────────────────────────────

class JSONCompleter(Protocol):
    async def complete_json(
        self,
        prompt: str,
        *,
        model: str | None = None,
        preset: LLMPreset = LLMPresets.CLASSIFIER,
    ) -> dict[str, Any]: ...


class _LLMClassification(BaseModel):
    requires_external_tools: bool
    requested_external_apps: list[str] = Field(default_factory=list)
    requires_internal_tools: bool = False
    reasoning: str = ""


_CLASSIFIER_PROMPT = """You classify requests for a team workspace assistant.

Internal tools cover workspace data: calendar, meetings, tasks, channels, \
messages, boards, cards, notes and workspace search.
External apps: GMAIL (email), GITHUB (repos, issues, pull requests), \
SLACK (slack channels and DMs), NOTION (pages, databases), \
CLICKUP (clickup tasks), LINEAR (linear issues and tickets).

Disambiguation:
- "message" alone is internal unless Slack or email is clearly meant.
- "task" alone is internal unless ClickUp or Linear is named.
- "issue" depends on context (GitHub issue vs Linear issue).

Reply with a JSON object with keys:
  requires_external_tools (bool),
  requested_external_apps (list of app ids from the list above),
  requires_internal_tools (bool),
  reasoning (short string).

Request: "{message}"
"""


class QueryIntentClassifier:
    """Cached, LLM-assisted classifier built on ``classify_query``."""

    def __init__(
        self,
        llm: JSONCompleter | None = None,
        cache: TTLCache[QueryIntent] | None = None,
        use_llm_fallback: bool | None = None,
        model: str | None = None,
    ) -> None:
        self.llm = llm
        self.cache = cache or TTLCache(
            ttl_s=settings.classifier_cache_ttl_s,
            max_entries=settings.classifier_cache_max_entries,
            name="query_classification",
        )
        self.use_llm_fallback = (
            settings.classifier_llm_fallback if use_llm_fallback is None else use_llm_fallback
        )
        self.model = model or settings.classifier_model

    async def classify(self, message: str | None) -> QueryIntent:
        try:
            return await self._classify(message)
        except Exception as e:
            logger.warning("query_classification_failed", error=str(e))
            return QueryIntent.internal_default(
                "classification failed, defaulted to internal mode"
            )

    async def classify_batch(self, messages: list[str]) -> list[QueryIntent]:
        return list(await asyncio.gather(*(self.classify(m) for m in messages)))

    async def _classify(self, message: str | None) -> QueryIntent:
        text = (message or "").strip()
        if not text:
            return QueryIntent.internal_default("empty message")

        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("query_classification_cache_hit")
            return replace(cached, source="cache")

        intent = classify_query(text)

        if (
            not intent.requires_external_tools
            and self.llm is not None
            and self.use_llm_fallback
            and is_ambiguous(text)
        ):
            intent = await self._classify_with_llm(text, fallback=intent)

        self.cache.set(text, intent)
        logger.info(
            "query_classified",
            mode=intent.mode.value,
            apps=[a.value for a in intent.requested_external_apps],
            source=intent.source,
        )
        return intent

    async def _classify_with_llm(self, text: str, fallback: QueryIntent) -> QueryIntent:
        assert self.llm is not None
        try:
            raw = await self.llm.complete_json(
                _CLASSIFIER_PROMPT.format(message=text.replace('"', "'")),
                model=self.model,
                preset=LLMPresets.CLASSIFIER,
            )
            parsed = _LLMClassification.model_validate(raw)
        except (ValidationError, ValueError) as e:
            logger.warning("llm_classification_invalid", error=str(e))
            return fallback
        except Exception as e:
            logger.warning("llm_classification_failed", error=str(e))
            return fallback

        apps = [app for app in map(ExternalApp.parse, parsed.requested_external_apps) if app]
        if not parsed.requires_external_tools:
            apps = []
        internal = parsed.requires_internal_tools or has_internal_signal(text)
        return QueryIntent.build(apps, internal, parsed.reasoning, source="llm")


_classifier: QueryIntentClassifier | None = None


def get_classifier() -> QueryIntentClassifier:
    """Get singleton QueryIntentClassifier (rules only unless an LLM is wired)."""
    global _classifier
    if _classifier is None:
        _classifier = QueryIntentClassifier()
    return _classifier
