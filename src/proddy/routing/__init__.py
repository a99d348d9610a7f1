"""Query routing: decides whether a request needs external app tools."""

from proddy.routing.cache import TTLCache
from proddy.routing.classifier import (
    IntentMode,
    QueryIntent,
    QueryIntentClassifier,
    classify_query,
    get_classifier,
)

__all__ = [
    "IntentMode",
    "QueryIntent",
    "QueryIntentClassifier",
    "TTLCache",
    "classify_query",
    "get_classifier",
]
