"""Default relevance collaborators for item search.

Both scorers work on a snapshot of :class:`ItemDocument` objects and never
touch the database, so the ranker can run them on worker threads.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Iterable, List, Protocol, Sequence, Tuple
from uuid import UUID

from backend.services.tree_store import ItemDocument

Scored = Tuple[UUID, float]

NAME_WEIGHT = 3.0
DESCRIPTION_WEIGHT = 1.5
KEYWORD_WEIGHT = 1.0
TOKEN_WEIGHT = 0.35

STOP_WORDS = frozenset(
    {
        "a", "an", "any", "are", "at", "by", "find", "for", "i", "in",
        "inventory", "is", "item", "it", "locate", "me", "my", "of", "on",
        "our", "please", "show", "the", "there", "to", "was", "were",
        "where", "with",
    }
)

TOKEN_SYNONYMS = {
    "air": ("pneumatic", "inflator", "compressor"),
    "battery": ("batteries", "cell", "cells"),
    "bin": ("container", "storage", "tote"),
    "compressor": ("air", "inflator", "pump", "pneumatic"),
    "container": ("bin", "storage", "tote"),
    "drill": ("driver", "masonry"),
    "glove": ("gloves", "mittens"),
    "gloves": ("glove", "mittens", "winter"),
    "inflator": ("air", "compressor", "pump", "tire"),
    "pump": ("air", "compressor", "inflator"),
    "pneumatic": ("air", "compressor", "inflator"),
    "saw": ("blade",),
    "shovel": ("spade",),
    "storage": ("bin", "container", "tote"),
    "tire": ("inflator", "pump"),
    "tote": ("bin", "container", "storage"),
    "winter": ("cold", "gloves"),
}

PHRASE_EXPANSIONS = (
    (re.compile(r"\bair\s+pump\b"), ("air", "compressor", "inflator", "pneumatic")),
    (re.compile(r"\btire\s+pump\b"), ("compressor", "inflator", "pump", "tire")),
    (re.compile(r"\bwinter\s+gloves?\b"), ("gloves", "mittens", "winter")),
    (re.compile(r"\btool\s+belt\b"), ("belt", "tool", "toolbelt")),
)

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


class LexicalScorer(Protocol):
    """Returns (item_id, score) pairs with scores in [0, 1]."""

    def score(self, query: str, household_id: UUID, documents: Sequence[ItemDocument]) -> Iterable[Scored]:
        ...


class SemanticScorer(Protocol):
    def score(self, query: str, household_id: UUID, documents: Sequence[ItemDocument]) -> Iterable[Scored]:
        ...


def tokenize(value: str) -> List[str]:
    return [token for token in _TOKEN_SPLIT.split(value.lower()) if token]


def _dedupe(tokens: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(tokens))


def meaningful_tokens(value: str) -> List[str]:
    tokens = tokenize(value)
    filtered = [token for token in tokens if len(token) > 1 and token not in STOP_WORDS]
    if filtered:
        return _dedupe(filtered)
    # a query made only of stop words still searches for them
    return _dedupe(token for token in tokens if len(token) > 1)


def semantic_query_terms(query: str) -> List[str]:
    normalized = query.lower()
    base = meaningful_tokens(normalized)
    expanded = list(base)
    for token in base:
        for synonym in TOKEN_SYNONYMS.get(token, ()):
            expanded.extend(part for part in tokenize(synonym) if len(part) > 1)
    for pattern, tokens in PHRASE_EXPANSIONS:
        if pattern.search(normalized):
            expanded.extend(tokens)
    return _dedupe(expanded)


class SubstringLexicalScorer:
    """Weighted substring match of the whole query plus per-token overlap."""

    def score(self, query: str, household_id: UUID, documents: Sequence[ItemDocument]) -> List[Scored]:
        needle = query.strip().lower()
        if not needle:
            return []
        tokens = meaningful_tokens(needle)
        ceiling = NAME_WEIGHT + DESCRIPTION_WEIGHT + KEYWORD_WEIGHT + TOKEN_WEIGHT * len(tokens)
        results: List[Scored] = []
        for doc in documents:
            raw = 0.0
            if needle in doc.name.lower():
                raw += NAME_WEIGHT
            if needle in (doc.description or "").lower():
                raw += DESCRIPTION_WEIGHT
            if needle in " ".join(doc.keywords).lower():
                raw += KEYWORD_WEIGHT
            text = doc.text.lower()
            raw += TOKEN_WEIGHT * sum(1 for token in tokens if token in text)
            if raw > 0:
                results.append((doc.id, min(raw / ceiling, 1.0)))
        return results


class TermExpansionSemanticScorer:
    """Cosine similarity between synonym-expanded query terms and item tokens."""

    def score(self, query: str, household_id: UUID, documents: Sequence[ItemDocument]) -> List[Scored]:
        terms = semantic_query_terms(query)
        if not terms:
            return []
        query_norm = math.sqrt(len(terms))
        results: List[Scored] = []
        for doc in documents:
            counts = Counter(token for token in tokenize(doc.text) if token not in STOP_WORDS)
            if not counts:
                continue
            dot = sum(counts[term] for term in terms)
            if not dot:
                continue
            doc_norm = math.sqrt(sum(value * value for value in counts.values()))
            results.append((doc.id, min(dot / (query_norm * doc_norm), 1.0)))
        return results
