"""Hybrid ranking of household items.

The lexical and semantic collaborators score the same household-scoped
snapshot independently; their lists are merged by item id with a
probabilistic OR, ``1 - (1 - lexical) * (1 - semantic)``.
"""

from __future__ import annotations

import logging
import math
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from backend.errors import InvalidOperation, ServiceUnavailable
from backend.observability import log_structured
from backend.permissions import PERM_INVENTORY_READ, HouseholdContext
from backend.services.scorers import (
    LexicalScorer,
    SemanticScorer,
    Scored,
    SubstringLexicalScorer,
    TermExpansionSemanticScorer,
)
from backend.services.tree_store import ItemDocument, TreeStore

SEARCH_COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv("SEARCH_COLLABORATOR_TIMEOUT_SECONDS", "2.0"))

MODE_LEXICAL = "lexical"
MODE_SEMANTIC = "semantic"
MODE_HYBRID = "hybrid"
SEARCH_MODES = (MODE_HYBRID, MODE_SEMANTIC, MODE_LEXICAL)


@dataclass(frozen=True)
class SearchResult:
    id: UUID
    name: str
    image_url: Optional[str]
    location_id: Optional[UUID]
    location_path: str
    score: float
    lexical_score: float
    semantic_score: float


@dataclass
class SearchPage:
    results: List[SearchResult]
    total: int
    limit: int
    offset: int
    mode: str
    degraded: bool = False
    failed_signals: List[str] = field(default_factory=list)


def clamp_score(value: float) -> float:
    value = float(value)
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


def combine_scores(lexical: float, semantic: float) -> float:
    lexical, semantic = clamp_score(lexical), clamp_score(semantic)
    if not semantic:
        return lexical
    if not lexical:
        return semantic
    return 1.0 - (1.0 - lexical) * (1.0 - semantic)


def _collect(signal: str, household_id: UUID, scored: Iterable[Scored]) -> Dict[UUID, float]:
    """Keep the best score per item. Scorers answer in [0, 1]; anything else is clamped."""
    collected: Dict[UUID, float] = {}
    out_of_range = 0
    for item_id, value in scored:
        raw = float(value)
        score = clamp_score(raw)
        if score != raw:
            out_of_range += 1
        if score > collected.get(item_id, 0.0):
            collected[item_id] = score
    if out_of_range:
        log_structured(
            logging.WARNING,
            "search_score_out_of_range",
            signal=signal,
            household_id=str(household_id),
            count=out_of_range,
        )
    return collected


def _sort_key(row: Tuple[UUID, float, float, float]):
    item_id, score, lexical, semantic = row
    return (-score, -lexical, -semantic, str(item_id))


class HybridRanker:
    def __init__(
        self,
        lexical: Optional[LexicalScorer] = None,
        semantic: Optional[SemanticScorer] = None,
        *,
        timeout: float = SEARCH_COLLABORATOR_TIMEOUT_SECONDS,
    ) -> None:
        self.lexical = lexical or SubstringLexicalScorer()
        self.semantic = semantic or TermExpansionSemanticScorer()
        self.timeout = timeout

    def _run_collaborators(
        self,
        query: str,
        household_id: UUID,
        documents: Sequence[ItemDocument],
        signals: Sequence[str],
    ) -> Tuple[Dict[str, Dict[UUID, float]], List[str]]:
        scorers = {MODE_LEXICAL: self.lexical, MODE_SEMANTIC: self.semantic}
        collected: Dict[str, Dict[UUID, float]] = {}
        failed: List[str] = []
        pool = ThreadPoolExecutor(max_workers=len(signals), thread_name_prefix="search")
        try:
            futures = {
                signal: pool.submit(scorers[signal].score, query, household_id, documents)
                for signal in signals
            }
            for signal, future in futures.items():
                try:
                    collected[signal] = _collect(signal, household_id, future.result(timeout=self.timeout))
                except FutureTimeout:
                    failed.append(signal)
                    log_structured(
                        logging.WARNING,
                        "search_collaborator_timeout",
                        signal=signal,
                        household_id=str(household_id),
                        timeout_seconds=self.timeout,
                    )
                except Exception as exc:
                    failed.append(signal)
                    log_structured(
                        logging.WARNING,
                        "search_collaborator_failed",
                        signal=signal,
                        household_id=str(household_id),
                        error=repr(exc),
                    )
        finally:
            # a hung collaborator must not hold the request past its bounded wait
            pool.shutdown(wait=False, cancel_futures=True)
        return collected, failed

    def rank(
        self,
        query: str,
        household_id: UUID,
        documents: Sequence[ItemDocument],
        mode: str = MODE_HYBRID,
    ) -> Tuple[List[Tuple[UUID, float, float, float]], List[str]]:
        """Merge collaborator scores into ``(id, score, lexical, semantic)`` rows, best first."""
        if mode not in SEARCH_MODES:
            raise InvalidOperation(
                "mode must be one of: hybrid, semantic, lexical", {"mode": mode}
            )
        signals = [MODE_LEXICAL, MODE_SEMANTIC] if mode == MODE_HYBRID else [mode]
        collected, failed = self._run_collaborators(query, household_id, documents, signals)
        if not collected:
            raise ServiceUnavailable("Search is temporarily unavailable", {"failed_signals": failed})

        in_scope = {doc.id for doc in documents}
        lexical = collected.get(MODE_LEXICAL, {})
        semantic = collected.get(MODE_SEMANTIC, {})
        rows: List[Tuple[UUID, float, float, float]] = []
        for item_id in (set(lexical) | set(semantic)) & in_scope:
            lexical_score = lexical.get(item_id, 0.0)
            semantic_score = semantic.get(item_id, 0.0)
            score = combine_scores(lexical_score, semantic_score)
            if score <= 0.0:
                continue
            rows.append((item_id, score, lexical_score, semantic_score))
        rows.sort(key=_sort_key)
        return rows, failed

    def search(
        self,
        store: TreeStore,
        ctx: HouseholdContext,
        query: str,
        *,
        mode: str = MODE_HYBRID,
        limit: int = 20,
        offset: int = 0,
    ) -> SearchPage:
        ctx.require(PERM_INVENTORY_READ)
        cleaned = (query or "").strip()
        if not cleaned:
            raise InvalidOperation("query cannot be empty")
        documents = store.item_documents()
        rows, failed = self.rank(cleaned, store.household_id, documents, mode)
        if failed:
            log_structured(
                logging.WARNING,
                "search_degraded",
                household_id=str(store.household_id),
                mode=mode,
                failed_signals=failed,
            )

        by_id = {doc.id: doc for doc in documents}
        window = rows[offset : offset + limit]
        arena = store.arena() if window else None
        results = []
        for item_id, score, lexical_score, semantic_score in window:
            doc = by_id[item_id]
            location_path = ""
            if arena is not None and doc.location_id in arena:
                location_path = arena.render_path(doc.location_id)
            results.append(
                SearchResult(
                    id=item_id,
                    name=doc.name,
                    image_url=doc.image_url,
                    location_id=doc.location_id,
                    location_path=location_path,
                    score=score,
                    lexical_score=lexical_score,
                    semantic_score=semantic_score,
                )
            )
        return SearchPage(
            results=results,
            total=len(rows),
            limit=limit,
            offset=offset,
            mode=mode,
            degraded=bool(failed),
            failed_signals=failed,
        )


default_ranker = HybridRanker()


def get_ranker() -> HybridRanker:
    return default_ranker
