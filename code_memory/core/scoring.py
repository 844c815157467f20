"""Heuristic relevance scoring for knowledge entries.

The score is a bounded sum of match signals scaled by the entry's own
relevance and confidence:

  +0.2  per query term (length > 2) found in the content, case-insensitive
  +0.3  if the entry carries an embedding and a provider is configured
  +0.3  exact file path match
  +0.4  exact symbol name match
  +0.1  per query tag present on the entry

The embedding bonus is a flat constant. No vector comparison is performed.
"""

from __future__ import annotations

import re

from code_memory.models import MemoryEntry, MemoryHighlight, MemoryQuery

TERM_WEIGHT = 0.2
EMBEDDING_BONUS = 0.3
FILE_MATCH_WEIGHT = 0.3
SYMBOL_MATCH_WEIGHT = 0.4
TAG_WEIGHT = 0.1


def query_terms(text: str) -> list[str]:
    return [t for t in text.lower().split() if len(t) > 2]


def score_entry(entry: MemoryEntry, query: MemoryQuery, has_provider: bool = False) -> float:
    """Score ``entry`` against ``query``. Always returns a value in [0, 1]."""
    score = 0.0
    content = entry.content.lower()
    meta = entry.metadata

    for term in query_terms(query.text):
        if term in content:
            score += TERM_WEIGHT

    if entry.embedding and has_provider:
        score += EMBEDDING_BONUS

    if query.file_path and meta.file_path == query.file_path:
        score += FILE_MATCH_WEIGHT

    if query.symbol_name and meta.symbol_name == query.symbol_name:
        score += SYMBOL_MATCH_WEIGHT

    if query.tags:
        score += TAG_WEIGHT * sum(1 for t in query.tags if t in meta.tags)

    score *= meta.relevance * meta.confidence
    return max(0.0, min(score, 1.0))


def highlight(entry: MemoryEntry, query: MemoryQuery, context_chars: int = 50) -> list[MemoryHighlight]:
    """Return a snippet around the first query term found in the content."""
    for term in query_terms(query.text):
        match = re.search(
            rf"(.{{0,{context_chars}}})({re.escape(term)})(.{{0,{context_chars}}})",
            entry.content,
            re.IGNORECASE | re.DOTALL,
        )
        if match:
            start = match.start(2)
            return [MemoryHighlight(
                field="content",
                snippet=match.group(0),
                positions=[(start, start + len(term))],
            )]
    return []
