"""Knowledge evolution: the periodic maintenance cycle.

Ages out stale entries, collapses near-duplicates, boosts entries that are
used a lot, turns interaction statistics into pattern entries and reports
topics the agent could not answer. Everything goes through the entry
store's public operations; the indices are never touched directly.

The ``evolve`` order is fixed: cleanup, consolidation, boosting, learning,
gap detection. Boosting reads the access counts of consolidation survivors.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from code_memory.config import MEMORY_CONFIG
from code_memory.core.entry_store import EntryStore
from code_memory.core.interaction_log import InteractionLog
from code_memory.core.knowledge_cache import KnowledgeCache
from code_memory.models import (
    BoostResult,
    CleanupResult,
    ConsolidationResult,
    EvolutionResult,
    InteractionQuery,
    KnowledgeUpdateResult,
    MemoryEntryType,
    MemoryQuery,
    MergeGroup,
)

logger = logging.getLogger(__name__)

GAP_PHRASES = ("do not have", "no information", "not found")

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "to", "of",
    "in", "for", "on", "with", "at", "by", "from", "as", "how", "what",
    "why", "when", "where", "which", "who",
})


def jaccard_similarity(text_a: str, text_b: str) -> float:
    """Word-set Jaccard similarity on lower-cased, whitespace-split text."""
    words_a = set(text_a.lower().split())
    words_b = set(text_b.lower().split())
    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


def extract_gap_keywords(text: str, limit: int = 5) -> list[str]:
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    return [w for w in words if len(w) > 3 and w not in STOP_WORDS][:limit]


class KnowledgeEvolution:
    """Maintenance operations over an entry store."""

    def __init__(
        self,
        store: EntryStore,
        interactions: InteractionLog,
        cache: KnowledgeCache | None = None,
    ) -> None:
        self.store = store
        self.interactions = interactions
        self.cache = cache
        self.config = MEMORY_CONFIG

    async def update_knowledge(
        self,
        query: str,
        new_content: str,
        *,
        source: str,
        entry_type: MemoryEntryType | None = None,
        tags: list[str] | None = None,
    ) -> KnowledgeUpdateResult:
        """Fold new content into the best matching entry, or create one."""
        matches = [r for r in self.store.query(MemoryQuery(text=query, limit=5)) if r.score > 0]

        if matches:
            existing = matches[0].entry
            metadata = replace(
                existing.metadata,
                source=source,
                confidence=min(existing.metadata.confidence + 0.1, 1.0),
                tags=list(dict.fromkeys([*existing.metadata.tags, *(tags or [])])),
            )
            updated = self.store.update(existing.id, content=new_content, metadata=metadata)
            logger.debug("Updated knowledge entry %s from %s", existing.id, source)
            return KnowledgeUpdateResult(updated=True, created=False, entry=updated)

        entry = await self.store.store_knowledge(
            new_content,
            entry_type or MemoryEntryType.DOCUMENTATION,
            source=source,
            tags=tags or [],
            relevance=self.config["new_knowledge_relevance"],
            confidence=self.config["new_knowledge_confidence"],
        )
        return KnowledgeUpdateResult(updated=False, created=True, entry=entry)

    def cleanup_outdated(
        self,
        max_age_days: float | None = None,
        min_relevance: float | None = None,
        min_access_count: int | None = None,
    ) -> CleanupResult:
        """Remove entries that are old, low-relevance and unused (all three must hold)."""
        max_age_days = max_age_days if max_age_days is not None else self.config["cleanup_max_age_days"]
        min_relevance = min_relevance if min_relevance is not None else self.config["cleanup_min_relevance"]
        min_access_count = (
            min_access_count if min_access_count is not None
            else self.config["cleanup_min_access_count"]
        )
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)

        doomed = [
            entry.id for entry in self.store.list_entries()
            if entry.updated_at < cutoff
            and entry.metadata.relevance < min_relevance
            and entry.access_count <= min_access_count
        ]
        for entry_id in doomed:
            self.store.delete(entry_id)

        return CleanupResult(removed_count=len(doomed), removed_entries=doomed)

    def consolidate_knowledge(self) -> ConsolidationResult:
        """Collapse groups of near-duplicate entries of the same type."""
        threshold = self.config["consolidation_similarity"]
        entries = self.store.list_entries()
        processed: set[str] = set()
        result = ConsolidationResult()

        for entry in entries:
            if entry.id in processed:
                continue

            group = [entry] + [
                other for other in entries
                if other.id != entry.id
                and other.id not in processed
                and other.type == entry.type
                and jaccard_similarity(entry.content, other.content) > threshold
            ]
            processed.update(e.id for e in group)
            if len(group) < 2:
                continue

            # max() keeps the first of equal access counts
            keeper = max(group, key=lambda e: e.access_count)
            removed = [e.id for e in group if e.id != keeper.id]
            for entry_id in removed:
                self.store.delete(entry_id)

            result.merged_entries.append(MergeGroup(kept=keeper.id, removed=removed))
            result.merged_count += len(removed)

        return result

    def boost_relevance(self, min_access_count: int, boost_factor: float) -> BoostResult:
        """Scale up the relevance of frequently accessed entries, capped at 1."""
        boosted = []
        for entry in self.store.list_entries():
            if entry.access_count < min_access_count:
                continue
            relevance = min(entry.metadata.relevance * boost_factor, 1.0)
            self.store.update(entry.id, metadata=replace(entry.metadata, relevance=relevance))
            boosted.append(entry.id)
        return BoostResult(boosted_count=len(boosted), boosted_entries=boosted)

    async def learn_from_interactions(self) -> int:
        """Store a pattern entry for every heavily used tool. Returns the count."""
        stats = self.interactions.get_stats()
        min_uses = self.config["pattern_tool_min_uses"]
        learned = 0

        for name, count in sorted(stats.tool_usage.items(), key=lambda kv: kv[1], reverse=True):
            if count <= min_uses:
                continue
            await self.store.store_knowledge(
                f"Frequently used tool: {name} ({count} times)",
                MemoryEntryType.PATTERN,
                source="interaction-analysis",
                tags=["tool-usage", "pattern"],
                relevance=0.8,
                confidence=0.9,
            )
            learned += 1

        return learned

    def detect_knowledge_gaps(self) -> list[str]:
        """Describe topics from recent failed interactions the agent had no answer for."""
        failed = self.interactions.query(
            InteractionQuery(success=False, limit=self.config["gap_lookback"]),
        )
        gaps: list[str] = []
        for interaction in failed:
            output = interaction.output.lower()
            if not any(phrase in output for phrase in GAP_PHRASES):
                continue
            keywords = extract_gap_keywords(interaction.input, self.config["gap_keyword_limit"])
            if not keywords:
                continue
            gap = f"Missing knowledge about: {', '.join(keywords)}"
            if gap not in gaps:
                gaps.append(gap)
        return gaps

    async def evolve(self) -> EvolutionResult:
        """Run one full maintenance cycle."""
        result = EvolutionResult()

        cleanup = self.cleanup_outdated(
            max_age_days=self.config["evolve_cleanup_max_age_days"],
            min_relevance=self.config["evolve_cleanup_min_relevance"],
        )
        result.changes.removed = cleanup.removed_count

        consolidation = self.consolidate_knowledge()
        result.changes.merged = consolidation.merged_count

        boost = self.boost_relevance(
            min_access_count=self.config["boost_min_access_count"],
            boost_factor=self.config["boost_factor"],
        )
        result.changes.boosted = boost.boosted_count

        learned = await self.learn_from_interactions()
        result.changes.created = learned
        result.patterns_learned = learned

        result.gaps_detected = self.detect_knowledge_gaps()

        if self.cache is not None:
            result.cache_expired = self.cache.cleanup_expired()

        logger.info(
            "Evolution complete: removed=%d, merged=%d, boosted=%d, created=%d, gaps=%d",
            result.changes.removed, result.changes.merged, result.changes.boosted,
            result.changes.created, len(result.gaps_detected),
        )
        return result
