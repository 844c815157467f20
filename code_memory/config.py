"""Configuration for the code knowledge memory."""

from pathlib import Path

# Base data directory, snapshots and interaction logs are mirrored here
DATA_DIR = Path("data")
INTERACTION_LOG_DIR = DATA_DIR / "interactions"
DB_PATH = DATA_DIR / "knowledge.db"

SUMMARY_SYSTEM = "Summarize the following context relevant to the query. Be concise."

MEMORY_CONFIG = {
    # LLM / embedding provider
    "llm_model": "claude-sonnet-4-6",
    "llm_temperature": 0.2,
    "text_embedding_model": "all-MiniLM-L6-v2",
    "enable_embeddings": True,
    "provider_timeout_seconds": 30.0,

    # Entry store
    "max_entries": 10000,
    "eviction_fraction": 0.1,
    "default_query_limit": 10,

    # Knowledge cache (seconds)
    "cache_default_ttl_seconds": 24 * 60 * 60,
    "context_cache_ttl_seconds": 60 * 60,

    # Context assembly
    "context_max_tokens": 4000,
    "context_query_limit": 20,
    "context_relevance_threshold": 0.3,
    "summary_entry_count": 5,
    "summary_entry_chars": 500,
    "fallback_summary_count": 3,
    "fallback_summary_chars": 200,
    "prompt_context_entries": 5,
    "prompt_entry_chars": 500,
    "multi_dimensional_limit": 3,
    "task_context_max_entries": 10,
    "task_keyword_limit": 10,

    # Interaction log
    "interaction_max_records": 10000,

    # Evolution
    "cleanup_max_age_days": 90,
    "cleanup_min_relevance": 0.3,
    "cleanup_min_access_count": 0,
    "evolve_cleanup_max_age_days": 60,
    "evolve_cleanup_min_relevance": 0.2,
    "consolidation_similarity": 0.8,
    "boost_min_access_count": 10,
    "boost_factor": 1.1,
    "pattern_tool_min_uses": 10,
    "gap_lookback": 20,
    "gap_keyword_limit": 5,
    "new_knowledge_relevance": 0.8,
    "new_knowledge_confidence": 0.7,

    "prompts": {
        "summary": SUMMARY_SYSTEM,
    },
}
