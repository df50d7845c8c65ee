"""
Basic usage example for the semantic categorizer.

Requires OPENAI_API_KEY (or CATEGORIZER_API_KEY) for the default
text-embedding-3-small model.
"""

import asyncio

from semantic_categorizer import (
    CategorizerConfig,
    DatabaseManager,
    InMemoryItemSource,
    StreamingCategoryMatcher,
)
from semantic_categorizer.exceptions import (
    ConfigurationError,
    EmbeddingProviderError,
)
from semantic_categorizer.jobs import build_fetcher


async def main():
    """Match a handful of keywords against explicit categories."""

    print("🚀 Semantic Categorizer Basic Usage Example")
    print("=" * 44)

    print("\n1. Creating configuration...")
    try:
        config = CategorizerConfig(
            database_url="sqlite:///example_cache.db",
            embedding_chunk_size=32,
            target_page_size=500,
            category_page_size=100,
        )
        print("✅ Configuration created")
        print(f"   Model: {config.embedding_model}")
        print(f"   Chunk size: {config.embedding_chunk_size}")
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return

    print("\n2. Invalid settings are rejected up front...")
    try:
        CategorizerConfig(database_url="sqlite:///x.db", target_page_size=0)
        print("❌ This should have failed!")
    except ConfigurationError as e:
        print(f"✅ {str(e)[:80]}...")

    db_manager = DatabaseManager(config)
    db_manager.create_tables()

    targets = InMemoryItemSource.from_texts(
        ["trail running shoes", "chef knife set", "waterproof hiking boots", "cast iron skillet"]
    )
    categories = InMemoryItemSource.from_texts(
        ["Footwear", "Kitchen", "footwear"], start_id=100, dedupe=True
    )

    print(f"\n3. Matching {targets.count()} keywords against {categories.count()} categories...")
    matcher = StreamingCategoryMatcher.from_config(config, build_fetcher(config, db_manager))
    try:
        async for result in matcher.stream(targets, categories):
            print(
                f"   #{result.item_id} -> {result.best_category_name} "
                f"(similarity {result.similarity_score:.3f}, {result.embedding_source.value})"
            )
    except EmbeddingProviderError as e:
        print(f"❌ Provider error [{e.code}]: {e}")
        return
    finally:
        db_manager.close()

    print("\n4. Run it again: every embedding now comes from the cache.")
    print(f"   Comparisons: {matcher.stats.comparisons}")


if __name__ == "__main__":
    asyncio.run(main())
