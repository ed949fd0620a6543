"""Health data sources for Uflow.

Each source implements the HealthDataSource ABC and answers read-only
predicate queries (sample type + time range) with SourceRecord lists.

Available sources:
    AppleHealthExportSource — Apple Health export.xml
    InMemoryHealthSource    — dict-backed store for development and tests
"""

from src.healthsync.sources.apple_health import AppleHealthExportSource
from src.healthsync.sources.memory import InMemoryHealthSource

__all__ = [
    "AppleHealthExportSource",
    "InMemoryHealthSource",
]

# Registry: source_id → source class
SOURCE_REGISTRY: dict[str, type] = {
    "apple_health": AppleHealthExportSource,
    "memory": InMemoryHealthSource,
}


def get_source(source_id: str) -> "type":
    """Return the source class for a given slug.

    Args:
        source_id: e.g. 'apple_health', 'memory'

    Returns:
        The source class (not an instance).

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in SOURCE_REGISTRY:
        raise KeyError(
            f"No health data source registered for '{source_id}'. "
            f"Available: {list(SOURCE_REGISTRY)}"
        )
    return SOURCE_REGISTRY[source_id]
