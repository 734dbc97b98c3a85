"""Storage adapters for prediction history and durable guardrail state."""

from riskcal.storage.kv import KeyValueStore, MemoryKeyValueStore, JsonFileKeyValueStore
from riskcal.storage.predictions import (
    PredictionSource,
    InMemoryPredictionSource,
    SqlitePredictionSource,
)

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "PredictionSource",
    "InMemoryPredictionSource",
    "SqlitePredictionSource",
]
