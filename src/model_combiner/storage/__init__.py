from model_combiner.storage.kv_store import KeyValueStore
from model_combiner.storage.state_store import ImportRejected, StateStore, generate_title

__all__ = [
    "ImportRejected",
    "KeyValueStore",
    "StateStore",
    "generate_title",
]
