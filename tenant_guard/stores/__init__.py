from .base import AttemptLog, CounterStore, EventStore
from .memory import InMemoryAttemptLog, InMemoryCounterStore, InMemoryEventStore
from .redis_store import RedisCounterStore
from .sql import SqlAttemptLog, SqlCounterStore, SqlEventStore

__all__ = [
    "AttemptLog",
    "CounterStore",
    "EventStore",
    "InMemoryAttemptLog",
    "InMemoryCounterStore",
    "InMemoryEventStore",
    "RedisCounterStore",
    "SqlAttemptLog",
    "SqlCounterStore",
    "SqlEventStore",
]
