from storage.event_store import EventStoreError, InvalidEventError, SqlEventStore

__all__ = [
    "EventStoreError",
    "InvalidEventError",
    "SqlEventStore",
]
