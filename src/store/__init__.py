from .broadcast import BroadcastEndpoint, BroadcastHub
from .client import StoreClient, SyncSnapshot
from .contracts import (
    BroadcastChannel,
    ChangeListener,
    MessageListener,
    SharedStore,
    StoreChanges,
    Unsubscribe,
)
from .errors import (
    ContextInvalidatedError,
    StoreError,
    StorePersistenceError,
    StoreUnavailableError,
    is_context_invalidated,
)
from .memory import InMemorySharedStore, StoreConnection
from .persistence import JsonStoreFile
from .remote import RemoteSharedStore

__all__ = [
    "BroadcastChannel",
    "BroadcastEndpoint",
    "BroadcastHub",
    "ChangeListener",
    "ContextInvalidatedError",
    "InMemorySharedStore",
    "JsonStoreFile",
    "MessageListener",
    "RemoteSharedStore",
    "SharedStore",
    "StoreChanges",
    "StoreClient",
    "StoreConnection",
    "StoreError",
    "StorePersistenceError",
    "StoreUnavailableError",
    "SyncSnapshot",
    "Unsubscribe",
    "is_context_invalidated",
]
