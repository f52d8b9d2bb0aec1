from contracts.store_protocol import CONTEXT_INVALIDATED_MARKER


class StoreError(Exception):
    """Base exception for shared store access."""


class ContextInvalidatedError(StoreError):
    """Raised when the calling context was torn down (extension reload)."""

    def __init__(self, message: str = "Extension context invalidated."):
        super().__init__(message)


class StoreUnavailableError(StoreError):
    """Raised when the store or messaging channel cannot be reached right now."""


class StorePersistenceError(StoreError):
    """Raised when the persisted store file cannot be read or written."""


def is_context_invalidated(error: BaseException) -> bool:
    """Recognise a torn-down context by the failure's message text."""
    if isinstance(error, ContextInvalidatedError):
        return True
    return CONTEXT_INVALIDATED_MARKER in str(error).lower()
