from .dispatcher import BackgroundDispatcher, BroadcastFn

__all__ = [
    "BackgroundDispatcher",
    "BroadcastFn",
]
