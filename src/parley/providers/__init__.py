from parley.providers.base import TokenChunk, WireAdapter
from parley.providers.dispatcher import ADAPTERS, ProviderDispatcher

__all__ = ["TokenChunk", "WireAdapter", "ADAPTERS", "ProviderDispatcher"]
