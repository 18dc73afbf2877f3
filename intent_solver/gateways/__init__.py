from .ledger import NearLedgerGateway
from .market_data import CacheTtls, MarketDataClient
from .matching import DEFAULT_ORDER_PATH, HttpMatchingGateway
from .query_cache import CacheEntry, ResilientQueryCache, cache_key

__all__ = [
    "CacheEntry",
    "CacheTtls",
    "DEFAULT_ORDER_PATH",
    "HttpMatchingGateway",
    "MarketDataClient",
    "NearLedgerGateway",
    "ResilientQueryCache",
    "cache_key",
]
