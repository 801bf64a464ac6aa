from .convergence import ConvergenceResult, converge
from .detail import DetailFetcher
from .harvester import Endpoint, Harvester, published_after
from .ratelimit import RateLimiter
from .schema import RawRecord, RecordSchema, SchemaError, SchemaField

__all__ = [
    "ConvergenceResult",
    "converge",
    "DetailFetcher",
    "Endpoint",
    "Harvester",
    "published_after",
    "RateLimiter",
    "RawRecord",
    "RecordSchema",
    "SchemaError",
    "SchemaField",
]
