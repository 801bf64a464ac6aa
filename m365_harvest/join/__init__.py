from .joiner import JoinMode, Joiner, MatchStrategy, flatten_record, sort_records
from .reference import NO_MATCH, ReferenceEntry, ReferenceLoadError, ReferenceTable

__all__ = [
    "JoinMode",
    "Joiner",
    "MatchStrategy",
    "flatten_record",
    "sort_records",
    "NO_MATCH",
    "ReferenceEntry",
    "ReferenceLoadError",
    "ReferenceTable",
]
