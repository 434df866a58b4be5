"""vecsearch domain models -- re-exports all public model classes.

The models are organized across five submodules by concern:
    - document.py  -- stored documents, patches, store change events
    - filters.py   -- metadata predicate algebra and its dictionary form
    - index.py     -- metric / structure enums, index stats, recall reports
    - ingestion.py -- source documents, chunks, ingestion results
    - search.py    -- filter strategies, hits and result sets
"""

from __future__ import annotations

from vecsearch.models.document import (
    ChangeOp,
    Document,
    DocumentPatch,
    MetadataValue,
    StoreChange,
    StoreStats,
)
from vecsearch.models.filters import (
    And,
    Eq,
    In,
    Not,
    Or,
    Predicate,
    Range,
    TagsAll,
    TagsAny,
    parse_filter,
)
from vecsearch.models.index import (
    DistanceMetric,
    IndexKind,
    IndexStats,
    RebuildJobInfo,
    RebuildStatus,
    RecallReport,
)
from vecsearch.models.ingestion import IngestionResult, SourceDocument, TextChunk
from vecsearch.models.search import FilterStrategy, SearchHit, SearchResults

__all__ = [
    "And",
    "ChangeOp",
    "DistanceMetric",
    "Document",
    "DocumentPatch",
    "Eq",
    "FilterStrategy",
    "In",
    "IndexKind",
    "IndexStats",
    "IngestionResult",
    "MetadataValue",
    "Not",
    "Or",
    "Predicate",
    "Range",
    "RebuildJobInfo",
    "RebuildStatus",
    "RecallReport",
    "SearchHit",
    "SearchResults",
    "SourceDocument",
    "StoreChange",
    "StoreStats",
    "TagsAll",
    "TagsAny",
    "TextChunk",
    "parse_filter",
]
