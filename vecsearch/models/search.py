"""Query-side data models: filter strategies, hits and result sets."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from vecsearch.models.document import MetadataValue
from vecsearch.models.index import DistanceMetric


class FilterStrategy(str, Enum):
    """How a metadata predicate is combined with similarity search.

    ``PRE``  -- restrict to matching documents, then search them exactly.
    ``POST`` -- over-fetch from the ANN snapshot, then drop non-matching hits.
    ``AUTO`` -- ``PRE`` for exact indexes and small stores, ``POST`` otherwise.
    """

    AUTO = "auto"
    PRE = "pre"
    POST = "post"


class SearchHit(BaseModel):
    """A single ranked result."""

    model_config = ConfigDict(frozen=True)

    id: str
    distance: float
    content: str | None = None
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    rerank_score: float | None = None


class SearchResults(BaseModel):
    """Ranked hits plus what the engine did to produce them.

    ``underfilled`` is set when post-filtering ran out of candidates before
    reaching *k* even though more matching documents may exist.
    """

    model_config = ConfigDict(frozen=True)

    hits: list[SearchHit] = Field(default_factory=list)
    k: int = Field(ge=1)
    metric: DistanceMetric
    strategy: FilterStrategy | None = None
    underfilled: bool = False
    candidates_examined: int = Field(default=0, ge=0)
    snapshot_version: int = Field(default=0, ge=0)

    @property
    def ids(self) -> list[str]:
        return [hit.id for hit in self.hits]

    def __len__(self) -> int:
        return len(self.hits)
