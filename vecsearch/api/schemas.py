"""Pydantic request/response schemas for the vecsearch HTTP API.

Request schemas end with ``Request`` and response schemas with
``Response``.  Where a domain model already has the right public shape
(:class:`~vecsearch.models.search.SearchHit`,
:class:`~vecsearch.models.index.IndexStats`,
:class:`~vecsearch.models.index.RebuildJobInfo`, ...) it is returned as is.

Numeric arguments the engine validates itself (``k``, ``top_n``,
``over_fetch_factor``) are left unconstrained here so the engine's
``InvalidArgumentError`` (HTTP 400) is the single source of truth.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from vecsearch.models.document import Document, MetadataValue, StoreStats
from vecsearch.models.index import IndexStats
from vecsearch.models.search import FilterStrategy, SearchHit


class InsertVectorRequest(BaseModel):
    """A document to insert.

    The embedding comes from ``embedding`` when given, otherwise from
    embedding ``text``, otherwise from embedding ``content``.
    """

    id: str | None = Field(default=None, min_length=1, description="Generated when omitted.")
    content: str = ""
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    embedding: list[float] | None = None
    text: str | None = Field(default=None, description="Text to embed instead of `content`.")


class InsertVectorResponse(BaseModel):
    id: str
    created_at: datetime
    store_version: int


class UpdateVectorRequest(BaseModel):
    """Partial update.  Unset fields are left unchanged."""

    content: str | None = None
    embedding: list[float] | None = None
    text: str | None = Field(default=None, description="Re-embed from this text.")
    metadata: dict[str, MetadataValue] | None = None
    replace_metadata: bool = False

    @model_validator(mode="after")
    def _one_embedding_source(self) -> UpdateVectorRequest:
        if self.embedding is not None and self.text is not None:
            raise ValueError("Provide at most one of `embedding` and `text`")
        return self


class DocumentResponse(BaseModel):
    id: str
    content: str
    metadata: dict[str, MetadataValue]
    embedding: list[float] | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: Document, include_embedding: bool = True) -> DocumentResponse:
        return cls(
            id=doc.id,
            content=doc.content,
            metadata=dict(doc.metadata),
            embedding=list(doc.embedding) if include_embedding else None,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )


class DeleteResponse(BaseModel):
    id: str
    deleted: bool


class SearchRequest(BaseModel):
    """A k-NN query.  Exactly one of ``vector``, ``vectors``, ``text``, ``texts``."""

    vector: list[float] | None = None
    vectors: list[list[float]] | None = None
    text: str | None = None
    texts: list[str] | None = None
    k: int = 10
    filter: dict[str, Any] | None = Field(
        default=None,
        description='Metadata filter, e.g. {"lang": "en", "year": {"$gte": 2020}}.',
    )
    metric: str | None = None
    threshold: float | None = None
    strategy: FilterStrategy | None = None
    over_fetch_factor: int | None = None
    include_content: bool = True
    rerank: bool = False
    rerank_top_n: int | None = None

    @model_validator(mode="after")
    def _exactly_one_query(self) -> SearchRequest:
        given = [
            name
            for name in ("vector", "vectors", "text", "texts")
            if getattr(self, name) is not None
        ]
        if len(given) != 1:
            raise ValueError("Provide exactly one of `vector`, `vectors`, `text`, `texts`")
        return self

    @property
    def query_texts(self) -> list[str] | None:
        if self.text is not None:
            return [self.text]
        return self.texts


class SearchResponse(BaseModel):
    hits: list[SearchHit]
    k: int
    metric: str
    strategy: FilterStrategy | None = None
    underfilled: bool = False
    candidates_examined: int = 0
    snapshot_version: int
    reranked: bool = False


class IngestRequest(BaseModel):
    source_id: str = Field(min_length=1)
    content: str
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    chunk_size: int | None = None
    overlap: int | None = None


class IndexStatsResponse(BaseModel):
    index: IndexStats
    store: StoreStats
    active_rebuild: str | None = None


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]
    documents: int
    index_version: int


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
